from collections import OrderedDict
from typing import List, Optional
from fastapi import HTTPException, status
from sqlalchemy import select
from marketplace.common.utils import now, parse_pid
from marketplace.deliveries.fees import DEFAULT_DELIVERY_FEE, calculate_delivery_fee_from_coordinates
from marketplace.inventory.services import adjust_stock, restore_stock_for_order
from marketplace.notifications.services import notify_order_cancelled, notify_order_placed, notify_order_status
from marketplace.orders.constants import NON_CANCELLABLE, SELLER_OUT_FOR_DELIVERY_MESSAGE, logger
from marketplace.orders.models import OrderCreateIn
from marketplace.orders.repository import delivery_for_order, payment_for_order, unique_order_number
from marketplace.orders.utils import calculate_platform_fee
from marketplace.payments.client import PaystackClient
from marketplace.payments.services import refund_payment
from marketplace.schema.full_schema import (Delivery, OrderItem, Orders, Payment, PricingUnit, Product, Shop,
                                            StockChangeType)
from marketplace.schema.lifecycle import (DeliveryStatus, EscrowStatus, OrderStatus, PaymentStatus, can_transition,
                                          ensure_transition)
from marketplace.shops.repository import visible_shop_clause
from marketplace.user.dependencies import Principal


async def _resolve_lines(session, payload: OrderCreateIn) -> "OrderedDict[int, dict]":
    """Validate each requested line and group them by shop, keeping request order."""
    unit_pids = [parse_pid(i.pricingUnitId) for i in payload.items]
    rows = (await session.execute(
        select(PricingUnit, Product, Shop)
        .join(Product, Product.id == PricingUnit.product_id)
        .join(Shop, Shop.id == Product.shop_id)
        .where(PricingUnit.public_id.in_([p for p in unit_pids if p is not None]))
    )).all()
    by_unit = {unit.public_id: (unit, product, shop) for unit, product, shop in rows}

    visible_shop_ids = set()
    shop_ids = {shop.id for _, _, shop in rows}
    if shop_ids:
        visible_shop_ids = set((await session.execute(
            select(Shop.id).where(Shop.id.in_(shop_ids), visible_shop_clause())
        )).scalars())

    groups: "OrderedDict[int, dict]" = OrderedDict()
    for item, unit_pid in zip(payload.items, unit_pids):
        found = by_unit.get(unit_pid)
        if found is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid product: {item.productId}")
        unit, product, shop = found
        if str(product.public_id) != str(parse_pid(item.productId)):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail=f"Pricing unit does not belong to product: {product.name}")
        if not unit.is_active or not product.is_available or shop.id not in visible_shop_ids:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Product is not available: {product.name}")

        group = groups.setdefault(shop.id, {"shop": shop, "lines": []})
        group["lines"].append((unit, product, item.quantity))
    return groups


async def place_orders(session, principal: Principal, payload: OrderCreateIn) -> List[Orders]:
    if not payload.items:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cart is empty")
    if not (payload.deliveryAddress and payload.deliveryCity and payload.deliveryState):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Delivery information is required")

    groups = await _resolve_lines(session, payload)
    orders = []
    for group in groups.values():
        shop: Shop = group["shop"]
        subtotal = round(sum(unit.price * qty for unit, _, qty in group["lines"]), 2)
        platform_fee = calculate_platform_fee(subtotal)
        delivery_fee = calculate_delivery_fee_from_coordinates(
            shop.latitude, shop.longitude, payload.deliveryLatitude, payload.deliveryLongitude)
        if delivery_fee is None:
            delivery_fee = DEFAULT_DELIVERY_FEE
        total = round(subtotal + platform_fee + delivery_fee, 2)

        order = Orders(
            order_number=await unique_order_number(session),
            buyer_id=principal.user_id,
            shop_id=shop.id,
            status=OrderStatus.PENDING,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            platform_fee=platform_fee,
            total=total,
            delivery_address=payload.deliveryAddress,
            delivery_city=payload.deliveryCity,
            delivery_state=payload.deliveryState,
            delivery_phone=payload.deliveryPhone or principal.phone_number,
            delivery_latitude=payload.deliveryLatitude,
            delivery_longitude=payload.deliveryLongitude,
            notes=payload.notes,
        )
        session.add(order)
        await session.flush()

        for unit, product, qty in group["lines"]:
            session.add(OrderItem(
                order_id=order.id, product_id=product.id, pricing_unit_id=unit.id,
                product_name=product.name, unit=unit.unit, quantity=qty,
                unit_price=unit.price, total_price=round(unit.price * qty, 2),
            ))
        session.add(Payment(order_id=order.id, amount=total, status=PaymentStatus.PENDING,
                            escrow_status=EscrowStatus.HELD, reference=order.order_number))
        session.add(Delivery(order_id=order.id, status=DeliveryStatus.PENDING))
        await session.flush()

        for unit, product, qty in group["lines"]:
            await adjust_stock(session, unit.id, -qty, StockChangeType.ORDER_PLACED, order_id=order.id,
                               reason=f"Stock reserved for order {order.order_number}", label=product.name)

        await notify_order_placed(session, shop.user_id, order.order_number, total, order.public_id)
        logger.info("order.create.success", extra={"order_id": order.id, "shop_id": shop.id, "total": total})
        orders.append(order)

    return orders


def ensure_can_read(order: Orders, shop: Shop, principal: Principal, rider_id: Optional[int]) -> None:
    allowed = (order.buyer_id == principal.user_id or shop.user_id == principal.user_id
               or (rider_id is not None and rider_id == principal.user_id) or principal.is_admin)
    if not allowed:
        logger.warning("order.read.denied", extra={"order_id": order.id, "user_id": principal.user_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")


async def mark_cancelled(session, order: Orders, reason: Optional[str]) -> int:
    """Move the order to CANCELLED, fail its open delivery and give stock back."""
    ensure_transition("order", order.status, OrderStatus.CANCELLED)
    order.status = OrderStatus.CANCELLED
    order.cancelled_at = now()
    order.cancellation_reason = reason
    session.add(order)

    delivery = await delivery_for_order(session, order.id, lock=True)
    if delivery is not None and can_transition("delivery", delivery.status, DeliveryStatus.FAILED):
        delivery.status = DeliveryStatus.FAILED
        delivery.notes = "Order cancelled"
        session.add(delivery)
    await session.flush()

    return await restore_stock_for_order(session, order)


async def cancel_order(session, client: PaystackClient, order: Orders, shop: Shop, principal: Principal,
                       reason: Optional[str]) -> dict:
    is_buyer = order.buyer_id == principal.user_id
    is_seller = shop.user_id == principal.user_id
    if not (is_buyer or is_seller):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized to cancel this order")
    if is_seller and not is_buyer and not reason:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Cancellation reason is required for seller cancellations")

    if order.status in NON_CANCELLABLE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NON_CANCELLABLE[order.status])
    if is_seller and not is_buyer and order.status == OrderStatus.OUT_FOR_DELIVERY:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=SELLER_OUT_FOR_DELIVERY_MESSAGE)

    by = "buyer" if is_buyer else "seller"
    refund = {"initiated": False}
    payment = await payment_for_order(session, order.id, lock=True)
    if payment is not None and payment.status == PaymentStatus.COMPLETED:
        note = reason or f"Auto-refund for order cancellation #{order.order_number} by {by}"
        refund = await refund_payment(session, client, order, payment, reason=note)

    await mark_cancelled(session, order, reason)

    refunded = refund["initiated"]
    await notify_order_cancelled(session, order.buyer_id, order.order_number, order.public_id,
                                 by=by, to_seller=False, reason=reason, refunded=refunded)
    if is_buyer and not is_seller:
        await notify_order_cancelled(session, shop.user_id, order.order_number, order.public_id,
                                     by=by, to_seller=True, refunded=refunded)

    logger.info("order.cancel.success", extra={"order_id": order.id, "by": by, "refunded": refunded})
    return {
        "message": "Order cancelled and refund processed" if refunded else "Order cancelled successfully",
        "order": {"id": str(order.public_id), "orderNumber": order.order_number, "status": order.status.value},
        "refund": refund,
    }


async def seller_update_status(session, shop: Shop, order: Orders, target: OrderStatus) -> Orders:
    if order.shop_id != shop.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    ensure_transition("seller_order", order.status, target)
    order.status = target
    session.add(order)
    await session.flush()

    await notify_order_status(session, order.buyer_id, order.order_number, target.value, order.public_id)
    logger.info("order.status.updated", extra={"order_id": order.id, "status": target.value})
    return order


async def bulk_update_status(session, shop: Shop, order_pids: list, target: OrderStatus) -> dict:
    pids = [parse_pid(p) for p in order_pids]
    valid = [p for p in pids if p is not None]
    rows = []
    if valid:
        rows = (await session.execute(
            select(Orders).where(Orders.public_id.in_(valid), Orders.shop_id == shop.id)
            .with_for_update().execution_options(populate_existing=True)
        )).scalars().all()
    if len(rows) != len(set(pids)) or None in pids:
        logger.warning("order.bulk.unauthorized", extra={"shop_id": shop.id, "requested": len(order_pids), "found": len(rows)})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Some orders not found or unauthorized")

    updatable = [o for o in rows if can_transition("seller_order", o.status, target)]
    if not updatable:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="No orders can be updated to the requested status")

    for order in updatable:
        order.status = target
        session.add(order)
    await session.flush()

    for order in updatable:
        await notify_order_status(session, order.buyer_id, order.order_number, target.value, order.public_id)

    logger.info("order.bulk.updated", extra={"shop_id": shop.id, "updated": len(updatable), "requested": len(rows)})
    return {
        "message": "Orders updated successfully",
        "updatedCount": len(updatable),
        "totalRequested": len(rows),
        "skipped": len(rows) - len(updatable),
    }
