from typing import Dict, List, Optional
from fastapi import HTTPException, status
from sqlalchemy import func, select
from marketplace.common.utils import iso, money, page_meta, parse_pid
from marketplace.orders.constants import ORDER_NUMBER_ATTEMPTS, logger
from marketplace.orders.utils import generate_order_number
from marketplace.schema.full_schema import Delivery, OrderItem, Orders, Payment, Shop, Users
from marketplace.schema.lifecycle import OrderStatus
from marketplace.shops.repository import shop_summary
from marketplace.user.repository import user_summary


async def order_by_pid(session, order_pid, *, lock: bool = False) -> Orders:
    pid = parse_pid(order_pid)
    order = None
    if pid is not None:
        stmt = select(Orders).where(Orders.public_id == pid)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        order = (await session.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


async def order_by_number(session, order_number: str) -> Optional[Orders]:
    return (await session.execute(select(Orders).where(Orders.order_number == order_number))).scalar_one_or_none()


async def payment_for_order(session, order_id: int, *, lock: bool = False) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.order_id == order_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


async def delivery_for_order(session, order_id: int, *, lock: bool = False) -> Optional[Delivery]:
    stmt = select(Delivery).where(Delivery.order_id == order_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


async def shop_of_order(session, order: Orders) -> Shop:
    return (await session.execute(select(Shop).where(Shop.id == order.shop_id))).scalar_one()


async def unique_order_number(session) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number()
        if await order_by_number(session, candidate) is None:
            return candidate
    logger.error("order.number.exhausted")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not allocate an order number")


def payment_out(payment: Optional[Payment]) -> Optional[dict]:
    if payment is None:
        return None
    return {
        "id": str(payment.public_id),
        "amount": money(payment.amount),
        "status": payment.status.value,
        "escrowStatus": payment.escrow_status.value,
        "reference": payment.reference,
        "paidAt": iso(payment.paid_at),
        "releasedAt": iso(payment.released_at),
        "refundedAt": iso(payment.refunded_at),
    }


def delivery_out(delivery: Optional[Delivery], rider: Optional[Users] = None) -> Optional[dict]:
    if delivery is None:
        return None
    return {
        "id": str(delivery.public_id),
        "status": delivery.status.value,
        "rider": user_summary(rider) if rider else None,
        "estimatedDeliveryAt": iso(delivery.estimated_delivery_at),
        "assignedAt": iso(delivery.assigned_at),
        "pickedUpAt": iso(delivery.picked_up_at),
        "deliveredAt": iso(delivery.delivered_at),
        "riderLatitude": delivery.rider_latitude,
        "riderLongitude": delivery.rider_longitude,
    }


def item_out(item: OrderItem) -> dict:
    return {
        "productName": item.product_name,
        "unit": item.unit,
        "quantity": item.quantity,
        "unitPrice": money(item.unit_price),
        "totalPrice": money(item.total_price),
    }


def order_out(order: Orders, *, shop: Optional[Shop] = None, items: Optional[List[OrderItem]] = None,
              payment: Optional[Payment] = None, delivery: Optional[Delivery] = None,
              buyer: Optional[Users] = None, rider: Optional[Users] = None) -> dict:
    out = {
        "id": str(order.public_id),
        "orderNumber": order.order_number,
        "status": order.status.value,
        "subtotal": money(order.subtotal),
        "deliveryFee": money(order.delivery_fee),
        "platformFee": money(order.platform_fee),
        "total": money(order.total),
        "deliveryAddress": order.delivery_address,
        "deliveryCity": order.delivery_city,
        "deliveryState": order.delivery_state,
        "deliveryPhone": order.delivery_phone,
        "deliveryLatitude": order.delivery_latitude,
        "deliveryLongitude": order.delivery_longitude,
        "notes": order.notes,
        "cancellationReason": order.cancellation_reason,
        "cancelledAt": iso(order.cancelled_at),
        "deliveredAt": iso(order.delivered_at),
        "createdAt": iso(order.created_at),
    }
    if shop is not None:
        out["shop"] = shop_summary(shop)
    if items is not None:
        out["items"] = [item_out(i) for i in items]
    if payment is not None:
        out["payment"] = payment_out(payment)
    if delivery is not None:
        out["delivery"] = delivery_out(delivery, rider)
    if buyer is not None:
        out["buyer"] = user_summary(buyer)
    return out


async def _items_by_order(session, order_ids: List[int]) -> Dict[int, List[OrderItem]]:
    if not order_ids:
        return {}
    rows = (await session.execute(
        select(OrderItem).where(OrderItem.order_id.in_(order_ids)).order_by(OrderItem.id)
    )).scalars().all()
    grouped: Dict[int, List[OrderItem]] = {}
    for item in rows:
        grouped.setdefault(item.order_id, []).append(item)
    return grouped


async def order_detail(session, order: Orders) -> dict:
    shop = await shop_of_order(session, order)
    items = (await _items_by_order(session, [order.id])).get(order.id, [])
    payment = await payment_for_order(session, order.id)
    delivery = await delivery_for_order(session, order.id)
    buyer = await session.get(Users, order.buyer_id)
    rider = await session.get(Users, delivery.rider_id) if delivery and delivery.rider_id else None
    return order_out(order, shop=shop, items=items, payment=payment, delivery=delivery, buyer=buyer, rider=rider)


async def _paged_orders(session, where: list, *, page: int, limit: int, offset: int, with_buyer: bool) -> dict:
    total = (await session.execute(select(func.count(Orders.id)).where(*where))).scalar_one()

    stmt = (select(Orders, Shop, Payment, Delivery)
            .join(Shop, Shop.id == Orders.shop_id)
            .outerjoin(Payment, Payment.order_id == Orders.id)
            .outerjoin(Delivery, Delivery.order_id == Orders.id)
            .where(*where)
            .order_by(Orders.created_at.desc(), Orders.id.desc())
            .offset(offset).limit(limit))
    rows = (await session.execute(stmt)).all()

    items = await _items_by_order(session, [r[0].id for r in rows])
    buyers = {}
    if with_buyer and rows:
        buyer_ids = {r[0].buyer_id for r in rows}
        buyers = {u.id: u for u in (await session.execute(select(Users).where(Users.id.in_(buyer_ids)))).scalars()}

    orders = [
        order_out(order, shop=shop, items=items.get(order.id, []), payment=payment, delivery=delivery,
                  buyer=buyers.get(order.buyer_id))
        for order, shop, payment, delivery in rows
    ]
    return {"orders": orders, **page_meta(total, page, limit)}


def _filters(status_filter: Optional[OrderStatus], search: Optional[str]) -> list:
    where = []
    if status_filter is not None:
        where.append(Orders.status == status_filter)
    if search:
        where.append(Orders.order_number.ilike(f"%{search}%"))
    return where


async def list_buyer_orders(session, buyer_id: int, *, status_filter=None, search=None,
                            page: int, limit: int, offset: int) -> dict:
    where = [Orders.buyer_id == buyer_id, *_filters(status_filter, search)]
    return await _paged_orders(session, where, page=page, limit=limit, offset=offset, with_buyer=False)


async def list_shop_orders(session, shop_id: int, *, status_filter=None, search=None,
                           page: int, limit: int, offset: int) -> dict:
    where = [Orders.shop_id == shop_id, *_filters(status_filter, search)]
    return await _paged_orders(session, where, page=page, limit=limit, offset=offset, with_buyer=True)
