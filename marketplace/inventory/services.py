"""Stock ledger.

Every stock mutation goes through :func:`adjust_stock`, which locks the pricing unit
row, refuses to go below zero and appends a :class:`StockChange` in the caller's
transaction. Callers own the commit.
"""
from datetime import timedelta
from typing import List, Optional
from fastapi import HTTPException, status
from sqlalchemy import select
from marketplace.common.custom_exceptions import InvalidStock
from marketplace.common.utils import iso, now
from marketplace.inventory.constants import LOW_STOCK_ALERT_INTERVAL_SECONDS, STOCK_HISTORY_LIMIT, logger
from marketplace.notifications.services import notify_low_stock
from marketplace.schema.full_schema import (Notification, NotificationType, OrderItem, Orders, PricingUnit, Product,
                                            Shop, StockChange, StockChangeType)


async def lock_pricing_unit(session, pricing_unit_id: int) -> PricingUnit:
    stmt = (select(PricingUnit)
            .where(PricingUnit.id == pricing_unit_id)
            .with_for_update()
            .execution_options(populate_existing=True))
    unit = (await session.execute(stmt)).scalar_one_or_none()
    if unit is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pricing unit not found")
    return unit


async def adjust_stock(session, pricing_unit_id: int, delta: int, change_type: StockChangeType,
                       order_id: Optional[int] = None, reason: Optional[str] = None,
                       label: Optional[str] = None) -> Optional[int]:
    """Apply ``delta`` to a tracked unit and record it. Untracked units return None."""
    unit = await lock_pricing_unit(session, pricing_unit_id)
    if unit.stock is None:
        return None

    previous = unit.stock
    new_stock = previous + delta
    if new_stock < 0:
        logger.info("inventory.adjust.rejected", extra={
            "pricing_unit_id": pricing_unit_id, "stock": previous, "delta": delta, "change_type": change_type.value,
        })
        raise InvalidStock(
            f"Insufficient stock for {label or unit.unit}. Available: {previous} {unit.unit}",
            extra={"pricingUnitId": str(unit.public_id), "available": previous, "requested": -delta},
        )

    unit.stock = new_stock
    session.add(StockChange(
        pricing_unit_id=unit.id,
        change_type=change_type,
        delta=delta,
        previous_stock=previous,
        new_stock=new_stock,
        order_id=order_id,
        reason=reason,
    ))
    await session.flush()

    logger.debug("inventory.adjust.applied", extra={
        "pricing_unit_id": pricing_unit_id, "previous": previous, "new": new_stock, "change_type": change_type.value,
    })

    if delta < 0:
        await check_low_stock(session, unit)
    return new_stock


async def set_stock(session, pricing_unit_id: int, stock: int, reason: Optional[str] = None) -> int:
    """Translate an absolute stock count into a ledger delta."""
    if stock < 0:
        raise InvalidStock("Stock cannot be negative")

    unit = await lock_pricing_unit(session, pricing_unit_id)
    if unit.stock is None:
        # start tracking from zero so the ledger has a baseline
        unit.stock = 0
        await session.flush()

    delta = stock - unit.stock
    if delta == 0:
        return unit.stock
    change_type = StockChangeType.RESTOCKED if delta > 0 else StockChangeType.MANUAL_UPDATE
    return await adjust_stock(session, pricing_unit_id, delta, change_type, reason=reason or "Manual stock update")


async def check_low_stock(session, unit: PricingUnit) -> bool:
    if unit.stock is None or unit.low_stock_threshold is None or unit.stock > unit.low_stock_threshold:
        return False

    cutoff = now() - timedelta(seconds=LOW_STOCK_ALERT_INTERVAL_SECONDS)
    recent = (await session.execute(
        select(Notification.id).where(
            Notification.pricing_unit_id == unit.id,
            Notification.type == NotificationType.LOW_STOCK_ALERT,
            Notification.created_at >= cutoff,
        ).limit(1)
    )).scalar_one_or_none()
    if recent is not None:
        return False

    row = (await session.execute(
        select(Product.name, Product.public_id, Shop.user_id)
        .join(Shop, Shop.id == Product.shop_id)
        .where(Product.id == unit.product_id)
    )).one_or_none()
    if row is None:
        return False

    product_name, product_pid, seller_user_id = row
    await notify_low_stock(session, seller_user_id, product_name, unit.unit, unit.stock,
                           unit.low_stock_threshold, unit.id, product_pid)
    logger.info("inventory.low_stock.alerted", extra={"pricing_unit_id": unit.id, "stock": unit.stock})
    return True


async def get_low_stock_items(session, seller_user_id: int) -> List[dict]:
    stmt = (select(Product.public_id, Product.name, PricingUnit.public_id, PricingUnit.unit,
                   PricingUnit.stock, PricingUnit.low_stock_threshold)
            .join(Product, Product.id == PricingUnit.product_id)
            .join(Shop, Shop.id == Product.shop_id)
            .where(
                Shop.user_id == seller_user_id,
                PricingUnit.is_active.is_(True),
                PricingUnit.stock.is_not(None),
                PricingUnit.low_stock_threshold.is_not(None),
                PricingUnit.stock <= PricingUnit.low_stock_threshold,
            )
            .order_by(PricingUnit.stock.asc(), Product.name.asc()))
    rows = (await session.execute(stmt)).all()
    return [
        {
            "productId": str(product_pid),
            "productName": product_name,
            "pricingUnitId": str(unit_pid),
            "unit": unit,
            "currentStock": stock,
            "threshold": threshold,
        }
        for product_pid, product_name, unit_pid, unit, stock, threshold in rows
    ]


async def get_stock_history(session, pricing_unit_id: int, limit: int = STOCK_HISTORY_LIMIT) -> List[dict]:
    stmt = (select(StockChange, Orders.order_number)
            .outerjoin(Orders, Orders.id == StockChange.order_id)
            .where(StockChange.pricing_unit_id == pricing_unit_id)
            .order_by(StockChange.created_at.desc(), StockChange.id.desc())
            .limit(limit))
    rows = (await session.execute(stmt)).all()
    return [
        {
            "changeType": change.change_type.value,
            "delta": change.delta,
            "previousStock": change.previous_stock,
            "newStock": change.new_stock,
            "orderNumber": order_number,
            "reason": change.reason,
            "createdAt": iso(change.created_at),
        }
        for change, order_number in rows
    ]


async def restore_stock_for_order(session, order: Orders) -> int:
    items = (await session.execute(
        select(OrderItem.pricing_unit_id, OrderItem.quantity).where(OrderItem.order_id == order.id)
    )).all()
    restored = 0
    for pricing_unit_id, quantity in items:
        new_stock = await adjust_stock(
            session, pricing_unit_id, quantity, StockChangeType.ORDER_CANCELLED,
            order_id=order.id, reason=f"Stock restored due to order cancellation: {order.order_number}",
        )
        if new_stock is not None:
            restored += 1
    logger.info("inventory.restore.done", extra={"order_id": order.id, "restored_units": restored})
    return restored
