from datetime import timedelta
from typing import List, Optional
from fastapi import HTTPException, status
from sqlalchemy import and_, or_, select
from marketplace.common.utils import iso, money, now
from marketplace.deliveries.constants import ACTIVE_DELIVERY_STATUSES
from marketplace.deliveries.services import delivery_row_out
from marketplace.notifications.services import notify_order_status
from marketplace.orders.repository import payment_for_order
from marketplace.payments.services import lock_order, release_if_held
from marketplace.riders.constants import EARNINGS_CHART_DAYS, RIDER_DELIVERIES_LIMIT, UNPAID_PICKUP_MESSAGE, logger
from marketplace.riders.models import RiderApplyIn
from marketplace.schema.full_schema import ApprovalStatus, Delivery, Orders, RoleName, Shop, UserRole
from marketplace.schema.lifecycle import (ORDER_STATUS_FOR_DELIVERY, DeliveryStatus, OrderStatus, PaymentStatus,
                                          can_transition, ensure_transition)
from marketplace.user.constants import PHONE_REQUIRED_MESSAGE
from marketplace.user.repository import get_user_role


async def apply_for_rider(session, principal, payload: RiderApplyIn) -> dict:
    if not principal.phone_number:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=PHONE_REQUIRED_MESSAGE.format(role="rider"))

    role = await get_user_role(session, principal.user_id, RoleName.RIDER, take_lock=True)
    resubmitted = role is not None
    if role is None:
        role = UserRole(user_id=principal.user_id, role=RoleName.RIDER)
    elif role.status == ApprovalStatus.APPROVED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You are already an active rider")
    elif role.status == ApprovalStatus.PENDING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You already have a pending rider application")

    role.status = ApprovalStatus.PENDING
    role.is_active = False
    role.is_online = False
    role.kyc_submitted = True
    role.kyc_approved = False
    role.rejection_reason = None
    role.vehicle_type = payload.vehicleType.strip()
    role.vehicle_number = payload.vehicleNumber.strip()
    role.license_number = payload.licenseNumber.strip()
    role.address = payload.address.strip()
    role.city = payload.city.strip()
    role.state = payload.state.strip()
    session.add(role)
    await session.flush()

    logger.info("rider.apply.submitted", extra={"user_id": principal.user_id, "resubmitted": resubmitted})
    return {
        "message": "Rider application submitted successfully. Awaiting admin approval.",
        "status": ApprovalStatus.PENDING.value,
    }


async def rider_role(session, user_id: int, *, lock: bool = False) -> UserRole:
    role = await get_user_role(session, user_id, RoleName.RIDER, take_lock=lock)
    if role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rider role not found")
    return role


def availability_out(role: UserRole) -> dict:
    return {
        "isOnline": role.is_online,
        "status": role.status.value if role.status else None,
        "latitude": role.current_latitude,
        "longitude": role.current_longitude,
        "locationUpdatedAt": iso(role.location_updated_at),
    }


async def list_rider_deliveries(session, rider_id: int, status_filter: Optional[DeliveryStatus]) -> List[dict]:
    if status_filter == DeliveryStatus.PENDING:
        where = and_(Delivery.rider_id.is_(None), Delivery.status == DeliveryStatus.PENDING,
                     Orders.status == OrderStatus.PAID)
    elif status_filter is not None:
        where = and_(Delivery.rider_id == rider_id, Delivery.status == status_filter)
    else:
        # open jobs anyone can take, plus this rider's work in progress
        where = or_(
            and_(Delivery.rider_id.is_(None), Delivery.status == DeliveryStatus.PENDING, Orders.status == OrderStatus.PAID),
            and_(Delivery.rider_id == rider_id, Delivery.status.in_(ACTIVE_DELIVERY_STATUSES)),
        )
    stmt = (select(Delivery, Orders, Shop)
            .join(Orders, Orders.id == Delivery.order_id)
            .join(Shop, Shop.id == Orders.shop_id)
            .where(where)
            .order_by(Delivery.created_at.desc(), Delivery.id.desc())
            .limit(RIDER_DELIVERIES_LIMIT))
    rows = (await session.execute(stmt)).all()
    return [delivery_row_out(d, o, s) for d, o, s in rows]


def _walk_order(order: Orders, target: OrderStatus) -> bool:
    """Step the order forward to ``target``; a paid order passes through PREPARING."""
    if order.status == target:
        return False
    if target == OrderStatus.OUT_FOR_DELIVERY and order.status == OrderStatus.PAID:
        ensure_transition("order", order.status, OrderStatus.PREPARING)
        order.status = OrderStatus.PREPARING
    if not can_transition("order", order.status, target):
        logger.info("delivery.order_sync.skipped", extra={"order_id": order.id, "order_status": order.status.value,
                                                          "target": target.value})
        return False
    order.status = target
    return True


async def advance_delivery(session, delivery: Delivery, rider_id: int, target: DeliveryStatus,
                           notes: Optional[str] = None) -> dict:
    if delivery.rider_id != rider_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    ensure_transition("delivery", delivery.status, target)
    if target == DeliveryStatus.PICKED_UP:
        payment = await payment_for_order(session, delivery.order_id)
        if payment is None or payment.status != PaymentStatus.COMPLETED:
            logger.info("delivery.pickup.unpaid", extra={"delivery_id": delivery.id, "order_id": delivery.order_id})
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=UNPAID_PICKUP_MESSAGE)
    moment = now()
    delivery.status = target
    if target == DeliveryStatus.PICKED_UP:
        delivery.picked_up_at = moment
    elif target == DeliveryStatus.DELIVERED:
        delivery.delivered_at = moment
    if notes:
        delivery.notes = notes
    session.add(delivery)

    order = await lock_order(session, delivery.order_id)
    released = False
    order_target = ORDER_STATUS_FOR_DELIVERY.get(target)
    if order_target is not None and _walk_order(order, order_target):
        if order_target == OrderStatus.DELIVERED:
            order.delivered_at = moment
        session.add(order)
        await session.flush()
        await notify_order_status(session, order.buyer_id, order.order_number, order.status.value, order.public_id)
        if order_target == OrderStatus.DELIVERED:
            released = await release_if_held(session, order)
    await session.flush()

    logger.info("delivery.status.updated", extra={
        "delivery_id": delivery.id, "status": target.value, "order_status": order.status.value, "released": released,
    })
    return {"message": "Delivery status updated", "status": target.value, "orderStatus": order.status.value,
            "escrowReleased": released}


async def update_location(session, role: UserRole, latitude: float, longitude: float,
                          delivery: Optional[Delivery] = None) -> dict:
    moment = now()
    role.current_latitude = latitude
    role.current_longitude = longitude
    role.location_updated_at = moment
    session.add(role)

    if delivery is not None:
        if delivery.rider_id != role.user_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized to update this delivery location")
        delivery.rider_latitude = latitude
        delivery.rider_longitude = longitude
        session.add(delivery)
        await session.flush()
        return {"message": "Location updated successfully",
                "delivery": {"id": str(delivery.public_id), "riderLatitude": latitude, "riderLongitude": longitude}}

    active = (await session.execute(
        select(Delivery).where(Delivery.rider_id == role.user_id, Delivery.status.in_(ACTIVE_DELIVERY_STATUSES))
    )).scalars().all()
    for d in active:
        d.rider_latitude = latitude
        d.rider_longitude = longitude
        session.add(d)
    await session.flush()
    return {"message": "Location updated for all active deliveries", "updatedCount": len(active)}


def _period_start(period: str):
    today = now().replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return today
    if period == "week":
        return today - timedelta(days=7)
    if period == "month":
        return today - timedelta(days=30)
    return None


async def rider_earnings(session, rider_id: int, period: str) -> dict:
    where = [Delivery.rider_id == rider_id, Delivery.status == DeliveryStatus.DELIVERED]
    start = _period_start(period)
    if start is not None:
        where.append(Delivery.delivered_at >= start)

    rows = (await session.execute(
        select(Delivery, Orders, Shop)
        .join(Orders, Orders.id == Delivery.order_id)
        .join(Shop, Shop.id == Orders.shop_id)
        .where(*where)
        .order_by(Delivery.delivered_at.desc())
    )).all()

    total = round(sum(o.delivery_fee for _, o, _ in rows), 2)
    by_day = {}
    for d, o, _ in rows:
        if d.delivered_at is None:
            continue
        day = d.delivered_at.date().isoformat()
        bucket = by_day.setdefault(day, {"date": day, "earnings": 0.0, "count": 0})
        bucket["earnings"] = round(bucket["earnings"] + o.delivery_fee, 2)
        bucket["count"] += 1

    return {
        "totalEarnings": total,
        "completedDeliveries": len(rows),
        "averageEarnings": round(total / len(rows), 2) if rows else 0,
        "deliveries": [
            {
                "id": str(d.public_id),
                "orderNumber": o.order_number,
                "deliveryFee": money(o.delivery_fee),
                "deliveryAddress": f"{o.delivery_address}, {o.delivery_city}, {o.delivery_state}",
                "shopName": s.name,
                "deliveredAt": iso(d.delivered_at),
            }
            for d, o, s in rows
        ],
        "chartData": sorted(by_day.values(), key=lambda b: b["date"])[-EARNINGS_CHART_DAYS:],
        "period": period,
    }
