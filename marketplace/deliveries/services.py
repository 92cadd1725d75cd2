from typing import Optional
from fastapi import HTTPException, status
from sqlalchemy import func, select
from marketplace.common.utils import iso, money, now, parse_pid
from marketplace.deliveries.constants import ACTIVE_DELIVERY_STATUSES, logger
from marketplace.deliveries.fees import distance_between, haversine_km, valid_coordinates
from marketplace.notifications.services import notify_delivery_assigned
from marketplace.schema.full_schema import ApprovalStatus, Delivery, Orders, RoleName, Shop, UserRole, Users
from marketplace.schema.lifecycle import DeliveryStatus, ensure_transition


async def approved_rider_by_pid(session, rider_pid) -> Optional[Users]:
    pid = parse_pid(rider_pid)
    if pid is None:
        return None
    stmt = (select(Users)
            .join(UserRole, UserRole.user_id == Users.id)
            .where(
                Users.public_id == pid,
                Users.is_suspended.is_(False),
                UserRole.role == RoleName.RIDER,
                UserRole.is_active.is_(True),
                UserRole.status == ApprovalStatus.APPROVED,
            ))
    return (await session.execute(stmt)).scalar_one_or_none()


async def delivery_by_pid(session, delivery_pid, *, lock: bool = False) -> Delivery:
    pid = parse_pid(delivery_pid)
    delivery = None
    if pid is not None:
        stmt = select(Delivery).where(Delivery.public_id == pid)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        delivery = (await session.execute(stmt)).scalar_one_or_none()
    if delivery is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Delivery not found")
    return delivery


async def assign_rider(session, delivery: Delivery, rider_id: int, order_number: str) -> bool:
    """Put ``rider_id`` on the delivery. Returns False for the same-rider no-op."""
    if delivery.rider_id is not None and delivery.rider_id != rider_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Delivery already assigned to another rider")
    if delivery.rider_id == rider_id and delivery.status != DeliveryStatus.PENDING:
        logger.info("delivery.assign.noop", extra={"delivery_id": delivery.id, "rider_id": rider_id})
        return False

    ensure_transition("delivery", delivery.status, DeliveryStatus.ASSIGNED)
    delivery.rider_id = rider_id
    delivery.status = DeliveryStatus.ASSIGNED
    delivery.assigned_at = now()
    session.add(delivery)
    await session.flush()

    await notify_delivery_assigned(session, rider_id, order_number, delivery.public_id)
    logger.info("delivery.assign.success", extra={"delivery_id": delivery.id, "rider_id": rider_id})
    return True


async def _online_riders(session):
    active_count = (select(func.count(Delivery.id))
                    .where(Delivery.rider_id == UserRole.user_id, Delivery.status.in_(ACTIVE_DELIVERY_STATUSES))
                    .correlate(UserRole)
                    .scalar_subquery())
    stmt = (select(UserRole, active_count)
            .join(Users, Users.id == UserRole.user_id)
            .where(
                UserRole.role == RoleName.RIDER,
                UserRole.is_active.is_(True),
                UserRole.status == ApprovalStatus.APPROVED,
                UserRole.is_online.is_(True),
                Users.is_suspended.is_(False),
            ))
    return (await session.execute(stmt)).all()


async def pick_rider(session, shop: Shop) -> Optional[int]:
    """Nearest online rider to the shop; without locations, the least busy one."""
    riders = await _online_riders(session)
    if not riders:
        return None

    if valid_coordinates(shop.latitude, shop.longitude):
        located = [
            (haversine_km(shop.latitude, shop.longitude, role.current_latitude, role.current_longitude), busy, role.user_id)
            for role, busy in riders
            if valid_coordinates(role.current_latitude, role.current_longitude)
        ]
        if located:
            located.sort()
            return located[0][2]

    least_busy = sorted(riders, key=lambda r: (r[1] or 0, r[0].user_id))
    return least_busy[0][0].user_id


async def auto_assign(session, delivery: Delivery) -> Optional[int]:
    if delivery.rider_id is not None or delivery.status != DeliveryStatus.PENDING:
        return None

    row = (await session.execute(
        select(Orders.order_number, Shop)
        .join(Shop, Shop.id == Orders.shop_id)
        .where(Orders.id == delivery.order_id)
    )).one_or_none()
    if row is None:
        return None
    order_number, shop = row

    rider_id = await pick_rider(session, shop)
    if rider_id is None:
        logger.info("delivery.auto_assign.no_rider", extra={"delivery_id": delivery.id})
        return None

    await assign_rider(session, delivery, rider_id, order_number)
    logger.info("delivery.auto_assign.success", extra={"delivery_id": delivery.id, "rider_id": rider_id})
    return rider_id


def delivery_distance_km(shop: Shop, order: Orders) -> Optional[float]:
    return distance_between(shop.latitude, shop.longitude, order.delivery_latitude, order.delivery_longitude)


def delivery_row_out(delivery: Delivery, order: Orders, shop: Shop) -> dict:
    return {
        "id": str(delivery.public_id),
        "status": delivery.status.value,
        "estimatedDeliveryAt": iso(delivery.estimated_delivery_at),
        "assignedAt": iso(delivery.assigned_at),
        "pickedUpAt": iso(delivery.picked_up_at),
        "deliveredAt": iso(delivery.delivered_at),
        "order": {
            "id": str(order.public_id),
            "orderNumber": order.order_number,
            "status": order.status.value,
            "deliveryAddress": order.delivery_address,
            "deliveryCity": order.delivery_city,
            "deliveryState": order.delivery_state,
            "deliveryPhone": order.delivery_phone,
            "deliveryLatitude": order.delivery_latitude,
            "deliveryLongitude": order.delivery_longitude,
            "deliveryFee": money(order.delivery_fee),
            "total": money(order.total),
        },
        "shop": {
            "name": shop.name,
            "address": shop.address,
            "city": shop.city,
            "state": shop.state,
            "latitude": shop.latitude,
            "longitude": shop.longitude,
        },
    }
