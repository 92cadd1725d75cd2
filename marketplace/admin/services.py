from typing import List, Optional
from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from marketplace.admin.constants import REJECTION_REASON_REQUIRED, ROLE_LABELS, logger
from marketplace.common.utils import clean_str, iso, now, page_meta
from marketplace.deliveries.constants import ACTIVE_DELIVERY_STATUSES
from marketplace.notifications.services import notify_order_status, notify_role_decision
from marketplace.orders.repository import order_by_pid, payment_for_order
from marketplace.orders.services import mark_cancelled
from marketplace.payments.client import PaystackClient
from marketplace.payments.services import refund_payment
from marketplace.schema.full_schema import (ApprovalStatus, Delivery, Dispute, DisputeStatus, Orders, Payment,
                                            RoleName, Shop, UserRole, Users)
from marketplace.schema.lifecycle import OrderStatus, PaymentStatus, can_transition
from marketplace.shops.repository import shop_by_pid, shop_for_user, shop_out
from marketplace.user.repository import get_user_role, user_by_public_id, user_summary


# applications

async def pending_applications(session, role: RoleName) -> List[dict]:
    rows = (await session.execute(
        select(UserRole, Users, Shop)
        .join(Users, Users.id == UserRole.user_id)
        .outerjoin(Shop, Shop.user_id == Users.id)
        .where(UserRole.role == role, UserRole.status == ApprovalStatus.PENDING)
        .order_by(UserRole.created_at.asc(), UserRole.id.asc())
    )).all()

    out = []
    for role_row, user, shop in rows:
        item = {
            "userId": str(user.public_id),
            "user": user_summary(user),
            "status": role_row.status.value,
            "kycSubmitted": role_row.kyc_submitted,
            "createdAt": iso(role_row.created_at),
        }
        if role == RoleName.SELLER:
            item["shop"] = shop_out(shop) if shop else None
        else:
            item["rider"] = {
                "vehicleType": role_row.vehicle_type,
                "vehicleNumber": role_row.vehicle_number,
                "licenseNumber": role_row.license_number,
                "address": role_row.address,
                "city": role_row.city,
                "state": role_row.state,
            }
        out.append(item)
    return out


async def _pending_role(session, user: Users, role: RoleName) -> UserRole:
    label = ROLE_LABELS[role.value]
    row = await get_user_role(session, user.id, role, take_lock=True)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} application not found")
    if row.status != ApprovalStatus.PENDING:
        current = row.status.value if row.status else "UNKNOWN"
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{label} application is already {current}")
    return row


async def approve_application(session, admin, user_pid, role: RoleName) -> dict:
    user = await user_by_public_id(session, user_pid)
    row = await _pending_role(session, user, role)

    row.status = ApprovalStatus.APPROVED
    row.is_active = True
    row.kyc_approved = True
    row.rejection_reason = None
    row.approved_at = now()
    session.add(row)

    if role == RoleName.SELLER:
        shop = await shop_for_user(session, user.id)
        if shop is not None:
            shop.is_active = True
            session.add(shop)
    await session.flush()

    await notify_role_decision(session, user.id, role.value, approved=True)
    logger.info("admin.application.approved", extra={"user_id": user.id, "role": role.value,
                                                      "approved_by": admin.user_id})
    return {"message": f"{ROLE_LABELS[role.value]} approved successfully", "userId": str(user.public_id)}


async def reject_application(session, admin, user_pid, role: RoleName, reason: Optional[str]) -> dict:
    reason = clean_str(reason)
    if not reason:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=REJECTION_REASON_REQUIRED)
    user = await user_by_public_id(session, user_pid)
    row = await _pending_role(session, user, role)

    row.status = ApprovalStatus.REJECTED
    row.is_active = False
    row.is_online = False
    row.kyc_approved = False
    row.rejection_reason = reason
    session.add(row)

    if role == RoleName.SELLER:
        shop = await shop_for_user(session, user.id)
        if shop is not None:
            shop.is_active = False
            session.add(shop)
    await session.flush()

    await notify_role_decision(session, user.id, role.value, approved=False, reason=reason)
    logger.info("admin.application.rejected", extra={"user_id": user.id, "role": role.value,
                                                      "rejected_by": admin.user_id})
    return {"message": f"{ROLE_LABELS[role.value]} application rejected", "userId": str(user.public_id)}


# riders

async def list_riders(session, *, status_filter: Optional[ApprovalStatus] = None, online_only: bool = False) -> dict:
    active_count = (select(func.count(Delivery.id))
                    .where(Delivery.rider_id == UserRole.user_id, Delivery.status.in_(ACTIVE_DELIVERY_STATUSES))
                    .correlate(UserRole)
                    .scalar_subquery())
    where = [UserRole.role == RoleName.RIDER]
    if status_filter is not None:
        where.append(UserRole.status == status_filter)
    if online_only:
        where += [UserRole.status == ApprovalStatus.APPROVED, UserRole.is_active.is_(True),
                  UserRole.is_online.is_(True), Users.is_suspended.is_(False)]

    rows = (await session.execute(
        select(UserRole, Users, active_count.label("active"))
        .join(Users, Users.id == UserRole.user_id)
        .where(*where)
        .order_by(UserRole.created_at.desc(), UserRole.id.desc())
    )).all()
    riders = [
        {
            **user_summary(user),
            "status": role.status.value if role.status else None,
            "isActive": role.is_active,
            "isOnline": role.is_online,
            "vehicleType": role.vehicle_type,
            "city": role.city,
            "state": role.state,
            "latitude": role.current_latitude,
            "longitude": role.current_longitude,
            "activeDeliveries": active or 0,
        }
        for role, user, active in rows
    ]

    counts = dict((await session.execute(
        select(UserRole.status, func.count(UserRole.id)).where(UserRole.role == RoleName.RIDER).group_by(UserRole.status)
    )).all())
    stats = {
        "total": sum(counts.values()),
        "pending": counts.get(ApprovalStatus.PENDING, 0),
        "approved": counts.get(ApprovalStatus.APPROVED, 0),
        "rejected": counts.get(ApprovalStatus.REJECTED, 0),
    }
    return {"riders": riders, "stats": stats}


# users and shops

async def list_users(session, *, search: Optional[str], page: int, limit: int, offset: int) -> dict:
    where = []
    if search:
        like = f"%{search.lower()}%"
        where.append(or_(func.lower(Users.email).like(like), func.lower(Users.name).like(like)))

    total = (await session.execute(select(func.count(Users.id)).where(*where))).scalar_one()
    users = (await session.execute(
        select(Users).where(*where).order_by(Users.created_at.desc(), Users.id.desc()).offset(offset).limit(limit)
    )).scalars().all()

    roles = {}
    if users:
        rows = (await session.execute(
            select(UserRole).where(UserRole.user_id.in_([u.id for u in users]))
        )).scalars().all()
        for r in rows:
            roles.setdefault(r.user_id, []).append({
                "role": r.role.value,
                "status": r.status.value if r.status else None,
                "isActive": r.is_active,
            })

    data = [
        {**user_summary(u), "isSuspended": u.is_suspended, "roles": roles.get(u.id, []), "createdAt": iso(u.created_at)}
        for u in users
    ]
    return {"users": data, **page_meta(total, page, limit)}


def _suspend_flag(suspended: Optional[bool], action: Optional[str]) -> bool:
    if isinstance(suspended, bool):
        return suspended
    if action in ("suspend", "unsuspend"):
        return action == "suspend"
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                        detail='Invalid action. Must be "suspend" or "unsuspend"')


async def set_user_suspended(session, admin, user_pid, *, suspended: Optional[bool], action: Optional[str],
                             reason: Optional[str] = None) -> dict:
    flag = _suspend_flag(suspended, action)
    user = await user_by_public_id(session, user_pid)
    if flag:
        if await get_user_role(session, user.id, RoleName.ADMIN) is not None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot suspend admin users")
        if user.id == admin.user_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot suspend your own account")

    user.is_suspended = flag
    session.add(user)

    shop = await shop_for_user(session, user.id)
    if shop is not None:
        seller = await get_user_role(session, user.id, RoleName.SELLER)
        # an unsuspended seller gets the shop back only if still approved
        shop.is_active = (not flag) and seller is not None and seller.status == ApprovalStatus.APPROVED
        session.add(shop)
    if flag:
        rider = await get_user_role(session, user.id, RoleName.RIDER, take_lock=True)
        if rider is not None:
            rider.is_online = False
            session.add(rider)
    await session.flush()

    logger.info("admin.user.suspended" if flag else "admin.user.unsuspended",
                extra={"user_id": user.id, "by": admin.user_id, "reason": clean_str(reason)})
    return {"message": "User suspended successfully" if flag else "User unsuspended successfully",
            "userId": str(user.public_id), "isSuspended": flag}


async def set_shop_active(session, admin, shop_pid, action: Optional[str], reason: Optional[str] = None) -> dict:
    action = (action or "deactivate").lower()
    if action not in ("deactivate", "activate"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail='Invalid action. Must be "deactivate" or "activate"')

    shop = await shop_by_pid(session, shop_pid)
    seller = await get_user_role(session, shop.user_id, RoleName.SELLER, take_lock=True)
    if action == "deactivate":
        shop.is_active = False
        if seller is not None and seller.is_active:
            seller.is_active = False
            session.add(seller)
    else:
        if seller is None or seller.status != ApprovalStatus.APPROVED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="Cannot activate shop for non-approved seller")
        shop.is_active = True
        seller.is_active = True
        session.add(seller)
    session.add(shop)
    await session.flush()

    logger.info(f"admin.shop.{action}d", extra={"shop_id": shop.id, "by": admin.user_id, "reason": clean_str(reason)})
    return {"message": f"Shop {action}d successfully", "shopId": str(shop.public_id), "isActive": shop.is_active}


# payments

async def admin_refund(session, client: PaystackClient, order_pid, reason: Optional[str]) -> dict:
    order = await order_by_pid(session, order_pid, lock=True)
    payment = await payment_for_order(session, order.id, lock=True)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found for this order")
    if payment.status == PaymentStatus.REFUNDED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment already refunded")
    if payment.status == PaymentStatus.RELEASED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Payment already released to seller. Cannot refund.")
    if payment.status != PaymentStatus.COMPLETED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Payment must be completed before it can be refunded")

    note = clean_str(reason) or f"Refund for order #{order.order_number}"
    refund = await refund_payment(session, client, order, payment, reason=note)
    if can_transition("order", order.status, OrderStatus.CANCELLED):
        await mark_cancelled(session, order, note)
        await notify_order_status(session, order.buyer_id, order.order_number, order.status.value, order.public_id)

    logger.info("admin.payment.refunded", extra={"order_id": order.id, "order_status": order.status.value})
    return {"message": "Refund processed successfully", "orderId": str(order.public_id),
            "orderStatus": order.status.value, "refund": refund}


# dashboard

async def platform_stats(session) -> dict:
    total_users = (await session.execute(select(func.count(Users.id)))).scalar_one()
    total_sellers = (await session.execute(
        select(func.count(UserRole.id)).where(UserRole.role == RoleName.SELLER, UserRole.is_active.is_(True),
                                              UserRole.status == ApprovalStatus.APPROVED)
    )).scalar_one()
    pending_sellers = (await session.execute(
        select(func.count(UserRole.id)).where(UserRole.role == RoleName.SELLER, UserRole.status == ApprovalStatus.PENDING)
    )).scalar_one()
    total_orders = (await session.execute(select(func.count(Orders.id)))).scalar_one()
    revenue = (await session.execute(
        select(func.coalesce(func.sum(Orders.platform_fee), 0.0))
        .join(Payment, Payment.order_id == Orders.id)
        .where(Payment.status == PaymentStatus.RELEASED)
    )).scalar_one()
    pending_disputes = (await session.execute(
        select(func.count(Dispute.id)).where(Dispute.status.in_((DisputeStatus.OPEN, DisputeStatus.IN_REVIEW)))
    )).scalar_one()

    return {
        "totalUsers": total_users,
        "totalSellers": total_sellers,
        "pendingSellerApprovals": pending_sellers,
        "totalOrders": total_orders,
        "totalRevenue": round(float(revenue or 0), 2),
        "pendingDisputes": pending_disputes,
    }
