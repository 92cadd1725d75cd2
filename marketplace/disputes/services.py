from typing import List, Optional
from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from marketplace.common.utils import clean_str, iso, money, now, parse_pid
from marketplace.disputes.constants import CLOSED_DISPUTE_STATUSES, logger
from marketplace.disputes.models import DisputeCreateIn, DisputeResolveIn, DisputeUpdateIn
from marketplace.notifications.services import notify_dispute_created, notify_dispute_resolved, notify_order_status
from marketplace.orders.repository import order_by_pid, payment_for_order, shop_of_order
from marketplace.orders.services import mark_cancelled
from marketplace.payments.client import PaystackClient
from marketplace.payments.services import lock_order, refund_payment, release_disputed
from marketplace.schema.full_schema import Dispute, DisputeResolution, DisputeStatus, Orders, Shop, Users
from marketplace.schema.lifecycle import EscrowStatus, OrderStatus, PaymentStatus, ensure_transition
from marketplace.user.repository import user_summary


def dispute_out(dispute: Dispute, *, order: Optional[Orders] = None, shop: Optional[Shop] = None,
                buyer: Optional[Users] = None, seller: Optional[Users] = None) -> dict:
    out = {
        "id": str(dispute.public_id),
        "reason": dispute.reason,
        "status": dispute.status.value,
        "resolution": dispute.resolution.value if dispute.resolution else None,
        "buyerNotes": dispute.buyer_notes,
        "sellerNotes": dispute.seller_notes,
        "adminNotes": dispute.admin_notes,
        "resolvedAt": iso(dispute.resolved_at),
        "createdAt": iso(dispute.created_at),
    }
    if order is not None:
        out["order"] = {
            "id": str(order.public_id),
            "orderNumber": order.order_number,
            "total": money(order.total),
            "status": order.status.value,
            "createdAt": iso(order.created_at),
            "shop": {"name": shop.name} if shop else None,
        }
    if buyer is not None:
        out["buyer"] = user_summary(buyer)
    if seller is not None:
        out["seller"] = user_summary(seller)
    return out


async def dispute_by_pid(session, dispute_pid, *, lock: bool = False) -> Dispute:
    pid = parse_pid(dispute_pid)
    dispute = None
    if pid is not None:
        stmt = select(Dispute).where(Dispute.public_id == pid)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        dispute = (await session.execute(stmt)).scalar_one_or_none()
    if dispute is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dispute not found")
    return dispute


def parse_dispute_status(value) -> Optional[DisputeStatus]:
    if not isinstance(value, str):
        return None
    try:
        return DisputeStatus(value.strip().upper())
    except ValueError:
        return None


async def open_dispute(session, principal, payload: DisputeCreateIn) -> Dispute:
    order = await order_by_pid(session, payload.orderId, lock=True)
    if order.buyer_id != principal.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    existing = (await session.execute(select(Dispute.id).where(Dispute.order_id == order.id))).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Dispute already exists for this order")
    if order.status == OrderStatus.PENDING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot dispute unpaid orders")

    ensure_transition("order", order.status, OrderStatus.DISPUTED)
    shop = await shop_of_order(session, order)
    dispute = Dispute(order_id=order.id, buyer_id=principal.user_id, seller_id=shop.user_id,
                      reason=payload.reason, buyer_notes=clean_str(payload.buyerNotes), status=DisputeStatus.OPEN)
    try:
        async with session.begin_nested():
            session.add(dispute)
            await session.flush()
    except IntegrityError:
        logger.warning("dispute.create.integrity_error", extra={"order_id": order.id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Dispute already exists for this order")

    order.status = OrderStatus.DISPUTED
    session.add(order)

    # funds already paid out stay where they are
    payment = await payment_for_order(session, order.id, lock=True)
    if payment is not None and payment.escrow_status == EscrowStatus.HELD:
        ensure_transition("escrow", payment.escrow_status, EscrowStatus.DISPUTED)
        payment.escrow_status = EscrowStatus.DISPUTED
        session.add(payment)
    await session.flush()

    await notify_dispute_created(session, principal.user_id, shop.user_id, order.order_number, dispute.public_id)
    logger.info("dispute.created", extra={"order_id": order.id, "dispute_id": dispute.id,
                                          "escrow_status": payment.escrow_status.value if payment else None})
    return dispute


async def list_disputes(session, *, user_id: Optional[int] = None, role: Optional[str] = None,
                        status_filter: Optional[DisputeStatus] = None) -> List[dict]:
    buyer = aliased(Users)
    seller = aliased(Users)
    where = []
    if user_id is not None:
        if role == "buyer":
            where.append(Dispute.buyer_id == user_id)
        elif role == "seller":
            where.append(Dispute.seller_id == user_id)
        else:
            where.append(or_(Dispute.buyer_id == user_id, Dispute.seller_id == user_id))
    if status_filter is not None:
        where.append(Dispute.status == status_filter)

    rows = (await session.execute(
        select(Dispute, Orders, Shop, buyer, seller)
        .join(Orders, Orders.id == Dispute.order_id)
        .join(Shop, Shop.id == Orders.shop_id)
        .join(buyer, buyer.id == Dispute.buyer_id)
        .join(seller, seller.id == Dispute.seller_id)
        .where(*where)
        .order_by(Dispute.created_at.desc(), Dispute.id.desc())
    )).all()
    return [dispute_out(d, order=o, shop=s, buyer=b, seller=sl) for d, o, s, b, sl in rows]


async def dispute_detail(session, dispute: Dispute) -> dict:
    order = await session.get(Orders, dispute.order_id)
    shop = await shop_of_order(session, order)
    buyer = await session.get(Users, dispute.buyer_id)
    seller = await session.get(Users, dispute.seller_id)
    return dispute_out(dispute, order=order, shop=shop, buyer=buyer, seller=seller)


def ensure_party(dispute: Dispute, principal) -> None:
    if principal.user_id not in (dispute.buyer_id, dispute.seller_id) and not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")


async def update_dispute(session, dispute: Dispute, principal, payload: DisputeUpdateIn) -> Dispute:
    """Each party edits its own notes; admins may also move an open dispute into review."""
    fields = payload.model_fields_set
    changed = False
    if principal.user_id == dispute.buyer_id and "buyerNotes" in fields:
        dispute.buyer_notes = clean_str(payload.buyerNotes)
        changed = True
    if principal.user_id == dispute.seller_id and "sellerNotes" in fields:
        dispute.seller_notes = clean_str(payload.sellerNotes)
        changed = True
    if principal.is_admin:
        if "adminNotes" in fields:
            dispute.admin_notes = clean_str(payload.adminNotes)
            changed = True
        target = parse_dispute_status(payload.status)
        if target in (DisputeStatus.OPEN, DisputeStatus.IN_REVIEW) and dispute.status not in CLOSED_DISPUTE_STATUSES:
            dispute.status = target
            changed = True

    if not changed:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid updates provided")
    session.add(dispute)
    await session.flush()
    logger.info("dispute.updated", extra={"dispute_id": dispute.id, "user_id": principal.user_id})
    return dispute


async def resolve_dispute(session, client: PaystackClient, dispute: Dispute, payload: DisputeResolveIn) -> dict:
    try:
        resolution = DisputeResolution((payload.resolution or "").strip().upper())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Valid resolution is required")
    if dispute.status in CLOSED_DISPUTE_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Dispute already resolved or closed")

    order = await lock_order(session, dispute.order_id)
    payment = await payment_for_order(session, order.id, lock=True)
    refund = {"initiated": False}
    released = None

    if resolution == DisputeResolution.SELLER_WINS:
        if payment is not None and payment.status == PaymentStatus.COMPLETED:
            released = await release_disputed(session, order, payment)
        ensure_transition("order", order.status, OrderStatus.DELIVERED)
        order.status = OrderStatus.DELIVERED
        order.delivered_at = order.delivered_at or now()
        session.add(order)
        await session.flush()
        await notify_order_status(session, order.buyer_id, order.order_number, order.status.value, order.public_id)
    else:
        if payment is not None and payment.status == PaymentStatus.COMPLETED:
            refund = await refund_payment(session, client, order, payment,
                                          reason=f"Dispute resolved for order #{order.order_number}")
        await mark_cancelled(session, order, f"Dispute resolved: {resolution.value}")
        await notify_order_status(session, order.buyer_id, order.order_number, order.status.value, order.public_id)

    dispute.status = DisputeStatus.RESOLVED
    dispute.resolution = resolution
    dispute.admin_notes = clean_str(payload.adminNotes) or dispute.admin_notes
    dispute.resolved_at = now()
    session.add(dispute)
    await session.flush()

    await notify_dispute_resolved(session, (dispute.buyer_id, dispute.seller_id), order.order_number,
                                  resolution.value, dispute.public_id)
    logger.info("dispute.resolved", extra={"dispute_id": dispute.id, "order_id": order.id,
                                           "resolution": resolution.value, "refunded": refund["initiated"],
                                           "released": released is not None})
    return {
        "message": "Dispute resolved successfully",
        "dispute": {"id": str(dispute.public_id), "resolution": resolution.value, "status": dispute.status.value},
        "orderStatus": order.status.value,
        "refund": refund,
        "sellerAmount": released,
    }
