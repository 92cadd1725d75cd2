"""Payment completion, escrow release and refunds.

A payment is created PENDING with its escrow HELD when the order is placed. The gateway
(webhook or explicit verify) completes it; an admin, a delivered delivery or a dispute
resolution releases it; a cancellation or dispute refunds it. Callers own the commit.
"""
from datetime import datetime
from typing import Optional, Tuple
from fastapi import HTTPException, status
from sqlalchemy import select
from marketplace.common.custom_exceptions import MarketplaceError, PaymentGatewayError
from marketplace.common.utils import money, now
from marketplace.config.settings import config_settings
from marketplace.deliveries.fees import estimated_delivery_at
from marketplace.deliveries.services import auto_assign, delivery_distance_km
from marketplace.notifications.services import notify_payment_received, notify_payment_refunded, notify_payment_released
from marketplace.orders.repository import delivery_for_order, order_by_pid, payment_for_order, shop_of_order
from marketplace.payments.client import PaystackClient, to_kobo
from marketplace.payments.constants import CHARGE_SUCCESS_EVENT, PROVIDER, REFUND_FAILED_STATUS, logger
from marketplace.schema.full_schema import Orders, Payment, PaymentWebhookEvent, Users, WebhookEventStatus
from marketplace.schema.lifecycle import EscrowStatus, OrderStatus, PaymentStatus, can_transition, ensure_transition

SETTLED_PAYMENT_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.RELEASED, PaymentStatus.REFUNDED)


async def payment_by_reference(session, reference: str, *, lock: bool = False) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.reference == reference)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


async def lock_order(session, order_id: int) -> Orders:
    stmt = select(Orders).where(Orders.id == order_id).with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one()


# completion

async def complete_payment(session, order: Orders, payment: Payment, *, gateway_reference: Optional[str] = None,
                           paid_at: Optional[datetime] = None) -> bool:
    """Mark the payment COMPLETED and a PENDING order PAID. False if it was already settled.

    The charge is recorded whatever the order status is; an order the seller already moved
    forward keeps its status, and a cancelled one keeps the held funds for an admin refund.
    """
    if payment.status in SETTLED_PAYMENT_STATUSES:
        logger.info("payment.complete.already", extra={"payment_id": payment.id, "status": payment.status.value})
        return False

    ensure_transition("payment", payment.status, PaymentStatus.COMPLETED)

    payment.status = PaymentStatus.COMPLETED
    payment.paid_at = paid_at or now()
    if gateway_reference:
        payment.gateway_reference = gateway_reference
    if can_transition("order", order.status, OrderStatus.PAID):
        order.status = OrderStatus.PAID
    elif order.status == OrderStatus.CANCELLED:
        logger.warning("payment.complete.cancelled_order", extra={"order_id": order.id, "payment_id": payment.id})
    else:
        logger.info("payment.complete.order_kept", extra={"order_id": order.id, "order_status": order.status.value})
    session.add_all([payment, order])

    shop = await shop_of_order(session, order)
    delivery = await delivery_for_order(session, order.id, lock=True)
    if delivery is not None:
        delivery.estimated_delivery_at = estimated_delivery_at(delivery_distance_km(shop, order))
        session.add(delivery)
    await session.flush()

    if delivery is not None:
        await auto_assign(session, delivery)

    await notify_payment_received(session, order.buyer_id, order.order_number, payment.amount, order.public_id, seller=False)
    await notify_payment_received(session, shop.user_id, order.order_number, payment.amount, order.public_id, seller=True)

    logger.info("payment.complete.success", extra={"order_id": order.id, "payment_id": payment.id})
    return True


async def initialize_payment(session, client: PaystackClient, order: Orders, buyer: Users) -> dict:
    payment = await payment_for_order(session, order.id, lock=True)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found for this order")
    if payment.status in SETTLED_PAYMENT_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order already paid")
    if order.status == OrderStatus.CANCELLED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot pay for a cancelled order")

    # the gateway refuses a reference twice, so a pending checkout is handed back as is
    if payment.authorization_url and payment.status == PaymentStatus.PENDING:
        return {"authorizationUrl": payment.authorization_url, "reference": payment.reference}

    data = await client.initialize_transaction(
        email=buyer.email,
        amount=payment.amount,
        reference=payment.reference,
        metadata={"orderId": str(order.public_id), "orderNumber": order.order_number},
        callback_url=config_settings.PAYSTACK_CALLBACK_URL,
    )
    payment.authorization_url = data.get("authorization_url")
    payment.gateway_reference = data.get("access_code") or payment.gateway_reference
    session.add(payment)
    await session.flush()

    logger.info("payment.initialize.success", extra={"order_id": order.id, "reference": payment.reference})
    return {"authorizationUrl": payment.authorization_url, "reference": payment.reference}


async def verify_payment(session, client: PaystackClient, payment: Payment) -> dict:
    order = await lock_order(session, payment.order_id)
    if payment.status in SETTLED_PAYMENT_STATUSES:
        return {"message": "Payment already verified", "orderId": str(order.public_id), "status": payment.status.value}

    data = await client.verify_transaction(payment.reference)
    gateway_status = data.get("status")
    if gateway_status != "success":
        logger.info("payment.verify.unsuccessful", extra={"reference": payment.reference, "gateway_status": gateway_status})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Payment {gateway_status or 'not completed'}")

    _check_amount(payment, data.get("amount"))
    await complete_payment(session, order, payment, gateway_reference=_gateway_id(data))
    return {"message": "Payment verified successfully", "orderId": str(order.public_id), "status": payment.status.value}


def _check_amount(payment: Payment, amount_kobo) -> None:
    if amount_kobo is not None and int(amount_kobo) != to_kobo(payment.amount):
        raise MarketplaceError("Paid amount does not match the order total",
                               extra={"expected": to_kobo(payment.amount), "received": amount_kobo})


def _gateway_id(data: dict) -> Optional[str]:
    value = data.get("id")
    return str(value) if value is not None else None


# escrow

def _release(order: Orders, payment: Payment) -> float:
    ensure_transition("payment", payment.status, PaymentStatus.RELEASED)
    ensure_transition("escrow", payment.escrow_status, EscrowStatus.RELEASED)
    payment.status = PaymentStatus.RELEASED
    payment.escrow_status = EscrowStatus.RELEASED
    payment.released_at = now()
    return round(order.total - order.platform_fee, 2)


async def release_escrow(session, order_pid) -> Tuple[Orders, dict]:
    """Admin payout to the seller. Checks run in order and the first failure wins."""
    order = await order_by_pid(session, order_pid)
    payment = await payment_for_order(session, order.id, lock=True)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found for this order")

    reject = None
    if payment.status in (PaymentStatus.PENDING, PaymentStatus.FAILED):
        reject = "Payment must be completed before release"
    elif payment.escrow_status != EscrowStatus.HELD:
        reject = f"Payment already {payment.escrow_status.value.lower()}"
    elif order.status != OrderStatus.DELIVERED:
        reject = "Order must be delivered before releasing escrow"
    if reject:
        logger.info("escrow.release.rejected", extra={
            "order_id": order.id, "payment_status": payment.status.value,
            "escrow_status": payment.escrow_status.value, "order_status": order.status.value,
        })
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=reject)

    seller_amount = _release(order, payment)
    session.add(payment)
    await session.flush()

    logger.info("escrow.release.success", extra={"order_id": order.id, "seller_amount": seller_amount})
    return order, {
        "message": "Escrow released successfully",
        "orderId": str(order.public_id),
        "orderNumber": order.order_number,
        "sellerAmount": seller_amount,
        "platformFee": money(order.platform_fee),
        "total": money(order.total),
    }


async def notify_release(session, order: Orders, seller_amount: float) -> None:
    shop = await shop_of_order(session, order)
    await notify_payment_released(session, shop.user_id, order.order_number, seller_amount, order.public_id)


async def release_if_held(session, order: Orders) -> bool:
    """Release a completed, held payment in the caller's transaction."""
    payment = await payment_for_order(session, order.id, lock=True)
    if payment is None or payment.status != PaymentStatus.COMPLETED or payment.escrow_status != EscrowStatus.HELD:
        return False
    seller_amount = _release(order, payment)
    session.add(payment)
    await session.flush()
    await notify_release(session, order, seller_amount)
    logger.info("escrow.release.auto", extra={"order_id": order.id, "seller_amount": seller_amount})
    return True


async def release_disputed(session, order: Orders, payment: Payment) -> float:
    seller_amount = _release(order, payment)
    session.add(payment)
    await session.flush()
    await notify_release(session, order, seller_amount)
    return seller_amount


async def refund_payment(session, client: PaystackClient, order: Orders, payment: Payment, *, reason: str) -> dict:
    """Refund the full amount through the gateway and settle the payment as REFUNDED."""
    ensure_transition("payment", payment.status, PaymentStatus.REFUNDED)
    ensure_transition("escrow", payment.escrow_status, EscrowStatus.REFUNDED)

    data = await client.refund(payment.reference, customer_note=reason,
                               merchant_note=f"Refund for order #{order.order_number}")
    refund_status = data.get("status")
    if refund_status == REFUND_FAILED_STATUS:
        logger.error("payment.refund.failed", extra={"order_id": order.id, "reference": payment.reference})
        raise PaymentGatewayError("Refund failed at the payment gateway", extra={"refundStatus": refund_status})

    payment.status = PaymentStatus.REFUNDED
    payment.escrow_status = EscrowStatus.REFUNDED
    payment.refund_reference = _gateway_id(data)
    payment.refunded_at = now()
    session.add(payment)
    await session.flush()

    await notify_payment_refunded(session, order.buyer_id, order.order_number, payment.amount, order.public_id)
    logger.info("payment.refund.success", extra={"order_id": order.id, "refund_status": refund_status})
    return {"initiated": True, "refundId": payment.refund_reference, "status": refund_status}


async def pending_releases(session) -> list:
    stmt = (select(Payment, Orders)
            .join(Orders, Orders.id == Payment.order_id)
            .where(Payment.status == PaymentStatus.COMPLETED,
                   Payment.escrow_status == EscrowStatus.HELD,
                   Orders.status == OrderStatus.DELIVERED)
            .order_by(Orders.delivered_at.asc(), Orders.id.asc()))
    rows = (await session.execute(stmt)).all()
    return [
        {
            "orderId": str(order.public_id),
            "orderNumber": order.order_number,
            "amount": money(payment.amount),
            "sellerAmount": round(order.total - order.platform_fee, 2),
            "platformFee": money(order.platform_fee),
            "deliveredAt": order.delivered_at.isoformat() if order.delivered_at else None,
        }
        for payment, order in rows
    ]


# webhook

async def record_webhook_event(session, payload: dict) -> PaymentWebhookEvent:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    ev = PaymentWebhookEvent(provider=PROVIDER, event=payload.get("event"), reference=data.get("reference"),
                             payload=payload, status=WebhookEventStatus.RECEIVED)
    session.add(ev)
    await session.flush()
    return ev


async def process_paystack_event(session, payload: dict) -> Tuple[WebhookEventStatus, str]:
    event = payload.get("event")
    if event != CHARGE_SUCCESS_EVENT:
        return WebhookEventStatus.IGNORED, f"ignored: {event or 'unknown'} event"

    data = payload.get("data") or {}
    reference = data.get("reference")
    payment = await payment_by_reference(session, reference, lock=True) if reference else None
    if payment is None:
        logger.warning("paystack.webhook.unknown_reference", extra={"reference": reference})
        return WebhookEventStatus.IGNORED, "ignored: payment not found"

    if payment.status in SETTLED_PAYMENT_STATUSES:
        return WebhookEventStatus.PROCESSED, "already processed"

    _check_amount(payment, data.get("amount"))
    order = await lock_order(session, payment.order_id)
    await complete_payment(session, order, payment, gateway_reference=_gateway_id(data))
    return WebhookEventStatus.PROCESSED, "payment completed"


async def finish_webhook_event(session, event_id: int, ev_status: WebhookEventStatus,
                               last_error: Optional[str] = None) -> None:
    ev = await session.get(PaymentWebhookEvent, event_id)
    ev.status = ev_status
    ev.last_error = last_error
    ev.processed_at = now()
    session.add(ev)
    await session.flush()
