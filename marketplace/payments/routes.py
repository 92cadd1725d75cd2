import json
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.custom_exceptions import MarketplaceError
from marketplace.common.utils import success_response
from marketplace.db.dependencies import get_session
from marketplace.payments.client import PaystackClient
from marketplace.payments.constants import SIGNATURE_HEADER, logger
from marketplace.payments.dependencies import get_paystack
from marketplace.payments.services import (finish_webhook_event, payment_by_reference, process_paystack_event,
                                           record_webhook_event, verify_payment)
from marketplace.schema.full_schema import Orders, WebhookEventStatus
from marketplace.user.dependencies import Principal, get_principal

payments_router = APIRouter()
webhooks_router = APIRouter()


@payments_router.get("/verify/{reference}")
async def verify_reference(reference: str, principal: Principal = Depends(get_principal),
                           session: AsyncSession = Depends(get_session), client: PaystackClient = Depends(get_paystack)):

    payment = await payment_by_reference(session, reference, lock=True)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    order = await session.get(Orders, payment.order_id)
    if order.buyer_id != principal.user_id and not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    res = await verify_payment(session, client, payment)
    await session.commit()
    return success_response(res)


@webhooks_router.post("/paystack")
async def paystack_webhook(request: Request, session: AsyncSession = Depends(get_session),
                           client: PaystackClient = Depends(get_paystack)):

    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("paystack.webhook.missing_signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing signature")
    if not client.verify_signature(body, signature):
        logger.warning("paystack.webhook.bad_signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    # the raw event is kept even when processing fails below
    ev = await record_webhook_event(session, payload)
    ev_id = ev.id
    await session.commit()

    try:
        ev_status, note = await process_paystack_event(session, payload)
        await finish_webhook_event(session, ev_id, ev_status)
        await session.commit()
    except MarketplaceError as exc:
        # a retry from the gateway would fail the same way, so record it and acknowledge
        await session.rollback()
        await finish_webhook_event(session, ev_id, WebhookEventStatus.ERRORED, last_error=exc.detail)
        await session.commit()
        logger.error("paystack.webhook.errored", extra={"webhook_event_id": ev_id, "error": exc.detail})
        return success_response({"received": True, "note": "errored"})

    logger.info("paystack.webhook.done", extra={"webhook_event_id": ev_id, "status": ev_status.value, "note": note})
    return success_response({"received": True, "note": note})
