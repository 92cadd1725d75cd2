from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.admin.models import RefundIn, RejectIn, ShopStatusIn, SuspendIn
from marketplace.admin.services import (admin_refund, approve_application, list_riders, list_users, pending_applications,
                                        platform_stats, reject_application, set_shop_active, set_user_suspended)
from marketplace.common.utils import page_params, success_response
from marketplace.db.dependencies import get_session
from marketplace.payments.client import PaystackClient
from marketplace.payments.dependencies import get_paystack
from marketplace.payments.services import notify_release, pending_releases, release_escrow
from marketplace.schema.full_schema import ApprovalStatus, RoleName
from marketplace.user.dependencies import Principal, require_admin

admin_router = APIRouter()


@admin_router.get("/stats")
async def get_stats(principal: Principal = Depends(require_admin), session: AsyncSession = Depends(get_session)):
    return success_response(await platform_stats(session))


# sellers

@admin_router.get("/sellers/pending")
async def get_pending_sellers(principal: Principal = Depends(require_admin), session: AsyncSession = Depends(get_session)):
    return success_response({"applications": await pending_applications(session, RoleName.SELLER)})


@admin_router.post("/sellers/{user_id}/approve")
async def approve_seller(user_id: str, principal: Principal = Depends(require_admin),
                         session: AsyncSession = Depends(get_session)):

    res = await approve_application(session, principal, user_id, RoleName.SELLER)
    await session.commit()
    return success_response(res)


@admin_router.post("/sellers/{user_id}/reject")
async def reject_seller(user_id: str, payload: RejectIn, principal: Principal = Depends(require_admin),
                        session: AsyncSession = Depends(get_session)):

    res = await reject_application(session, principal, user_id, RoleName.SELLER, payload.reason)
    await session.commit()
    return success_response(res)


# riders

@admin_router.get("/riders")
async def get_riders(status_filter: Optional[str] = Query(None, alias="status"),
                     principal: Principal = Depends(require_admin), session: AsyncSession = Depends(get_session)):

    parsed = None
    if status_filter and status_filter.upper() != "ALL":
        try:
            parsed = ApprovalStatus(status_filter.upper())
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid rider status")
    return success_response(await list_riders(session, status_filter=parsed))


@admin_router.get("/riders/available")
async def get_available_riders(principal: Principal = Depends(require_admin),
                               session: AsyncSession = Depends(get_session)):
    res = await list_riders(session, online_only=True)
    return success_response({"riders": res["riders"]})


@admin_router.get("/riders/pending")
async def get_pending_riders(principal: Principal = Depends(require_admin), session: AsyncSession = Depends(get_session)):
    return success_response({"applications": await pending_applications(session, RoleName.RIDER)})


@admin_router.post("/riders/{user_id}/approve")
async def approve_rider(user_id: str, principal: Principal = Depends(require_admin),
                        session: AsyncSession = Depends(get_session)):

    res = await approve_application(session, principal, user_id, RoleName.RIDER)
    await session.commit()
    return success_response(res)


@admin_router.post("/riders/{user_id}/reject")
async def reject_rider(user_id: str, payload: RejectIn, principal: Principal = Depends(require_admin),
                       session: AsyncSession = Depends(get_session)):

    res = await reject_application(session, principal, user_id, RoleName.RIDER, payload.reason)
    await session.commit()
    return success_response(res)


# users and shops

@admin_router.get("/users")
async def get_users(search: Optional[str] = None, page: Optional[str] = None, limit: Optional[str] = None,
                    principal: Principal = Depends(require_admin), session: AsyncSession = Depends(get_session)):

    page_no, size, offset = page_params(page, limit)
    res = await list_users(session, search=(search or "").strip() or None, page=page_no, limit=size, offset=offset)
    return success_response(res)


@admin_router.post("/users/{user_id}/suspend")
async def suspend_user(user_id: str, payload: SuspendIn, principal: Principal = Depends(require_admin),
                       session: AsyncSession = Depends(get_session)):

    res = await set_user_suspended(session, principal, user_id, suspended=payload.suspended, action=payload.action,
                                   reason=payload.reason)
    await session.commit()
    return success_response(res)


@admin_router.post("/shops/{shop_id}/deactivate")
async def deactivate_shop(shop_id: str, payload: Optional[ShopStatusIn] = None,
                          principal: Principal = Depends(require_admin), session: AsyncSession = Depends(get_session)):

    payload = payload or ShopStatusIn()
    res = await set_shop_active(session, principal, shop_id, payload.action, payload.reason)
    await session.commit()
    return success_response(res)


# payments

@admin_router.get("/payments/pending")
async def get_pending_releases(principal: Principal = Depends(require_admin),
                               session: AsyncSession = Depends(get_session)):
    return success_response({"payments": await pending_releases(session)})


@admin_router.post("/payments/{order_id}/release")
async def release_payment(order_id: str, principal: Principal = Depends(require_admin),
                          session: AsyncSession = Depends(get_session)):

    order, res = await release_escrow(session, order_id)
    await session.commit()

    # the payout stands even if the seller notification does not
    await notify_release(session, order, res["sellerAmount"])
    await session.commit()
    return success_response(res)


@admin_router.post("/payments/{order_id}/refund")
async def refund_order_payment(order_id: str, payload: Optional[RefundIn] = None,
                               principal: Principal = Depends(require_admin), session: AsyncSession = Depends(get_session),
                               client: PaystackClient = Depends(get_paystack)):

    res = await admin_refund(session, client, order_id, payload.reason if payload else None)
    await session.commit()
    return success_response(res)
