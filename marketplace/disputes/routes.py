from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import success_response
from marketplace.db.dependencies import get_session
from marketplace.disputes.models import DisputeCreateIn, DisputeResolveIn, DisputeUpdateIn
from marketplace.disputes.services import (dispute_by_pid, dispute_detail, ensure_party, list_disputes, open_dispute,
                                           parse_dispute_status, resolve_dispute, update_dispute)
from marketplace.payments.client import PaystackClient
from marketplace.payments.dependencies import get_paystack
from marketplace.user.dependencies import Principal, get_principal, require_admin

disputes_router = APIRouter()
admin_disputes_router = APIRouter()


def _status_filter(value: Optional[str]):
    if not value or value.upper() == "ALL":
        return None
    parsed = parse_dispute_status(value)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid dispute status")
    return parsed


@disputes_router.post("")
async def create_dispute(payload: DisputeCreateIn, principal: Principal = Depends(get_principal),
                         session: AsyncSession = Depends(get_session)):

    dispute = await open_dispute(session, principal, payload)
    await session.commit()
    return success_response({"message": "Dispute created successfully", "dispute": await dispute_detail(session, dispute)},
                            status_code=status.HTTP_201_CREATED)


@disputes_router.get("")
async def get_my_disputes(role: Optional[str] = None, status_filter: Optional[str] = Query(None, alias="status"),
                          principal: Principal = Depends(get_principal), session: AsyncSession = Depends(get_session)):

    disputes = await list_disputes(session, user_id=principal.user_id, role=(role or "").lower() or None,
                                   status_filter=_status_filter(status_filter))
    return success_response({"disputes": disputes})


@disputes_router.get("/{dispute_id}")
async def get_dispute(dispute_id: str, principal: Principal = Depends(get_principal),
                      session: AsyncSession = Depends(get_session)):

    dispute = await dispute_by_pid(session, dispute_id)
    ensure_party(dispute, principal)
    return success_response({"dispute": await dispute_detail(session, dispute)})


@disputes_router.patch("/{dispute_id}")
async def patch_dispute(dispute_id: str, payload: DisputeUpdateIn, principal: Principal = Depends(get_principal),
                        session: AsyncSession = Depends(get_session)):

    dispute = await dispute_by_pid(session, dispute_id, lock=True)
    ensure_party(dispute, principal)
    dispute = await update_dispute(session, dispute, principal, payload)
    await session.commit()
    return success_response({"message": "Dispute updated successfully", "dispute": await dispute_detail(session, dispute)})


# admin

@admin_disputes_router.get("")
async def admin_list_disputes(status_filter: Optional[str] = Query(None, alias="status"),
                              principal: Principal = Depends(require_admin),
                              session: AsyncSession = Depends(get_session)):

    disputes = await list_disputes(session, status_filter=_status_filter(status_filter))
    return success_response({"disputes": disputes})


@admin_disputes_router.post("/{dispute_id}/resolve")
async def admin_resolve_dispute(dispute_id: str, payload: DisputeResolveIn, principal: Principal = Depends(require_admin),
                                session: AsyncSession = Depends(get_session),
                                client: PaystackClient = Depends(get_paystack)):

    dispute = await dispute_by_pid(session, dispute_id, lock=True)
    res = await resolve_dispute(session, client, dispute, payload)
    await session.commit()
    return success_response(res)
