from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import success_response
from marketplace.db.dependencies import get_session
from marketplace.deliveries.fees import valid_coordinates
from marketplace.deliveries.services import assign_rider, delivery_by_pid
from marketplace.riders.constants import EARNINGS_PERIODS, logger
from marketplace.riders.models import DeliveryStatusIn, RiderApplyIn
from marketplace.riders.services import (advance_delivery, apply_for_rider, availability_out, list_rider_deliveries,
                                         rider_earnings, rider_role, update_location)
from marketplace.schema.full_schema import Orders, RoleName
from marketplace.schema.lifecycle import RIDER_DELIVERY_TARGETS, DeliveryStatus, OrderStatus
from marketplace.user.dependencies import Principal, get_principal, require_rider
from marketplace.user.repository import get_user_role

riders_router = APIRouter()


def _delivery_status(value) -> Optional[DeliveryStatus]:
    if not isinstance(value, str):
        return None
    try:
        return DeliveryStatus(value.strip().upper())
    except ValueError:
        return None


@riders_router.post("/apply")
async def rider_apply(payload: RiderApplyIn, principal: Principal = Depends(get_principal),
                      session: AsyncSession = Depends(get_session)):

    res = await apply_for_rider(session, principal, payload)
    await session.commit()
    return success_response(res, status_code=status.HTTP_201_CREATED)


@riders_router.get("/status")
async def rider_application_status(principal: Principal = Depends(get_principal),
                                   session: AsyncSession = Depends(get_session)):

    role = await get_user_role(session, principal.user_id, RoleName.RIDER)
    if role is None:
        return success_response({"hasApplied": False, "status": None})
    return success_response({
        "hasApplied": True,
        "status": role.status.value if role.status else None,
        "isActive": role.is_active,
        "rejectionReason": role.rejection_reason,
    })


@riders_router.get("/availability")
async def get_availability(principal: Principal = Depends(require_rider), session: AsyncSession = Depends(get_session)):
    role = await rider_role(session, principal.user_id)
    return success_response(availability_out(role))


@riders_router.post("/availability")
async def set_availability(payload: Dict[str, Any], principal: Principal = Depends(require_rider),
                           session: AsyncSession = Depends(get_session)):

    is_online = payload.get("isOnline")
    if not isinstance(is_online, bool):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="isOnline must be a boolean")

    role = await rider_role(session, principal.user_id, lock=True)
    role.is_online = is_online
    session.add(role)
    await session.commit()

    logger.info("rider.availability.updated", extra={"user_id": principal.user_id, "is_online": is_online})
    return success_response({"message": "You are now online" if is_online else "You are now offline",
                             **availability_out(role)})


@riders_router.post("/location")
async def post_location(payload: Dict[str, Any], principal: Principal = Depends(require_rider),
                        session: AsyncSession = Depends(get_session)):

    lat, lng = payload.get("latitude"), payload.get("longitude")
    if lat is None or lng is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Latitude and longitude are required")
    if isinstance(lat, bool) or isinstance(lng, bool) or not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Latitude and longitude must be numbers")
    if not valid_coordinates(lat, lng):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid coordinates")

    role = await rider_role(session, principal.user_id, lock=True)
    delivery = None
    if payload.get("deliveryId"):
        delivery = await delivery_by_pid(session, payload["deliveryId"], lock=True)
    res = await update_location(session, role, float(lat), float(lng), delivery)
    await session.commit()
    return success_response(res)


@riders_router.get("/deliveries")
async def get_deliveries(status_filter: Optional[str] = Query(None, alias="status"),
                         principal: Principal = Depends(require_rider), session: AsyncSession = Depends(get_session)):

    parsed = None
    if status_filter:
        parsed = _delivery_status(status_filter)
        if parsed is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid delivery status")
    deliveries = await list_rider_deliveries(session, principal.user_id, parsed)
    return success_response({"deliveries": deliveries})


@riders_router.post("/deliveries")
async def accept_delivery(payload: Dict[str, Any], principal: Principal = Depends(require_rider),
                          session: AsyncSession = Depends(get_session)):

    delivery_pid = payload.get("deliveryId")
    if not delivery_pid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Delivery ID is required")

    delivery = await delivery_by_pid(session, delivery_pid, lock=True)
    if delivery.rider_id is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Delivery already assigned")
    order = await session.get(Orders, delivery.order_id)
    if delivery.status != DeliveryStatus.PENDING or order.status != OrderStatus.PAID:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Delivery is not available for assignment")

    await assign_rider(session, delivery, principal.user_id, order.order_number)
    await session.commit()
    return success_response({"message": "Delivery assigned successfully", "deliveryId": str(delivery.public_id)})


@riders_router.patch("/deliveries/{delivery_id}")
async def patch_delivery(delivery_id: str, payload: DeliveryStatusIn, principal: Principal = Depends(require_rider),
                         session: AsyncSession = Depends(get_session)):

    target = _delivery_status(payload.status)
    if target not in RIDER_DELIVERY_TARGETS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid delivery status")

    delivery = await delivery_by_pid(session, delivery_id, lock=True)
    res = await advance_delivery(session, delivery, principal.user_id, target, notes=payload.notes)
    await session.commit()
    return success_response(res)


@riders_router.get("/earnings")
async def get_earnings(period: Optional[str] = None, principal: Principal = Depends(require_rider),
                       session: AsyncSession = Depends(get_session)):

    period = (period or "all").lower()
    if period not in EARNINGS_PERIODS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid period")
    res = await rider_earnings(session, principal.user_id, period)
    return success_response(res)
