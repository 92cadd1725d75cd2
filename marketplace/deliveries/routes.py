from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import page_meta, page_params, success_response, to_float
from marketplace.db.dependencies import get_session
from marketplace.deliveries.constants import logger
from marketplace.deliveries.fees import DEFAULT_DELIVERY_FEE, calculate_delivery_fee, distance_between
from marketplace.deliveries.services import (approved_rider_by_pid, assign_rider, auto_assign, delivery_by_pid,
                                             delivery_row_out)
from marketplace.schema.full_schema import Delivery, Orders, Shop, Users
from marketplace.schema.lifecycle import DeliveryStatus
from marketplace.shops.repository import shop_by_pid
from marketplace.user.dependencies import Principal, require_admin
from marketplace.user.repository import user_summary

delivery_fee_router = APIRouter()
admin_deliveries_router = APIRouter()


@delivery_fee_router.post("")
async def estimate_delivery_fee(payload: Dict[str, Any], session: AsyncSession = Depends(get_session)):
    shop_pid = payload.get("shopId")
    if not shop_pid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Shop ID is required")
    shop = await shop_by_pid(session, shop_pid)

    distance = distance_between(shop.latitude, shop.longitude,
                                to_float(payload.get("deliveryLatitude")), to_float(payload.get("deliveryLongitude")))
    if distance is None:
        return success_response({"deliveryFee": DEFAULT_DELIVERY_FEE, "distance": None, "estimated": True})
    return success_response({"deliveryFee": calculate_delivery_fee(distance), "distance": distance, "estimated": False})


@admin_deliveries_router.get("")
async def list_deliveries(status_filter: Optional[str] = Query(None, alias="status"), riderId: Optional[str] = None,
                          page: Optional[str] = None, limit: Optional[str] = None,
                          principal: Principal = Depends(require_admin), session: AsyncSession = Depends(get_session)):

    where = []
    if status_filter and status_filter.upper() != "ALL":
        try:
            parsed = DeliveryStatus(status_filter.upper())
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid delivery status")
        where.append(Delivery.status == parsed)
        if parsed == DeliveryStatus.PENDING and not riderId:
            where.append(Delivery.rider_id.is_(None))
    if riderId:
        rider = await approved_rider_by_pid(session, riderId)
        if rider is None:
            return success_response({"deliveries": [], **page_meta(0, 1, 1)})
        where.append(Delivery.rider_id == rider.id)

    page_no, size, offset = page_params(page, limit)
    total = (await session.execute(select(func.count(Delivery.id)).where(*where))).scalar_one()
    rows = (await session.execute(
        select(Delivery, Orders, Shop, Users)
        .join(Orders, Orders.id == Delivery.order_id)
        .join(Shop, Shop.id == Orders.shop_id)
        .outerjoin(Users, Users.id == Delivery.rider_id)
        .where(*where)
        .order_by(Delivery.created_at.desc(), Delivery.id.desc())
        .offset(offset).limit(size)
    )).all()

    deliveries = []
    for delivery, order, shop, rider in rows:
        out = delivery_row_out(delivery, order, shop)
        out["rider"] = user_summary(rider) if rider else None
        deliveries.append(out)
    return success_response({"deliveries": deliveries, **page_meta(total, page_no, size)})


@admin_deliveries_router.post("/{delivery_id}/assign")
async def assign_delivery(delivery_id: str, payload: Dict[str, Any], principal: Principal = Depends(require_admin),
                          session: AsyncSession = Depends(get_session)):

    rider_pid = payload.get("riderId")
    if not rider_pid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Rider ID is required")
    rider = await approved_rider_by_pid(session, rider_pid)
    if rider is None:
        logger.info("delivery.assign.rider_rejected", extra={"rider_public_id": str(rider_pid)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid rider or rider not approved")

    delivery = await delivery_by_pid(session, delivery_id, lock=True)
    order = await session.get(Orders, delivery.order_id)
    await assign_rider(session, delivery, rider.id, order.order_number)
    await session.commit()
    return success_response({"message": "Rider assigned successfully", "deliveryId": str(delivery.public_id),
                             "riderId": str(rider.public_id)})


@admin_deliveries_router.post("/{delivery_id}/auto-assign")
async def auto_assign_delivery(delivery_id: str, principal: Principal = Depends(require_admin),
                               session: AsyncSession = Depends(get_session)):

    delivery = await delivery_by_pid(session, delivery_id, lock=True)
    if delivery.rider_id is not None or delivery.status != DeliveryStatus.PENDING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Delivery is not available for assignment")

    rider_id = await auto_assign(session, delivery)
    if rider_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No available riders")
    await session.commit()

    rider = await session.get(Users, rider_id)
    return success_response({"message": "Rider assigned successfully", "deliveryId": str(delivery.public_id),
                             "rider": user_summary(rider)})
