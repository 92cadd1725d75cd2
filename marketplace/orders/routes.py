from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import page_params, success_response
from marketplace.db.dependencies import get_session
from marketplace.orders.constants import logger
from marketplace.orders.models import OrderCancelIn, OrderCreateIn, OrderStatusIn
from marketplace.orders.repository import (delivery_for_order, list_buyer_orders, list_shop_orders, order_by_pid,
                                           order_detail, order_out, shop_of_order)
from marketplace.orders.services import (bulk_update_status, cancel_order, ensure_can_read, place_orders,
                                         seller_update_status)
from marketplace.orders.utils import parse_order_status
from marketplace.payments.client import PaystackClient
from marketplace.payments.dependencies import get_paystack
from marketplace.payments.services import initialize_payment
from marketplace.rate_limiting.dependencies import rate_limit_dependency
from marketplace.shops.repository import seller_shop
from marketplace.user.dependencies import Principal, get_principal, require_seller
from marketplace.user.repository import user_by_id

orders_router = APIRouter()
seller_orders_router = APIRouter()


def _status_filter(value: Optional[str]):
    if not value or value.upper() == "ALL":
        return None
    parsed = parse_order_status(value)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid order status")
    return parsed


@orders_router.post("", dependencies=[Depends(rate_limit_dependency(limit=10, window=60, route_key="orders.create"))])
async def create_orders(payload: OrderCreateIn, principal: Principal = Depends(get_principal),
                        session: AsyncSession = Depends(get_session)):

    logger.info("order.create.attempt", extra={"user_id": principal.user_id, "items": len(payload.items)})
    orders = await place_orders(session, principal, payload)
    await session.commit()

    data = [await order_detail(session, o) for o in orders]
    return success_response({"message": "Orders created successfully", "orders": data},
                            status_code=status.HTTP_201_CREATED)


@orders_router.get("")
async def get_my_orders(status_filter: Optional[str] = Query(None, alias="status"), search: Optional[str] = None,
                        page: Optional[str] = None, limit: Optional[str] = None,
                        principal: Principal = Depends(get_principal), session: AsyncSession = Depends(get_session)):

    page_no, size, offset = page_params(page, limit)
    res = await list_buyer_orders(session, principal.user_id, status_filter=_status_filter(status_filter),
                                  search=(search or "").strip() or None, page=page_no, limit=size, offset=offset)
    return success_response(res)


@orders_router.get("/{order_id}")
async def get_order(order_id: str, principal: Principal = Depends(get_principal),
                    session: AsyncSession = Depends(get_session)):

    order = await order_by_pid(session, order_id)
    shop = await shop_of_order(session, order)
    delivery = await delivery_for_order(session, order.id)
    ensure_can_read(order, shop, principal, delivery.rider_id if delivery else None)
    return success_response({"order": await order_detail(session, order)})


@orders_router.post("/{order_id}/cancel")
async def cancel_my_order(order_id: str, payload: Optional[OrderCancelIn] = None,
                          principal: Principal = Depends(get_principal), session: AsyncSession = Depends(get_session),
                          client: PaystackClient = Depends(get_paystack)):

    order = await order_by_pid(session, order_id, lock=True)
    shop = await shop_of_order(session, order)
    reason = (payload.reason or "").strip() or None if payload else None
    res = await cancel_order(session, client, order, shop, principal, reason)
    await session.commit()
    return success_response(res)


@orders_router.post("/{order_id}/pay", dependencies=[Depends(rate_limit_dependency(limit=10, window=60, route_key="orders.pay"))])
async def pay_for_order(order_id: str, principal: Principal = Depends(get_principal),
                        session: AsyncSession = Depends(get_session), client: PaystackClient = Depends(get_paystack)):

    order = await order_by_pid(session, order_id, lock=True)
    if order.buyer_id != principal.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    buyer = await user_by_id(session, principal.user_id)
    res = await initialize_payment(session, client, order, buyer)
    await session.commit()
    return success_response({"message": "Payment initialized successfully", **res})


# seller

@seller_orders_router.get("")
async def get_shop_orders(status_filter: Optional[str] = Query(None, alias="status"), search: Optional[str] = None,
                          page: Optional[str] = None, limit: Optional[str] = None,
                          principal: Principal = Depends(require_seller), session: AsyncSession = Depends(get_session)):

    shop = await seller_shop(session, principal.user_id)
    page_no, size, offset = page_params(page, limit)
    res = await list_shop_orders(session, shop.id, status_filter=_status_filter(status_filter),
                                 search=(search or "").strip() or None, page=page_no, limit=size, offset=offset)
    return success_response(res)


@seller_orders_router.patch("")
async def bulk_update_orders(payload: Dict[str, Any], principal: Principal = Depends(require_seller),
                             session: AsyncSession = Depends(get_session)):

    order_ids = payload.get("orderIds")
    if not isinstance(order_ids, list) or not order_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order IDs array is required")
    target = parse_order_status(payload.get("status"))
    if target is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Valid order status is required")

    shop = await seller_shop(session, principal.user_id)
    res = await bulk_update_status(session, shop, order_ids, target)
    await session.commit()
    return success_response(res)


@seller_orders_router.get("/{order_id}")
async def get_shop_order(order_id: str, principal: Principal = Depends(require_seller),
                         session: AsyncSession = Depends(get_session)):

    shop = await seller_shop(session, principal.user_id)
    order = await order_by_pid(session, order_id)
    if order.shop_id != shop.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return success_response({"order": await order_detail(session, order)})


@seller_orders_router.patch("/{order_id}")
async def update_shop_order(order_id: str, payload: OrderStatusIn, principal: Principal = Depends(require_seller),
                            session: AsyncSession = Depends(get_session)):

    target = parse_order_status(payload.status)
    if target is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid order status")

    shop = await seller_shop(session, principal.user_id)
    order = await order_by_pid(session, order_id, lock=True)
    order = await seller_update_status(session, shop, order, target)
    await session.commit()
    return success_response({"message": "Order updated successfully", "order": order_out(order)})
