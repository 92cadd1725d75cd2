from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import success_response, to_int
from marketplace.db.dependencies import get_session
from marketplace.ratings.constants import REVIEWS_DEFAULT_LIMIT
from marketplace.ratings.models import ReviewIn, RiderRatingIn
from marketplace.ratings.services import (create_review, list_reviews, rate_rider, rating_for_delivery,
                                          ratings_for_rider)
from marketplace.user.dependencies import Principal, get_principal

reviews_router = APIRouter()
rider_ratings_router = APIRouter()


@reviews_router.post("")
async def post_review(payload: ReviewIn, principal: Principal = Depends(get_principal),
                      session: AsyncSession = Depends(get_session)):

    res = await create_review(session, principal, payload)
    await session.commit()
    return success_response(res, status_code=status.HTTP_201_CREATED)


@reviews_router.get("")
async def get_reviews(shopId: Optional[str] = None, limit: Optional[str] = None, offset: Optional[str] = None,
                      session: AsyncSession = Depends(get_session)):

    if not shopId:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Shop ID is required")
    size = min(100, max(1, to_int(limit, REVIEWS_DEFAULT_LIMIT)))
    res = await list_reviews(session, shopId, limit=size, offset=max(0, to_int(offset, 0)))
    return success_response(res)


@rider_ratings_router.post("")
async def post_rider_rating(payload: RiderRatingIn, principal: Principal = Depends(get_principal),
                            session: AsyncSession = Depends(get_session)):

    res = await rate_rider(session, principal, payload)
    await session.commit()
    return success_response(res, status_code=status.HTTP_201_CREATED)


@rider_ratings_router.get("")
async def get_rider_ratings(riderId: Optional[str] = None, orderId: Optional[str] = None,
                            deliveryId: Optional[str] = None, principal: Principal = Depends(get_principal),
                            session: AsyncSession = Depends(get_session)):

    if riderId:
        return success_response(await ratings_for_rider(session, riderId))
    if deliveryId or orderId:
        rating = await rating_for_delivery(session, delivery_pid=deliveryId or None,
                                           order_pid=None if deliveryId else orderId)
        return success_response({"rating": rating})
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="riderId, orderId, or deliveryId is required")
