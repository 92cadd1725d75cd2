import math
from typing import Optional
from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from marketplace.common.utils import clean_str, iso, parse_pid
from marketplace.deliveries.services import delivery_by_pid
from marketplace.orders.repository import order_by_pid
from marketplace.ratings.constants import (DUPLICATE_REVIEW_MESSAGE, DUPLICATE_RIDER_RATING_MESSAGE, MAX_RATING,
                                           MIN_RATING, RATING_RANGE_MESSAGE, logger)
from marketplace.ratings.models import ReviewIn, RiderRatingIn
from marketplace.schema.full_schema import Delivery, Orders, Review, RiderRating, Shop, Users
from marketplace.schema.lifecycle import DeliveryStatus, OrderStatus


def round_rating(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def parse_rating(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) \
            or value != int(value):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=RATING_RANGE_MESSAGE)
    value = int(value)
    if value < MIN_RATING or value > MAX_RATING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=RATING_RANGE_MESSAGE)
    return value


def _author(user: Optional[Users]) -> Optional[dict]:
    return {"id": str(user.public_id), "name": user.name} if user else None


def review_out(review: Review, buyer: Optional[Users] = None) -> dict:
    return {
        "id": str(review.public_id),
        "rating": review.rating,
        "comment": review.comment,
        "buyer": _author(buyer),
        "createdAt": iso(review.created_at),
    }


def rider_rating_out(rating: RiderRating, *, buyer: Optional[Users] = None, rider: Optional[Users] = None,
                     order_number: Optional[str] = None) -> dict:
    return {
        "id": str(rating.public_id),
        "rating": rating.rating,
        "comment": rating.comment,
        "buyer": _author(buyer),
        "rider": _author(rider),
        "orderNumber": order_number,
        "createdAt": iso(rating.created_at),
    }


async def recompute_shop_rating(session, shop_id: int) -> Shop:
    shop = (await session.execute(
        select(Shop).where(Shop.id == shop_id).with_for_update().execution_options(populate_existing=True)
    )).scalar_one()
    avg, count = (await session.execute(
        select(func.avg(Review.rating), func.count(Review.id)).where(Review.shop_id == shop_id)
    )).one()

    if not count:
        shop.rating = 0.0
        shop.total_reviews = 0
    else:
        shop.rating = round_rating(float(avg))
        shop.total_reviews = count
    session.add(shop)
    await session.flush()
    return shop


async def create_review(session, principal, payload: ReviewIn) -> dict:
    rating = parse_rating(payload.rating)
    order = await order_by_pid(session, payload.orderId)
    if order.buyer_id != principal.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    if order.status != OrderStatus.DELIVERED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Order must be delivered before leaving a review")

    existing = (await session.execute(select(Review.id).where(Review.order_id == order.id))).scalar_one_or_none()
    if existing is not None:
        logger.info("review.duplicate", extra={"order_id": order.id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_REVIEW_MESSAGE)

    review = Review(order_id=order.id, shop_id=order.shop_id, buyer_id=principal.user_id, rating=rating,
                    comment=clean_str(payload.comment))
    try:
        async with session.begin_nested():
            session.add(review)
            await session.flush()
    except IntegrityError:
        logger.warning("review.create.integrity_error", extra={"order_id": order.id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_REVIEW_MESSAGE)

    shop = await recompute_shop_rating(session, order.shop_id)
    logger.info("review.created", extra={"order_id": order.id, "shop_id": shop.id, "rating": rating,
                                         "shop_rating": shop.rating})
    return {"message": "Review created successfully", "review": review_out(review),
            "shopRating": {"rating": shop.rating, "totalReviews": shop.total_reviews}}


async def list_reviews(session, shop_pid, *, limit: int, offset: int) -> dict:
    pid = parse_pid(shop_pid)
    if pid is None:
        return {"reviews": [], "total": 0, "limit": limit, "offset": offset}

    where = [Shop.public_id == pid]
    total = (await session.execute(
        select(func.count(Review.id)).join(Shop, Shop.id == Review.shop_id).where(*where)
    )).scalar_one()
    rows = (await session.execute(
        select(Review, Users)
        .join(Shop, Shop.id == Review.shop_id)
        .outerjoin(Users, Users.id == Review.buyer_id)
        .where(*where)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .offset(offset).limit(limit)
    )).all()
    return {"reviews": [review_out(r, u) for r, u in rows], "total": total, "limit": limit, "offset": offset}


async def rider_stats(session, rider_id: int) -> dict:
    avg, count = (await session.execute(
        select(func.avg(RiderRating.rating), func.count(RiderRating.id)).where(RiderRating.rider_id == rider_id)
    )).one()
    return {"averageRating": round_rating(float(avg)) if count else 0, "totalRatings": count}


async def rate_rider(session, principal, payload: RiderRatingIn) -> dict:
    rating = parse_rating(payload.rating)
    delivery = await delivery_by_pid(session, payload.deliveryId)
    order = await session.get(Orders, delivery.order_id)
    if order.buyer_id != principal.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized to rate this delivery")
    if delivery.status != DeliveryStatus.DELIVERED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Can only rate completed deliveries")
    if delivery.rider_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No rider assigned to this delivery")

    existing = (await session.execute(
        select(RiderRating.id).where(RiderRating.delivery_id == delivery.id)
    )).scalar_one_or_none()
    if existing is not None:
        logger.info("rider_rating.duplicate", extra={"delivery_id": delivery.id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_RIDER_RATING_MESSAGE)

    row = RiderRating(delivery_id=delivery.id, order_id=order.id, rider_id=delivery.rider_id,
                      buyer_id=principal.user_id, rating=rating, comment=clean_str(payload.comment))
    try:
        async with session.begin_nested():
            session.add(row)
            await session.flush()
    except IntegrityError:
        logger.warning("rider_rating.create.integrity_error", extra={"delivery_id": delivery.id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_RIDER_RATING_MESSAGE)

    rider = await session.get(Users, delivery.rider_id)
    stats = await rider_stats(session, delivery.rider_id)
    logger.info("rider_rating.created", extra={"delivery_id": delivery.id, "rider_id": delivery.rider_id,
                                               "rating": rating})
    return {"message": "Rider rating submitted successfully",
            "rating": rider_rating_out(row, rider=rider, order_number=order.order_number),
            "riderStats": stats}


async def ratings_for_rider(session, rider_pid) -> dict:
    pid = parse_pid(rider_pid)
    rider = None
    if pid is not None:
        rider = (await session.execute(select(Users).where(Users.public_id == pid))).scalar_one_or_none()
    if rider is None:
        return {"ratings": [], "averageRating": 0, "totalRatings": 0}

    rows = (await session.execute(
        select(RiderRating, Users, Orders.order_number)
        .join(Orders, Orders.id == RiderRating.order_id)
        .outerjoin(Users, Users.id == RiderRating.buyer_id)
        .where(RiderRating.rider_id == rider.id)
        .order_by(RiderRating.created_at.desc(), RiderRating.id.desc())
    )).all()
    ratings = [rider_rating_out(r, buyer=b, order_number=n) for r, b, n in rows]
    avg = sum(r.rating for r, _, _ in rows) / len(rows) if rows else 0
    return {"ratings": ratings, "averageRating": round_rating(avg), "totalRatings": len(rows)}


async def rating_for_delivery(session, *, delivery_pid=None, order_pid=None) -> Optional[dict]:
    stmt = select(RiderRating)
    if delivery_pid is not None:
        pid = parse_pid(delivery_pid)
        stmt = stmt.join(Delivery, Delivery.id == RiderRating.delivery_id).where(Delivery.public_id == pid)
    else:
        pid = parse_pid(order_pid)
        stmt = stmt.join(Orders, Orders.id == RiderRating.order_id).where(Orders.public_id == pid)
    if pid is None:
        return None

    row = (await session.execute(stmt)).scalar_one_or_none()
    if row is None:
        return None
    rider = await session.get(Users, row.rider_id)
    buyer = await session.get(Users, row.buyer_id)
    return rider_rating_out(row, buyer=buyer, rider=rider)
