from typing import List
from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from marketplace.common.utils import iso, parse_pid
from marketplace.products.repository import product_out, units_by_product
from marketplace.schema.full_schema import Product, Shop, Wishlist
from marketplace.shops.repository import visible_shop_clause
from marketplace.wishlist.constants import logger


async def list_wishlist(session, user_id: int) -> List[dict]:
    rows = (await session.execute(
        select(Wishlist, Product, Shop)
        .join(Product, Product.id == Wishlist.product_id)
        .join(Shop, Shop.id == Product.shop_id)
        .where(Wishlist.user_id == user_id)
        .order_by(Wishlist.created_at.desc(), Wishlist.id.desc())
    )).all()
    units = await units_by_product(session, [p.id for _, p, _ in rows])
    return [
        {"id": item.id, "addedAt": iso(item.created_at), "product": product_out(p, units.get(p.id, []), s)}
        for item, p, s in rows
    ]


async def add_to_wishlist(session, user_id: int, product_pid) -> Product:
    pid = parse_pid(product_pid)
    product = None
    if pid is not None:
        product = (await session.execute(
            select(Product)
            .join(Shop, Shop.id == Product.shop_id)
            .where(Product.public_id == pid, Product.is_available.is_(True), visible_shop_clause())
        )).scalar_one_or_none()
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found or unavailable")

    existing = (await session.execute(
        select(Wishlist.id).where(Wishlist.user_id == user_id, Wishlist.product_id == product.id)
    )).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product already in wishlist")

    try:
        async with session.begin_nested():
            session.add(Wishlist(user_id=user_id, product_id=product.id))
            await session.flush()
    except IntegrityError:
        logger.info("wishlist.add.race", extra={"user_id": user_id, "product_id": product.id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product already in wishlist")

    logger.info("wishlist.added", extra={"user_id": user_id, "product_id": product.id})
    return product


async def remove_from_wishlist(session, user_id: int, product_pid) -> None:
    pid = parse_pid(product_pid)
    removed = 0
    if pid is not None:
        product_id = select(Product.id).where(Product.public_id == pid).scalar_subquery()
        res = await session.execute(
            delete(Wishlist).where(Wishlist.user_id == user_id, Wishlist.product_id == product_id)
        )
        removed = res.rowcount or 0
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found in wishlist")
    logger.info("wishlist.removed", extra={"user_id": user_id, "product_public_id": str(pid)})


async def in_wishlist(session, user_id: int, product_pid) -> bool:
    pid = parse_pid(product_pid)
    if pid is None:
        return False
    row = (await session.execute(
        select(Wishlist.id)
        .join(Product, Product.id == Wishlist.product_id)
        .where(Wishlist.user_id == user_id, Product.public_id == pid)
    )).scalar_one_or_none()
    return row is not None
