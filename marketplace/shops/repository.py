from typing import Optional
from fastapi import HTTPException, status
from sqlalchemy import and_, exists, func, select
from marketplace.common.utils import iso, money, page_meta, parse_pid
from marketplace.schema.full_schema import ApprovalStatus, PricingUnit, Product, RoleName, Shop, UserRole
from marketplace.shops.constants import logger


def approved_seller_clause():
    return exists().where(
        UserRole.user_id == Shop.user_id,
        UserRole.role == RoleName.SELLER,
        UserRole.is_active.is_(True),
        UserRole.status == ApprovalStatus.APPROVED,
    )


def visible_shop_clause():
    """Active shop whose owner holds an active, approved seller role."""
    return and_(Shop.is_active.is_(True), approved_seller_clause())


def shop_out(shop: Shop, *, product_count: Optional[int] = None) -> dict:
    out = {
        "id": str(shop.public_id),
        "name": shop.name,
        "description": shop.description,
        "address": shop.address,
        "city": shop.city,
        "state": shop.state,
        "phone": shop.phone,
        "latitude": shop.latitude,
        "longitude": shop.longitude,
        "rating": shop.rating,
        "totalReviews": shop.total_reviews,
        "isActive": shop.is_active,
        "createdAt": iso(shop.created_at),
    }
    if product_count is not None:
        out["productCount"] = product_count
    return out


def shop_summary(shop: Shop) -> dict:
    return {
        "id": str(shop.public_id),
        "name": shop.name,
        "city": shop.city,
        "state": shop.state,
        "rating": shop.rating,
        "totalReviews": shop.total_reviews,
    }


async def list_visible_shops(session, *, search=None, city=None, state=None, min_rating=None,
                             page: int, limit: int, offset: int) -> dict:
    product_count = (select(func.count(Product.id))
                     .where(Product.shop_id == Shop.id, Product.is_available.is_(True))
                     .correlate(Shop)
                     .scalar_subquery())

    conds = [visible_shop_clause()]
    if search:
        pattern = f"%{search}%"
        conds.append(Shop.name.ilike(pattern) | Shop.description.ilike(pattern))
    if city:
        conds.append(Shop.city.ilike(f"%{city}%"))
    if state:
        conds.append(Shop.state.ilike(f"%{state}%"))
    if min_rating is not None:
        conds.append(Shop.rating >= min_rating)

    total = (await session.execute(select(func.count(Shop.id)).where(*conds))).scalar_one()
    stmt = (select(Shop, product_count)
            .where(*conds)
            .order_by(Shop.rating.desc(), Shop.created_at.desc())
            .offset(offset).limit(limit))
    rows = (await session.execute(stmt)).all()

    shops = [shop_out(shop, product_count=count) for shop, count in rows]
    return {"shops": shops, **page_meta(total, page, limit)}


async def visible_shop_by_pid(session, shop_pid) -> Shop:
    pid = parse_pid(shop_pid)
    shop = None
    if pid is not None:
        stmt = select(Shop).where(Shop.public_id == pid, visible_shop_clause())
        shop = (await session.execute(stmt)).scalar_one_or_none()
    if shop is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shop not found")
    return shop


async def shop_by_pid(session, shop_pid) -> Shop:
    pid = parse_pid(shop_pid)
    shop = None
    if pid is not None:
        shop = (await session.execute(select(Shop).where(Shop.public_id == pid))).scalar_one_or_none()
    if shop is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shop not found")
    return shop


async def shop_for_user(session, user_id: int) -> Optional[Shop]:
    return (await session.execute(select(Shop).where(Shop.user_id == user_id))).scalar_one_or_none()


async def seller_shop(session, user_id: int) -> Shop:
    shop = await shop_for_user(session, user_id)
    if shop is None:
        logger.info("shop.seller.not_found", extra={"user_id": user_id})
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shop not found")
    return shop


async def shop_products(session, shop_id: int, *, category=None, search=None) -> list:
    conds = [Product.shop_id == shop_id, Product.is_available.is_(True)]
    if category is not None:
        conds.append(Product.category == category)
    if search:
        pattern = f"%{search}%"
        conds.append(Product.name.ilike(pattern) | Product.description.ilike(pattern))
    products = (await session.execute(
        select(Product).where(*conds).order_by(Product.created_at.desc())
    )).scalars().all()
    if not products:
        return []

    units = (await session.execute(
        select(PricingUnit)
        .where(PricingUnit.product_id.in_([p.id for p in products]), PricingUnit.is_active.is_(True))
        .order_by(PricingUnit.price.asc())
    )).scalars().all()
    by_product: dict = {}
    for unit in units:
        by_product.setdefault(unit.product_id, []).append(
            {"id": str(unit.public_id), "unit": unit.unit, "price": money(unit.price), "stock": unit.stock}
        )

    return [
        {
            "id": str(p.public_id),
            "name": p.name,
            "description": p.description,
            "category": p.category.value,
            "images": p.images or [],
            "pricingUnits": by_product.get(p.id, []),
        }
        for p in products
    ]


async def update_shop(session, shop: Shop, updates: dict) -> Shop:
    for field_name, value in updates.items():
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        setattr(shop, field_name, value)
    session.add(shop)
    await session.flush()
    return shop
