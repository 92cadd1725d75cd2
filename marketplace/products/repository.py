from typing import Dict, Iterable, List, Optional
from fastapi import HTTPException, status
from sqlalchemy import exists, func, select
from marketplace.common.utils import iso, money, page_meta, parse_pid
from marketplace.products.constants import PRICING_UNITS_PER_LISTING, logger
from marketplace.schema.full_schema import PricingUnit, Product, ProductCategory, Shop
from marketplace.shops.repository import shop_summary, visible_shop_clause


def unit_out(unit: PricingUnit) -> dict:
    return {
        "id": str(unit.public_id),
        "unit": unit.unit,
        "price": money(unit.price),
        "stock": unit.stock,
        "lowStockThreshold": unit.low_stock_threshold,
        "isActive": unit.is_active,
    }


def product_out(product: Product, units: List[dict], shop: Optional[Shop] = None) -> dict:
    out = {
        "id": str(product.public_id),
        "name": product.name,
        "description": product.description,
        "category": product.category.value,
        "images": product.images or [],
        "isAvailable": product.is_available,
        "createdAt": iso(product.created_at),
        "pricingUnits": units,
    }
    if shop is not None:
        out["shop"] = shop_summary(shop)
    return out


async def units_by_product(session, product_ids: Iterable[int], *, active_only: bool = True,
                           per_product: Optional[int] = None) -> Dict[int, List[dict]]:
    ids = list(product_ids)
    if not ids:
        return {}
    stmt = select(PricingUnit).where(PricingUnit.product_id.in_(ids))
    if active_only:
        stmt = stmt.where(PricingUnit.is_active.is_(True))
    stmt = stmt.order_by(PricingUnit.price.asc(), PricingUnit.id.asc())
    grouped: Dict[int, List[dict]] = {}
    for unit in (await session.execute(stmt)).scalars().all():
        bucket = grouped.setdefault(unit.product_id, [])
        if per_product is None or len(bucket) < per_product:
            bucket.append(unit_out(unit))
    return grouped


async def search_visible_products(session, *, search: Optional[str] = None, category: Optional[ProductCategory] = None,
                                  shop_pid=None, min_price: Optional[float] = None, max_price: Optional[float] = None,
                                  min_rating: Optional[float] = None, sort: str = "newest",
                                  page: int, limit: int, offset: int) -> dict:

    conds = [Product.is_available.is_(True), visible_shop_clause()]
    if search:
        pattern = f"%{search}%"
        conds.append(Product.name.ilike(pattern) | Product.description.ilike(pattern))
    if category is not None:
        conds.append(Product.category == category)
    if shop_pid is not None:
        pid = parse_pid(shop_pid)
        if pid is None:
            return {"products": [], **page_meta(0, page, limit)}
        conds.append(Shop.public_id == pid)
    if min_rating is not None:
        conds.append(Shop.rating >= min_rating)
    if min_price is not None or max_price is not None:
        price_conds = [PricingUnit.product_id == Product.id, PricingUnit.is_active.is_(True)]
        if min_price is not None:
            price_conds.append(PricingUnit.price >= min_price)
        if max_price is not None:
            price_conds.append(PricingUnit.price <= max_price)
        conds.append(exists().where(*price_conds))

    min_unit_price = (select(func.min(PricingUnit.price))
                      .where(PricingUnit.product_id == Product.id, PricingUnit.is_active.is_(True))
                      .correlate(Product)
                      .scalar_subquery())
    order_by = {
        "price_asc": (min_unit_price.asc(), Product.id.asc()),
        "price_desc": (min_unit_price.desc(), Product.id.desc()),
        "name": (Product.name.asc(), Product.id.asc()),
        "rating": (Shop.rating.desc(), Product.created_at.desc()),
    }.get(sort, (Product.created_at.desc(), Product.id.desc()))

    base = select(Product, Shop).join(Shop, Shop.id == Product.shop_id).where(*conds)
    total = (await session.execute(
        select(func.count(Product.id)).join(Shop, Shop.id == Product.shop_id).where(*conds)
    )).scalar_one()
    rows = (await session.execute(base.order_by(*order_by).offset(offset).limit(limit))).all()

    units = await units_by_product(session, (p.id for p, _ in rows), per_product=PRICING_UNITS_PER_LISTING)
    products = [product_out(p, units.get(p.id, []), shop) for p, shop in rows]
    return {"products": products, **page_meta(total, page, limit)}


async def visible_product_detail(session, product_pid) -> dict:
    pid = parse_pid(product_pid)
    row = None
    if pid is not None:
        stmt = (select(Product, Shop)
                .join(Shop, Shop.id == Product.shop_id)
                .where(Product.public_id == pid, Product.is_available.is_(True), visible_shop_clause()))
        row = (await session.execute(stmt)).one_or_none()
    if row is None:
        logger.info("product.not_found", extra={"product_public_id": str(product_pid)})
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    product, shop = row
    units = await units_by_product(session, [product.id])
    return product_out(product, units.get(product.id, []), shop)


async def product_by_pid(session, product_pid) -> Product:
    pid = parse_pid(product_pid)
    product = None
    if pid is not None:
        product = (await session.execute(select(Product).where(Product.public_id == pid))).scalar_one_or_none()
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


async def owned_product(session, product_pid, shop: Shop) -> Product:
    product = await product_by_pid(session, product_pid)
    if product.shop_id != shop.id:
        logger.warning("product.owner_mismatch", extra={"product_id": product.id, "shop_id": shop.id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not own this product")
    return product


async def product_by_name(session, shop_id: int, name: str) -> Optional[Product]:
    stmt = select(Product).where(Product.shop_id == shop_id, func.lower(Product.name) == name.strip().lower())
    return (await session.execute(stmt)).scalars().first()


async def list_shop_products(session, shop_id: int) -> List[dict]:
    products = (await session.execute(
        select(Product).where(Product.shop_id == shop_id).order_by(Product.created_at.desc(), Product.id.desc())
    )).scalars().all()
    units = await units_by_product(session, (p.id for p in products), active_only=False)
    return [product_out(p, units.get(p.id, [])) for p in products]


async def product_units(session, product_id: int) -> List[PricingUnit]:
    stmt = select(PricingUnit).where(PricingUnit.product_id == product_id).order_by(PricingUnit.id.asc())
    return list((await session.execute(stmt)).scalars().all())


async def active_units_for_export(session, shop_id: int):
    stmt = (select(Product, PricingUnit)
            .join(PricingUnit, PricingUnit.product_id == Product.id)
            .where(Product.shop_id == shop_id, PricingUnit.is_active.is_(True))
            .order_by(Product.name.asc(), PricingUnit.price.asc()))
    return (await session.execute(stmt)).all()
