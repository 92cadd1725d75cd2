from fastapi import HTTPException, status
from sqlalchemy import func, select
from marketplace.common.utils import money, parse_pid
from marketplace.schema.full_schema import PricingUnit, Product, Shop


async def owned_pricing_unit(session, pricing_unit_pid, shop: Shop) -> PricingUnit:
    pid = parse_pid(pricing_unit_pid)
    row = None
    if pid is not None:
        row = (await session.execute(
            select(PricingUnit, Product.shop_id)
            .join(Product, Product.id == PricingUnit.product_id)
            .where(PricingUnit.public_id == pid)
        )).one_or_none()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pricing unit not found")
    unit, shop_id = row
    if shop_id != shop.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not own this pricing unit")
    return unit


async def inventory_overview(session, shop: Shop) -> dict:
    total_products = (await session.execute(
        select(func.count(Product.id)).where(Product.shop_id == shop.id)
    )).scalar_one()

    tracked = (await session.execute(
        select(PricingUnit.price, PricingUnit.stock)
        .join(Product, Product.id == PricingUnit.product_id)
        .where(Product.shop_id == shop.id, PricingUnit.is_active.is_(True), PricingUnit.stock.is_not(None))
    )).all()

    return {
        "totalProducts": total_products,
        "totalStockItems": len(tracked),
        "totalStockValue": money(sum(price * stock for price, stock in tracked)),
        "outOfStockItems": sum(1 for _, stock in tracked if stock == 0),
    }
