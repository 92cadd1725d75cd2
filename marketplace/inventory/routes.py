from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import success_response, to_int
from marketplace.db.dependencies import get_session
from marketplace.inventory.constants import STOCK_HISTORY_LIMIT, logger
from marketplace.inventory.repository import inventory_overview, owned_pricing_unit
from marketplace.inventory.services import get_low_stock_items, get_stock_history, set_stock
from marketplace.products.repository import unit_out
from marketplace.shops.repository import seller_shop
from marketplace.user.dependencies import Principal, require_seller

inventory_router = APIRouter()


def _non_negative_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value or value < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{label} must be a non-negative integer")
    return int(value)


@inventory_router.get("")
async def get_inventory(principal: Principal = Depends(require_seller), session: AsyncSession = Depends(get_session)):
    shop = await seller_shop(session, principal.user_id)
    low_stock = await get_low_stock_items(session, principal.user_id)
    overview = await inventory_overview(session, shop)
    overview["lowStockCount"] = len(low_stock)
    return success_response({"lowStockItems": low_stock, "overview": overview})


@inventory_router.post("")
async def update_inventory(payload: Dict[str, Any], principal: Principal = Depends(require_seller),
                           session: AsyncSession = Depends(get_session)):

    pricing_unit_pid = payload.get("pricingUnitId")
    if not pricing_unit_pid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Pricing unit ID is required")
    stock = _non_negative_int(payload.get("stock"), "Stock")
    threshold = payload.get("lowStockThreshold")
    if threshold is not None:
        threshold = _non_negative_int(threshold, "Low stock threshold")

    shop = await seller_shop(session, principal.user_id)
    unit = await owned_pricing_unit(session, pricing_unit_pid, shop)

    if "lowStockThreshold" in payload:
        unit.low_stock_threshold = threshold
        session.add(unit)
        await session.flush()

    previous = unit.stock
    new_stock = await set_stock(session, unit.id, stock, reason=payload.get("reason") or "Manual stock update")
    await session.commit()

    logger.info("inventory.update.success", extra={"pricing_unit_id": unit.id, "previous": previous, "new": new_stock})
    return success_response({"message": "Stock updated successfully", "pricingUnit": unit_out(unit)})


@inventory_router.get("/{pricing_unit_id}/history")
async def get_inventory_history(pricing_unit_id: str, limit: Optional[str] = None,
                                principal: Principal = Depends(require_seller),
                                session: AsyncSession = Depends(get_session)):
    shop = await seller_shop(session, principal.user_id)
    unit = await owned_pricing_unit(session, pricing_unit_id, shop)
    size = min(200, max(1, to_int(limit, STOCK_HISTORY_LIMIT)))
    history = await get_stock_history(session, unit.id, size)
    return success_response({"pricingUnit": unit_out(unit), "history": history})
