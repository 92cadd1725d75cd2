from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import page_params, success_response, to_float
from marketplace.db.dependencies import get_session
from marketplace.products.utils import parse_category
from marketplace.shops.constants import logger
from marketplace.shops.models import SellerApplyIn, ShopUpdateIn
from marketplace.shops.repository import list_visible_shops, seller_shop, shop_out, shop_products, update_shop, visible_shop_by_pid
from marketplace.shops.services import apply_for_seller
from marketplace.user.dependencies import Principal, get_principal, require_seller
from marketplace.user.repository import user_by_id

shops_public_router = APIRouter()
seller_shop_router = APIRouter()


async def _list(session, search, city, state, minRating, page, limit):
    page_no, size, offset = page_params(page, limit)
    return await list_visible_shops(
        session, search=(search or "").strip() or None, city=(city or "").strip() or None,
        state=(state or "").strip() or None, min_rating=to_float(minRating),
        page=page_no, limit=size, offset=offset,
    )


@shops_public_router.get("")
async def get_shops(search: Optional[str] = None, city: Optional[str] = None, state: Optional[str] = None,
                    minRating: Optional[str] = None, page: Optional[str] = None, limit: Optional[str] = None,
                    session: AsyncSession = Depends(get_session)):
    res = await _list(session, search, city, state, minRating, page, limit)
    return success_response(res)


@shops_public_router.get("/search")
async def search_shops(search: Optional[str] = None, city: Optional[str] = None, state: Optional[str] = None,
                       minRating: Optional[str] = None, page: Optional[str] = None, limit: Optional[str] = None,
                       session: AsyncSession = Depends(get_session)):
    res = await _list(session, search, city, state, minRating, page, limit)
    return success_response(res)


@shops_public_router.get("/{shop_id}")
async def get_shop(shop_id: str, category: Optional[str] = None, search: Optional[str] = None,
                   session: AsyncSession = Depends(get_session)):

    shop = await visible_shop_by_pid(session, shop_id)
    products = await shop_products(session, shop.id, category=parse_category(category, default=None),
                                   search=(search or "").strip() or None)
    owner = await user_by_id(session, shop.user_id)

    data = shop_out(shop, product_count=len(products))
    data["owner"] = {"name": owner.name} if owner else None
    return success_response({"shop": data, "products": products})


@seller_shop_router.post("/apply")
async def seller_apply(payload: SellerApplyIn, principal: Principal = Depends(get_principal),
                       session: AsyncSession = Depends(get_session)):

    res = await apply_for_seller(session, principal, payload)
    await session.commit()
    return success_response(res, status_code=status.HTTP_201_CREATED)


@seller_shop_router.get("/shop")
async def get_my_shop(principal: Principal = Depends(require_seller), session: AsyncSession = Depends(get_session)):
    shop = await seller_shop(session, principal.user_id)
    return success_response({"shop": shop_out(shop)})


@seller_shop_router.patch("/shop")
async def patch_my_shop(payload: ShopUpdateIn, principal: Principal = Depends(require_seller),
                        session: AsyncSession = Depends(get_session)):

    shop = await seller_shop(session, principal.user_id)
    shop = await update_shop(session, shop, payload.model_dump(exclude_unset=True))
    await session.commit()

    logger.info("shop.update.success", extra={"shop_id": shop.id, "user_id": principal.user_id})
    return success_response({"shop": shop_out(shop)})
