from typing import Optional
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import now, page_params, success_response, to_float
from marketplace.db.dependencies import get_session
from marketplace.products.constants import CSV_MAX_BYTES, logger
from marketplace.products.models import ProductCreateIn, ProductUpdateIn
from marketplace.products.repository import (active_units_for_export, list_shop_products, owned_product, product_out,
                                             search_visible_products, units_by_product, visible_product_detail)
from marketplace.products.services import create_product, export_products_csv, import_products_csv, retire_product, update_product
from marketplace.products.utils import parse_category, parse_sort
from marketplace.shops.repository import seller_shop
from marketplace.user.dependencies import Principal, require_seller

prods_public_router = APIRouter()
prods_seller_router = APIRouter()


async def _search(session, search, category, shopId, minPrice, maxPrice, minRating, sortBy, page, limit):
    page_no, size, offset = page_params(page, limit)
    return await search_visible_products(
        session,
        search=(search or "").strip() or None,
        category=parse_category(category, default=None),
        shop_pid=shopId or None,
        min_price=to_float(minPrice),
        max_price=to_float(maxPrice),
        min_rating=to_float(minRating),
        sort=parse_sort(sortBy),
        page=page_no, limit=size, offset=offset,
    )


@prods_public_router.get("")
async def get_products(search: Optional[str] = None, category: Optional[str] = None, shopId: Optional[str] = None,
                       minPrice: Optional[str] = None, maxPrice: Optional[str] = None, minRating: Optional[str] = None,
                       sortBy: Optional[str] = None, page: Optional[str] = None, limit: Optional[str] = None,
                       session: AsyncSession = Depends(get_session)):
    res = await _search(session, search, category, shopId, minPrice, maxPrice, minRating, sortBy, page, limit)
    return success_response(res)


@prods_public_router.get("/search")
async def search_products(search: Optional[str] = None, category: Optional[str] = None, shopId: Optional[str] = None,
                          minPrice: Optional[str] = None, maxPrice: Optional[str] = None, minRating: Optional[str] = None,
                          sortBy: Optional[str] = None, page: Optional[str] = None, limit: Optional[str] = None,
                          session: AsyncSession = Depends(get_session)):
    res = await _search(session, search, category, shopId, minPrice, maxPrice, minRating, sortBy, page, limit)
    return success_response(res)


@prods_public_router.get("/{product_id}")
async def get_product(product_id: str, session: AsyncSession = Depends(get_session)):
    product = await visible_product_detail(session, product_id)
    return success_response({"product": product})


# seller

@prods_seller_router.get("")
async def get_seller_products(principal: Principal = Depends(require_seller), session: AsyncSession = Depends(get_session)):
    shop = await seller_shop(session, principal.user_id)
    products = await list_shop_products(session, shop.id)
    return success_response({"products": products})


@prods_seller_router.post("")
async def create_seller_product(payload: ProductCreateIn, principal: Principal = Depends(require_seller),
                                session: AsyncSession = Depends(get_session)):

    logger.info("product.create.attempt", extra={"user_id": principal.user_id})
    shop = await seller_shop(session, principal.user_id)
    product = await create_product(session, shop, payload)
    await session.commit()

    units = await units_by_product(session, [product.id], active_only=False)
    return success_response({"message": "Product created", "product": product_out(product, units.get(product.id, []))},
                            status_code=status.HTTP_201_CREATED)


@prods_seller_router.get("/export")
async def export_seller_products(principal: Principal = Depends(require_seller), session: AsyncSession = Depends(get_session)):
    shop = await seller_shop(session, principal.user_id)
    rows = await active_units_for_export(session, shop.id)
    body = export_products_csv(rows)
    filename = f"products-{now().date().isoformat()}.csv"

    logger.info("product.export.done", extra={"shop_id": shop.id, "rows": len(rows)})
    return Response(content=body, media_type="text/csv",
                    headers={"Content-Disposition": f'attachment; filename="{filename}"'})


@prods_seller_router.post("/import")
async def import_seller_products(file: Optional[UploadFile] = File(None), principal: Principal = Depends(require_seller),
                                 session: AsyncSession = Depends(get_session)):
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CSV file is required")

    raw = await file.read(CSV_MAX_BYTES + 1)
    if len(raw) > CSV_MAX_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CSV file is too large")
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CSV file must be UTF-8 encoded")

    shop = await seller_shop(session, principal.user_id)
    res = await import_products_csv(session, shop, text)
    await session.commit()
    return success_response(res)


@prods_seller_router.get("/{product_id}")
async def get_seller_product(product_id: str, principal: Principal = Depends(require_seller),
                             session: AsyncSession = Depends(get_session)):
    shop = await seller_shop(session, principal.user_id)
    product = await owned_product(session, product_id, shop)
    units = await units_by_product(session, [product.id], active_only=False)
    return success_response({"product": product_out(product, units.get(product.id, []))})


@prods_seller_router.patch("/{product_id}")
async def patch_seller_product(product_id: str, payload: ProductUpdateIn, principal: Principal = Depends(require_seller),
                               session: AsyncSession = Depends(get_session)):
    shop = await seller_shop(session, principal.user_id)
    product = await owned_product(session, product_id, shop)
    product = await update_product(session, product, payload)
    await session.commit()

    units = await units_by_product(session, [product.id], active_only=False)
    return success_response({"product": product_out(product, units.get(product.id, []))})


@prods_seller_router.delete("/{product_id}")
async def delete_seller_product(product_id: str, principal: Principal = Depends(require_seller),
                                session: AsyncSession = Depends(get_session)):
    shop = await seller_shop(session, principal.user_id)
    product = await owned_product(session, product_id, shop)
    await retire_product(session, product)
    await session.commit()
    return success_response({"message": "Product deleted successfully"})
