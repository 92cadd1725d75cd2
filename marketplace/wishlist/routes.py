from typing import Any, Dict
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import success_response
from marketplace.db.dependencies import get_session
from marketplace.user.dependencies import Principal, get_principal
from marketplace.wishlist.services import add_to_wishlist, in_wishlist, list_wishlist, remove_from_wishlist

wishlist_router = APIRouter()


@wishlist_router.get("")
async def get_wishlist(principal: Principal = Depends(get_principal), session: AsyncSession = Depends(get_session)):
    return success_response({"items": await list_wishlist(session, principal.user_id)})


@wishlist_router.post("")
async def post_wishlist(payload: Dict[str, Any], principal: Principal = Depends(get_principal),
                        session: AsyncSession = Depends(get_session)):

    product_pid = payload.get("productId")
    if not product_pid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product ID is required")
    product = await add_to_wishlist(session, principal.user_id, product_pid)
    await session.commit()
    return success_response({"message": "Product added to wishlist", "productId": str(product.public_id)},
                            status_code=status.HTTP_201_CREATED)


@wishlist_router.get("/check/{product_id}")
async def check_wishlist(product_id: str, principal: Principal = Depends(get_principal),
                         session: AsyncSession = Depends(get_session)):
    return success_response({"isInWishlist": await in_wishlist(session, principal.user_id, product_id)})


@wishlist_router.delete("/{product_id}")
async def delete_wishlist(product_id: str, principal: Principal = Depends(get_principal),
                          session: AsyncSession = Depends(get_session)):

    await remove_from_wishlist(session, principal.user_id, product_id)
    await session.commit()
    return success_response({"message": "Product removed from wishlist"})
