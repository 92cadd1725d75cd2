import pytest
from helpers import auth_headers, create_product, create_seller, create_user, url_prefix
from marketplace.schema.full_schema import Product


@pytest.mark.asyncio
async def test_add_check_list_remove(ac_client, session_factory):
    _, shop = await create_seller(session_factory, "wish@shops.ng")
    rice, _ = await create_product(session_factory, shop)
    buyer = await create_user(session_factory, "buyer@example.com")
    headers = auth_headers(buyer)
    pid = str(rice.public_id)

    added = await ac_client.post(f"{url_prefix}/wishlist", json={"productId": pid}, headers=headers)
    assert added.status_code == 201, added.text

    dup = await ac_client.post(f"{url_prefix}/wishlist", json={"productId": pid}, headers=headers)
    assert dup.status_code == 400
    assert dup.json()["error"] == "Product already in wishlist"

    check = await ac_client.get(f"{url_prefix}/wishlist/check/{pid}", headers=headers)
    assert check.json()["data"] == {"isInWishlist": True}

    items = (await ac_client.get(f"{url_prefix}/wishlist", headers=headers)).json()["data"]["items"]
    assert [i["product"]["id"] for i in items] == [pid]

    removed = await ac_client.delete(f"{url_prefix}/wishlist/{pid}", headers=headers)
    assert removed.status_code == 200
    gone = await ac_client.delete(f"{url_prefix}/wishlist/{pid}", headers=headers)
    assert gone.status_code == 404
    assert gone.json()["error"] == "Product not found in wishlist"

    check = await ac_client.get(f"{url_prefix}/wishlist/check/{pid}", headers=headers)
    assert check.json()["data"] == {"isInWishlist": False}


@pytest.mark.asyncio
async def test_unavailable_product_cannot_be_wishlisted(ac_client, session_factory):
    _, shop = await create_seller(session_factory, "hidden@shops.ng")
    rice, _ = await create_product(session_factory, shop)
    async with session_factory() as session:
        product = await session.get(Product, rice.id)
        product.is_available = False
        await session.commit()
    buyer = await create_user(session_factory, "buyer@example.com")

    resp = await ac_client.post(f"{url_prefix}/wishlist", json={"productId": str(rice.public_id)},
                                headers=auth_headers(buyer))
    assert resp.status_code == 404

    missing = await ac_client.post(f"{url_prefix}/wishlist", json={}, headers=auth_headers(buyer))
    assert missing.status_code == 400
