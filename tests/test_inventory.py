import pytest
from sqlalchemy import func, select
from helpers import auth_headers, create_product, create_seller, create_user, get_row, url_prefix
from marketplace.common.custom_exceptions import InvalidStock
from marketplace.inventory.services import adjust_stock, set_stock
from marketplace.schema.full_schema import Notification, NotificationType, PricingUnit, StockChange, StockChangeType


@pytest.mark.asyncio
async def test_seller_sets_stock_and_sees_history(ac_client, session_factory):
    seller, shop = await create_seller(session_factory, "inv@shops.ng")
    _, (bag,) = await create_product(session_factory, shop, units=[("bag", 1000.0, 10)])
    headers = auth_headers(seller)

    resp = await ac_client.post(f"{url_prefix}/seller/inventory",
                                json={"pricingUnitId": str(bag.public_id), "stock": 25, "lowStockThreshold": 5},
                                headers=headers)
    assert resp.status_code == 200, resp.text
    unit = resp.json()["data"]["pricingUnit"]
    assert unit["stock"] == 25
    assert unit["lowStockThreshold"] == 5

    resp = await ac_client.post(f"{url_prefix}/seller/inventory",
                                json={"pricingUnitId": str(bag.public_id), "stock": 20, "reason": "Spoilage"},
                                headers=headers)
    assert resp.status_code == 200

    history = await ac_client.get(f"{url_prefix}/seller/inventory/{bag.public_id}/history", headers=headers)
    assert history.status_code == 200
    entries = history.json()["data"]["history"]
    assert [e["changeType"] for e in entries] == ["MANUAL_UPDATE", "RESTOCKED"]
    assert entries[0]["delta"] == -5
    assert entries[0]["reason"] == "Spoilage"
    assert (entries[1]["previousStock"], entries[1]["newStock"]) == (10, 25)


@pytest.mark.asyncio
@pytest.mark.parametrize("stock", [-1, 2.5, "ten", None, True])
async def test_stock_must_be_non_negative_integer(ac_client, session_factory, stock):
    seller, shop = await create_seller(session_factory, "bad@shops.ng")
    _, (bag,) = await create_product(session_factory, shop)

    resp = await ac_client.post(f"{url_prefix}/seller/inventory",
                                json={"pricingUnitId": str(bag.public_id), "stock": stock},
                                headers=auth_headers(seller))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Stock must be a non-negative integer"


@pytest.mark.asyncio
async def test_seller_cannot_touch_another_shops_stock(ac_client, session_factory):
    seller, _ = await create_seller(session_factory, "one@shops.ng")
    _, other_shop = await create_seller(session_factory, "two@shops.ng")
    _, (bag,) = await create_product(session_factory, other_shop)

    resp = await ac_client.post(f"{url_prefix}/seller/inventory", json={"pricingUnitId": str(bag.public_id), "stock": 1},
                                headers=auth_headers(seller))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_inventory_requires_approved_seller(ac_client, session_factory):
    buyer = await create_user(session_factory, "buyer@example.com")
    resp = await ac_client.get(f"{url_prefix}/seller/inventory", headers=auth_headers(buyer))
    assert resp.status_code == 403
    assert resp.json()["error"] == "Approved seller access required"


@pytest.mark.asyncio
async def test_inventory_overview_counts_low_stock(ac_client, session_factory):
    seller, shop = await create_seller(session_factory, "overview@shops.ng")
    await create_product(session_factory, shop, "Rice", units=[("bag", 1000.0, 2), ("mudu", 100.0, 0)])
    await create_product(session_factory, shop, "Salt", units=[("pack", 50.0, None)])
    async with session_factory() as session:
        for unit in (await session.execute(select(PricingUnit))).scalars():
            unit.low_stock_threshold = 3
        await session.commit()

    resp = await ac_client.get(f"{url_prefix}/seller/inventory", headers=auth_headers(seller))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["overview"]["totalProducts"] == 2
    assert data["overview"]["totalStockItems"] == 2
    assert data["overview"]["totalStockValue"] == 2000.0
    assert data["overview"]["outOfStockItems"] == 1
    assert data["overview"]["lowStockCount"] == 2
    assert [i["unit"] for i in data["lowStockItems"]] == ["mudu", "bag"]


@pytest.mark.asyncio
async def test_adjust_stock_refuses_to_go_negative(session_factory):
    _, shop = await create_seller(session_factory, "neg@shops.ng")
    _, (bag,) = await create_product(session_factory, shop, units=[("bag", 1000.0, 2)])

    async with session_factory() as session:
        with pytest.raises(InvalidStock) as exc:
            await adjust_stock(session, bag.id, -3, StockChangeType.ORDER_PLACED, label="Rice")
        assert exc.value.detail == "Insufficient stock for Rice. Available: 2 bag"
        await session.rollback()

    assert (await get_row(session_factory, PricingUnit, id=bag.id)).stock == 2


@pytest.mark.asyncio
async def test_untracked_unit_is_left_alone(session_factory):
    _, shop = await create_seller(session_factory, "free@shops.ng")
    _, (pack,) = await create_product(session_factory, shop, units=[("pack", 50.0, None)])

    async with session_factory() as session:
        assert await adjust_stock(session, pack.id, -100, StockChangeType.ORDER_PLACED) is None
        count = (await session.execute(select(func.count(StockChange.id)))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_set_stock_starts_tracking_untracked_unit(session_factory):
    _, shop = await create_seller(session_factory, "track@shops.ng")
    _, (pack,) = await create_product(session_factory, shop, units=[("pack", 50.0, None)])

    async with session_factory() as session:
        assert await set_stock(session, pack.id, 7) == 7
        await session.commit()

    change = await get_row(session_factory, StockChange, pricing_unit_id=pack.id)
    assert (change.previous_stock, change.delta, change.new_stock) == (0, 7, 7)
    assert change.change_type == StockChangeType.RESTOCKED


@pytest.mark.asyncio
async def test_low_stock_alert_is_sent_once_per_interval(session_factory):
    seller, shop = await create_seller(session_factory, "alert@shops.ng")
    _, (bag,) = await create_product(session_factory, shop, units=[("bag", 1000.0, 10)])
    async with session_factory() as session:
        unit = await session.get(PricingUnit, bag.id)
        unit.low_stock_threshold = 5
        await session.commit()

    async with session_factory() as session:
        await adjust_stock(session, bag.id, -6, StockChangeType.ORDER_PLACED)
        await adjust_stock(session, bag.id, -1, StockChangeType.ORDER_PLACED)
        await session.commit()

    async with session_factory() as session:
        alerts = (await session.execute(
            select(Notification).where(Notification.user_id == seller.id,
                                       Notification.type == NotificationType.LOW_STOCK_ALERT)
        )).scalars().all()
    assert len(alerts) == 1
    assert "Current stock: 4, Threshold: 5" in alerts[0].message
