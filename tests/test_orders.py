import pytest
from sqlalchemy import func, select
from helpers import (IKEJA, LAGOS, auth_headers, create_product, create_seller, create_user, get_row, order_payload,
                     order_rows, place_order, set_order_state, url_prefix)
from marketplace.schema.full_schema import Notification, NotificationType, Orders, PricingUnit, StockChange, StockChangeType
from marketplace.schema.lifecycle import DeliveryStatus, EscrowStatus, OrderStatus, PaymentStatus


@pytest.mark.asyncio
async def test_order_per_shop_with_payment_and_delivery(ac_client, session_factory):
    seller_a, shop_a = await create_seller(session_factory, "a@shops.ng")
    seller_b, shop_b = await create_seller(session_factory, "b@shops.ng", location=IKEJA)
    rice, (bag,) = await create_product(session_factory, shop_a, "Rice", units=[("bag", 1000.0, 10)])
    yam, (tuber,) = await create_product(session_factory, shop_b, "Yam", units=[("tuber", 250.0, None)])
    buyer = await create_user(session_factory, "buyer@example.com")

    payload = order_payload([(rice, bag, 2), (yam, tuber, 4)], latitude=LAGOS[0], longitude=LAGOS[1])
    resp = await ac_client.post(f"{url_prefix}/orders", json=payload, headers=auth_headers(buyer))
    assert resp.status_code == 201, resp.text
    orders = resp.json()["data"]["orders"]
    assert len(orders) == 2

    first = orders[0]
    assert first["status"] == "PENDING"
    assert first["subtotal"] == 2000.0
    assert first["deliveryFee"] == 500.0           # same spot as the shop
    assert first["total"] == round(first["subtotal"] + first["platformFee"] + first["deliveryFee"], 2)
    assert first["payment"]["status"] == "PENDING"
    assert first["payment"]["escrowStatus"] == "HELD"
    assert first["payment"]["reference"] == first["orderNumber"]
    assert first["delivery"]["status"] == "PENDING"

    unit = await get_row(session_factory, PricingUnit, id=bag.id)
    assert unit.stock == 8
    ledger = await get_row(session_factory, StockChange, pricing_unit_id=bag.id)
    assert ledger.change_type == StockChangeType.ORDER_PLACED
    assert (ledger.previous_stock, ledger.delta, ledger.new_stock) == (10, -2, 8)

    # untracked units are sold without a ledger entry
    untracked = await get_row(session_factory, PricingUnit, id=tuber.id)
    assert untracked.stock is None

    note = await get_row(session_factory, Notification, user_id=seller_b.id)
    assert note.type == NotificationType.ORDER_PLACED


@pytest.mark.asyncio
async def test_order_without_coordinates_uses_default_fee(ac_client, session_factory):
    _, shop = await create_seller(session_factory, "fee@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop)
    buyer = await create_user(session_factory, "buyer@example.com")

    order = await place_order(ac_client, buyer, [(rice, bag, 1)])
    assert order["deliveryFee"] == 500.0


@pytest.mark.asyncio
async def test_order_requires_delivery_information(ac_client, session_factory):
    _, shop = await create_seller(session_factory, "info@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop)
    buyer = await create_user(session_factory, "buyer@example.com")

    payload = order_payload([(rice, bag, 1)])
    payload["deliveryAddress"] = "  "
    resp = await ac_client.post(f"{url_prefix}/orders", json=payload, headers=auth_headers(buyer))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Delivery information is required"


@pytest.mark.asyncio
async def test_insufficient_stock_rejects_whole_order(ac_client, session_factory):
    _, shop = await create_seller(session_factory, "stock@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop, units=[("bag", 1000.0, 3)])
    beans, (mudu,) = await create_product(session_factory, shop, "Beans", units=[("mudu", 300.0, 50)])
    buyer = await create_user(session_factory, "buyer@example.com")

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload([(beans, mudu, 5), (rice, bag, 4)]),
                                headers=auth_headers(buyer))
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "INVALID_STOCK"
    assert body["error"].startswith("Insufficient stock for Rice")

    assert (await get_row(session_factory, PricingUnit, id=bag.id)).stock == 3
    assert (await get_row(session_factory, PricingUnit, id=mudu.id)).stock == 50
    async with session_factory() as session:
        assert (await session.execute(select(func.count(Orders.id)))).scalar_one() == 0


@pytest.mark.asyncio
async def test_unavailable_product_is_rejected(ac_client, session_factory):
    _, shop = await create_seller(session_factory, "gone@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop)
    buyer = await create_user(session_factory, "buyer@example.com")

    async with session_factory() as session:
        unit = await session.get(PricingUnit, bag.id)
        unit.is_active = False
        await session.commit()

    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload([(rice, bag, 1)]), headers=auth_headers(buyer))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Product is not available: Rice"


@pytest.mark.asyncio
async def test_bulk_update_skips_orders_that_cannot_move(ac_client, session_factory):
    seller, shop = await create_seller(session_factory, "bulk@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop, units=[("bag", 1000.0, None)])
    buyer = await create_user(session_factory, "buyer@example.com")

    pending = await place_order(ac_client, buyer, [(rice, bag, 1)])
    paid = await place_order(ac_client, buyer, [(rice, bag, 1)])
    preparing = await place_order(ac_client, buyer, [(rice, bag, 1)])
    await set_order_state(session_factory, paid["id"], order_status=OrderStatus.PAID)
    await set_order_state(session_factory, preparing["id"], order_status=OrderStatus.PREPARING)

    resp = await ac_client.patch(f"{url_prefix}/seller/orders",
                                 json={"orderIds": [pending["id"], paid["id"], preparing["id"]], "status": "PREPARING"},
                                 headers=auth_headers(seller))
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["updatedCount"] == 2
    assert data["totalRequested"] == 3
    assert data["skipped"] == 1

    for order in (pending, paid, preparing):
        row, _, _ = await order_rows(session_factory, order["id"])
        assert row.status == OrderStatus.PREPARING


@pytest.mark.asyncio
async def test_bulk_update_rejects_foreign_orders(ac_client, session_factory):
    seller, shop = await create_seller(session_factory, "mine@shops.ng")
    _, other_shop = await create_seller(session_factory, "theirs@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop, units=[("bag", 1000.0, None)])
    yam, (tuber,) = await create_product(session_factory, other_shop, "Yam", units=[("tuber", 200.0, None)])
    buyer = await create_user(session_factory, "buyer@example.com")

    mine = await place_order(ac_client, buyer, [(rice, bag, 1)])
    theirs = await place_order(ac_client, buyer, [(yam, tuber, 1)])

    resp = await ac_client.patch(f"{url_prefix}/seller/orders",
                                 json={"orderIds": [mine["id"], theirs["id"]], "status": "PREPARING"},
                                 headers=auth_headers(seller))
    assert resp.status_code == 403
    assert resp.json()["error"] == "Some orders not found or unauthorized"
    row, _, _ = await order_rows(session_factory, mine["id"])
    assert row.status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_seller_cannot_skip_states(ac_client, session_factory):
    seller, shop = await create_seller(session_factory, "skip@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop)
    buyer = await create_user(session_factory, "buyer@example.com")
    order = await place_order(ac_client, buyer, [(rice, bag, 1)])

    resp = await ac_client.patch(f"{url_prefix}/seller/orders/{order['id']}", json={"status": "DELIVERED"},
                                 headers=auth_headers(seller))
    assert resp.status_code == 400
    assert resp.json()["code"] == "ILLEGAL_TRANSITION"


@pytest.mark.asyncio
async def test_buyer_cancel_restores_stock(ac_client, session_factory):
    seller, shop = await create_seller(session_factory, "cancel@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop, units=[("bag", 1000.0, 5)])
    buyer = await create_user(session_factory, "buyer@example.com")
    order = await place_order(ac_client, buyer, [(rice, bag, 2)])

    resp = await ac_client.post(f"{url_prefix}/orders/{order['id']}/cancel", json={"reason": "Changed my mind"},
                                headers=auth_headers(buyer))
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["order"]["status"] == "CANCELLED"
    assert data["refund"] == {"initiated": False}

    assert (await get_row(session_factory, PricingUnit, id=bag.id)).stock == 5
    row, payment, delivery = await order_rows(session_factory, order["id"])
    assert row.cancellation_reason == "Changed my mind"
    assert payment.status == PaymentStatus.PENDING
    assert delivery.status == DeliveryStatus.FAILED

    again = await ac_client.post(f"{url_prefix}/orders/{order['id']}/cancel", headers=auth_headers(buyer))
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_cancelling_paid_order_refunds(ac_client, session_factory, paystack):
    seller, shop = await create_seller(session_factory, "refund@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop)
    buyer = await create_user(session_factory, "buyer@example.com")
    order = await place_order(ac_client, buyer, [(rice, bag, 1)])
    await set_order_state(session_factory, order["id"], order_status=OrderStatus.PAID,
                          payment_status=PaymentStatus.COMPLETED)

    resp = await ac_client.post(f"{url_prefix}/orders/{order['id']}/cancel", json={}, headers=auth_headers(buyer))
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["refund"]["initiated"] is True
    assert "/refund" in paystack.paths()

    _, payment, _ = await order_rows(session_factory, order["id"])
    assert payment.status == PaymentStatus.REFUNDED
    assert payment.escrow_status == EscrowStatus.REFUNDED


@pytest.mark.asyncio
async def test_order_visible_only_to_parties(ac_client, session_factory):
    seller, shop = await create_seller(session_factory, "read@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop)
    buyer = await create_user(session_factory, "buyer@example.com")
    stranger = await create_user(session_factory, "stranger@example.com")
    order = await place_order(ac_client, buyer, [(rice, bag, 1)])

    assert (await ac_client.get(f"{url_prefix}/orders/{order['id']}", headers=auth_headers(buyer))).status_code == 200
    assert (await ac_client.get(f"{url_prefix}/orders/{order['id']}", headers=auth_headers(seller))).status_code == 200
    assert (await ac_client.get(f"{url_prefix}/orders/{order['id']}", headers=auth_headers(stranger))).status_code == 403
    assert (await ac_client.get(f"{url_prefix}/orders/not-a-uuid", headers=auth_headers(buyer))).status_code == 404
    assert (await ac_client.get(f"{url_prefix}/orders/{order['id']}")).status_code == 401
