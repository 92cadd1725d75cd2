import pytest
from helpers import (auth_headers, create_admin, create_product, create_seller, create_user, get_row, order_rows,
                     place_order, set_order_state, url_prefix)
from marketplace.schema.full_schema import Dispute, DisputeStatus, Notification, NotificationType, PricingUnit
from marketplace.schema.lifecycle import EscrowStatus, OrderStatus, PaymentStatus


async def _paid(ac_client, session_factory, order_status=OrderStatus.PAID):
    seller, shop = await create_seller(session_factory, "dispute@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop, units=[("bag", 10000.0, 5)])
    buyer = await create_user(session_factory, "buyer@example.com")
    order = await place_order(ac_client, buyer, [(rice, bag, 2)])
    await set_order_state(session_factory, order["id"], order_status=order_status,
                          payment_status=PaymentStatus.COMPLETED)
    return seller, buyer, order, bag


async def _open(ac_client, buyer, order):
    resp = await ac_client.post(f"{url_prefix}/disputes", json={"orderId": order["id"], "reason": "Rice was wet"},
                                headers=auth_headers(buyer))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["dispute"]


@pytest.mark.asyncio
async def test_open_dispute_freezes_escrow(ac_client, session_factory):
    seller, buyer, order, _ = await _paid(ac_client, session_factory)

    dispute = await _open(ac_client, buyer, order)
    assert dispute["status"] == "OPEN"
    assert dispute["order"]["orderNumber"] == order["orderNumber"]

    row, payment, _ = await order_rows(session_factory, order["id"])
    assert row.status == OrderStatus.DISPUTED
    assert payment.escrow_status == EscrowStatus.DISPUTED
    for user in (buyer, seller):
        assert await get_row(session_factory, Notification, user_id=user.id, type=NotificationType.DISPUTE_CREATED)

    dup = await ac_client.post(f"{url_prefix}/disputes", json={"orderId": order["id"], "reason": "Again"},
                               headers=auth_headers(buyer))
    assert dup.status_code == 400
    assert dup.json()["error"] == "Dispute already exists for this order"


@pytest.mark.asyncio
async def test_dispute_rules(ac_client, session_factory):
    _, shop = await create_seller(session_factory, "unpaid@shops.ng")
    rice, (bag,) = await create_product(session_factory, shop)
    buyer = await create_user(session_factory, "buyer@example.com")
    stranger = await create_user(session_factory, "stranger@example.com")
    order = await place_order(ac_client, buyer, [(rice, bag, 1)])
    payload = {"orderId": order["id"], "reason": "Late"}

    unpaid = await ac_client.post(f"{url_prefix}/disputes", json=payload, headers=auth_headers(buyer))
    assert unpaid.status_code == 400
    assert unpaid.json()["error"] == "Cannot dispute unpaid orders"

    foreign = await ac_client.post(f"{url_prefix}/disputes", json=payload, headers=auth_headers(stranger))
    assert foreign.status_code == 403

    await set_order_state(session_factory, order["id"], order_status=OrderStatus.CANCELLED)
    cancelled = await ac_client.post(f"{url_prefix}/disputes", json=payload, headers=auth_headers(buyer))
    assert cancelled.status_code == 400
    assert cancelled.json()["code"] == "ILLEGAL_TRANSITION"

    blank = await ac_client.post(f"{url_prefix}/disputes", json={"orderId": order["id"], "reason": "   "},
                                 headers=auth_headers(buyer))
    assert blank.status_code == 400


@pytest.mark.asyncio
async def test_parties_see_and_annotate_dispute(ac_client, session_factory):
    seller, buyer, order, _ = await _paid(ac_client, session_factory)
    stranger = await create_user(session_factory, "stranger@example.com")
    dispute = await _open(ac_client, buyer, order)
    path = f"{url_prefix}/disputes/{dispute['id']}"

    mine = await ac_client.get(f"{url_prefix}/disputes", params={"role": "seller"}, headers=auth_headers(seller))
    assert [d["id"] for d in mine.json()["data"]["disputes"]] == [dispute["id"]]
    assert (await ac_client.get(path, headers=auth_headers(stranger))).status_code == 403

    noted = await ac_client.patch(path, json={"sellerNotes": "It was dry at pickup"}, headers=auth_headers(seller))
    assert noted.status_code == 200
    assert noted.json()["data"]["dispute"]["sellerNotes"] == "It was dry at pickup"

    # a seller cannot write the buyer's notes or move the status
    nothing = await ac_client.patch(path, json={"buyerNotes": "x", "status": "IN_REVIEW"}, headers=auth_headers(seller))
    assert nothing.status_code == 400
    assert nothing.json()["error"] == "No valid updates provided"

    admin = await create_admin(session_factory)
    review = await ac_client.patch(path, json={"status": "in_review"}, headers=auth_headers(admin))
    assert review.json()["data"]["dispute"]["status"] == "IN_REVIEW"

    filtered = await ac_client.get(f"{url_prefix}/admin/disputes", params={"status": "IN_REVIEW"},
                                   headers=auth_headers(admin))
    assert len(filtered.json()["data"]["disputes"]) == 1
    bad = await ac_client.get(f"{url_prefix}/admin/disputes", params={"status": "LOST"}, headers=auth_headers(admin))
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_seller_wins_releases_escrow(ac_client, session_factory):
    seller, buyer, order, _ = await _paid(ac_client, session_factory, order_status=OrderStatus.DELIVERED)
    admin = await create_admin(session_factory)
    dispute = await _open(ac_client, buyer, order)

    resp = await ac_client.post(f"{url_prefix}/admin/disputes/{dispute['id']}/resolve",
                                json={"resolution": "SELLER_WINS", "adminNotes": "Photos show dry rice"},
                                headers=auth_headers(admin))
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["orderStatus"] == "DELIVERED"
    assert data["sellerAmount"] == round(order["total"] - order["platformFee"], 2)

    _, payment, _ = await order_rows(session_factory, order["id"])
    assert payment.status == PaymentStatus.RELEASED
    assert payment.escrow_status == EscrowStatus.RELEASED
    row = await get_row(session_factory, Dispute, order_id=payment.order_id)
    assert row.status == DisputeStatus.RESOLVED
    assert row.resolved_at is not None
    assert await get_row(session_factory, Notification, user_id=seller.id, type=NotificationType.DISPUTE_RESOLVED)

    again = await ac_client.post(f"{url_prefix}/admin/disputes/{dispute['id']}/resolve",
                                 json={"resolution": "BUYER_WINS"}, headers=auth_headers(admin))
    assert again.status_code == 400
    assert again.json()["error"] == "Dispute already resolved or closed"


@pytest.mark.asyncio
async def test_buyer_wins_refunds_and_restocks(ac_client, session_factory, paystack):
    _, buyer, order, bag = await _paid(ac_client, session_factory)
    admin = await create_admin(session_factory)
    dispute = await _open(ac_client, buyer, order)
    assert (await get_row(session_factory, PricingUnit, id=bag.id)).stock == 3

    resp = await ac_client.post(f"{url_prefix}/admin/disputes/{dispute['id']}/resolve",
                                json={"resolution": "buyer_wins"}, headers=auth_headers(admin))
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["orderStatus"] == "CANCELLED"
    assert data["refund"]["initiated"] is True
    assert "/refund" in paystack.paths()

    _, payment, _ = await order_rows(session_factory, order["id"])
    assert payment.status == PaymentStatus.REFUNDED
    assert payment.escrow_status == EscrowStatus.REFUNDED
    assert (await get_row(session_factory, PricingUnit, id=bag.id)).stock == 5


@pytest.mark.asyncio
async def test_resolution_must_be_valid(ac_client, session_factory):
    _, buyer, order, _ = await _paid(ac_client, session_factory)
    admin = await create_admin(session_factory)
    dispute = await _open(ac_client, buyer, order)

    resp = await ac_client.post(f"{url_prefix}/admin/disputes/{dispute['id']}/resolve",
                                json={"resolution": "COIN_TOSS"}, headers=auth_headers(admin))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Valid resolution is required"

    buyer_try = await ac_client.post(f"{url_prefix}/admin/disputes/{dispute['id']}/resolve",
                                     json={"resolution": "BUYER_WINS"}, headers=auth_headers(buyer))
    assert buyer_try.status_code == 403
