import pytest
from helpers import auth_headers, create_admin, create_seller, create_user, get_row, url_prefix
from marketplace.schema.full_schema import (ApprovalStatus, Notification, NotificationType, RoleName, Shop, UserRole,
                                            Users)

seller_application = {
    "shopName": "Mama Nkechi Foods",
    "businessDescription": "Grains and spices",
    "businessAddress": "Stall 14, Oyingbo Market",
    "city": "Lagos",
    "state": "Lagos",
    "businessType": "Retail",
    "latitude": 6.48,
    "longitude": 3.38,
}

rider_application = {
    "vehicleType": "Motorcycle",
    "vehicleNumber": "LAG-123-XY",
    "licenseNumber": "DL-99812",
    "address": "5 Herbert Macaulay Way",
    "city": "Yaba",
    "state": "Lagos",
}


async def _applicant(ac_client, session_factory, email="applicant@example.com"):
    user = await create_user(session_factory, email, phone="+2348011112222")
    resp = await ac_client.post(f"{url_prefix}/seller/apply", json=seller_application, headers=auth_headers(user))
    assert resp.status_code == 201, resp.text
    return user


@pytest.mark.asyncio
async def test_seller_application_needs_phone(ac_client, session_factory):
    user = await create_user(session_factory, "nophone@example.com")
    resp = await ac_client.post(f"{url_prefix}/seller/apply", json=seller_application, headers=auth_headers(user))
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Please complete your profile")


@pytest.mark.asyncio
async def test_approve_seller_opens_shop(ac_client, session_factory):
    admin = await create_admin(session_factory)
    user = await _applicant(ac_client, session_factory)

    again = await ac_client.post(f"{url_prefix}/seller/apply", json=seller_application, headers=auth_headers(user))
    assert again.json()["error"] == "You already have a pending seller application"

    # not a seller yet
    blocked = await ac_client.get(f"{url_prefix}/seller/shop", headers=auth_headers(user))
    assert blocked.status_code == 403
    assert blocked.json()["error"] == "Approved seller access required"

    pending = await ac_client.get(f"{url_prefix}/admin/sellers/pending", headers=auth_headers(admin))
    apps = pending.json()["data"]["applications"]
    assert [a["userId"] for a in apps] == [str(user.public_id)]
    assert apps[0]["shop"]["name"] == "Mama Nkechi Foods"

    resp = await ac_client.post(f"{url_prefix}/admin/sellers/{user.public_id}/approve", headers=auth_headers(admin))
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["message"] == "Seller approved successfully"

    shop = await get_row(session_factory, Shop, user_id=user.id)
    assert shop.is_active is True
    assert await get_row(session_factory, Notification, user_id=user.id, type=NotificationType.ROLE_APPROVED)
    assert (await ac_client.get(f"{url_prefix}/seller/shop", headers=auth_headers(user))).status_code == 200

    twice = await ac_client.post(f"{url_prefix}/admin/sellers/{user.public_id}/approve", headers=auth_headers(admin))
    assert twice.status_code == 400
    assert twice.json()["error"] == "Seller application is already APPROVED"


@pytest.mark.asyncio
async def test_reject_seller_and_reapply(ac_client, session_factory):
    admin = await create_admin(session_factory)
    user = await _applicant(ac_client, session_factory)
    path = f"{url_prefix}/admin/sellers/{user.public_id}/reject"

    no_reason = await ac_client.post(path, json={"reason": "  "}, headers=auth_headers(admin))
    assert no_reason.status_code == 400
    assert no_reason.json()["error"] == "Rejection reason is required"

    resp = await ac_client.post(path, json={"reason": "Blurry ID card"}, headers=auth_headers(admin))
    assert resp.status_code == 200
    role = await get_row(session_factory, UserRole, user_id=user.id, role=RoleName.SELLER)
    assert role.status == ApprovalStatus.REJECTED
    assert role.rejection_reason == "Blurry ID card"
    note = await get_row(session_factory, Notification, user_id=user.id, type=NotificationType.ROLE_REJECTED)
    assert note.message.endswith(": Blurry ID card")

    reapply = await ac_client.post(f"{url_prefix}/seller/apply", json=seller_application, headers=auth_headers(user))
    assert reapply.status_code == 201
    assert reapply.json()["data"]["message"] == "Seller application resubmitted successfully"


@pytest.mark.asyncio
async def test_rider_application_flow(ac_client, session_factory):
    admin = await create_admin(session_factory)
    user = await create_user(session_factory, "rider-app@example.com", phone="+2348033334444")

    applied = await ac_client.post(f"{url_prefix}/rider/apply", json=rider_application, headers=auth_headers(user))
    assert applied.status_code == 201, applied.text
    status_resp = await ac_client.get(f"{url_prefix}/rider/status", headers=auth_headers(user))
    assert status_resp.json()["data"]["status"] == "PENDING"

    pending = await ac_client.get(f"{url_prefix}/admin/riders/pending", headers=auth_headers(admin))
    assert pending.json()["data"]["applications"][0]["rider"]["vehicleNumber"] == "LAG-123-XY"

    await ac_client.post(f"{url_prefix}/admin/riders/{user.public_id}/approve", headers=auth_headers(admin))
    riders = await ac_client.get(f"{url_prefix}/admin/riders", params={"status": "approved"},
                                 headers=auth_headers(admin))
    data = riders.json()["data"]
    assert [r["id"] for r in data["riders"]] == [str(user.public_id)]
    assert data["stats"]["approved"] == 1

    bad = await ac_client.get(f"{url_prefix}/admin/riders", params={"status": "sleeping"}, headers=auth_headers(admin))
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_suspend_user(ac_client, session_factory):
    admin = await create_admin(session_factory)
    seller, shop = await create_seller(session_factory, "suspend@shops.ng")
    path = f"{url_prefix}/admin/users/{seller.public_id}/suspend"

    resp = await ac_client.post(path, json={"action": "suspend", "reason": "Fake listings"}, headers=auth_headers(admin))
    assert resp.status_code == 200, resp.text
    assert (await get_row(session_factory, Users, id=seller.id)).is_suspended is True
    assert (await get_row(session_factory, Shop, id=shop.id)).is_active is False

    locked_out = await ac_client.get(f"{url_prefix}/auth/profile", headers=auth_headers(seller))
    assert locked_out.status_code == 403
    assert locked_out.json()["error"] == "Account suspended"

    await ac_client.post(path, json={"suspended": False}, headers=auth_headers(admin))
    assert (await get_row(session_factory, Shop, id=shop.id)).is_active is True

    bad = await ac_client.post(path, json={"action": "ban"}, headers=auth_headers(admin))
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_admins_cannot_be_suspended(ac_client, session_factory):
    admin = await create_admin(session_factory)
    other = await create_admin(session_factory, "second-admin@example.com")

    resp = await ac_client.post(f"{url_prefix}/admin/users/{other.public_id}/suspend", json={"suspended": True},
                                headers=auth_headers(admin))
    assert resp.status_code == 403
    assert resp.json()["error"] == "Cannot suspend admin users"


@pytest.mark.asyncio
async def test_shop_deactivation(ac_client, session_factory):
    admin = await create_admin(session_factory)
    _, shop = await create_seller(session_factory, "closing@shops.ng")
    path = f"{url_prefix}/admin/shops/{shop.public_id}/deactivate"

    resp = await ac_client.post(path, json={"reason": "Complaints"}, headers=auth_headers(admin))
    assert resp.json()["data"]["isActive"] is False
    assert (await ac_client.get(f"{url_prefix}/shops/{shop.public_id}")).status_code == 404

    back = await ac_client.post(path, json={"action": "activate"}, headers=auth_headers(admin))
    assert back.json()["data"]["isActive"] is True
    assert (await ac_client.get(f"{url_prefix}/shops/{shop.public_id}")).status_code == 200


@pytest.mark.asyncio
async def test_users_and_stats(ac_client, session_factory):
    admin = await create_admin(session_factory)
    await create_seller(session_factory, "ada@shops.ng")
    await _applicant(ac_client, session_factory, "chidi@example.com")

    users = await ac_client.get(f"{url_prefix}/admin/users", params={"search": "ADA"}, headers=auth_headers(admin))
    data = users.json()["data"]
    assert data["total"] == 1
    assert data["users"][0]["roles"][0]["role"] == "SELLER"

    stats = await ac_client.get(f"{url_prefix}/admin/stats", headers=auth_headers(admin))
    assert stats.json()["data"] == {
        "totalUsers": 3, "totalSellers": 1, "pendingSellerApprovals": 1,
        "totalOrders": 0, "totalRevenue": 0.0, "pendingDisputes": 0,
    }

    buyer = await create_user(session_factory, "nosy@example.com")
    denied = await ac_client.get(f"{url_prefix}/admin/stats", headers=auth_headers(buyer))
    assert denied.status_code == 403
    assert denied.json()["error"] == "Admin access required"
