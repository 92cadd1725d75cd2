import pytest
from helpers import auth_headers, create_user, url_prefix
from marketplace.notifications.services import create_notification, notify_order_status
from marketplace.schema.full_schema import NotificationType


async def _notes(session_factory, user, count=3):
    async with session_factory() as session:
        for i in range(count):
            await notify_order_status(session, user.id, f"ORD-20260101-00000{i}", "PREPARING", "order-pid")
        await session.commit()


@pytest.mark.asyncio
async def test_list_and_unread_count(ac_client, session_factory):
    user = await create_user(session_factory, "notes@example.com")
    other = await create_user(session_factory, "other@example.com")
    await _notes(session_factory, user)
    await _notes(session_factory, other, count=1)

    resp = await ac_client.get(f"{url_prefix}/notifications", headers=auth_headers(user))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["unreadCount"] == 3
    assert len(data["notifications"]) == 3
    assert data["notifications"][0]["type"] == "ORDER_STATUS_UPDATE"
    assert data["notifications"][0]["isRead"] is False


@pytest.mark.asyncio
async def test_mark_selected_as_read(ac_client, session_factory):
    user = await create_user(session_factory, "mark@example.com")
    other = await create_user(session_factory, "other@example.com")
    await _notes(session_factory, user)
    await _notes(session_factory, other, count=1)
    headers = auth_headers(user)

    notes = (await ac_client.get(f"{url_prefix}/notifications", headers=headers)).json()["data"]["notifications"]
    foreign = (await ac_client.get(f"{url_prefix}/notifications",
                                   headers=auth_headers(other))).json()["data"]["notifications"]

    resp = await ac_client.patch(f"{url_prefix}/notifications",
                                 json={"notificationIds": [notes[0]["id"], foreign[0]["id"], "junk"]}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["updated"] == 1

    unread = await ac_client.get(f"{url_prefix}/notifications", params={"unreadOnly": "true"}, headers=headers)
    assert unread.json()["data"]["unreadCount"] == 2
    assert len(unread.json()["data"]["notifications"]) == 2

    other_view = await ac_client.get(f"{url_prefix}/notifications", headers=auth_headers(other))
    assert other_view.json()["data"]["unreadCount"] == 1


@pytest.mark.asyncio
async def test_mark_all_as_read(ac_client, session_factory):
    user = await create_user(session_factory, "all@example.com")
    await _notes(session_factory, user)
    headers = auth_headers(user)

    resp = await ac_client.patch(f"{url_prefix}/notifications", json={"markAllAsRead": True}, headers=headers)
    assert resp.json()["data"]["updated"] == 3
    after = await ac_client.get(f"{url_prefix}/notifications", headers=headers)
    assert after.json()["data"]["unreadCount"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"notificationIds": []}, {"markAllAsRead": "yes"}])
async def test_patch_needs_ids_or_mark_all(ac_client, session_factory, payload):
    user = await create_user(session_factory, "bad@example.com")
    resp = await ac_client.patch(f"{url_prefix}/notifications", json=payload, headers=auth_headers(user))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request"


@pytest.mark.asyncio
async def test_failed_notification_does_not_break_the_caller(session_factory):
    user = await create_user(session_factory, "safe@example.com")
    async with session_factory() as session:
        # no such user, so the foreign key rejects the row
        assert await create_notification(session, 999999, NotificationType.ORDER_PLACED, "t", "m") is None
        ok = await create_notification(session, user.id, NotificationType.ORDER_PLACED, "t", "m")
        await session.commit()
    assert ok is not None
