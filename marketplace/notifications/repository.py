from typing import List
import uuid
from sqlalchemy import func, select, update
from marketplace.common.utils import iso, now
from marketplace.schema.full_schema import Notification


def notification_out(note: Notification) -> dict:
    return {
        "id": str(note.public_id),
        "type": note.type.value,
        "title": note.title,
        "message": note.message,
        "link": note.link,
        "isRead": note.is_read,
        "readAt": iso(note.read_at),
        "createdAt": iso(note.created_at),
    }


async def list_notifications(session, user_id: int, unread_only: bool, limit: int) -> List[dict]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    rows = (await session.execute(stmt)).scalars().all()
    return [notification_out(n) for n in rows]


async def count_unread(session, user_id: int) -> int:
    stmt = select(func.count(Notification.id)).where(Notification.user_id == user_id, Notification.is_read.is_(False))
    return int((await session.execute(stmt)).scalar_one())


async def mark_read(session, user_id: int, notification_pids: List[str]) -> int:
    pids = []
    for raw in notification_pids:
        try:
            pids.append(uuid.UUID(str(raw)))
        except ValueError:
            continue
    if not pids:
        return 0
    # scoped to the caller so foreign ids are silently ignored
    stmt = (update(Notification)
            .where(Notification.user_id == user_id, Notification.public_id.in_(pids), Notification.is_read.is_(False))
            .values(is_read=True, read_at=now()))
    res = await session.execute(stmt)
    return res.rowcount or 0


async def mark_all_read(session, user_id: int) -> int:
    stmt = (update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=now()))
    res = await session.execute(stmt)
    return res.rowcount or 0
