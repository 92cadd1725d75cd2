from typing import Optional
import uuid
from fastapi import HTTPException,status
from sqlalchemy import select
from marketplace.schema.full_schema import ApprovalStatus, RoleName, UserRole,Users


async def load_principal_rows(session, user_pid):
    try:
        pid = uuid.UUID(str(user_pid))
    except ValueError:
        return None, []
    user = (await session.execute(select(Users).where(Users.public_id == pid))).scalar_one_or_none()
    if user is None:
        return None, []
    rows = (await session.execute(select(UserRole).where(UserRole.user_id == user.id))).scalars().all()
    return user, rows


async def user_by_public_id(session, user_pid) -> Users:
    try:
        pid = uuid.UUID(str(user_pid))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    user = (await session.execute(select(Users).where(Users.public_id == pid))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def user_by_email(session, email: str) -> Optional[Users]:
    stmt = select(Users).where(Users.email == email.strip().lower())
    return (await session.execute(stmt)).scalar_one_or_none()


async def user_by_phone(session, phone: str) -> Optional[Users]:
    stmt = select(Users).where(Users.phone_number == phone)
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_user_role(session, user_id: int, role: RoleName, *, take_lock: bool = False) -> Optional[UserRole]:
    stmt = select(UserRole).where(UserRole.user_id == user_id, UserRole.role == role)
    if take_lock:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()


async def approved_role(session, user_id: int, role: RoleName) -> Optional[UserRole]:
    stmt = select(UserRole).where(
        UserRole.user_id == user_id,
        UserRole.role == role,
        UserRole.is_active.is_(True),
        UserRole.status == ApprovalStatus.APPROVED,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


def user_summary(user: Users) -> dict:
    return {
        "id": str(user.public_id),
        "name": user.name,
        "email": user.email,
        "phoneNumber": user.phone_number,
    }


async def user_by_id(session, user_id: int) -> Optional[Users]:
    return (await session.execute(select(Users).where(Users.id == user_id))).scalar_one_or_none()
