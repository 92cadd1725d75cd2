import asyncio
import os
from dotenv import load_dotenv
from sqlmodel import select
from marketplace.auth.utils import hash_password, verify_password
from marketplace.config.admin_config import admin_config
from marketplace.db.connection import build_engine, build_session_factory
from marketplace.schema.full_schema import RoleName, UserRole, Users

load_dotenv()


async def create_admin():
    admin_email = (admin_config.ADMIN_EMAIL or os.environ.get("ADMIN_EMAIL") or "").strip().lower()
    admin_password = admin_config.ADMIN_PASSWORD or os.environ.get("ADMIN_PASSWORD")
    admin_name = os.environ.get("ADMIN_NAME", "Admin")

    if not admin_email or not admin_password:
        raise SystemExit("Set ADMIN_EMAIL and ADMIN_PASSWORD environment variables before running")

    engine = build_engine()
    session_factory = build_session_factory(engine)
    try:
        async with session_factory() as session:
            user = (await session.execute(select(Users).where(Users.email == admin_email))).scalar_one_or_none()
            if not user:
                user = Users(email=admin_email, name=admin_name, password_hash=hash_password(admin_password))
                session.add(user)
                await session.flush()
                print(f"Created user id={user.id} public_id={user.public_id}")
            else:
                if user.password_hash and not verify_password(admin_password, user.password_hash):
                    raise SystemExit("Existing user found but the password does not match")
                print(f"Found existing user id={user.id} public_id={user.public_id}")

            ur = (await session.execute(
                select(UserRole).where(UserRole.user_id == user.id, UserRole.role == RoleName.ADMIN)
            )).scalar_one_or_none()
            if not ur:
                session.add(UserRole(user_id=user.id, role=RoleName.ADMIN, is_active=True))
                print("Assigned admin role to user")
            else:
                ur.is_active = True
                session.add(ur)
                print("User already has admin role")
            await session.commit()
    finally:
        await engine.dispose()

    print("Done.")


if __name__ == "__main__":
    asyncio.run(create_admin())
