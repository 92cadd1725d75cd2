from typing import Optional, Tuple
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from marketplace.auth.constants import (EMAIL_VERIFICATION_TTL_SECONDS, PASSWORD_RESET_TTL_SECONDS, PHONE_OTP_MAX_ATTEMPTS,
                                        PHONE_OTP_TTL_SECONDS, logger)
from marketplace.auth.dependencies import normalize_email_address
from marketplace.auth.repository import issue_token, live_token_by_secret, live_token_for
from marketplace.auth.utils import (create_access_token, hash_password, hash_token, make_link_token, make_otp_code,
                                    normalize_phone_number, validate_nigerian_phone, validate_password, verify_password)
from marketplace.common.utils import clean_str, iso, now
from marketplace.config.admin_config import admin_config
from marketplace.config.settings import config_settings
from marketplace.schema.full_schema import TokenPurpose, UserRole, Users
from marketplace.user.repository import user_by_email, user_by_phone, user_by_public_id

INVALID_CREDENTIALS = "Invalid email or password"


def _dev() -> bool:
    return admin_config.ENV == "dev"


def _safe_email(raw: str) -> Optional[str]:
    try:
        return normalize_email_address(raw)
    except ValueError:
        return None


async def create_user(session, payload: dict) -> Users:
    if await user_by_email(session, payload["email"]) is not None:
        logger.warning("user.duplicate", extra={"email": payload["email"]})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User with email already exists")

    user = Users(email=payload["email"], name=payload.get("name"), password_hash=hash_password(payload["password"]))
    try:
        async with session.begin_nested():
            session.add(user)
            await session.flush()
    except IntegrityError:
        logger.warning("user.create.integrity_error", extra={"email": payload["email"]})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User with that email already exists")

    logger.info("user.created", extra={"user_public_id": str(user.public_id), "email": user.email})
    return user


async def authenticate(session, email: str, password: str) -> Tuple[Users, str]:
    normalized = _safe_email(email)
    user = await user_by_email(session, normalized) if normalized else None
    if user is None or not verify_password(password, user.password_hash):
        logger.info("login.failed", extra={"email": email, "reason": "bad_credentials"})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)
    if user.is_suspended:
        logger.warning("login.failed", extra={"email": email, "reason": "suspended"})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account suspended")
    return user, create_access_token(user.public_id)


# password reset and email verification

async def request_password_reset(session, email: str) -> None:
    """Issues a reset token when the account exists; callers answer the same way either way."""
    normalized = _safe_email(email)
    user = await user_by_email(session, normalized) if normalized else None
    if user is None:
        logger.info("password_reset.unknown_email")
        return

    token = make_link_token()
    await issue_token(session, user.email, TokenPurpose.PASSWORD_RESET, token, PASSWORD_RESET_TTL_SECONDS)
    link = f"{config_settings.APP_BASE_URL}/auth/reset-password?token={token}"
    logger.info("password_reset.issued", extra={"user_id": user.id, "link": link if _dev() else None})


async def reset_password(session, token: str, password: str) -> None:
    ok, detail = validate_password(password)
    if not ok:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    row = await live_token_by_secret(session, TokenPurpose.PASSWORD_RESET, token)
    user = await user_by_email(session, row.identifier) if row else None
    if user is None:
        logger.info("password_reset.invalid_token")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset token")

    row.consumed_at = now()
    user.password_hash = hash_password(password)
    session.add_all([row, user])
    await session.flush()
    logger.info("password_reset.success", extra={"user_id": user.id})


async def send_email_verification(session, email: str) -> None:
    normalized = _safe_email(email)
    user = await user_by_email(session, normalized) if normalized else None
    if user is None or user.email_verified_at is not None:
        logger.info("verify_email.skipped", extra={"known": user is not None})
        return

    token = make_link_token()
    await issue_token(session, user.email, TokenPurpose.EMAIL_VERIFICATION, token, EMAIL_VERIFICATION_TTL_SECONDS)
    link = f"{config_settings.APP_BASE_URL}/auth/verify-email?token={token}"
    logger.info("verify_email.issued", extra={"user_id": user.id, "link": link if _dev() else None})


async def confirm_email(session, token: str) -> Users:
    row = await live_token_by_secret(session, TokenPurpose.EMAIL_VERIFICATION, token)
    user = await user_by_email(session, row.identifier) if row else None
    if user is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired verification token")

    row.consumed_at = now()
    if user.email_verified_at is None:
        user.email_verified_at = now()
    session.add_all([row, user])
    await session.flush()
    logger.info("verify_email.success", extra={"user_id": user.id})
    return user


# phone

def parse_phone(raw: str) -> str:
    phone = normalize_phone_number(raw)
    if not validate_nigerian_phone(phone):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Invalid Nigerian phone number. Use format 0XXXXXXXXXX or +234XXXXXXXXXX")
    return phone


async def _ensure_phone_free(session, phone: str, user_id: int) -> None:
    owner = await user_by_phone(session, phone)
    if owner is not None and owner.id != user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="This phone number is already registered to another account")


def _otp_secret(phone: str, code: str) -> str:
    # codes are short, so the hash is scoped to the number
    return f"{phone}:{code}"


async def send_phone_otp(session, user_id: int, raw_phone: str) -> dict:
    phone = parse_phone(raw_phone)
    await _ensure_phone_free(session, phone, user_id)

    code = make_otp_code()
    await issue_token(session, phone, TokenPurpose.PHONE_OTP, _otp_secret(phone, code), PHONE_OTP_TTL_SECONDS)
    logger.info("phone_otp.issued", extra={"user_id": user_id, "code": code if _dev() else None})

    res = {"message": "OTP sent successfully", "phoneNumber": phone, "expiresIn": PHONE_OTP_TTL_SECONDS}
    if _dev():
        res["code"] = code
    return res


async def verify_phone_otp(session, user_id: int, raw_phone: str, code: str) -> Optional[str]:
    """Returns None on success, otherwise the rejection message.

    A wrong code still counts as an attempt, so the caller commits before reporting it.
    """
    phone = parse_phone(raw_phone)
    row = await live_token_for(session, phone, TokenPurpose.PHONE_OTP)
    if row is None:
        return "OTP expired or not found. Please request a new one"
    if row.attempts >= PHONE_OTP_MAX_ATTEMPTS:
        return "Too many failed attempts. Please request a new OTP"

    if hash_token(_otp_secret(phone, code.strip())) != row.token_hash:
        row.attempts += 1
        session.add(row)
        await session.flush()
        left = PHONE_OTP_MAX_ATTEMPTS - row.attempts
        logger.info("phone_otp.mismatch", extra={"user_id": user_id, "attempts": row.attempts})
        return f"Invalid OTP. {left} attempt(s) remaining" if left > 0 else "Too many failed attempts. Please request a new OTP"

    await _ensure_phone_free(session, phone, user_id)
    user = await session.get(Users, user_id)
    row.consumed_at = now()
    user.phone_number = phone
    user.phone_verified_at = now()
    session.add_all([row, user])
    await session.flush()
    logger.info("phone_otp.verified", extra={"user_id": user_id})
    return None


async def complete_profile(session, user_id: int, raw_phone: str) -> Users:
    phone = parse_phone(raw_phone)
    await _ensure_phone_free(session, phone, user_id)

    user = await session.get(Users, user_id)
    user.phone_number = phone
    user.phone_verified_at = user.phone_verified_at or now()
    session.add(user)
    try:
        async with session.begin_nested():
            await session.flush()
    except IntegrityError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="This phone number is already registered to another account")
    logger.info("profile.completed", extra={"user_id": user_id})
    return user


# profile

async def profile_out(session, user: Users) -> dict:
    roles = (await session.execute(select(UserRole).where(UserRole.user_id == user.id))).scalars().all()
    return {
        "id": str(user.public_id),
        "email": user.email,
        "name": user.name,
        "phoneNumber": user.phone_number,
        "emailVerified": user.email_verified_at is not None,
        "phoneVerified": user.phone_verified_at is not None,
        "roles": [
            {"role": r.role.value, "status": r.status.value if r.status else None, "isActive": r.is_active}
            for r in roles
        ],
        "createdAt": iso(user.created_at),
    }


async def update_profile(session, user_pid, name: Optional[str], raw_phone: Optional[str], fields: set) -> Users:
    user = await user_by_public_id(session, user_pid)
    if "name" in fields:
        user.name = clean_str(name)
    if "phoneNumber" in fields and raw_phone:
        phone = parse_phone(raw_phone)
        if phone != user.phone_number:
            await _ensure_phone_free(session, phone, user.id)
            user.phone_number = phone
            # a changed number has to be verified again
            user.phone_verified_at = None
    session.add(user)
    await session.flush()
    logger.info("profile.updated", extra={"user_id": user.id, "fields": sorted(fields)})
    return user
