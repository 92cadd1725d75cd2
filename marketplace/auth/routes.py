from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.auth.constants import ACCESS_TOKEN_TTL_SECONDS, FORGOT_PASSWORD_MESSAGE, VERIFY_EMAIL_MESSAGE, logger
from marketplace.auth.dependencies import signup_validation
from marketplace.auth.models import (EmailIn, OtpVerifyIn, PhoneIn, ProfileUpdateIn, ResetPasswordIn, SignIn, SignupIn,
                                     TokenIn)
from marketplace.auth.services import (authenticate, complete_profile, confirm_email, create_user, profile_out,
                                       request_password_reset, reset_password, send_email_verification, send_phone_otp,
                                       update_profile, verify_phone_otp)
from marketplace.common.utils import success_response
from marketplace.db.dependencies import get_session
from marketplace.rate_limiting.dependencies import rate_limit_dependency
from marketplace.user.dependencies import Principal, get_principal
from marketplace.user.repository import user_by_public_id

auth_router = APIRouter()

login_limit = rate_limit_dependency(limit=10, window=60, route_key="auth:login")
signup_limit = rate_limit_dependency(limit=5, window=60, route_key="auth:signup")
email_limit = rate_limit_dependency(limit=5, window=300, route_key="auth:email")
otp_limit = rate_limit_dependency(limit=5, window=300, route_key="auth:otp")


@auth_router.post("/signup", status_code=status.HTTP_201_CREATED, dependencies=[Depends(signup_limit)])
async def signup_user(payload: SignupIn = Depends(signup_validation), session: AsyncSession = Depends(get_session)):

    logger.info("signup.attempt", extra={"email": payload.get("email")})
    user = await create_user(session, payload)
    await session.commit()

    logger.info("signup.success", extra={"email": user.email})
    return success_response({"message": "User created successfully", "user": await profile_out(session, user)}, 201)


@auth_router.post("/login", dependencies=[Depends(login_limit)])
async def login_user(payload: SignIn, session: AsyncSession = Depends(get_session)):

    logger.info("login.attempt", extra={"email": payload.email})
    user, access = await authenticate(session, payload.email, payload.password)

    logger.info("login.success", extra={"user_id": user.id})
    return success_response({
        "access_token": access,
        "token_type": "bearer",
        "expires_in": ACCESS_TOKEN_TTL_SECONDS,
        "user": await profile_out(session, user),
    })


@auth_router.post("/forgot-password", dependencies=[Depends(email_limit)])
async def forgot_password(payload: EmailIn, session: AsyncSession = Depends(get_session)):

    await request_password_reset(session, payload.email)
    await session.commit()
    return success_response({"message": FORGOT_PASSWORD_MESSAGE})


@auth_router.post("/reset-password", dependencies=[Depends(email_limit)])
async def reset_password_route(payload: ResetPasswordIn, session: AsyncSession = Depends(get_session)):

    await reset_password(session, payload.token, payload.password)
    await session.commit()
    return success_response({"message": "Password reset successfully"})


@auth_router.post("/verify-email/send", dependencies=[Depends(email_limit)])
async def verify_email_send(payload: EmailIn, session: AsyncSession = Depends(get_session)):

    await send_email_verification(session, payload.email)
    await session.commit()
    return success_response({"message": VERIFY_EMAIL_MESSAGE})


@auth_router.post("/verify-email/confirm")
async def verify_email_confirm(payload: TokenIn, session: AsyncSession = Depends(get_session)):

    await confirm_email(session, payload.token)
    await session.commit()
    return success_response({"message": "Email verified successfully"})


@auth_router.post("/verify-phone/send-otp", dependencies=[Depends(otp_limit)])
async def phone_send_otp(payload: PhoneIn, principal: Principal = Depends(get_principal),
                         session: AsyncSession = Depends(get_session)):

    res = await send_phone_otp(session, principal.user_id, payload.phoneNumber)
    await session.commit()
    return success_response(res)


@auth_router.post("/verify-phone/verify-otp", dependencies=[Depends(otp_limit)])
async def phone_verify_otp(payload: OtpVerifyIn, principal: Principal = Depends(get_principal),
                           session: AsyncSession = Depends(get_session)):

    rejection = await verify_phone_otp(session, principal.user_id, payload.phoneNumber, payload.code)
    # failed attempts are counted even though the request is rejected
    await session.commit()
    if rejection:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=rejection)
    return success_response({"message": "Phone number verified successfully", "phoneVerified": True})


@auth_router.post("/complete-profile")
async def complete_profile_route(payload: PhoneIn, principal: Principal = Depends(get_principal),
                                 session: AsyncSession = Depends(get_session)):

    user = await complete_profile(session, principal.user_id, payload.phoneNumber)
    await session.commit()
    return success_response({"message": "Profile completed successfully", "user": await profile_out(session, user)})


@auth_router.get("/profile")
async def get_profile(principal: Principal = Depends(get_principal), session: AsyncSession = Depends(get_session)):
    user = await user_by_public_id(session, principal.public_id)
    return success_response({"user": await profile_out(session, user)})


@auth_router.patch("/profile")
async def patch_profile(payload: ProfileUpdateIn, principal: Principal = Depends(get_principal),
                        session: AsyncSession = Depends(get_session)):

    fields = payload.model_fields_set
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid updates provided")
    user = await update_profile(session, principal.public_id, payload.name, payload.phoneNumber, fields)
    await session.commit()
    return success_response({"message": "Profile updated successfully", "user": await profile_out(session, user)})
