import pytest
from helpers import auth_headers, create_user, get_row, strong_pass, url_prefix
from marketplace.auth.repository import issue_token
from marketplace.auth.utils import normalize_phone_number, validate_nigerian_phone, validate_password, verify_password
from marketplace.schema.full_schema import TokenPurpose, Users, VerificationToken


@pytest.mark.asyncio
async def test_signup_success(ac_client):
    resp = await ac_client.post(f"{url_prefix}/auth/signup",
                                json={"email": "Ada@Example.com", "password": strong_pass, "name": " Ada "})
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["status"] == "ok"
    user = body["data"]["user"]
    assert user["email"] == "ada@example.com"
    assert user["name"] == "Ada"
    assert user["roles"] == []
    assert user["emailVerified"] is False


@pytest.mark.asyncio
async def test_signup_duplicate_email(ac_client):
    payload = {"email": "dup@example.com", "password": strong_pass}
    first = await ac_client.post(f"{url_prefix}/auth/signup", json=payload)
    assert first.status_code == 201

    second = await ac_client.post(f"{url_prefix}/auth/signup", json={**payload, "email": "DUP@example.com"})
    assert second.status_code == 400
    assert second.json()["error"] == "User with email already exists"


@pytest.mark.asyncio
@pytest.mark.parametrize("password, message", [
    ("short1!", "Password must be at least 8 characters long"),
    ("alllowercase1!", "Password must include at least one uppercase letter"),
    ("NoDigitsHere!", "Password must include at least one digit"),
    ("NoSpecial123", "Password must include at least one special character"),
])
async def test_signup_weak_password(ac_client, password, message):
    resp = await ac_client.post(f"{url_prefix}/auth/signup", json={"email": "weak@example.com", "password": password})
    assert resp.status_code == 400
    assert resp.json()["error"] == message


@pytest.mark.asyncio
async def test_signup_invalid_email(ac_client):
    resp = await ac_client.post(f"{url_prefix}/auth/signup", json={"email": "not-an-email", "password": strong_pass})
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Invalid email")


@pytest.mark.asyncio
async def test_login_and_profile(ac_client, session_factory):
    await create_user(session_factory, "login@example.com", name="Login User")

    resp = await ac_client.post(f"{url_prefix}/auth/login", json={"email": "login@example.com", "password": strong_pass})
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["token_type"] == "bearer"
    token = data["access_token"]

    profile = await ac_client.get(f"{url_prefix}/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert profile.status_code == 200
    assert profile.json()["data"]["user"]["email"] == "login@example.com"


@pytest.mark.asyncio
async def test_login_failures(ac_client, session_factory):
    await create_user(session_factory, "known@example.com")
    await create_user(session_factory, "banned@example.com", suspended=True)

    wrong = await ac_client.post(f"{url_prefix}/auth/login", json={"email": "known@example.com", "password": "Wrong!Pass1"})
    unknown = await ac_client.post(f"{url_prefix}/auth/login", json={"email": "ghost@example.com", "password": strong_pass})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json()["error"] == unknown.json()["error"] == "Invalid email or password"

    banned = await ac_client.post(f"{url_prefix}/auth/login", json={"email": "banned@example.com", "password": strong_pass})
    assert banned.status_code == 403
    assert banned.json()["error"] == "Account suspended"


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(ac_client):
    resp = await ac_client.get(f"{url_prefix}/auth/profile", headers={"Authorization": "Bearer not.a.jwt"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_AUTH"


@pytest.mark.asyncio
async def test_forgot_password_answers_the_same_for_unknown_accounts(ac_client, session_factory):
    await create_user(session_factory, "reset@example.com")

    known = await ac_client.post(f"{url_prefix}/auth/forgot-password", json={"email": "reset@example.com"})
    unknown = await ac_client.post(f"{url_prefix}/auth/forgot-password", json={"email": "nobody@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json()["data"] == unknown.json()["data"]

    row = await get_row(session_factory, VerificationToken, identifier="reset@example.com")
    assert row.purpose == TokenPurpose.PASSWORD_RESET
    assert await get_row(session_factory, VerificationToken, identifier="nobody@example.com") is None


@pytest.mark.asyncio
async def test_reset_password_with_token(ac_client, session_factory):
    user = await create_user(session_factory, "change@example.com")
    async with session_factory() as session:
        await issue_token(session, user.email, TokenPurpose.PASSWORD_RESET, "reset-secret", 3600)
        await session.commit()

    weak = await ac_client.post(f"{url_prefix}/auth/reset-password", json={"token": "reset-secret", "password": "weak"})
    assert weak.status_code == 400

    new_pass = "N3w!Password"
    resp = await ac_client.post(f"{url_prefix}/auth/reset-password", json={"token": "reset-secret", "password": new_pass})
    assert resp.status_code == 200, resp.text
    fresh = await get_row(session_factory, Users, id=user.id)
    assert verify_password(new_pass, fresh.password_hash)

    reused = await ac_client.post(f"{url_prefix}/auth/reset-password", json={"token": "reset-secret", "password": new_pass})
    assert reused.status_code == 400
    assert reused.json()["error"] == "Invalid or expired reset token"


@pytest.mark.asyncio
async def test_confirm_email(ac_client, session_factory):
    user = await create_user(session_factory, "verify@example.com")
    async with session_factory() as session:
        await issue_token(session, user.email, TokenPurpose.EMAIL_VERIFICATION, "verify-secret", 3600)
        await session.commit()

    resp = await ac_client.post(f"{url_prefix}/auth/verify-email/confirm", json={"token": "verify-secret"})
    assert resp.status_code == 200
    assert (await get_row(session_factory, Users, id=user.id)).email_verified_at is not None

    bad = await ac_client.post(f"{url_prefix}/auth/verify-email/confirm", json={"token": "verify-secret"})
    assert bad.status_code == 400
    assert bad.json()["error"] == "Invalid or expired verification token"


@pytest.mark.asyncio
async def test_phone_otp_flow(ac_client, session_factory):
    user = await create_user(session_factory, "phone@example.com")
    headers = auth_headers(user)

    sent = await ac_client.post(f"{url_prefix}/auth/verify-phone/send-otp", json={"phoneNumber": "0803 123 4567"},
                                headers=headers)
    assert sent.status_code == 200, sent.text
    data = sent.json()["data"]
    assert data["phoneNumber"] == "+2348031234567"
    assert data["expiresIn"] == 600
    code = data["code"]

    wrong_code = "000000" if code != "000000" else "111111"
    wrong = await ac_client.post(f"{url_prefix}/auth/verify-phone/verify-otp",
                                 json={"phoneNumber": "08031234567", "code": wrong_code}, headers=headers)
    assert wrong.status_code == 400
    assert wrong.json()["error"] == "Invalid OTP. 4 attempt(s) remaining"

    ok = await ac_client.post(f"{url_prefix}/auth/verify-phone/verify-otp",
                              json={"phoneNumber": "08031234567", "code": code}, headers=headers)
    assert ok.status_code == 200, ok.text
    assert ok.json()["data"]["phoneVerified"] is True

    fresh = await get_row(session_factory, Users, id=user.id)
    assert fresh.phone_number == "+2348031234567"
    assert fresh.phone_verified_at is not None


@pytest.mark.asyncio
async def test_phone_otp_locks_after_five_misses(ac_client, session_factory):
    user = await create_user(session_factory, "locked@example.com")
    headers = auth_headers(user)
    sent = await ac_client.post(f"{url_prefix}/auth/verify-phone/send-otp", json={"phoneNumber": "08031234567"},
                                headers=headers)
    code = sent.json()["data"]["code"]
    wrong_code = "000000" if code != "000000" else "111111"

    for _ in range(5):
        await ac_client.post(f"{url_prefix}/auth/verify-phone/verify-otp",
                             json={"phoneNumber": "08031234567", "code": wrong_code}, headers=headers)

    resp = await ac_client.post(f"{url_prefix}/auth/verify-phone/verify-otp",
                                json={"phoneNumber": "08031234567", "code": code}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Too many failed attempts. Please request a new OTP"


@pytest.mark.asyncio
async def test_phone_already_registered(ac_client, session_factory):
    await create_user(session_factory, "owner@example.com", phone="+2348031234567")
    other = await create_user(session_factory, "other@example.com")

    resp = await ac_client.post(f"{url_prefix}/auth/verify-phone/send-otp", json={"phoneNumber": "08031234567"},
                                headers=auth_headers(other))
    assert resp.status_code == 400
    assert resp.json()["error"] == "This phone number is already registered to another account"


@pytest.mark.asyncio
async def test_update_profile(ac_client, session_factory):
    user = await create_user(session_factory, "edit@example.com", phone="+2348031234567")
    headers = auth_headers(user)

    empty = await ac_client.patch(f"{url_prefix}/auth/profile", json={}, headers=headers)
    assert empty.status_code == 400
    assert empty.json()["error"] == "No valid updates provided"

    resp = await ac_client.patch(f"{url_prefix}/auth/profile", json={"name": "Edited", "phoneNumber": "09011112222"},
                                 headers=headers)
    assert resp.status_code == 200, resp.text
    out = resp.json()["data"]["user"]
    assert out["name"] == "Edited"
    assert out["phoneNumber"] == "+2349011112222"
    assert out["phoneVerified"] is False

    bad = await ac_client.patch(f"{url_prefix}/auth/profile", json={"phoneNumber": "12345"}, headers=headers)
    assert bad.status_code == 400


@pytest.mark.parametrize("raw, expected", [
    ("08031234567", "+2348031234567"),
    ("2348031234567", "+2348031234567"),
    ("+234 803 123 4567", "+2348031234567"),
    ("803-123-4567", "+2348031234567"),
])
def test_normalize_phone_number(raw, expected):
    assert normalize_phone_number(raw) == expected
    assert validate_nigerian_phone(expected)


def test_validate_nigerian_phone_rejects_other_numbers():
    assert not validate_nigerian_phone("+2346031234567")
    assert not validate_nigerian_phone("+23480312345")
    assert not validate_nigerian_phone("+4478031234567")


def test_validate_password_accepts_strong_password():
    assert validate_password(strong_pass) == (True, "OK")
