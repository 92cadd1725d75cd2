from datetime import datetime, timedelta, timezone
import hashlib
import re
import secrets
from typing import Optional
from passlib.context import CryptContext
from jose import jwt, JWTError
from marketplace.auth.constants import SPECIALS
from marketplace.config.settings import config_settings

TOKEN_HASH_ALGO = config_settings.TOKEN_HASH_ALGO
ACCESS_TOKEN_EXPIRE_MINUTES = int(config_settings.ACCESS_TOKEN_EXPIRE_MINUTES)

pwd_context = CryptContext(schemes=[config_settings.PASS_HASH_SCHEME], deprecated="auto")

NIGERIAN_PHONE_RE = re.compile(r"^\+234[789][01]\d{8}$")

def hash_password(plain_password: str) -> str:
    return pwd_context.hash(plain_password)

def verify_password(plain_password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(plain_password, password_hash)


def validate_password(password: str, min_length: int = 8) -> tuple[bool, str]:
    pw = password.strip()
    if len(pw) < min_length:
        return False, f"Password must be at least {min_length} characters long"
    if not any(c.islower() for c in pw):
        return False, "Password must include at least one lowercase letter"
    if not any(c.isupper() for c in pw):
        return False, "Password must include at least one uppercase letter"
    if not any(c.isdigit() for c in pw):
        return False, "Password must include at least one digit"
    if not any(c in SPECIALS for c in pw):
        return False, "Password must include at least one special character"
    return True, "OK"


def create_access_token(user_public_id, expires_dur: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    expiry = now + timedelta(minutes=expires_dur)

    # roles are resolved per request from the database, the token only names the user
    payload = {
        "sub": str(user_public_id),
        "iat": int(now.timestamp()),
        "exp": int(expiry.timestamp()),
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(claims=payload, key=config_settings.JWT_SECRET, algorithm=config_settings.JWT_ALGO)

def decode_token(token: str) -> Optional[dict]:
    """Verify signature and expiry; None for anything that does not check out."""
    try:
        return jwt.decode(token, key=config_settings.JWT_SECRET, algorithms=[config_settings.JWT_ALGO])
    except JWTError:
        return None


def make_link_token() -> str:
    return secrets.token_hex(32)

def make_otp_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"

def hash_token(plain: str) -> str:
    hash_func = getattr(hashlib, TOKEN_HASH_ALGO)
    return hash_func(plain.encode()).hexdigest()


def normalize_phone_number(phone: str) -> str:
    """0803..., 234803..., +234 803 ... all become +234803..."""
    digits = re.sub(r"[^\d+]", "", phone or "")
    if digits.startswith("+"):
        return digits
    if digits.startswith("234"):
        return "+" + digits
    if digits.startswith("0"):
        return "+234" + digits[1:]
    return "+234" + digits

def validate_nigerian_phone(phone: str) -> bool:
    return bool(NIGERIAN_PHONE_RE.match(phone))
