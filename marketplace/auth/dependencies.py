from email_validator import EmailNotValidError, validate_email
from fastapi import Body, HTTPException, status
from marketplace.auth.constants import logger
from marketplace.auth.utils import validate_password


def normalize_email_address(email: str) -> str:
    """Validate and return the normalized, lowercased address. Raises ValueError if invalid."""
    try:
        v = validate_email(email, check_deliverability=False)
        return v.normalized.lower()
    except EmailNotValidError as e:
        raise ValueError(str(e))


async def signup_validation(payload=Body(...)) -> dict:
    if not isinstance(payload, dict) or not isinstance(payload.get("email"), str) \
            or not isinstance(payload.get("password"), str):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email and password are required")

    try:
        email = normalize_email_address(payload["email"])
    except ValueError as e:
        logger.warning("signup.validation.email_invalid", extra={"email": payload.get("email"), "error": str(e)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid email: {e}")

    is_valid, detail = validate_password(payload["password"])
    if not is_valid:
        logger.warning("signup.validation.password_invalid", extra={"email": email, "reason": detail})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    name = payload.get("name")
    return {"email": email, "password": payload["password"], "name": name.strip() if isinstance(name, str) else None}
