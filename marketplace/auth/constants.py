from marketplace.config.settings import config_settings
from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.auth")

SPECIALS = set("!@#$%^&*()-_=+[]{};:'\",.<>/?\\|`~")

ACCESS_TOKEN_TTL_SECONDS = int(config_settings.ACCESS_TOKEN_EXPIRE_MINUTES) * 60

PASSWORD_RESET_TTL_SECONDS = 3600
EMAIL_VERIFICATION_TTL_SECONDS = 24 * 3600
PHONE_OTP_TTL_SECONDS = 600
PHONE_OTP_MAX_ATTEMPTS = 5

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."
VERIFY_EMAIL_MESSAGE = "If an account with that email exists and is unverified, a verification link has been sent."
