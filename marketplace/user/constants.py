from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.user")

PHONE_REQUIRED_MESSAGE = "Please complete your profile (add phone number) before applying to become a {role}"
