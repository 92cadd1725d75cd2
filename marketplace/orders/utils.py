import secrets
import string
from typing import Optional
from marketplace.common.utils import now
from marketplace.config.settings import config_settings
from marketplace.orders.constants import ORDER_NUMBER_PREFIX, ORDER_NUMBER_SUFFIX_LENGTH
from marketplace.schema.lifecycle import OrderStatus

_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(ORDER_NUMBER_SUFFIX_LENGTH))
    return f"{ORDER_NUMBER_PREFIX}-{now().strftime('%Y%m%d')}-{suffix}"


def calculate_platform_fee(subtotal: float, rate: Optional[float] = None) -> float:
    rate = config_settings.PLATFORM_FEE_RATE if rate is None else rate
    return round(subtotal * rate, 2)


def parse_order_status(value) -> Optional[OrderStatus]:
    if not isinstance(value, str):
        return None
    try:
        return OrderStatus(value.strip().upper())
    except ValueError:
        return None
