import contextvars
from typing import Optional

# Context variables for request id
request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100
CURRENCY_SYMBOL = "₦"
