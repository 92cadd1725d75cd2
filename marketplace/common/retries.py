import asyncio
import random
from typing import Awaitable, Callable, Optional
import httpx
from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.common")

TRANSIENT_EXCEPTIONS = (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError, httpx.NetworkError)
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF_BASE = 0.5


def is_retryable_http_error(exc: BaseException) -> bool:
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


async def _sleep_with_jitter(delay: float, jitter: float = 0.15) -> None:
    jitter_val = random.uniform(-jitter * delay, jitter * delay)
    await asyncio.sleep(max(0.0, delay + jitter_val))


async def retry_http(call: Callable[[], Awaitable[httpx.Response]], *, label: str,
                     max_retries: int = DEFAULT_RETRIES, backoff_base: float = DEFAULT_BACKOFF_BASE,
                     if_retryable: Optional[Callable[[BaseException], bool]] = None) -> httpx.Response:
    """Run ``call`` until it returns a non-error response.

    Transient network errors and 5xx responses are retried with exponential backoff;
    4xx responses and the last failure are raised to the caller.
    """
    if if_retryable is None:
        if_retryable = is_retryable_http_error

    for attempt_idx in range(1, max_retries + 1):
        try:
            resp = await call()
            resp.raise_for_status()
            return resp
        except httpx.HTTPError as exc:
            if not if_retryable(exc) or attempt_idx == max_retries:
                logger.warning("http.call.failed", extra={"call": label, "attempt": attempt_idx, "error": str(exc)})
                raise
            delay = backoff_base * (2 ** (attempt_idx - 1))
            logger.info("http.call.retry", extra={"call": label, "attempt": attempt_idx, "delay": delay, "error": str(exc)})
            await _sleep_with_jitter(delay)

    raise RuntimeError("retry loop exited without a result")
