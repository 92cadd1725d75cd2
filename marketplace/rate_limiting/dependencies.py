import time
from typing import Optional
from fastapi import HTTPException, Request, status
from marketplace.config.settings import config_settings
from marketplace.rate_limiting.constants import DEFAULT_LIMIT, DEFAULT_WINDOW, RATE_LIMIT_PREFIX, logger
from marketplace.rate_limiting.limiter import identifier_from_request


def rate_limit_dependency(limit: int = DEFAULT_LIMIT, window: int = DEFAULT_WINDOW, route_key: Optional[str] = None):
    async def _dep(request: Request):
        limiter = getattr(request.app.state, "rate_limiter", None)
        if not config_settings.RATE_LIMIT_ENABLED or limiter is None:
            return
        identifier, scope = identifier_from_request(request)
        key = f"{RATE_LIMIT_PREFIX}:{scope}:{identifier}:{route_key or request.url.path}"
        allowed, remaining, reset = await limiter.allow(key, limit, window)
        request.state.rate_limit = {"limit": limit, "remaining": remaining, "reset": reset}
        if not allowed:
            retry_after = max(0, reset - int(time.time()))
            logger.warning("rate_limit.exceeded", extra={"scope": scope, "path": request.url.path})
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers={"Retry-After": str(retry_after)},
            )
    return _dep
