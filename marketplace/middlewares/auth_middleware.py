from typing import Sequence
from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from marketplace.common.utils import build_error, json_error
from marketplace.user.dependencies import Authentication
from marketplace.middlewares.constants import logger


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Decodes the bearer token when one is sent.

    Requests without a token pass through anonymously; routes that need a caller
    depend on ``get_principal`` which turns the missing identity into a 401.
    """

    def __init__(self, app, *, skip_paths: Sequence[str] = ()):
        super().__init__(app)
        self.skip_paths = tuple(skip_paths)
        self._bearer = Authentication(auto_error=False)

    async def dispatch(self, request: Request, call_next):

        request.state.user_public_id = None
        if request.url.path.startswith(self.skip_paths):
            return await call_next(request)

        try:
            auth_token = await self._bearer(request)
        except HTTPException as e:
            logger.warning("auth.middleware.failed", extra={
                "reason": e.detail,
                "path": request.url.path,
                "method": request.method
            })
            payload = build_error("Missing or Invalid Auth Headers", code="INVALID_AUTH")
            return json_error(payload, status_code=status.HTTP_401_UNAUTHORIZED)

        if auth_token:
            request.state.user_public_id = auth_token.get("sub")
            logger.debug("auth.middleware.success", extra={
                "user_public_id": request.state.user_public_id,
                "path": request.url.path
            })

        return await call_next(request)
