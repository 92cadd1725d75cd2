from typing import Optional
from fastapi import FastAPI, Request,status
from starlette.exceptions import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from marketplace.common.logging_setup import get_logger
from marketplace.common.utils import build_error, json_error
from marketplace.common.constants import request_id_ctx

logger = get_logger("marketplace.errors")


class MarketplaceError(Exception):
    """Base for domain failures that know their HTTP status."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "INVALID_INPUT"

    def __init__(self, detail: str, *, status_code: Optional[int] = None, extra: Optional[dict] = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}


class InvalidStock(MarketplaceError):
    code = "INVALID_STOCK"


class IllegalTransition(MarketplaceError):
    code = "ILLEGAL_TRANSITION"


class PaymentGatewayError(MarketplaceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "UPSTREAM_FAILURE"


class PlacesLookupError(MarketplaceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "UPSTREAM_FAILURE"


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
        exc_info=exc,
    )

    payload = build_error("Internal Server Error", code="SERVER_ERROR", request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    errors = jsonable_encoder(exc.errors())
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": errors,
            "path": request.url.path,
        },
    )

    payload = build_error("Invalid request", code="INVALID_INPUT", details=errors, request_id=rid)
    return json_error(payload, status_code=status.HTTP_400_BAD_REQUEST)



async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)
    payload = build_error(str(exc.detail), code=f"HTTP_{exc.status_code}", request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def marketplace_exception_handler(request: Request, exc: MarketplaceError):
    rid = request_id_ctx.get(None)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request.domain_error",
        extra={"path": request.url.path, "code": exc.code, "status_code": exc.status_code, "reason": exc.detail},
    )
    payload = build_error(exc.detail, code=exc.code, details=exc.extra or None, request_id=rid)
    return json_error(payload, status_code=exc.status_code)


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(Exception, fallback_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(MarketplaceError, marketplace_exception_handler)
