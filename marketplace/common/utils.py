import math
import uuid
from datetime import datetime,timezone
from typing import Any, Dict, Optional, Union

from fastapi.responses import JSONResponse
from marketplace.common.constants import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, request_id_ctx

def now() -> datetime:
    return datetime.now(timezone.utc)


def build_success(data: Dict[str, Any], request_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "status": "ok",
        "data": data,
        "error": None,
        "request_id": request_id or request_id_ctx.get(),
    }

def build_error(message: str,
                code: Union[str, int] = "UNKNOWN_ERROR",
                details: Optional[Any] = None,
                request_id: Optional[str] = None) -> Dict[str, Any]:
    body = {
        "status": "error",
        "data": None,
        "error": message,
        "code": code,
        "request_id": request_id or request_id_ctx.get(),
    }
    if details is not None:
        body["details"] = details
    return body

def json_ok(content: Dict[str, Any], status_code: int = 200,headers = None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code,headers=headers)

def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)

def success_response(data: Dict[str, Any], status_code: int = 200,headers: Optional[Dict[str, Any]] = None) -> JSONResponse:
    content = build_success(data)
    return json_ok(content, status_code=status_code,headers=headers)


def to_int(value: Any, default: int) -> int:
    """Lenient query-param coercion: malformed numbers fall back to the default."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

def to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None

def page_params(page: Any, limit: Any, default_limit: int = DEFAULT_PAGE_LIMIT) -> tuple[int, int, int]:
    page_no = max(1, to_int(page, 1))
    size = min(MAX_PAGE_LIMIT, max(1, to_int(limit, default_limit)))
    return page_no, size, (page_no - 1) * size

def page_meta(total: int, page: int, limit: int) -> Dict[str, int]:
    return {"total": total, "page": page, "limit": limit, "totalPages": math.ceil(total / limit) if limit else 0}

def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

def money(value: Optional[float]) -> float:
    return round(float(value or 0), 2)


def parse_pid(value: Any) -> Optional[uuid.UUID]:
    """Public ids arrive as strings; anything that is not a uuid matches nothing."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None

def clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None
