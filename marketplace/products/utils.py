from typing import Any, List, Optional
from marketplace.schema.full_schema import ProductCategory

_MISSING = object()

SORT_KEYS = ("newest", "price_asc", "price_desc", "name", "rating")


def parse_category(value: Any, default: Any = _MISSING) -> Optional[ProductCategory]:
    """Case-insensitive enum lookup. Unknown values raise unless a default is given."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None if default is _MISSING else default
    try:
        return ProductCategory(str(value).strip().upper())
    except ValueError:
        if default is _MISSING:
            raise
        return default


def parse_sort(value: Optional[str]) -> str:
    return value if value in SORT_KEYS else "newest"


def split_images(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(";") if part.strip()]


def parse_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return default
    return text in ("true", "1", "yes", "y")
