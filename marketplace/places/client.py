from typing import Any, Dict, List, Optional
import httpx
from marketplace.common.custom_exceptions import PlacesLookupError
from marketplace.common.retries import retry_http
from marketplace.config.settings import config_settings
from marketplace.places.constants import (COUNTRY_COMPONENT, DETAIL_FIELDS, LOCATION_BIAS_RADIUS_M,
                                          NOT_CONFIGURED_MESSAGE, OK_STATUSES, logger)


class PlacesClient:
    """Google Places autocomplete and details lookups, restricted to Nigeria."""

    def __init__(self, api_key: Optional[str], base_url: str, timeout: float = 10.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @classmethod
    def from_settings(cls) -> "PlacesClient":
        return cls(api_key=config_settings.GOOGLE_PLACES_API_KEY, base_url=config_settings.GOOGLE_PLACES_BASE_URL)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Dict[str, Any], *, label: str) -> Dict[str, Any]:
        if not self.configured:
            logger.error("places.not_configured")
            raise PlacesLookupError(NOT_CONFIGURED_MESSAGE, extra={"configured": False})

        try:
            resp = await retry_http(lambda: self._client.get(path, params={**params, "key": self.api_key}), label=label)
        except httpx.HTTPStatusError as exc:
            raise PlacesLookupError(f"Places API returned {exc.response.status_code}")
        except httpx.HTTPError as exc:
            raise PlacesLookupError(f"Places API unreachable: {exc.__class__.__name__}")
        try:
            return resp.json()
        except ValueError:
            raise PlacesLookupError("Places API returned an invalid response")

    async def autocomplete(self, text: str, location: Optional[str] = None) -> List[dict]:
        params = {"input": text, "components": COUNTRY_COMPONENT}
        if location:
            params["location"] = location
            params["radius"] = str(LOCATION_BIAS_RADIUS_M)

        body = await self._get("/autocomplete/json", params, label="places.autocomplete")
        if body.get("status") not in OK_STATUSES:
            logger.error("places.autocomplete.failed", extra={"places_status": body.get("status")})
            raise PlacesLookupError(body.get("error_message") or "Failed to fetch places")

        return [
            {
                "placeId": p.get("place_id"),
                "description": p.get("description"),
                "mainText": (p.get("structured_formatting") or {}).get("main_text", ""),
                "secondaryText": (p.get("structured_formatting") or {}).get("secondary_text", ""),
            }
            for p in body.get("predictions") or []
        ]

    async def details(self, place_id: str) -> dict:
        body = await self._get("/details/json", {"place_id": place_id, "fields": DETAIL_FIELDS}, label="places.details")
        if body.get("status") != "OK":
            logger.error("places.details.failed", extra={"places_status": body.get("status")})
            raise PlacesLookupError(body.get("error_message") or "Failed to fetch place details")
        return parse_place(body.get("result") or {})


def parse_place(result: dict) -> dict:
    components = result.get("address_components") or []

    def part(kind: str) -> str:
        for c in components:
            if kind in (c.get("types") or []):
                return c.get("long_name") or ""
        return ""

    location = (result.get("geometry") or {}).get("location") or {}
    return {
        "formattedAddress": result.get("formatted_address"),
        "latitude": location.get("lat"),
        "longitude": location.get("lng"),
        "street": f"{part('street_number')} {part('route')}".strip() or part("route"),
        "city": part("locality") or part("administrative_area_level_2") or part("sublocality"),
        "state": part("administrative_area_level_1"),
        "postalCode": part("postal_code"),
        "country": part("country") or "Nigeria",
    }
