from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from marketplace.common.utils import success_response
from marketplace.places.client import PlacesClient
from marketplace.places.constants import MIN_INPUT_LENGTH
from marketplace.places.dependencies import get_places
from marketplace.rate_limiting.dependencies import rate_limit_dependency

places_router = APIRouter(dependencies=[Depends(rate_limit_dependency(limit=60, window=60, route_key="places"))])


@places_router.get("/autocomplete")
async def autocomplete(input: Optional[str] = None, location: Optional[str] = None,
                       client: PlacesClient = Depends(get_places)):

    text = (input or "").strip()
    if len(text) < MIN_INPUT_LENGTH:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Input query must be at least {MIN_INPUT_LENGTH} characters")
    predictions = await client.autocomplete(text, (location or "").strip() or None)
    return success_response({"predictions": predictions})


@places_router.get("/details")
async def details(placeId: Optional[str] = None, client: PlacesClient = Depends(get_places)):
    if not placeId:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Place ID is required")
    return success_response(await client.details(placeId))
