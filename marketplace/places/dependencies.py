from fastapi import Request
from marketplace.places.client import PlacesClient


async def get_places(request: Request) -> PlacesClient:
    return request.app.state.places
