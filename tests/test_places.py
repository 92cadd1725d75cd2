import httpx
import pytest
from helpers import url_prefix
from marketplace.main import app
from marketplace.places.client import PlacesClient, parse_place

LEKKI_DETAILS = {
    "formatted_address": "12 Admiralty Way, Lekki Phase 1, Lagos, Nigeria",
    "geometry": {"location": {"lat": 6.4474, "lng": 3.4723}},
    "address_components": [
        {"long_name": "12", "types": ["street_number"]},
        {"long_name": "Admiralty Way", "types": ["route"]},
        {"long_name": "Lekki", "types": ["locality", "political"]},
        {"long_name": "Lagos", "types": ["administrative_area_level_1", "political"]},
        {"long_name": "Nigeria", "types": ["country", "political"]},
    ],
}


@pytest.fixture
async def places(ac_client):
    seen = []
    answers = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=answers[request.url.path])

    await app.state.places.aclose()
    app.state.places = PlacesClient(
        api_key="places-key", base_url="https://places.test",
        http_client=httpx.AsyncClient(base_url="https://places.test", transport=httpx.MockTransport(handler)),
    )
    return seen, answers


@pytest.mark.asyncio
async def test_autocomplete_is_restricted_to_nigeria(ac_client, places):
    seen, answers = places
    answers["/autocomplete/json"] = {"status": "OK", "predictions": [{
        "place_id": "abc", "description": "Lekki, Lagos, Nigeria",
        "structured_formatting": {"main_text": "Lekki", "secondary_text": "Lagos, Nigeria"},
    }]}

    resp = await ac_client.get(f"{url_prefix}/places/autocomplete", params={"input": "Lekki", "location": "6.5,3.3"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["predictions"] == [
        {"placeId": "abc", "description": "Lekki, Lagos, Nigeria", "mainText": "Lekki", "secondaryText": "Lagos, Nigeria"},
    ]
    params = seen[0].url.params
    assert params["components"] == "country:ng"
    assert params["key"] == "places-key"
    assert params["radius"] == "50000"


@pytest.mark.asyncio
async def test_autocomplete_input_length(ac_client, places):
    resp = await ac_client.get(f"{url_prefix}/places/autocomplete", params={"input": " L "})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Input query must be at least 2 characters"
    assert places[0] == []


@pytest.mark.asyncio
async def test_details(ac_client, places):
    _, answers = places
    answers["/details/json"] = {"status": "OK", "result": LEKKI_DETAILS}

    resp = await ac_client.get(f"{url_prefix}/places/details", params={"placeId": "abc"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert (data["latitude"], data["longitude"]) == (6.4474, 3.4723)
    assert data["city"] == "Lekki"

    missing = await ac_client.get(f"{url_prefix}/places/details")
    assert missing.json()["error"] == "Place ID is required"


@pytest.mark.asyncio
async def test_upstream_error_status(ac_client, places):
    _, answers = places
    answers["/autocomplete/json"] = {"status": "REQUEST_DENIED", "error_message": "The provided API key is invalid."}

    resp = await ac_client.get(f"{url_prefix}/places/autocomplete", params={"input": "Yaba"})
    assert resp.status_code == 500
    assert resp.json()["code"] == "UPSTREAM_FAILURE"


@pytest.mark.asyncio
async def test_unconfigured_client(ac_client):
    resp = await ac_client.get(f"{url_prefix}/places/details", params={"placeId": "abc"})
    assert resp.status_code == 500
    assert resp.json()["error"] == "Places API not configured"


def test_parse_place_fallbacks():
    place = parse_place({"address_components": [
        {"long_name": "Ikeja", "types": ["administrative_area_level_2"]},
        {"long_name": "Allen Avenue", "types": ["route"]},
    ]})
    assert place["city"] == "Ikeja"
    assert place["street"] == "Allen Avenue"
    assert place["country"] == "Nigeria"
    assert place["latitude"] is None
