import httpx
import pytest
from marketplace.common.retries import is_retryable_http_error, retry_http


def _client(responses):
    calls = []

    def handler(request):
        calls.append(request)
        item = responses[min(len(calls), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item, json={"attempt": len(calls)})

    return httpx.AsyncClient(base_url="https://upstream.test", transport=httpx.MockTransport(handler)), calls


@pytest.mark.asyncio
async def test_retries_server_errors_until_success():
    client, calls = _client([503, 502, 200])
    async with client:
        resp = await retry_http(lambda: client.get("/ping"), label="test.ping", backoff_base=0)
    assert resp.json() == {"attempt": 3}
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retries_connection_errors():
    client, calls = _client([httpx.ConnectError("refused"), 200])
    async with client:
        resp = await retry_http(lambda: client.get("/ping"), label="test.ping", backoff_base=0)
    assert resp.status_code == 200
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    client, calls = _client([404, 200])
    async with client:
        with pytest.raises(httpx.HTTPStatusError):
            await retry_http(lambda: client.get("/ping"), label="test.ping", backoff_base=0)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_last_failure_is_raised():
    client, calls = _client([500])
    async with client:
        with pytest.raises(httpx.HTTPStatusError):
            await retry_http(lambda: client.get("/ping"), label="test.ping", max_retries=2, backoff_base=0)
    assert len(calls) == 2


def test_is_retryable_http_error():
    request = httpx.Request("GET", "https://upstream.test")
    assert is_retryable_http_error(httpx.ReadTimeout("slow", request=request))
    assert is_retryable_http_error(httpx.HTTPStatusError("boom", request=request,
                                                         response=httpx.Response(500, request=request)))
    assert not is_retryable_http_error(httpx.HTTPStatusError("nope", request=request,
                                                             response=httpx.Response(422, request=request)))
    assert not is_retryable_http_error(ValueError("x"))
