import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.requests import Request
from helpers import url_prefix
from marketplace.config.settings import config_settings
from marketplace.rate_limiting.limiter import FixedWindowLimiter, identifier_from_request


class DownRedis:
    async def script_load(self, script):
        raise RedisConnectionError("connection refused")


class CountingRedis:
    def __init__(self):
        self.counts = {}

    async def script_load(self, script):
        return "sha1"

    async def evalsha(self, sha, numkeys, key, window_ms):
        self.counts[key] = self.counts.get(key, 0) + 1
        return [self.counts[key], window_ms]


def _request(headers=None, client=("10.0.0.9", 5000), user=None):
    scope = {
        "type": "http", "method": "GET", "path": "/", "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    req = Request(scope)
    if user:
        req.state.user_public_id = user
    return req


@pytest.mark.asyncio
async def test_redis_counter_blocks_after_limit():
    limiter = FixedWindowLimiter(CountingRedis())
    decisions = [await limiter.allow("rl:ip:1:login", 3, 60) for _ in range(4)]
    assert [d[0] for d in decisions] == [True, True, True, False]
    assert [d[1] for d in decisions] == [2, 1, 0, 0]


@pytest.mark.asyncio
async def test_local_fallback_when_redis_is_down():
    limiter = FixedWindowLimiter(DownRedis())
    decisions = [await limiter.allow("rl:ip:1:login", 2, 60) for _ in range(3)]
    assert [d[0] for d in decisions] == [True, True, False]
    # other keys keep their own budget
    assert (await limiter.allow("rl:ip:2:login", 2, 60))[0] is True


@pytest.mark.asyncio
async def test_local_window_expires(monkeypatch):
    limiter = FixedWindowLimiter(DownRedis())
    clock = [1_000]
    monkeypatch.setattr("marketplace.rate_limiting.limiter.time.time", lambda: clock[0])

    assert (await limiter.allow_local("k", 1, 10))[0] is True
    assert (await limiter.allow_local("k", 1, 10))[0] is False
    clock[0] += 10
    assert (await limiter.allow_local("k", 1, 10))[0] is True


def test_identifier_prefers_user_then_forwarded_ip():
    assert identifier_from_request(_request(user="u-1")) == ("u-1", "user")
    assert identifier_from_request(_request({"X-Forwarded-For": "41.58.1.2, 10.0.0.1"})) == ("41.58.1.2", "ip")
    assert identifier_from_request(_request()) == ("10.0.0.9", "ip")
    assert identifier_from_request(_request(client=None)) == ("unknown", "ip")


@pytest.mark.asyncio
async def test_login_is_limited(ac_client, monkeypatch):
    monkeypatch.setattr(config_settings, "RATE_LIMIT_ENABLED", True)
    payload = {"email": "nobody@example.com", "password": "wrong-password"}

    codes = [(await ac_client.post(f"{url_prefix}/auth/login", json=payload)).status_code for _ in range(10)]
    assert set(codes) == {401}

    blocked = await ac_client.post(f"{url_prefix}/auth/login", json=payload)
    assert blocked.status_code == 429
    assert blocked.json()["error"] == "Too many requests"
    assert int(blocked.headers["Retry-After"]) <= 60
