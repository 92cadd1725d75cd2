import asyncio
import time
from typing import Dict, Optional, Tuple
from fastapi import Request
from redis.exceptions import RedisError
from marketplace.rate_limiting.constants import FAIL_OPEN, LUA_FIXED_WINDOW_INCR_AND_PEXPIRE, USE_IN_MEMORY_FALLBACK, logger

Decision = Tuple[bool, int, int]   # (allowed, remaining, reset unix ts)


class FixedWindowLimiter:
    """Fixed-window counter kept in redis, with a per-process fallback for short outages."""

    def __init__(self, redis_client):
        self.redis = redis_client
        self._script_sha: Optional[str] = None
        self._script_lock = asyncio.Lock()
        self._local_counters: Dict[str, dict] = {}
        self._local_lock = asyncio.Lock()

    async def _ensure_script(self) -> str:
        if self._script_sha:
            return self._script_sha
        async with self._script_lock:
            if not self._script_sha:
                self._script_sha = await self.redis.script_load(LUA_FIXED_WINDOW_INCR_AND_PEXPIRE)
        return self._script_sha

    async def allow(self, key: str, limit: int, window: int) -> Decision:
        try:
            sha = await self._ensure_script()
            res = await self.redis.evalsha(sha, 1, key, int(window * 1000))
        except (RedisError, OSError) as exc:
            logger.warning("rate_limit.redis_unavailable", extra={"key": key, "error": str(exc)})
            if USE_IN_MEMORY_FALLBACK:
                return await self.allow_local(key, limit, window)
            now_ts = int(time.time())
            if FAIL_OPEN:
                return True, max(0, limit - 1), now_ts + window
            return False, 0, now_ts + window

        count, ttl_ms = int(res[0]), int(res[1])
        now_ts = int(time.time())
        reset_ts = now_ts + (ttl_ms // 1000) if ttl_ms > 0 else now_ts + window
        allowed = count <= limit
        return allowed, max(0, limit - count) if allowed else 0, reset_ts

    async def allow_local(self, key: str, limit: int, window: int) -> Decision:
        async with self._local_lock:
            now_ts = int(time.time())
            entry = self._local_counters.get(key)
            if not entry or entry["expires_at"] <= now_ts:
                self._local_counters[key] = {"count": 1, "expires_at": now_ts + window}
                return True, max(0, limit - 1), now_ts + window
            if entry["count"] >= limit:
                return False, 0, entry["expires_at"]
            entry["count"] += 1
            return True, max(0, limit - entry["count"]), entry["expires_at"]


def identifier_from_request(request: Request) -> Tuple[str, str]:
    """Authenticated user id, else the client ip."""
    user_pid = getattr(request.state, "user_public_id", None)
    if user_pid:
        return str(user_pid), "user"
    xff = request.headers.get("X-Forwarded-For")
    if xff:
        return xff.split(",")[0].strip() or "unknown", "ip"
    return (request.client.host if request.client else "unknown"), "ip"
