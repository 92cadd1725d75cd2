from marketplace.common.logging_setup import get_logger

logger = get_logger("marketplace.rate_limiting")

DEFAULT_LIMIT = 20          # requests
DEFAULT_WINDOW = 60         # seconds
RATE_LIMIT_PREFIX = "rl"    # redis key prefix
FAIL_OPEN = True            # when redis and the local fallback both fail, let the request through
USE_IN_MEMORY_FALLBACK = True

LUA_FIXED_WINDOW_INCR_AND_PEXPIRE = """
local counter = redis.call("INCR", KEYS[1])
if tonumber(counter) == 1 then
  redis.call("PEXPIRE", KEYS[1], ARGV[1])
else
  local ttl = redis.call("PTTL", KEYS[1])
  if ttl < 0 then
    redis.call("PEXPIRE", KEYS[1], ARGV[1])
  end
end
local ttl = redis.call("PTTL", KEYS[1])
return {counter, ttl}
"""
