"""
Edge rate limiting, applied before a request reaches the redirector or the API.

Both limiters keep their state in redis so several workers share one budget.
"""
from __future__ import annotations
from dataclasses import dataclass

from redis import Redis
import time


@dataclass(frozen=True)
class WindowResult:
    allowed: bool
    remaining: int
    reset_seconds: int


def check_fixed_window(
    r: Redis,
    key: str,
    limit: int,
    window_seconds: int,
) -> WindowResult:
    """
    Fixed window counter, one redis key per caller:
    the first hit in a window starts the TTL, hits past `limit` are refused
    until the key expires.
    """
    count = int(r.incr(key))

    if count == 1:
        r.expire(key, window_seconds)

    ttl = r.ttl(key)
    # -1/-2 when the key has no TTL or vanished in between
    reset_seconds = ttl if isinstance(ttl, int) and ttl > 0 else window_seconds

    return WindowResult(
        allowed=count <= limit,
        remaining=max(0, limit - count),
        reset_seconds=reset_seconds,
    )


TOKEN_BUCKET_LUA = r"""
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])
local ttl = tonumber(ARGV[5])

local state = redis.call("HMGET", key, "tokens", "ts")
local tokens = tonumber(state[1]) or capacity
local ts = tonumber(state[2]) or now

tokens = math.min(capacity, tokens + math.max(0, now - ts) * refill_rate)

local allowed = 0
local retry_after = 0
if tokens >= cost then
  allowed = 1
  tokens = tokens - cost
else
  retry_after = math.ceil((cost - tokens) / refill_rate)
end

redis.call("HSET", key, "tokens", tokens, "ts", now)
redis.call("EXPIRE", key, ttl)

return {allowed, tostring(tokens), retry_after}
"""


@dataclass(frozen=True)
class BucketResult:
    allowed: bool
    remaining: int
    retry_after: int


def check_token_bucket(
    r: Redis,
    key: str,
    capacity: int,
    window_seconds: int,
    cost: int = 1,
    ttl_seconds: int | None = None,
) -> BucketResult:
    """
    Token bucket refilled linearly at capacity / window_seconds tokens per
    second. The whole read-refill-spend step runs as one Lua script.
    """
    refill_rate = capacity / float(window_seconds)
    ttl = ttl_seconds if ttl_seconds is not None else window_seconds * 2

    allowed, tokens, retry_after = r.eval(
        TOKEN_BUCKET_LUA,
        1,
        key,
        capacity,
        refill_rate,
        time.time(),
        cost,
        ttl,
    )

    return BucketResult(
        allowed=bool(int(allowed)),
        remaining=max(0, int(float(tokens))),
        retry_after=int(retry_after),
    )
