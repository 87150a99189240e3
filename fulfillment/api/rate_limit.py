"""
Per-client token bucket rate limiting backed by Redis.

The bucket is read, refilled and debited inside one Lua script so
concurrent requests from the same client cannot overspend it.
"""

import logging
import time
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from redis.asyncio.client import Redis
from redis.exceptions import RedisError

from fulfillment.config import settings
from fulfillment.redis import get_redis

logger = logging.getLogger(__name__)

TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])

local bucket = redis.call('HMGET', key, 'tokens', 'ts')
local tokens = tonumber(bucket[1])
local ts = tonumber(bucket[2])
if tokens == nil then
    tokens = capacity
    ts = now
end

local elapsed = math.max(0, now - ts)
tokens = math.min(capacity, tokens + elapsed * refill_rate)

local allowed = 0
if tokens >= cost then
    tokens = tokens - cost
    allowed = 1
end

redis.call('HSET', key, 'tokens', tokens, 'ts', now)
redis.call('EXPIRE', key, math.ceil(capacity / refill_rate) + 1)
return allowed
"""


class TokenBucketRateLimiter:
    """Token bucket keyed by an arbitrary client identifier."""

    def __init__(
        self,
        redis: Redis,
        capacity: Optional[int] = None,
        refill_per_second: Optional[float] = None,
        prefix: str = "ratelimit",
    ):
        self.redis = redis
        self.capacity = capacity or settings.rate_limit_capacity
        self.refill_per_second = refill_per_second or settings.rate_limit_refill_per_second
        self.prefix = prefix

    async def allow(self, identifier: str, cost: int = 1) -> bool:
        """Take tokens for identifier. Fails open if Redis is unavailable."""
        key = f"{self.prefix}:{identifier}"
        try:
            allowed = await self.redis.eval(
                TOKEN_BUCKET_SCRIPT,
                1,
                key,
                self.capacity,
                self.refill_per_second,
                time.time(),
                cost,
            )
        except RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return True
        return int(allowed) == 1


async def get_rate_limiter(redis: Redis = Depends(get_redis)) -> TokenBucketRateLimiter:
    return TokenBucketRateLimiter(redis)


async def rate_limit(
    request: Request,
    limiter: TokenBucketRateLimiter = Depends(get_rate_limiter),
) -> None:
    """Route dependency: 429 once the caller's bucket is empty."""
    client_ip = request.client.host if request.client else "unknown"
    scope = request.url.path.strip("/").split("/")[0] or "root"
    if not await limiter.allow(f"{scope}:{client_ip}"):
        logger.info(f"Rate limit exceeded for {client_ip} on /{scope}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests",
        )
