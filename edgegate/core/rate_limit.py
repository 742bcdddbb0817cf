import time
import redis.asyncio as redis
from typing import Optional


# Sliding window over a sorted set of request timestamps. Returns the
# remaining TTL in ms when the window is full, otherwise records the hit.
LUA_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call("ZREMRANGEBYSCORE", key, "-inf", now - window)

local count = redis.call("ZCARD", key)
if count >= limit then
  local ttl = redis.call("PTTL", key)
  if ttl <= 0 then
    ttl = window
  end
  return ttl
end

redis.call("ZADD", key, now, now)
redis.call("PEXPIRE", key, window)
return 0
"""


class InMemoryRateLimiter:
    """Fixed window counter per identity, local to this process.

    At most ``max_buckets`` identities are tracked. When a new identity would
    go over that, expired windows are dropped first and then the oldest ones.
    """

    def __init__(self, limit: int, window_seconds: float = 1.0, max_buckets: int = 10000):
        self.limit = limit
        self.window = window_seconds
        self.max_buckets = max_buckets
        self.buckets: dict[str, list[float]] = {}  # identity -> [window start, count]

    async def allow(self, identity: str) -> tuple[bool, Optional[int]]:
        now = time.time()
        bucket = self.buckets.get(identity)

        if not bucket:
            self._evict(now)
            self.buckets[identity] = [now, 1]
            return True, None

        if now - bucket[0] >= self.window:
            self.buckets[identity] = [now, 1]
            return True, None

        if bucket[1] < self.limit:
            bucket[1] += 1
            return True, None

        return False, self.retry_after(identity)

    def _evict(self, now: float) -> None:
        if len(self.buckets) < self.max_buckets:
            return
        for identity in [k for k, (start, _) in self.buckets.items() if now - start >= self.window]:
            del self.buckets[identity]
        while self.buckets and len(self.buckets) >= self.max_buckets:
            oldest = min(self.buckets, key=lambda k: self.buckets[k][0])
            del self.buckets[oldest]

    def retry_after(self, identity: str) -> int:
        bucket = self.buckets.get(identity)
        if not bucket:
            return 0
        return max(0, int(self.window - (time.time() - bucket[0])))


class RedisRateLimiter:
    """Sliding window limiter shared by every proxy instance using the same Redis."""

    def __init__(
        self,
        redis_client: redis.Redis,
        limit: int,
        window_ms: int = 1000,
        key_prefix: str = "edgegate:overload:",
    ):
        self.redis = redis_client
        self.limit = limit
        self.window_ms = window_ms
        self.key_prefix = key_prefix
        self.script_sha = None

    def _key(self, identity: str) -> str:
        return f"{self.key_prefix}{identity}"

    def _now(self) -> int:
        return int(time.time() * 1000)

    async def load_script(self):
        if not self.script_sha:
            self.script_sha = await self.redis.script_load(LUA_SCRIPT)

    async def allow(self, identity: str, _reloaded: bool = False) -> tuple[bool, Optional[int]]:
        await self.load_script()
        try:
            ttl = await self.redis.evalsha(self.script_sha, 1, self._key(identity),
                                           self._now(), self.window_ms, self.limit)
        except redis.ResponseError as e:
            if "NOSCRIPT" in str(e) and not _reloaded:
                self.script_sha = None
                return await self.allow(identity, _reloaded=True)
            raise
        if int(ttl) > 0:
            return False, max(1, int(ttl) // 1000)
        return True, None
