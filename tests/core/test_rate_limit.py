import pytest
import redis.asyncio as redis
from unittest.mock import AsyncMock

from edgegate.core.rate_limit import InMemoryRateLimiter, RedisRateLimiter


@pytest.mark.anyio
async def test_in_memory_limiter_blocks_after_limit():
    limiter = InMemoryRateLimiter(limit=3, window_seconds=60)

    for _ in range(3):
        allowed, retry_after = await limiter.allow("shop.example.com")
        assert allowed
        assert retry_after is None

    allowed, retry_after = await limiter.allow("shop.example.com")
    assert not allowed
    assert 0 < retry_after <= 60

    # other sites have their own window
    allowed, _ = await limiter.allow("blog.example.com")
    assert allowed


@pytest.mark.anyio
async def test_in_memory_limiter_resets_after_window():
    limiter = InMemoryRateLimiter(limit=1, window_seconds=0)

    assert (await limiter.allow("shop.example.com"))[0]
    assert (await limiter.allow("shop.example.com"))[0]


@pytest.mark.anyio
async def test_in_memory_limiter_drops_oldest_site_when_full():
    limiter = InMemoryRateLimiter(limit=5, window_seconds=60, max_buckets=2)

    for host in ("a.example.com", "b.example.com", "c.example.com"):
        assert (await limiter.allow(host))[0]

    assert len(limiter.buckets) == 2
    assert "a.example.com" not in limiter.buckets
    assert "c.example.com" in limiter.buckets


@pytest.mark.anyio
async def test_in_memory_limiter_prunes_expired_windows():
    limiter = InMemoryRateLimiter(limit=5, window_seconds=0, max_buckets=3)

    for i in range(50):
        await limiter.allow(f"random-{i}.example.com")

    assert len(limiter.buckets) == 1


@pytest.mark.anyio
async def test_redis_limiter_blocks_after_limit():
    mock_redis = AsyncMock()
    mock_redis.evalsha = AsyncMock(side_effect=[0, 0, 0, 2500])
    mock_redis.script_load = AsyncMock(return_value="mocked-sha")

    limiter = RedisRateLimiter(mock_redis, limit=3, window_ms=10000)

    for _ in range(3):
        assert await limiter.allow("shop.example.com") == (True, None)
    assert await limiter.allow("shop.example.com") == (False, 2)

    mock_redis.script_load.assert_awaited_once()
    args = mock_redis.evalsha.await_args.args
    assert args[0] == "mocked-sha"
    assert args[2] == "edgegate:overload:shop.example.com"
    assert args[4:] == (10000, 3)


@pytest.mark.anyio
async def test_redis_limiter_reloads_evicted_script():
    mock_redis = AsyncMock()
    mock_redis.evalsha = AsyncMock(side_effect=[redis.ResponseError("NOSCRIPT No matching script"), 0])
    mock_redis.script_load = AsyncMock(side_effect=["sha-1", "sha-2"])

    limiter = RedisRateLimiter(mock_redis, limit=3)

    assert await limiter.allow("shop.example.com") == (True, None)
    assert limiter.script_sha == "sha-2"


@pytest.mark.anyio
async def test_redis_limiter_propagates_other_errors():
    mock_redis = AsyncMock()
    mock_redis.evalsha = AsyncMock(side_effect=redis.ResponseError("WRONGTYPE"))
    mock_redis.script_load = AsyncMock(return_value="sha")

    limiter = RedisRateLimiter(mock_redis, limit=3)

    with pytest.raises(redis.ResponseError):
        await limiter.allow("shop.example.com")
