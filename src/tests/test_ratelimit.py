import pytest
from bookwise.ratelimit import RateLimiter, POLICIES

pytestmark = pytest.mark.asyncio

async def test_borrow_policy_allows_three_per_minute():
    limiter = RateLimiter("async+memory://")
    results = [await limiter.check("10.0.0.1", "borrow") for _ in range(4)]
    assert [r.allowed for r in results] == [True, True, True, False]
    assert results[0].limit == 3
    assert results[0].remaining == 2
    assert results[-1].remaining == 0
    assert results[-1].headers["X-RateLimit-Limit"] == "3"

async def test_identifiers_and_policies_are_independent():
    limiter = RateLimiter("async+memory://")
    for _ in range(3):
        await limiter.check("10.0.0.1", "borrow")
    assert (await limiter.check("10.0.0.1", "borrow")).allowed is False
    assert (await limiter.check("10.0.0.2", "borrow")).allowed is True
    assert (await limiter.check("10.0.0.1", "api")).allowed is True

async def test_disabled_limiter_always_allows():
    limiter = RateLimiter("async+memory://", enabled=False)
    for _ in range(10):
        r = await limiter.check("10.0.0.1", "borrow")
        assert r.allowed is True

async def test_policies():
    assert POLICIES["borrow"].amount == 3
    assert POLICIES["auth"].amount == 5
    assert POLICIES["api"].amount == 10
    assert POLICIES["search"].amount == 20
