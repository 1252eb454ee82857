import time

import httpx
import pytest

from enswatch.utils.rate_limit import RateLimiter
from enswatch.utils.retry import RetryState, backoff_delay, is_retryable


def status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.example.test/")
    return httpx.HTTPStatusError("error", request=request, response=httpx.Response(code, request=request))


def test_backoff_is_exponential_and_capped():
    assert [backoff_delay(attempt) for attempt in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert backoff_delay(3, base=0) == 0


def test_only_the_first_timeout_shrinks_the_page():
    state = RetryState(limit=100)
    state = state.advance(timed_out=False)
    assert state.limit == 100
    state = state.advance(timed_out=True)
    assert state.limit == 50
    state = state.advance(timed_out=True)
    assert state.limit == 50
    assert state.attempt == 3
    assert state.exhausted(3)
    assert not state.exhausted(4)


def test_shrink_respects_floor():
    assert RetryState(limit=12, min_limit=10).advance(timed_out=True).limit == 10


def test_unpaginated_state_only_counts_attempts():
    state = RetryState().advance(timed_out=True).advance()
    assert state.limit is None
    assert state.attempt == 2
    assert state.exhausted(2)


@pytest.mark.parametrize(
    "exc,expected",
    [
        (httpx.ConnectError("refused"), True),
        (httpx.ReadTimeout("slow"), True),
        (status_error(429), True),
        (status_error(503), True),
        (status_error(404), False),
        (status_error(403), False),
    ],
)
def test_retryable_failures(exc, expected):
    assert is_retryable(exc) is expected


@pytest.mark.asyncio
async def test_rate_limiter_spaces_requests_per_host():
    limiter = RateLimiter(rate=20)
    started = time.monotonic()
    await limiter.acquire("https://api.opensea.io/a")
    await limiter.acquire("https://metadata.ens.domains/b")
    assert time.monotonic() - started < 0.05
    await limiter.acquire("https://api.opensea.io/c")
    assert time.monotonic() - started >= 0.04


@pytest.mark.asyncio
async def test_zero_rate_disables_throttling():
    limiter = RateLimiter(rate=0)
    await limiter.acquire("https://api.opensea.io/a")
    await limiter.acquire("https://api.opensea.io/a")
    assert limiter._next_slot == {}
