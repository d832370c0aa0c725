import httpx
import pytest

from app.models.connector import RateLimitConfig
from app.services.sync.errors import RateLimitedRetryable, UpstreamHttpError
from app.services.sync.rate_limiter import RateLimiter, error_status_code


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSleep:
    """Records requested delays and advances the fake clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return FakeSleep(clock)


@pytest.fixture
def limiter(clock, sleeper):
    return RateLimiter(clock=clock, sleep=sleeper)


def test_no_config_means_no_delay(limiter):
    assert limiter.compute_delay("c1", None) == 0.0
    assert limiter.compute_delay("c1", RateLimitConfig()) == 0.0


def test_requests_per_second_interval():
    assert RateLimitConfig(requests_per_second=4).min_interval_seconds == 0.25
    assert RateLimitConfig(requests_per_minute=30).min_interval_seconds == 2.0
    # requestsPerSecond wins when both are set
    assert RateLimitConfig(requests_per_second=2, requests_per_minute=1).min_interval_seconds == 0.5


@pytest.mark.asyncio
async def test_first_request_is_not_delayed(limiter, sleeper, clock):
    waited = await limiter.delay_request("c1", RateLimitConfig(requests_per_second=1))

    assert waited == 0.0
    assert sleeper.calls == []
    assert limiter.last_request_at("c1") == clock.now


@pytest.mark.asyncio
async def test_second_request_waits_remaining_interval(limiter, sleeper, clock):
    config = RateLimitConfig(requests_per_second=2)
    await limiter.delay_request("c1", config)

    clock.now += 0.2
    waited = await limiter.delay_request("c1", config)

    assert waited == pytest.approx(0.3)
    assert sleeper.calls == [pytest.approx(0.3)]
    # timestamp is the actual time after waiting
    assert limiter.last_request_at("c1") == pytest.approx(100.5)


@pytest.mark.asyncio
async def test_elapsed_interval_means_no_wait(limiter, sleeper, clock):
    config = RateLimitConfig(requests_per_minute=60)
    await limiter.delay_request("c1", config)

    clock.now += 5
    assert await limiter.delay_request("c1", config) == 0.0
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_connectors_are_paced_independently(limiter, sleeper):
    config = RateLimitConfig(requests_per_second=1)
    await limiter.delay_request("c1", config)
    await limiter.delay_request("c2", config)

    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_separate_limiters_do_not_share_state(clock, sleeper):
    config = RateLimitConfig(requests_per_second=1)
    first = RateLimiter(clock=clock, sleep=sleeper)
    second = RateLimiter(clock=clock, sleep=sleeper)

    await first.delay_request("c1", config)
    await second.delay_request("c1", config)

    assert sleeper.calls == []


class Flaky:
    def __init__(self, failures):
        self.failures = list(failures)
        self.attempts = 0

    async def __call__(self):
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


@pytest.mark.asyncio
async def test_retry_on_429_with_exponential_backoff(limiter, sleeper):
    fn = Flaky([RateLimitedRetryable("HTTP 429", status_code=429)] * 2)

    result = await limiter.retry_with_backoff(fn, max_retries=3, initial_delay=1.0)

    assert result == "ok"
    assert fn.attempts == 3
    assert sleeper.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_429_on_final_attempt_propagates(limiter, sleeper):
    fn = Flaky([RateLimitedRetryable("HTTP 429", status_code=429)] * 10)

    with pytest.raises(RateLimitedRetryable):
        await limiter.retry_with_backoff(fn, max_retries=3, initial_delay=1.0)

    assert fn.attempts == 4
    assert sleeper.calls == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(limiter, sleeper):
    fn = Flaky([UpstreamHttpError("HTTP 500", status_code=500)])

    with pytest.raises(UpstreamHttpError):
        await limiter.retry_with_backoff(fn, max_retries=3)

    assert fn.attempts == 1
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt(limiter, sleeper):
    fn = Flaky([RateLimitedRetryable("HTTP 429", status_code=429)])

    with pytest.raises(RateLimitedRetryable):
        await limiter.retry_with_backoff(fn, max_retries=0)

    assert fn.attempts == 1


def test_error_status_code_reads_httpx_errors():
    request = httpx.Request("GET", "https://api.example.com/x")
    response = httpx.Response(429, request=request)
    exc = httpx.HTTPStatusError("Too Many Requests", request=request, response=response)

    assert error_status_code(exc) == 429
    assert error_status_code(UpstreamHttpError("boom", status_code=503)) == 503
    assert error_status_code(ValueError("nope")) is None
