from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from app.models.connector import RateLimitConfig
from app.utils.logger import get_logger

logger = get_logger("rate_limiter")

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_SECONDS = 1.0


def error_status_code(exc: BaseException) -> Optional[int]:
    """HTTP status carried by an exception, if any.

    Understands ``UpstreamHttpError.status_code`` as well as
    ``httpx.HTTPStatusError.response.status_code``.
    """
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class RateLimiter:
    """Per-connector request pacing plus 429 backoff.

    Pacing is advisory: each call waits until ``min_interval`` has passed
    since the previous call for the same connector, then records *now* as
    the last request time. Two jobs running against the same connector
    share one slot and may interleave (last write wins).

    State lives on the instance; the sync engine owns exactly one. Only
    safe on a single event loop.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._last_request_at: Dict[str, float] = {}

    def last_request_at(self, connector_id: str) -> Optional[float]:
        return self._last_request_at.get(connector_id)

    def compute_delay(self, connector_id: str, config: Optional[RateLimitConfig]) -> float:
        """Seconds the next request for ``connector_id`` has to wait (>= 0)."""
        min_interval = config.min_interval_seconds if config is not None else None
        if not min_interval:
            return 0.0
        last = self._last_request_at.get(connector_id)
        if last is None:
            return 0.0
        elapsed = self._clock() - last
        return max(0.0, min_interval - elapsed)

    async def delay_request(self, connector_id: str, config: Optional[RateLimitConfig]) -> float:
        """Suspend until a request is permitted; returns the seconds waited."""
        delay = self.compute_delay(connector_id, config)
        if delay > 0:
            logger.debug("Pacing connector=%s for %.3fs", connector_id, delay)
            await self._sleep(delay)
        self._last_request_at[connector_id] = self._clock()
        return delay

    async def retry_with_backoff(
        self,
        fn: Callable[[], Awaitable[T]],
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS,
    ) -> T:
        """Call ``fn`` and retry only on HTTP 429.

        Makes at most ``max_retries + 1`` attempts, sleeping
        ``initial_delay * 2**attempt`` between them. Any other error, or a
        429 on the last attempt, propagates unchanged.
        """
        delay = initial_delay
        attempt = 0
        while True:
            try:
                return await fn()
            except Exception as exc:
                if error_status_code(exc) == 429 and attempt < max_retries:
                    attempt += 1
                    logger.info(
                        "Rate limited, retrying in %.1fs (attempt %s/%s)",
                        delay,
                        attempt,
                        max_retries,
                    )
                    await self._sleep(delay)
                    delay *= 2
                    continue
                raise
