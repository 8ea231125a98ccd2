"""Retry policy for catalog fetches.

A single :class:`RetryPolicy` instance wraps every detail-page GET.  The
caller supplies a *classifier* that maps an exception to a
:class:`FailureKind`:

``PERMANENT``     : give up at once (a 404 from a stale catalog link).
``TRANSIENT``     : retry after a linear backoff of ``base_delay * k``
                    seconds before attempt *k* (1 s, 2 s with defaults).
``UNCLASSIFIED``  : retry immediately, without a backoff wait.

Whatever the kind, no more than ``max_retries + 1`` attempts are made.
Exhausted failures are logged at a sampled rate.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(enum.Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"
    UNCLASSIFIED = "unclassified"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class CatalogScrapeError(Exception):
    """Base class for every error raised by the catalog scraper."""


class FetchFailure(CatalogScrapeError):
    """A single link could not be fetched.

    The underlying exception is chained as ``__cause__``.
    """

    def __init__(self, message: str, *, url: str = "", attempts: int = 0) -> None:
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class PermanentFetchFailure(FetchFailure):
    """The failure was classified permanent; no retry was attempted."""


class ExhaustedFetchFailure(FetchFailure):
    """Every allowed attempt failed."""


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class RetryPolicy:
    """Run an async operation with classification-driven retries.

    Args:
        max_retries: Additional attempts after the first one.
        base_delay: Seconds multiplied by the attempt number to get the wait
            before a transient retry.
        log_sample_rate: Probability of logging an exhausted failure.
        sleep: Awaitable sleep function; injectable for tests.
        sampler: Returns a float in ``[0, 1)``; injectable for tests.
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        log_sample_rate: float = 0.05,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        sampler: Callable[[], float] = random.random,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.log_sample_rate = log_sample_rate
        self._sleep = sleep
        self._sampler = sampler

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number *attempt* (1-based)."""
        return self.base_delay * attempt

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        classify: Callable[[BaseException], FailureKind],
        *,
        label: str = "",
    ) -> T:
        """Await ``operation()`` until it succeeds or the policy gives up.

        Raises:
            PermanentFetchFailure: ``classify`` returned ``PERMANENT``.
            ExhaustedFetchFailure: ``max_retries + 1`` attempts all failed.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                kind = classify(exc)
                attempts_made = attempt + 1

                if kind is FailureKind.PERMANENT:
                    logger.debug("[retry] permanent failure for %s: %s", label, exc)
                    raise PermanentFetchFailure(
                        f"permanent failure: {exc}", url=label, attempts=attempts_made
                    ) from exc

                if attempt >= self.max_retries:
                    self._log_exhausted(label, attempts_made, exc)
                    raise ExhaustedFetchFailure(
                        f"failed after {attempts_made} attempt(s): {exc}",
                        url=label,
                        attempts=attempts_made,
                    ) from exc

                attempt += 1
                if kind is FailureKind.TRANSIENT:
                    delay = self.delay_for(attempt)
                    logger.debug(
                        "[retry] %s: transient error (%s); retry %d/%d in %.1fs",
                        label, exc, attempt, self.max_retries, delay,
                    )
                    await self._sleep(delay)

    def _log_exhausted(self, label: str, attempts: int, exc: BaseException) -> None:
        if self._sampler() < self.log_sample_rate:
            logger.error(
                "[retry] ✗ Failed to fetch %s after %d attempt(s): %s",
                label or "(unnamed operation)", attempts, exc,
            )