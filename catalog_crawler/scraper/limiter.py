"""Concurrency limiter for detail-page fetches."""

from __future__ import annotations

import asyncio


class ConcurrencyLimiter:
    """Cap the number of simultaneously in-flight operations at *limit*.

    ``acquire()`` suspends until one of the *limit* slots is free and
    ``release()`` hands it back.  Waiters are woken in FIFO order by the
    underlying :class:`asyncio.Semaphore`.  All bookkeeping happens on the
    event loop thread, so the in-flight counter needs no extra locking.

    Also usable as an async context manager::

        async with limiter:
            await client.get(url)
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError(f"concurrency limit must be >= 1, got {limit}")
        self._limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_flight = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        """Number of acquired-but-not-released slots."""
        return self._in_flight

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self._in_flight += 1

    def release(self) -> None:
        if self._in_flight == 0:
            raise RuntimeError("release() called without a matching acquire()")
        self._in_flight -= 1
        self._semaphore.release()

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
