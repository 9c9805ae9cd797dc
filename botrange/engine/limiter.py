"""Bounded-concurrency limiter with minimum spacing between dispatches."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog

from ..errors import ConfigValidationError, is_transient_network_error

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class LimiterStats:
    """Point-in-time counters exposed to callers."""

    queued: int
    running: int
    succeeded: int
    failed: int

    @property
    def total(self) -> int:
        return self.queued + self.running + self.succeeded + self.failed


class ConcurrencyLimiter:
    """FIFO gate allowing ``max_concurrent`` operations at once.

    A slot freed by a finished operation is handed to the next waiter only
    after ``spacing`` seconds; after a transient network failure the wait is
    doubled so the engine backs off from a struggling endpoint.
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        spacing: float = 1.0,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if not isinstance(max_concurrent, int) or max_concurrent <= 0:
            raise ConfigValidationError(
                "max_concurrent must be a positive integer", field="max_concurrent"
            )
        if spacing < 0:
            raise ConfigValidationError("spacing must be >= 0", field="spacing")
        self.max_concurrent = max_concurrent
        self.spacing = float(spacing)
        self.logger = logger or structlog.get_logger("botrange.limiter")
        self._slots_held = 0
        self._running = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._succeeded = 0
        self._failed = 0

    # ------------------------------------------------------------------
    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        if not callable(operation):
            raise TypeError("ConcurrencyLimiter.execute expects a callable")
        await self._acquire()
        self._running += 1
        try:
            result = await operation()
        except BaseException as exc:
            self._failed += 1
            self._running -= 1
            self._schedule_release(transient=is_transient_network_error(exc))
            raise
        self._succeeded += 1
        self._running -= 1
        self._schedule_release(transient=False)
        return result

    def stats(self) -> LimiterStats:
        return LimiterStats(
            queued=sum(1 for waiter in self._waiters if not waiter.done()),
            running=self._running,
            succeeded=self._succeeded,
            failed=self._failed,
        )

    # ------------------------------------------------------------------
    async def _acquire(self) -> None:
        if self._slots_held < self.max_concurrent and not self._waiters:
            self._slots_held += 1
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # the slot was handed over just before cancellation
                self._release_slot()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def _schedule_release(self, *, transient: bool) -> None:
        delay = self.spacing * 2 if transient else self.spacing
        if transient:
            self.logger.debug("limiter_backoff", delay=delay)
        if delay <= 0:
            self._release_slot()
            return
        asyncio.get_running_loop().call_later(delay, self._release_slot)

    def _release_slot(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # slot ownership moves to the waiter; _slots_held is unchanged
                waiter.set_result(None)
                return
        self._slots_held -= 1


__all__ = ["ConcurrencyLimiter", "LimiterStats"]
