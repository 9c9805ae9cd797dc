"""Retry policy with exponential backoff driven by a failure classifier."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import structlog

from ..errors import ConfigValidationError, is_retryable_error

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Re-attempt an operation while ``retry_predicate`` classifies it retryable.

    At most ``retries + 1`` attempts are made; the delay before retry number
    ``n`` (zero based) is ``base_delay * backoff_multiplier ** n``. When the
    budget is exhausted, or the failure is fatal, the last error propagates
    unchanged.
    """

    retries: int = 2
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    retry_predicate: Callable[[BaseException], bool] = is_retryable_error
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
    logger: structlog.BoundLogger | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ConfigValidationError("retries must be >= 0", field="retries")
        if self.base_delay < 0:
            raise ConfigValidationError("base_delay must be >= 0", field="base_delay")
        if self.backoff_multiplier < 1:
            raise ConfigValidationError(
                "backoff_multiplier must be >= 1", field="backoff_multiplier"
            )
        if self.logger is None:
            self.logger = structlog.get_logger("botrange.retry")

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (self.backoff_multiplier**attempt)

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str = "operation") -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not self.retry_predicate(exc) or attempt >= self.retries:
                    raise
                wait = self.delay_for(attempt)
                self.logger.warning(
                    "retry_scheduled",
                    label=label,
                    attempt=attempt + 1,
                    max_attempts=self.retries + 1,
                    delay=wait,
                    error=str(exc),
                )
                await self.sleep(wait)
                attempt += 1


__all__ = ["RetryPolicy"]
