from __future__ import annotations

import asyncio

import pytest

from botrange.engine.limiter import ConcurrencyLimiter
from botrange.errors import ConfigValidationError, NetworkError


@pytest.mark.parametrize("max_concurrent, spacing", [(0, 0), (-1, 0), (2, -0.5), (1.5, 0)])
def test_limiter_rejects_invalid_settings(max_concurrent, spacing) -> None:
    with pytest.raises(ConfigValidationError):
        ConcurrencyLimiter(max_concurrent=max_concurrent, spacing=spacing)


def test_execute_requires_callable() -> None:
    limiter = ConcurrencyLimiter(max_concurrent=1, spacing=0)
    with pytest.raises(TypeError):
        asyncio.run(limiter.execute("not callable"))  # type: ignore[arg-type]


@pytest.mark.parametrize("max_concurrent", [1, 2, 5])
def test_running_never_exceeds_max(max_concurrent: int) -> None:
    limiter = ConcurrencyLimiter(max_concurrent=max_concurrent, spacing=0)
    running = 0
    peak = 0

    async def operation(value: int) -> int:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.005)
        running -= 1
        return value * 2

    async def scenario() -> list[int]:
        return await asyncio.gather(
            *(limiter.execute(lambda value=value: operation(value)) for value in range(12))
        )

    results = asyncio.run(scenario())
    assert results == [value * 2 for value in range(12)]
    assert peak == max_concurrent


def test_waiters_are_served_in_fifo_order() -> None:
    limiter = ConcurrencyLimiter(max_concurrent=1, spacing=0)
    started: list[int] = []

    async def operation(value: int) -> None:
        started.append(value)
        await asyncio.sleep(0)

    async def scenario() -> None:
        await asyncio.gather(
            *(limiter.execute(lambda value=value: operation(value)) for value in range(6))
        )

    asyncio.run(scenario())
    assert started == list(range(6))


def test_stats_track_outcomes() -> None:
    limiter = ConcurrencyLimiter(max_concurrent=2, spacing=0)

    async def ok() -> str:
        return "ok"

    async def boom() -> str:
        raise ValueError("boom")

    async def scenario() -> None:
        await limiter.execute(ok)
        with pytest.raises(ValueError):
            await limiter.execute(boom)

    asyncio.run(scenario())
    stats = limiter.stats()
    assert (stats.queued, stats.running, stats.succeeded, stats.failed) == (0, 0, 1, 1)
    assert stats.total == 2


def _gap_after(first_operation) -> float:
    limiter = ConcurrencyLimiter(max_concurrent=1, spacing=0.05)
    marks: dict[str, float] = {}

    async def second() -> None:
        marks["second_start"] = asyncio.get_running_loop().time()

    async def first() -> None:
        try:
            await first_operation()
        finally:
            marks["first_end"] = asyncio.get_running_loop().time()

    async def scenario() -> None:
        await asyncio.gather(
            limiter.execute(first), limiter.execute(second), return_exceptions=True
        )

    asyncio.run(scenario())
    return marks["second_start"] - marks["first_end"]


def test_spacing_delays_next_dispatch() -> None:
    async def succeed() -> None:
        return None

    assert _gap_after(succeed) >= 0.04


def test_transient_failure_doubles_spacing() -> None:
    async def fail() -> None:
        raise NetworkError("connection reset")

    assert _gap_after(fail) >= 0.09


def test_cancelled_waiter_does_not_leak_slot() -> None:
    limiter = ConcurrencyLimiter(max_concurrent=1, spacing=0)

    async def scenario() -> str:
        release = asyncio.Event()

        async def hold() -> None:
            await release.wait()

        async def quick() -> str:
            return "done"

        holder = asyncio.create_task(limiter.execute(hold))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(limiter.execute(quick))
        await asyncio.sleep(0)
        waiter.cancel()
        release.set()
        await holder
        with pytest.raises(asyncio.CancelledError):
            await waiter
        return await asyncio.wait_for(limiter.execute(quick), timeout=1)

    assert asyncio.run(scenario()) == "done"
