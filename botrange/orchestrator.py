"""Dispatcher driving every source to completion and merging the registry."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, Sequence

import httpx
import structlog

from .config import EngineConfig, SourceDescriptor
from .engine import (
    AdapterSet,
    AsnResolver,
    ConcurrencyLimiter,
    Fetcher,
    RawRecord,
    Registry,
    RetryPolicy,
    RoutingDataClient,
    SourceResult,
    WhoisClient,
)
from .engine.address import CanonicalAddress, is_private_or_reserved, parse, sort_key
from .logging_conf import source_logger


@dataclass(slots=True)
class RunReport:
    """Outcome of one aggregation run."""

    registry: Registry
    results: list[SourceResult] = field(default_factory=list)

    @property
    def failed(self) -> list[SourceResult]:
        return [result for result in self.results if not result.ok]

    @property
    def succeeded(self) -> list[SourceResult]:
        return [result for result in self.results if result.ok]

    def summary(self) -> dict[str, int]:
        return {
            "sources": len(self.results),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "addresses": len(self.registry),
        }


class Dispatcher:
    """Runs sources with bounded concurrency, isolating each one's failures."""

    def __init__(
        self,
        config: EngineConfig,
        adapters: AdapterSet,
        limiter: ConcurrencyLimiter | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.adapters = adapters
        self.limiter = limiter or ConcurrencyLimiter(config.source_concurrency, spacing=0)
        self.logger = logger or structlog.get_logger("botrange.dispatcher")

    async def run(self, descriptors: Sequence[SourceDescriptor]) -> RunReport:
        registry = Registry()

        async def run_one(descriptor: SourceDescriptor) -> SourceResult:
            result = await self.limiter.execute(lambda: self.process_source(descriptor))
            if result.ok:
                registry.merge(result)
            return result

        results = await asyncio.gather(*(run_one(descriptor) for descriptor in descriptors))
        registry.freeze()
        report = RunReport(registry=registry, results=list(results))
        self.logger.info("run_complete", **report.summary())
        return report

    async def process_source(self, descriptor: SourceDescriptor) -> SourceResult:
        log = source_logger(descriptor.id)
        log.info("source_started", name=descriptor.name, shape=descriptor.shape.value)
        try:
            records = await self.adapters.fetch(descriptor)
        except Exception as exc:  # noqa: BLE001
            log.error(
                "source_failed",
                name=descriptor.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return SourceResult(descriptor=descriptor, error=str(exc) or type(exc).__name__)
        result = self.canonicalize(descriptor, records)
        log_method = log.info if result.addresses else log.warning
        log_method(
            "source_collected",
            name=descriptor.name,
            addresses=len(result.addresses),
            dropped_invalid=result.dropped_invalid,
            dropped_private=result.dropped_private,
        )
        return result

    def canonicalize(
        self, descriptor: SourceDescriptor, records: Iterable[RawRecord]
    ) -> SourceResult:
        """Validate, normalise, filter, dedupe and sort one source's records."""

        result = SourceResult(descriptor=descriptor)
        by_text: dict[str, CanonicalAddress] = {}
        for record in dict.fromkeys(records):
            address = parse(record.address)
            if address is None:
                result.dropped_invalid += 1
                continue
            if self.config.exclude_private and is_private_or_reserved(address):
                result.dropped_private += 1
                continue
            by_text.setdefault(address.text, address)
            result.origins.setdefault(address.text, set()).add(record.origin)
        result.addresses = sorted(by_text.values(), key=sort_key)
        return result


@asynccontextmanager
async def open_dispatcher(
    config: EngineConfig,
    *,
    client: httpx.AsyncClient | None = None,
    adapters: AdapterSet | None = None,
) -> AsyncIterator[Dispatcher]:
    """Wire the engine from configuration and release its resources on exit."""

    limiter = ConcurrencyLimiter(config.limiter.max_concurrent, config.limiter.spacing_seconds)
    retry_policy = RetryPolicy(
        retries=config.retry.retries,
        base_delay=config.retry.base_delay,
        backoff_multiplier=config.retry.backoff_multiplier,
    )
    fetcher = Fetcher(config, limiter, retry_policy, client=client)
    try:
        if adapters is None:
            resolver = AsnResolver(
                RoutingDataClient(fetcher, config.routing),
                WhoisClient(config.whois),
                limiter=limiter,
            )
            adapters = AdapterSet(config, fetcher, resolver)
        try:
            yield Dispatcher(config, adapters)
        finally:
            await adapters.aclose()
    finally:
        await fetcher.aclose()


async def run_sources(
    config: EngineConfig,
    descriptors: Sequence[SourceDescriptor],
    *,
    client: httpx.AsyncClient | None = None,
) -> RunReport:
    async with open_dispatcher(config, client=client) as dispatcher:
        return await dispatcher.run(descriptors)


__all__ = ["Dispatcher", "RunReport", "open_dispatcher", "run_sources"]
