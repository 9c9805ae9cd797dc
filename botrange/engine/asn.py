"""Resolve the address blocks an autonomous system originates."""

from __future__ import annotations

import asyncio
import random
from collections import defaultdict
from typing import Any, Awaitable, Callable, Iterable, Sequence

import structlog

from ..config import RoutingSettings, SourceDescriptor
from ..errors import is_rate_limited
from .address import parse, sort_key
from .fetcher import Fetcher
from .limiter import ConcurrencyLimiter
from .records import RawRecord
from .retry import RetryPolicy
from .whois import AsnRoute, WhoisClient

PROVIDER_URLS = {
    "ripestat": "https://stat.ripe.net/data/announced-prefixes/data.json?resource={asn}",
    "bgpview": "https://api.bgpview.io/asn/{number}/prefixes",
}
PROVIDER_CHANNELS = {
    "ripestat": "stat.ripe.net",
    "bgpview": "bgpview.io",
}


def ownership_keywords(descriptor: SourceDescriptor) -> list[str]:
    """Configured keywords plus the source's own name and id."""

    words = list(descriptor.keywords)
    for implicit in (descriptor.name, descriptor.id):
        lowered = implicit.strip().lower()
        if lowered and lowered not in words:
            words.append(lowered)
    return words


def keyword_match(
    metadata: Iterable[str], keywords: Sequence[str], accept_ambiguous: bool
) -> bool:
    """Decide whether a route's metadata block claims the expected owner.

    Metadata lines are lower-cased and joined; any keyword occurring as a
    substring accepts the route. A route with no metadata at all carries no
    signal either way and is accepted only when ``accept_ambiguous`` is set.
    """

    text = " ".join(line.strip().lower() for line in metadata if line and line.strip())
    if not text:
        return accept_ambiguous
    return any(keyword.lower() in text for keyword in keywords if keyword)


class RequestPacer:
    """Serialises calls with a longer wait before the first one."""

    def __init__(
        self,
        initial: tuple[float, float],
        subsequent: tuple[float, float],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.initial = initial
        self.subsequent = subsequent
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._calls = 0

    def next_delay(self) -> float:
        low, high = self.initial if self._calls == 0 else self.subsequent
        return random.uniform(low, high) if high > 0 else 0.0

    async def __aenter__(self) -> "RequestPacer":
        await self._lock.acquire()
        try:
            delay = self.next_delay()
            if delay > 0:
                await self._sleep(delay)
            self._calls += 1
        except BaseException:
            self._lock.release()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._lock.release()


class RoutingDataClient:
    """REST routing-data lookups (RIPEstat, BGPView)."""

    def __init__(
        self,
        fetcher: Fetcher,
        settings: RoutingSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.settings = settings or RoutingSettings()
        self.logger = logger or structlog.get_logger("botrange.routing")
        self.pacer = RequestPacer(
            self.settings.initial_delay_range, self.settings.subsequent_delay_range, sleep
        )
        self.rate_limit_policy = RetryPolicy(
            retries=self.settings.rate_limit_retries,
            base_delay=self.settings.rate_limit_base_delay,
            backoff_multiplier=2.0,
            retry_predicate=is_rate_limited,
            sleep=sleep,
            logger=self.logger,
        )

    async def prefixes(self, asn: str, provider: str) -> list[AsnRoute]:
        number = asn.upper().removeprefix("AS")
        url = PROVIDER_URLS[provider].format(asn=f"AS{number}", number=number)
        channel = PROVIDER_CHANNELS[provider]

        async def paced_request() -> Any:
            async with self.pacer:
                return await self.fetcher.get_json(url)

        payload = await self.rate_limit_policy.run(paced_request, label=f"{provider} AS{number}")
        return self.parse_payload(payload, channel, asn)

    def parse_payload(self, payload: Any, channel: str, asn: str) -> list[AsnRoute]:
        if not isinstance(payload, dict) or payload.get("status") != "ok":
            status = payload.get("status") if isinstance(payload, dict) else None
            self.logger.warning("routing_status_not_ok", channel=channel, asn=asn, status=status)
            return []
        data = payload.get("data") or {}
        if isinstance(data.get("prefixes"), list):
            items = data["prefixes"]
        else:
            items = list(data.get("ipv4_prefixes") or []) + list(data.get("ipv6_prefixes") or [])
        routes: list[AsnRoute] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            prefix = parse(item.get("prefix"))
            if prefix is None:
                self.logger.warning(
                    "routing_invalid_prefix", channel=channel, asn=asn, prefix=item.get("prefix")
                )
                continue
            metadata = tuple(
                str(item[key]) for key in ("name", "description") if item.get(key)
            )
            routes.append(AsnRoute(prefix, channel, metadata))
        return routes


class AsnResolver:
    """Fan out to the REST and WHOIS channels for every ASN of a source."""

    def __init__(
        self,
        routing: RoutingDataClient,
        whois: WhoisClient,
        whois_hosts: Sequence[str] | None = None,
        providers: Sequence[str] | None = None,
        limiter: ConcurrencyLimiter | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.routing = routing
        self.whois = whois
        self.limiter = limiter or ConcurrencyLimiter(spacing=0)
        self.whois_hosts = list(whois_hosts if whois_hosts is not None else whois.settings.hosts)
        self.providers = list(providers if providers is not None else routing.settings.providers)
        self.logger = logger or structlog.get_logger("botrange.asn")

    async def resolve_routes(self, descriptor: SourceDescriptor) -> dict[str, set[str]]:
        """Return canonical address -> channels that reported it."""

        results = await asyncio.gather(
            *(self._resolve_asn(descriptor, asn) for asn in descriptor.asn),
            return_exceptions=True,
        )
        merged: dict[str, set[str]] = defaultdict(set)
        for asn, result in zip(descriptor.asn, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self.logger.warning("asn_failed", source=descriptor.id, asn=asn, error=str(result))
                continue
            for address, channels in result.items():
                merged[address].update(channels)
        return dict(merged)

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        routes = await self.resolve_routes(descriptor)
        return [
            RawRecord(address, channel)
            for address in sorted(routes, key=sort_key)
            for channel in sorted(routes[address])
        ]

    async def _resolve_asn(self, descriptor: SourceDescriptor, asn: str) -> dict[str, set[str]]:
        rest_calls = [self._rest_channel(descriptor, asn, provider) for provider in self.providers]
        whois_calls = [self._whois_channel(descriptor, asn, host) for host in self.whois_hosts]
        channel_results = await asyncio.gather(*rest_calls, *whois_calls)
        found: dict[str, set[str]] = defaultdict(set)
        for routes in channel_results:
            for route in routes:
                found[route.prefix.text].add(route.channel)
        self.logger.info(
            "asn_resolved", source=descriptor.id, asn=asn, prefixes=len(found)
        )
        return found

    async def _rest_channel(
        self, descriptor: SourceDescriptor, asn: str, provider: str
    ) -> list[AsnRoute]:
        try:
            routes = await self.routing.prefixes(asn, provider)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(
                "routing_failed", source=descriptor.id, asn=asn, provider=provider, error=str(exc)
            )
            return []
        return self.filter_rest_routes(descriptor, routes)

    async def _whois_channel(
        self, descriptor: SourceDescriptor, asn: str, host: str
    ) -> list[AsnRoute]:
        routes = await self.limiter.execute(lambda: self.whois.query(asn, host))
        if not descriptor.whois_keyword_filter or not descriptor.keywords:
            return routes
        keywords = ownership_keywords(descriptor)
        return [
            route
            for route in routes
            if keyword_match(route.metadata, keywords, descriptor.accept_ambiguous)
        ]

    def filter_rest_routes(
        self, descriptor: SourceDescriptor, routes: list[AsnRoute]
    ) -> list[AsnRoute]:
        """Apply keyword filtering to REST routes.

        When some routes carry explicit ownership fields and none of those
        match, the whole channel is dropped: mismatching JSON ownership is a
        stronger negative signal than an absent one.
        """

        if not descriptor.keywords:
            return routes
        keywords = ownership_keywords(descriptor)
        accepted = [
            route
            for route in routes
            if keyword_match(route.metadata, keywords, descriptor.accept_ambiguous)
        ]
        labelled = [route for route in routes if route.metadata]
        if labelled and not any(
            keyword_match(route.metadata, keywords, False) for route in labelled
        ):
            self.logger.warning(
                "routing_ownership_mismatch",
                source=descriptor.id,
                discarded=len(routes),
            )
            return []
        return accepted


__all__ = [
    "AsnResolver",
    "RequestPacer",
    "RoutingDataClient",
    "keyword_match",
    "ownership_keywords",
]
