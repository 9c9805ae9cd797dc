"""Per-shape source adapters yielding raw address records."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Iterable, Protocol

import structlog
from selectolax.parser import HTMLParser

from ..config import EngineConfig, SourceDescriptor, SourceShape
from ..errors import SourceParseError
from .address import parse
from .asn import AsnResolver
from .fetcher import BrowserRenderer, Fetcher
from .records import RawRecord


class SourceAdapter(Protocol):
    """Behaviour shared by every adapter."""

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        """Return the candidate records of ``descriptor``."""


def split_lines(text: str) -> list[str]:
    """Trimmed, non-empty lines with ``#`` comments removed."""

    lines: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            lines.append(stripped)
    return lines


def to_records(values: Iterable[Any], origin: str) -> list[RawRecord]:
    """Keep only strings that parse as addresses, tagged with ``origin``."""

    records: list[RawRecord] = []
    for value in values:
        if not isinstance(value, str):
            continue
        candidate = value.strip()
        if parse(candidate) is not None:
            records.append(RawRecord(candidate, origin))
    return records


class TextListAdapter:
    """One address per line."""

    def __init__(self, fetcher: Fetcher) -> None:
        self.fetcher = fetcher

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        url = descriptor.endpoints[0]
        text = await self.fetcher.get_text(url)
        return to_records(split_lines(text), url)


class MultiTextListAdapter:
    """Several text endpoints fetched independently."""

    def __init__(self, fetcher: Fetcher, logger: structlog.BoundLogger | None = None) -> None:
        self.fetcher = fetcher
        self.logger = logger or structlog.get_logger("botrange.adapters")

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        urls = descriptor.endpoints
        bodies = await asyncio.gather(
            *(self.fetcher.get_text(url) for url in urls), return_exceptions=True
        )
        records: list[RawRecord] = []
        for url, body in zip(urls, bodies):
            if isinstance(body, BaseException):
                if not isinstance(body, Exception):
                    raise body
                self.logger.warning(
                    "endpoint_failed", source=descriptor.id, url=url, error=str(body)
                )
                continue
            records.extend(to_records(self._lines(body), url))
        return records

    @staticmethod
    def _lines(body: str) -> list[str]:
        stripped = body.lstrip()
        if stripped.startswith("["):
            try:
                payload = json.loads(stripped)
            except json.JSONDecodeError:
                payload = None
            if isinstance(payload, list):
                return [str(item).strip() for item in payload if str(item).strip()]
        return split_lines(body)


class JsonPrefixesAdapter:
    """``{"prefixes": [{"ipv4Prefix": ...} | {"ipv6Prefix": ...}]}``"""

    def __init__(self, fetcher: Fetcher) -> None:
        self.fetcher = fetcher

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        url = descriptor.endpoints[0]
        payload = await self.fetcher.get_json(url)
        prefixes = payload.get("prefixes") if isinstance(payload, dict) else None
        if not isinstance(prefixes, list):
            raise SourceParseError(f"Missing 'prefixes' list in {url}")
        values = [
            item.get("ipv4Prefix") or item.get("ipv6Prefix")
            for item in prefixes
            if isinstance(item, dict)
        ]
        return to_records(values, url)


class JsonIpsAdapter:
    """``{"ips": [{"ip_address": ...}]}``"""

    def __init__(self, fetcher: Fetcher) -> None:
        self.fetcher = fetcher

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        url = descriptor.endpoints[0]
        payload = await self.fetcher.get_json(url)
        ips = payload.get("ips") if isinstance(payload, dict) else None
        if not isinstance(ips, list):
            raise SourceParseError(f"Missing 'ips' list in {url}")
        values = [item.get("ip_address") for item in ips if isinstance(item, dict)]
        return to_records(values, url)


class JsonAddressesAdapter:
    """``{"data": {<group>: {"addresses": [...]}}}``"""

    def __init__(self, fetcher: Fetcher) -> None:
        self.fetcher = fetcher

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        url = descriptor.endpoints[0]
        payload = await self.fetcher.get_json(url)
        groups = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(groups, dict):
            raise SourceParseError(f"Missing 'data' mapping in {url}")
        values: list[Any] = []
        for group in groups.values():
            if isinstance(group, dict) and isinstance(group.get("addresses"), list):
                values.extend(group["addresses"])
        return to_records(values, url)


class MarkdownListAdapter:
    """Bulleted markdown list; the bullet marker is stripped."""

    BULLETS = ("- ", "* ", "+ ")

    def __init__(self, fetcher: Fetcher) -> None:
        self.fetcher = fetcher

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        url = descriptor.endpoints[0]
        text = await self.fetcher.get_text(url)
        values = [
            line.lstrip()[2:].strip().strip("`")
            for line in text.splitlines()
            if line.lstrip().startswith(self.BULLETS)
        ]
        return to_records(values, url)


class LocalFileAdapter:
    """Reads lists kept next to the configuration; never touches the network."""

    def __init__(self, custom_dir: Path, origin_base: str) -> None:
        self.custom_dir = custom_dir
        self.origin_base = origin_base.rstrip("/")

    def origin_for(self, name: str) -> str:
        return f"{self.origin_base}/{name}"

    def read(self, name: str) -> list[RawRecord]:
        path = self.custom_dir / name
        text = path.read_text(encoding="utf-8")
        return to_records(split_lines(text), self.origin_for(name))

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        if not descriptor.file:
            raise SourceParseError(f"Missing file for {descriptor.name}")
        return self.read(descriptor.file)


class PageScrapeAdapter:
    """Best-effort extraction from a rendered page.

    Any failure yields an empty list: the page layout is outside our control.
    """

    def __init__(self, renderer: BrowserRenderer, logger: structlog.BoundLogger | None = None) -> None:
        self.renderer = renderer
        self.logger = logger or structlog.get_logger("botrange.adapters")

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        url = descriptor.endpoints[0]
        try:
            html = await self.renderer.render(url)
            return self.extract(html, descriptor.selector, url)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("scrape_failed", source=descriptor.id, url=url, error=str(exc))
            return []

    @staticmethod
    def extract(html: str, selector: str, origin: str) -> list[RawRecord]:
        tree = HTMLParser(html)
        texts = [node.text(deep=True, strip=True) for node in tree.css(selector)]
        return to_records(texts, origin)


class AdapterSet:
    """Selects the adapter for a descriptor's shape."""

    def __init__(
        self,
        config: EngineConfig,
        fetcher: Fetcher,
        resolver: AsnResolver,
        renderer: BrowserRenderer | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or structlog.get_logger("botrange.adapters")
        self.renderer = renderer or BrowserRenderer(config.browser, config.user_agent)
        self.local_files = LocalFileAdapter(config.custom_dir, config.local_origin_base)
        self.text = TextListAdapter(fetcher)
        self.text_multi = MultiTextListAdapter(fetcher, self.logger)
        self.json_prefixes = JsonPrefixesAdapter(fetcher)
        self.json_ips = JsonIpsAdapter(fetcher)
        self.json_addresses = JsonAddressesAdapter(fetcher)
        self.md_list = MarkdownListAdapter(fetcher)
        self.scrape = PageScrapeAdapter(self.renderer, self.logger)
        self.resolver = resolver

    def for_shape(self, shape: SourceShape) -> SourceAdapter:
        match shape:
            case SourceShape.TEXT:
                return self.text
            case SourceShape.TEXT_MULTI:
                return self.text_multi
            case SourceShape.JSON_PREFIXES:
                return self.json_prefixes
            case SourceShape.JSON_IPS:
                return self.json_ips
            case SourceShape.JSON_ADDRESSES:
                return self.json_addresses
            case SourceShape.MD_LIST:
                return self.md_list
            case SourceShape.WHOIS:
                return self.resolver
            case SourceShape.FILE:
                return self.local_files
            case SourceShape.SCRAPE:
                return self.scrape
            case _:
                raise ValueError(f"Unsupported source shape: {shape!r}")

    async def fetch(self, descriptor: SourceDescriptor) -> list[RawRecord]:
        """Primary adapter records followed by any extra local files."""

        records = list(await self.for_shape(descriptor.shape).fetch(descriptor))
        for name in descriptor.extra_files:
            try:
                records.extend(self.local_files.read(name))
            except (OSError, UnicodeDecodeError) as exc:
                self.logger.warning(
                    "extra_file_failed", source=descriptor.id, file=name, error=str(exc)
                )
        return records

    async def aclose(self) -> None:
        await self.renderer.aclose()


__all__ = [
    "AdapterSet",
    "JsonAddressesAdapter",
    "JsonIpsAdapter",
    "JsonPrefixesAdapter",
    "LocalFileAdapter",
    "MarkdownListAdapter",
    "MultiTextListAdapter",
    "PageScrapeAdapter",
    "SourceAdapter",
    "TextListAdapter",
    "split_lines",
    "to_records",
]
