"""Line-oriented registry-query (WHOIS) client over a raw TCP stream."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum

import structlog

from ..config import WhoisSettings
from .address import CanonicalAddress, parse

ROUTE_LINE = re.compile(r"^route6?:", re.IGNORECASE)
READ_CHUNK = 64 * 1024


class WhoisState(str, Enum):
    CONNECTING = "connecting"
    SENT_QUERY = "sent_query"
    RECEIVING = "receiving"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class AsnRoute:
    """A route object returned by a registry, prior to keyword filtering."""

    prefix: CanonicalAddress
    channel: str
    metadata: tuple[str, ...] = ()


@dataclass(slots=True)
class WhoisSession:
    host: str
    asn: str
    state: WhoisState = WhoisState.CONNECTING


def build_query(asn: str, host: str) -> bytes:
    """Return the query line for ``host``.

    ARIN answers a direct AS lookup; IRR mirrors such as RADB take an inverse
    ``origin`` query listing every route object the AS originates.
    """

    asn = "AS" + asn.upper().removeprefix("AS")
    if host.lower().endswith("arin.net"):
        return f"{asn}\r\n".encode("ascii")
    return f"-i origin {asn}\r\n".encode("ascii")


def parse_routes(text: str, channel: str) -> list[AsnRoute]:
    """Extract route objects and their metadata blocks from a response body.

    Every ``route:``/``route6:`` line opens a route; the lines after it, up
    to the next route line, form its metadata. Comment lines (``%``/``#``)
    and blank lines are skipped. Invalid prefixes are dropped.
    """

    routes: list[AsnRoute] = []
    current: CanonicalAddress | None = None
    metadata: list[str] = []

    def flush() -> None:
        if current is not None:
            routes.append(AsnRoute(current, channel, tuple(metadata)))

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if ROUTE_LINE.match(line):
            flush()
            current = parse(ROUTE_LINE.sub("", line, count=1).strip())
            metadata = []
            continue
        if not line or line.startswith(("%", "#")):
            continue
        if current is not None:
            metadata.append(line)
    flush()
    return routes


class WhoisClient:
    """One connection per query; every failure path yields an empty result."""

    def __init__(
        self,
        settings: WhoisSettings | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.settings = settings or WhoisSettings()
        self.logger = logger or structlog.get_logger("botrange.whois")

    async def query(self, asn: str, host: str) -> list[AsnRoute]:
        try:
            body = await asyncio.wait_for(self._exchange(asn, host), timeout=self.settings.timeout)
        except asyncio.TimeoutError:
            self.logger.warning("whois_timeout", host=host, asn=asn, timeout=self.settings.timeout)
            return []
        except OSError as exc:
            self.logger.warning("whois_error", host=host, asn=asn, error=str(exc))
            return []
        if body is None:
            return []
        routes = parse_routes(body, host)
        self.logger.debug("whois_routes", host=host, asn=asn, count=len(routes))
        return routes

    async def _exchange(self, asn: str, host: str) -> str | None:
        session = WhoisSession(host=host, asn=asn)
        writer: asyncio.StreamWriter | None = None
        try:
            reader, writer = await asyncio.open_connection(host, self.settings.port)
            writer.write(build_query(asn, host))
            await writer.drain()
            if writer.can_write_eof():
                writer.write_eof()
            session.state = WhoisState.SENT_QUERY

            buffer = bytearray()
            while True:
                chunk = await reader.read(READ_CHUNK)
                if not chunk:
                    break
                session.state = WhoisState.RECEIVING
                buffer.extend(chunk)
                if len(buffer) > self.settings.max_response_bytes:
                    self.logger.warning(
                        "whois_response_too_large",
                        host=host,
                        asn=asn,
                        limit=self.settings.max_response_bytes,
                    )
                    return None
            return buffer.decode("utf-8", errors="replace")
        finally:
            if writer is not None:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass
            self.logger.debug("whois_closed", host=host, asn=asn, reached=session.state.value)
            session.state = WhoisState.CLOSED


__all__ = ["AsnRoute", "WhoisClient", "WhoisState", "build_query", "parse_routes"]
