from __future__ import annotations

import asyncio

import pytest

from botrange.config import WhoisSettings
from botrange.engine.whois import WhoisClient, build_query, parse_routes

RADB_RESPONSE = """\
% This is the RADb whois server.

route:          31.13.24.0/21
descr:          Facebook, Inc.
origin:         AS32934
mnt-by:         MAINT-AS32934

ROUTE6:         2a03:2880::/32
descr:          Meta Platforms
# trailing comment
origin:         AS32934

route:          999.1.1.0/24
descr:          broken entry

route:          157.240.0.0/16
"""


@pytest.mark.parametrize(
    "asn, host, expected",
    [
        ("AS32934", "whois.radb.net", b"-i origin AS32934\r\n"),
        ("32934", "whois.radb.net", b"-i origin AS32934\r\n"),
        ("AS32934", "whois.arin.net", b"AS32934\r\n"),
        ("as62041", "rr.arin.net", b"AS62041\r\n"),
    ],
)
def test_build_query(asn: str, host: str, expected: bytes) -> None:
    assert build_query(asn, host) == expected


def test_parse_routes_collects_metadata_blocks() -> None:
    routes = parse_routes(RADB_RESPONSE, "whois.radb.net")
    assert [route.prefix.text for route in routes] == [
        "31.13.24.0/21",
        "2a03:2880::/32",
        "157.240.0.0/16",
    ]
    assert routes[0].metadata == (
        "descr:          Facebook, Inc.",
        "origin:         AS32934",
        "mnt-by:         MAINT-AS32934",
    )
    assert routes[1].metadata == ("descr:          Meta Platforms", "origin:         AS32934")
    assert routes[2].metadata == ()
    assert {route.channel for route in routes} == {"whois.radb.net"}


def test_parse_routes_ignores_text_without_routes() -> None:
    assert parse_routes("% No entries found for the selected source(s).\n", "h") == []


async def _serve(respond):
    """Start a local line server; ``respond`` gets the query and the writer."""

    received: list[bytes] = []

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        line = await reader.readline()
        received.append(line)
        try:
            await respond(reader, writer)
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port, received


def test_query_round_trip_over_tcp() -> None:
    async def respond(reader, writer) -> None:
        writer.write(RADB_RESPONSE.encode("utf-8"))
        await writer.drain()

    async def scenario():
        server, port, received = await _serve(respond)
        async with server:
            client = WhoisClient(WhoisSettings(port=port, timeout=2.0))
            routes = await client.query("AS32934", "127.0.0.1")
        return routes, received

    routes, received = asyncio.run(scenario())
    assert received == [b"-i origin AS32934\r\n"]
    assert [route.prefix.text for route in routes] == [
        "31.13.24.0/21",
        "2a03:2880::/32",
        "157.240.0.0/16",
    ]


def test_oversized_response_yields_empty() -> None:
    async def respond(reader, writer) -> None:
        writer.write(("route: 1.1.1.0/24\n" * 200).encode("ascii"))
        await writer.drain()

    async def scenario():
        server, port, _ = await _serve(respond)
        async with server:
            client = WhoisClient(WhoisSettings(port=port, timeout=2.0, max_response_bytes=256))
            return await client.query("AS13335", "127.0.0.1")

    assert asyncio.run(scenario()) == []


def test_silent_server_times_out_to_empty() -> None:
    async def scenario():
        done = asyncio.Event()

        async def respond(reader, writer) -> None:
            await done.wait()

        server, port, _ = await _serve(respond)
        async with server:
            client = WhoisClient(WhoisSettings(port=port, timeout=0.2))
            routes = await client.query("AS13335", "127.0.0.1")
            done.set()
            await asyncio.sleep(0)
        return routes

    assert asyncio.run(scenario()) == []


def test_unreachable_host_yields_empty() -> None:
    async def scenario():
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()
        client = WhoisClient(WhoisSettings(port=port, timeout=2.0))
        return await client.query("AS13335", "127.0.0.1")

    assert asyncio.run(scenario()) == []
