"""Canonical address model: parsing, ordering and range classification."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Union

_MAX_PREFIX = {4: 32, 6: 128}

_PRIVATE_OR_RESERVED = tuple(
    ipaddress.ip_network(block)
    for block in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::/128",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
)


@dataclass(frozen=True, slots=True)
class CanonicalAddress:
    """Validated address or CIDR block.

    ``text`` is the normalised string form used as registry key; the host part
    of a block is kept as written (not masked), only its notation is normalised.
    """

    family: int
    packed: bytes
    prefixlen: int | None
    text: str

    @property
    def is_block(self) -> bool:
        return self.prefixlen is not None

    def network(self) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
        prefix = self.prefixlen if self.prefixlen is not None else _MAX_PREFIX[self.family]
        network_cls = ipaddress.IPv4Network if self.family == 4 else ipaddress.IPv6Network
        return network_cls((self.packed, prefix), strict=False)

    def __str__(self) -> str:
        return self.text


AddressLike = Union[str, CanonicalAddress]


def parse(text: object) -> CanonicalAddress | None:
    """Parse ``text`` as an address or ``address/prefix`` block.

    Returns ``None`` for anything that is not a valid v4/v6 address: bad
    syntax, octets out of range, zone ids, non-numeric prefixes and prefix
    lengths above the family maximum are all rejected rather than coerced.
    """

    if not isinstance(text, str):
        return None
    candidate = text.strip()
    if not candidate or "%" in candidate or any(ch.isspace() for ch in candidate):
        return None
    address_part, sep, prefix_part = candidate.partition("/")
    try:
        address = ipaddress.ip_address(address_part)
    except ValueError:
        return None
    prefixlen: int | None = None
    if sep:
        if not prefix_part.isdigit() or not prefix_part.isascii():
            return None
        prefixlen = int(prefix_part)
        if prefixlen > _MAX_PREFIX[address.version]:
            return None
    normalised = address.compressed
    if prefixlen is not None:
        normalised = f"{normalised}/{prefixlen}"
    return CanonicalAddress(
        family=address.version,
        packed=address.packed,
        prefixlen=prefixlen,
        text=normalised,
    )


def normalize(text: object) -> str | None:
    parsed = parse(text)
    return parsed.text if parsed else None


def sort_key(value: AddressLike) -> tuple:
    """Key realising :func:`compare`; unparseable strings sort last."""

    if isinstance(value, CanonicalAddress):
        parsed: CanonicalAddress | None = value
        text = value.text
    else:
        text = str(value).strip()
        parsed = parse(text)
    if parsed is None:
        return (2, b"", 0, 0, text)
    # bare addresses precede blocks that share their bytes
    has_prefix = 0 if parsed.prefixlen is None else 1
    return (
        0 if parsed.family == 4 else 1,
        parsed.packed,
        has_prefix,
        parsed.prefixlen or 0,
        # final tie-break on the text as written
        text,
    )


def compare(a: AddressLike, b: AddressLike) -> int:
    """Total order: v4 before v6, then bytes, then prefix length, then text."""

    key_a, key_b = sort_key(a), sort_key(b)
    if key_a < key_b:
        return -1
    if key_a > key_b:
        return 1
    return 0


compare_key = cmp_to_key(compare)


def is_private_or_reserved(address: AddressLike) -> bool:
    """Return True for loopback, link-local, private and unspecified space."""

    parsed = address if isinstance(address, CanonicalAddress) else parse(address)
    if parsed is None:
        return False
    network = parsed.network()
    if isinstance(network, ipaddress.IPv6Network) and network.network_address.ipv4_mapped:
        mapped = network.network_address.ipv4_mapped
        network = ipaddress.IPv4Network(
            (mapped.packed, max(network.prefixlen - 96, 0)), strict=False
        )
    for reserved in _PRIVATE_OR_RESERVED:
        if reserved.version == network.version and network.subnet_of(reserved):
            return True
    return False


__all__ = [
    "AddressLike",
    "CanonicalAddress",
    "compare",
    "compare_key",
    "is_private_or_reserved",
    "normalize",
    "parse",
    "sort_key",
]
