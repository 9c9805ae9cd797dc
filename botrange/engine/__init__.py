"""Engine components: fetch -> adapt -> canonicalise -> merge."""

from .adapters import AdapterSet, SourceAdapter
from .address import CanonicalAddress, compare, is_private_or_reserved, parse, sort_key
from .asn import AsnResolver, RoutingDataClient, keyword_match
from .fetcher import BrowserRenderer, FetchResponse, Fetcher
from .limiter import ConcurrencyLimiter, LimiterStats
from .records import RawRecord, SourceResult
from .registry import Registry, RegistryEntry
from .retry import RetryPolicy
from .whois import AsnRoute, WhoisClient

__all__ = [
    "AdapterSet",
    "AsnResolver",
    "AsnRoute",
    "BrowserRenderer",
    "CanonicalAddress",
    "ConcurrencyLimiter",
    "FetchResponse",
    "Fetcher",
    "LimiterStats",
    "RawRecord",
    "Registry",
    "RegistryEntry",
    "RetryPolicy",
    "RoutingDataClient",
    "SourceAdapter",
    "SourceResult",
    "WhoisClient",
    "compare",
    "is_private_or_reserved",
    "keyword_match",
    "parse",
    "sort_key",
]
