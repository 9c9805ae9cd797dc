"""Record types flowing from adapters to the registry."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..config import SourceDescriptor
from .address import CanonicalAddress


@dataclass(frozen=True, slots=True)
class RawRecord:
    """Candidate address as scraped, before validation."""

    address: str
    origin: str


@dataclass(slots=True)
class SourceResult:
    """Canonicalised, filtered and sorted output of one source."""

    descriptor: SourceDescriptor
    addresses: list[CanonicalAddress] = field(default_factory=list)
    origins: dict[str, set[str]] = field(default_factory=dict)
    dropped_invalid: int = 0
    dropped_private: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def records(self) -> list[RawRecord]:
        """Flatten back to one record per (address, origin) in address order."""

        return [
            RawRecord(address.text, origin)
            for address in self.addresses
            for origin in sorted(self.origins.get(address.text, ()))
        ]


__all__ = ["RawRecord", "SourceResult"]
