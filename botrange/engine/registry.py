"""Run-scoped registry merging addresses and their provenance."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from .address import CanonicalAddress, sort_key
from .records import SourceResult


@dataclass(slots=True)
class RegistryEntry:
    names: set[str] = field(default_factory=set)
    origins: set[str] = field(default_factory=set)


class Registry:
    """Union of every source's addresses keyed by canonical text.

    ``add`` performs its read-modify-write without awaiting, so concurrent
    sources sharing the event loop cannot lose each other's updates.
    """

    def __init__(self) -> None:
        self._entries: dict[str, RegistryEntry] = {}
        self._addresses: dict[str, CanonicalAddress] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def add(self, address: CanonicalAddress, name: str, origin: str) -> None:
        if self._frozen:
            raise RuntimeError("Registry is frozen; the merge phase has completed")
        entry = self._entries.get(address.text)
        if entry is None:
            entry = self._entries[address.text] = RegistryEntry()
            self._addresses[address.text] = address
        entry.names.add(name)
        entry.origins.add(origin)

    def merge(self, result: SourceResult) -> int:
        """Fold a source's result in; returns how many addresses it carried."""

        name = result.descriptor.name
        for address in result.addresses:
            for origin in result.origins.get(address.text, ()):
                self.add(address, name, origin)
        return len(result.addresses)

    def freeze(self) -> None:
        self._frozen = True

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> RegistryEntry | None:
        return self._entries.get(key)

    def items(self) -> Iterator[tuple[CanonicalAddress, RegistryEntry]]:
        """Entries in address order."""

        for address in sorted(self._addresses.values(), key=sort_key):
            yield address, self._entries[address.text]

    def as_output(self) -> dict[str, dict[str, list[str]]]:
        """Mapping handed to writers: address -> sorted names and origins."""

        return {
            address.text: {"names": sorted(entry.names), "origins": sorted(entry.origins)}
            for address, entry in self.items()
        }


__all__ = ["Registry", "RegistryEntry"]
