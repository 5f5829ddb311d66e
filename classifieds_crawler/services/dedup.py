"""
Run-scoped set of listing addresses already scheduled for extraction.
"""

from typing import Iterable, Set
from urllib.parse import urldefrag


def canonicalize(address: str) -> str:
    """Canonical form of a listing address: trimmed, fragment removed."""
    address, _ = urldefrag(address.strip())
    return address


class VisitedSet:
    """Addresses are only ever added; membership is checked on canonical form."""

    def __init__(self, addresses: Iterable[str] = ()):
        self._keys: Set[str] = set()
        for address in addresses:
            self.add(address)

    def has(self, address: str) -> bool:
        return canonicalize(address) in self._keys

    def add(self, address: str) -> bool:
        """Add an address. Returns False if it was already present."""
        key = canonicalize(address)
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def __contains__(self, address: str) -> bool:
        return self.has(address)

    def __len__(self) -> int:
        return len(self._keys)
