"""Cross-reference table for ``ref:`` patterns.

Rule sections may point at each other (``ref:read.deny.paths`` inside a
``bash`` rule), which makes the configuration a graph that can contain
cycles.  :meth:`ReferenceTable.build` resolves that graph once, at load,
into a flat table whose entries contain no ``ref:`` patterns at all, so
matching never recurses and cycle detection never happens at match time.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from types import MappingProxyType

from cc_allow.core.errors import CyclicReference, UnresolvedReference
from cc_allow.matching.patterns import Pattern, PatternKind, parse_pattern

logger = logging.getLogger(__name__)


class ReferenceTable:
    """Immutable mapping of reference keys to flattened pattern tuples.

    Parameters
    ----------
    entries:
        Already-flattened entries; use :meth:`build` to construct from
        raw configuration lists.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, tuple[Pattern, ...]] | None = None) -> None:
        self._entries = MappingProxyType(dict(entries or {}))

    @classmethod
    def build(cls, sources: Mapping[str, Sequence[str]]) -> ReferenceTable:
        """Parse and flatten *sources* into a table.

        Parameters
        ----------
        sources:
            Reference key (``"read.deny.paths"``) to the raw pattern
            strings configured under it.

        Raises
        ------
        UnresolvedReference
            If a ``ref:`` names a key that is not in *sources*.
        CyclicReference
            If references form a cycle.
        InvalidPattern
            If any raw pattern is malformed.
        """
        parsed = {key: [parse_pattern(raw) for raw in raws] for key, raws in sources.items()}
        flat: dict[str, tuple[Pattern, ...]] = {}

        def _flatten(key: str, trail: tuple[str, ...]) -> tuple[Pattern, ...]:
            if key in flat:
                return flat[key]
            if key in trail:
                cycle = " -> ".join((*trail[trail.index(key):], key))
                raise CyclicReference(
                    f"cyclic reference: {cycle}",
                    details={"cycle": [*trail[trail.index(key):], key]},
                )
            if key not in parsed:
                raise UnresolvedReference(
                    f"unknown reference target {key!r}",
                    details={"ref": key, "from": trail[-1] if trail else None},
                )
            result: list[Pattern] = []
            for pattern in parsed[key]:
                if pattern.kind is PatternKind.REF:
                    result.extend(_flatten(pattern.body, (*trail, key)))
                else:
                    result.append(pattern)
            flat[key] = tuple(result)
            return flat[key]

        for key in parsed:
            _flatten(key, ())
        logger.debug("built reference table with %d entries", len(flat))
        return cls(flat)

    def lookup(self, key: str) -> tuple[Pattern, ...]:
        """Return the flattened patterns for *key* (empty if unknown)."""
        return self._entries.get(key, ())

    def require(self, key: str, *, location: str = "") -> tuple[Pattern, ...]:
        """Return the patterns for *key*, raising if the key is unknown."""
        if key not in self._entries:
            raise UnresolvedReference(
                f"unknown reference target {key!r}" + (f" at {location}" if location else ""),
                details={"ref": key, "location": location},
            )
        return self._entries[key]

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        return sorted(self._entries)
