"""Calculation cache — memoized aggregate results keyed by typed scopes.

Each entry is stamped with the store version it was computed at; a
lookup only hits when that stamp still matches.  Scoped invalidation
drops entries early, e.g. when the best/worst ranking must be recomputed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional

log = logging.getLogger(__name__)


# -- Scopes --------------------------------------------------------------

@dataclass(frozen=True)
class BattleScope:
    arena_id: str


@dataclass(frozen=True)
class PlayerScope:
    player_id: str


@dataclass(frozen=True)
class TeamScope:
    pass


@dataclass(frozen=True)
class BestWorstScope:
    arena_ids: tuple[str, ...]


CacheScope = Hashable

_MISSING = object()


class CalculationCache:
    """Flat scope → (version, value) table.

    Single-owner: it is only touched from the event loop that owns the
    store, so no locking.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheScope, tuple[int, Any]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, scope: CacheScope) -> bool:
        return scope in self._entries

    def get(self, scope: CacheScope, version: int, default: Any = None) -> Any:
        entry = self._entries.get(scope)
        if entry is None or entry[0] != version:
            self.misses += 1
            return default
        self.hits += 1
        return entry[1]

    def put(self, scope: CacheScope, version: int, value: Any) -> Any:
        self._entries[scope] = (version, value)
        return value

    def get_or_compute(self, scope: CacheScope, version: int,
                       compute: Callable[[], Any]) -> Any:
        """Return the cached value for ``scope`` or compute and store it."""
        value = self.get(scope, version, _MISSING)
        if value is _MISSING:
            value = self.put(scope, version, compute())
        return value

    def invalidate(self, scope: CacheScope) -> None:
        self._entries.pop(scope, None)

    def invalidate_kind(self, kind: type, predicate: Optional[Callable[[Any], bool]] = None) -> int:
        """Drop every entry whose scope is an instance of ``kind``.

        Returns the number of dropped entries.
        """
        stale = [
            s for s in self._entries
            if isinstance(s, kind) and (predicate is None or predicate(s))
        ]
        for s in stale:
            del self._entries[s]
        if stale:
            log.debug("cache: dropped %d %s entries", len(stale), kind.__name__)
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
