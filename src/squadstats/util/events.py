"""Typed event bus — notifications from the engine to UI collaborators.

The store, reconciler and sync scheduler announce state changes here;
dashboards subscribe by event type.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Optional, Type, TypeVar

T = TypeVar("T")


# -- Stats events --------------------------------------------------------

@dataclass(frozen=True)
class StatsUpdated:
    """Battle or player data changed and dashboards should redraw."""
    source: str = "local"  # "local", "server" or "platoon"


@dataclass(frozen=True)
class HistoryCleared:
    """All battles and the player directory were wiped."""


@dataclass(frozen=True)
class BattleDeleted:
    """A single battle was removed on the backend and local data refreshed."""
    arena_id: str


@dataclass(frozen=True)
class DataImported:
    """An import payload was accepted by the backend."""
    battle_count: int


@dataclass(frozen=True)
class FiltersApplied:
    """The history view was filtered."""
    arena_ids: tuple[str, ...]


# -- Sync events ---------------------------------------------------------

@dataclass(frozen=True)
class SyncFailed:
    """A network operation failed on every channel."""
    operation: str
    reason: str


# -- Bus -----------------------------------------------------------------

Handler = Callable[[Any], None]


class EventBus:
    """Dispatches notifications and SDK events to subscribers by exact type.

    Handlers run synchronously, in subscription order, on the caller's
    stack; an exception in a handler propagates to the emitter.

    Usage:
        bus = EventBus()
        bus.on(StatsUpdated, dashboard.redraw)
        bus.emit(StatsUpdated(source="server"))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Handler]] = defaultdict(list)

    def on(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        self._subscribers[event_type].append(handler)

    def off(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """Unsubscribe ``handler``; unknown handlers are ignored."""
        subscribers = self._subscribers.get(event_type)
        if subscribers and handler in subscribers:
            subscribers.remove(handler)

    def emit(self, event: object) -> None:
        # Copy so a handler may unsubscribe itself mid-dispatch.
        for handler in tuple(self._subscribers.get(type(event), ())):
            handler(event)

    def subscriber_count(self, event_type: Optional[type] = None) -> int:
        """Handlers for ``event_type``, or across all types when omitted."""
        if event_type is not None:
            return len(self._subscribers.get(event_type, ()))
        return sum(len(hs) for hs in self._subscribers.values())

    def clear(self) -> None:
        self._subscribers.clear()
