"""History service — battle list, filters, export/import, remote deletes.

Backs the battle-history page: filtering the local battle list, exporting
it as JSON, importing a validated payload, and the destructive backend
operations (clear everything, delete one battle) that are followed by a
full refresh from the server.
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from squadstats.models.battle import Battle
from squadstats.network.serialization import encode_battles
from squadstats.util.constants import WIN_DEFEAT, WIN_DRAW, WIN_UNKNOWN, WIN_VICTORY
from squadstats.util.errors import ImportValidationError, StatsError
from squadstats.util.events import (
    BattleDeleted,
    DataImported,
    FiltersApplied,
    HistoryCleared,
    StatsUpdated,
    SyncFailed,
)

if TYPE_CHECKING:
    from squadstats.engine.stats_store import StatsStore
    from squadstats.engine.sync_scheduler import SyncScheduler
    from squadstats.network.transport import StatsTransport
    from squadstats.persistence.state_file import StateFile
    from squadstats.util.events import EventBus

log = logging.getLogger(__name__)

BattleEntry = tuple[str, Battle]

RESULT_CODES: dict[str, int] = {
    "victory": WIN_VICTORY,
    "defeat": WIN_DEFEAT,
    "draw": WIN_DRAW,
    "inBattle": WIN_UNKNOWN,
}

REQUIRED_BATTLE_FIELDS = ("startTime", "duration", "win", "mapName", "players")
PLAYER_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "name": (str,),
    "damage": (int, float),
    "kills": (int, float),
    "points": (int, float),
    "vehicle": (str,),
}


# ===================================================================
# Filters
# ===================================================================


def filter_by_map(battles: list[BattleEntry], map_name: str) -> list[BattleEntry]:
    return [(a, b) for a, b in battles if b.map_name == map_name]


def filter_by_vehicle(battles: list[BattleEntry], vehicle: str) -> list[BattleEntry]:
    return [(a, b) for a, b in battles
            if any(p.vehicle == vehicle for p in b.players.values())]


def filter_by_result(battles: list[BattleEntry], result: str) -> list[BattleEntry]:
    code = RESULT_CODES.get(result)
    if code is None:
        return []
    return [(a, b) for a, b in battles if b.win == code]


def _day(ms: int) -> Optional[datetime.date]:
    try:
        return datetime.datetime.fromtimestamp(ms / 1000).date()
    except (OverflowError, OSError, ValueError):
        return None


def filter_by_date(battles: list[BattleEntry], date: Any) -> list[BattleEntry]:
    """Keep battles started on the same local calendar day as ``date``.

    ``date`` may be a ``date``/``datetime`` or an ISO string; an
    unparseable string matches nothing.
    """
    if isinstance(date, str):
        try:
            date = datetime.date.fromisoformat(date[:10])
        except ValueError:
            log.warning("Ignoring malformed date filter: %r", date)
            return []
    elif isinstance(date, datetime.datetime):
        date = date.date()
    return [(a, b) for a, b in battles if b.start_time and _day(b.start_time) == date]


def filter_by_player(battles: list[BattleEntry], name: str) -> list[BattleEntry]:
    return [(a, b) for a, b in battles
            if any(p.name == name for p in b.players.values())]


FILTERS: dict[str, Callable[[list[BattleEntry], Any], list[BattleEntry]]] = {
    "map": filter_by_map,
    "vehicle": filter_by_vehicle,
    "result": filter_by_result,
    "date": filter_by_date,
    "player": filter_by_player,
}


# ===================================================================
# Import validation
# ===================================================================


def _is_type(value: Any, types: tuple[type, ...]) -> bool:
    return isinstance(value, types) and not isinstance(value, bool)


def validate_player(player_id: str, data: Any, arena_id: str = "") -> None:
    if not isinstance(data, dict):
        raise ImportValidationError(
            f"Invalid player data for ID: {player_id}", arena_id, player_id,
        )
    for field, types in PLAYER_FIELD_TYPES.items():
        if field not in data:
            raise ImportValidationError(
                f"Missing required player field: {field}", arena_id, player_id,
            )
        if not _is_type(data[field], types):
            raise ImportValidationError(
                f"Invalid type for player field {field}", arena_id, player_id,
            )


def validate_battle(arena_id: str, data: Any) -> None:
    if not isinstance(data, dict):
        raise ImportValidationError(f"Invalid battle data for arena {arena_id}", arena_id)
    missing = [f for f in REQUIRED_BATTLE_FIELDS if f not in data]
    if missing:
        raise ImportValidationError(
            f"Missing required battle fields: {', '.join(missing)}", arena_id,
        )
    if not isinstance(data["players"], dict):
        raise ImportValidationError("Invalid players data structure", arena_id)
    for player_id, player in data["players"].items():
        validate_player(str(player_id), player, arena_id)


def validate_import(payload: Any) -> dict[str, Any]:
    """Validate a whole import payload; return its battle map.

    Accepts either the bare battle map (as produced by export) or
    ``{"BattleStats": {...}, ...}``.

    Raises:
        ImportValidationError: On the first offending battle or player.
    """
    if not isinstance(payload, dict):
        raise ImportValidationError("Import payload must be an object")
    battles = payload.get("BattleStats", payload)
    if not isinstance(battles, dict):
        raise ImportValidationError("BattleStats must be an object")
    for arena_id, battle in battles.items():
        validate_battle(str(arena_id), battle)
    return battles


# ===================================================================
# Service
# ===================================================================


class HistoryService:
    """Battle-history operations on top of the store and transport.

    Args:
        store: The stats store.
        transport: Backend gateway.
        scheduler: Used for the full refresh and local saves.
        persistence: Local state file; also the source of the access key.
        event_bus: Bus for history notifications.
    """

    def __init__(
        self,
        store: StatsStore,
        transport: StatsTransport,
        scheduler: SyncScheduler,
        persistence: StateFile,
        event_bus: EventBus,
    ) -> None:
        self._store = store
        self._transport = transport
        self._sync = scheduler
        self._persistence = persistence
        self._events = event_bus
        self.filtered: list[BattleEntry] = []

    # -- Local views -----------------------------------------------------

    def battles(self) -> list[BattleEntry]:
        return self._store.battles_list()

    def apply_filters(self, filters: Mapping[str, Any]) -> list[BattleEntry]:
        """Apply every non-empty filter in ``filters`` (unknown keys ignored)."""
        result = self.battles()
        for key, value in filters.items():
            fn = FILTERS.get(key)
            if value and fn is not None:
                result = fn(result, value)
        self.filtered = result
        self._events.emit(FiltersApplied(arena_ids=tuple(a for a, _ in result)))
        return result

    def export_data(self) -> str:
        """JSON dump of the battle map, in the import format."""
        return json.dumps(encode_battles(self._store.battles), indent=2, ensure_ascii=False)

    # -- Backend operations ----------------------------------------------

    async def import_data(self, payload: Any) -> bool:
        """Validate and import ``payload``; all-or-nothing.

        Nothing is sent and no local state changes unless every battle
        and player passes validation.
        """
        try:
            battles = validate_import(payload)
        except ImportValidationError as e:
            log.error("Invalid data format for import: %s", e)
            self._events.emit(SyncFailed(operation="import", reason=str(e)))
            return False
        try:
            await self._transport.import_stats(self._sync.access_key, payload)
        except StatsError as e:
            return self._failed("import", e)
        await self.refresh()
        self._events.emit(DataImported(battle_count=len(battles)))
        return True

    async def clear_stats(self) -> bool:
        """Clear every battle on the backend and locally."""
        try:
            await self._transport.clear_stats(self._sync.access_key)
        except StatsError as e:
            return self._failed("clear", e)
        self._store.clear()
        self._persistence.clear()
        self._events.emit(HistoryCleared())
        self._events.emit(StatsUpdated(source="server"))
        return True

    async def delete_battle(self, arena_id: str) -> bool:
        """Delete one battle on the backend, then refresh everything."""
        try:
            await self._transport.delete_battle(self._sync.access_key, arena_id)
        except StatsError as e:
            return self._failed("delete", e)
        await self.refresh()
        self._events.emit(BattleDeleted(arena_id=arena_id))
        return True

    async def refresh(self) -> bool:
        """Replace local state with the backend's.

        Local state is only dropped once the fetch has succeeded.
        """
        try:
            response = await self._transport.fetch_stats(self._sync.access_key)
        except StatsError as e:
            return self._failed("refresh", e)
        self._store.clear()
        self._store.reconcile(response, cold=True)
        self._sync.save_local()
        self._events.emit(StatsUpdated(source="server"))
        return True

    def _failed(self, operation: str, error: StatsError) -> bool:
        log.error("History %s failed: %s", operation, error)
        self._events.emit(SyncFailed(operation=operation, reason=str(error)))
        return False
