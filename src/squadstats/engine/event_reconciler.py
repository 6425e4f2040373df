"""Event reconciler — turns game SDK events into store mutations.

Tracks one live battle for the local player:

    IDLE ──hangar──▶ IN_HANGAR ──arena──▶ IN_ARENA ──result──▶ RESOLVED
      ▲                  ▲                                        │
      └──────────────────┴──────────── hangar / arena ◀───────────┘

Rules:
- Feedback (damage, kills) only counts for an active arena + player pair
  whose player is already in the directory.
- A battle result for an arena that was never opened is logged and
  dropped.
- The battle result overwrites the local player's numbers exactly; every
  other path only ever increases them.
- Pushes are only scheduled for registered players, so a first appearance
  cannot race the hangar-time registration.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Optional

from squadstats.models.game_events import (
    ArenaInfo,
    BattlePeriod,
    BattleResult,
    GameEvent,
    HangarStatus,
    PlatoonStatus,
    PlayerFeedback,
    VehicleInfo,
)
from squadstats.util.constants import (
    MAX_SQUAD_SIZE,
    UNKNOWN_MAP,
    WIN_DEFEAT,
    WIN_DRAW,
    WIN_VICTORY,
)
from squadstats.util.events import StatsUpdated

if TYPE_CHECKING:
    from squadstats.engine.stats_store import StatsStore
    from squadstats.engine.sync_scheduler import SyncScheduler
    from squadstats.util.events import EventBus

log = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    IDLE = "idle"
    IN_HANGAR = "in_hangar"
    IN_ARENA = "in_arena"
    RESOLVED = "resolved"


def resolve_win(winner_team: int, player_team: int) -> int:
    """Map the result's winning team onto the local player's outcome."""
    if winner_team == 0:
        return WIN_DRAW
    if winner_team == player_team:
        return WIN_VICTORY
    return WIN_DEFEAT


class EventReconciler:
    """State machine over the local player's current battle.

    Args:
        store: Stats store receiving the mutations.
        scheduler: Sync scheduler for debounced pushes and local saves.
        event_bus: Bus for ``StatsUpdated`` notifications.
        max_squad_size: Largest platoon that still registers its player.
        clock: Returns seconds since epoch; stamps ``last_update``.
    """

    def __init__(
        self,
        store: StatsStore,
        scheduler: SyncScheduler,
        event_bus: EventBus,
        max_squad_size: int = MAX_SQUAD_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._sync = scheduler
        self._events = event_bus
        self._max_squad_size = max_squad_size
        self._clock = clock

        self.current_player_id: Optional[str] = None
        self.current_player_name: str = ""
        self.current_vehicle: Optional[str] = None
        self.is_in_platoon = False
        self.platoon_size = 1
        self.battle_period: str = ""
        self.last_update: float = 0.0

        self._dispatch: dict[type, Callable[[Any], None]] = {
            HangarStatus: self.on_hangar_status,
            VehicleInfo: self.on_vehicle_info,
            PlatoonStatus: self.on_platoon_status,
            ArenaInfo: self.on_arena_info,
            BattlePeriod: self.on_battle_period,
            PlayerFeedback: self.on_player_feedback,
            BattleResult: self.on_battle_result,
        }

    # -- State -----------------------------------------------------------

    @property
    def current_arena_id(self) -> Optional[str]:
        return self._store.current_arena_id

    @current_arena_id.setter
    def current_arena_id(self, arena_id: Optional[str]) -> None:
        self._store.current_arena_id = arena_id

    @property
    def phase(self) -> Phase:
        arena_id = self.current_arena_id
        if arena_id is None:
            return Phase.IN_HANGAR if self.current_player_id else Phase.IDLE
        battle = self._store.get_battle(arena_id)
        if battle is not None and battle.duration > 0:
            return Phase.RESOLVED
        return Phase.IN_ARENA

    @property
    def is_in_battle(self) -> bool:
        return self.phase is Phase.IN_ARENA

    def has_active_battle(self) -> bool:
        return self.current_arena_id is not None and self.current_player_id is not None

    # -- Wiring ----------------------------------------------------------

    def register(self, bus: EventBus) -> None:
        """Subscribe every handler to its SDK event type on ``bus``."""
        for event_type, handler in self._dispatch.items():
            bus.on(event_type, handler)

    def handle(self, event: GameEvent) -> None:
        """Apply one event directly (without going through a bus)."""
        handler = self._dispatch.get(type(event))
        if handler is None:
            log.debug("No handler for game event type: %s", event.type)
            return
        handler(event)

    # -- Handlers --------------------------------------------------------

    def on_hangar_status(self, event: HangarStatus) -> None:
        if not event.is_in_hangar:
            return
        if event.player_id:
            self.current_player_id = event.player_id
        if event.player_name:
            self.current_player_name = event.player_name
        self.current_arena_id = None

        pid = self.current_player_id
        if pid is not None and not self._store.is_registered(pid):
            if not self._may_register():
                log.info("Skipping registration of %s (platoon=%s size=%d, %d tracked)",
                         pid, self.is_in_platoon, self.platoon_size,
                         len(self._store.players_info))
            elif not self._store.register_player(pid, self._resolve_name() or ""):
                log.debug("Player %s has no name yet — not registered", pid)
        self._sync.request_push()

    def on_vehicle_info(self, event: VehicleInfo) -> None:
        self.current_vehicle = event.vehicle or None

    def on_platoon_status(self, event: PlatoonStatus) -> None:
        self.is_in_platoon = event.is_in_platoon
        self.platoon_size = max(event.size, 1) if event.is_in_platoon else 1
        self._events.emit(StatsUpdated(source="platoon"))
        self._sync.save_local()

    def on_arena_info(self, event: ArenaInfo) -> None:
        pid = self.current_player_id
        if event.arena_id is None or pid is None:
            log.debug("Arena info ignored (arena=%s player=%s)", event.arena_id, pid)
            return

        arena_id = event.arena_id
        self.current_arena_id = arena_id
        map_name = event.map_name if event.map_name != UNKNOWN_MAP else None
        self._store.open_battle(arena_id, map_name=map_name)

        name = self._resolve_name()
        self._store.ensure_player(arena_id, pid, name=name, vehicle=self.current_vehicle)
        was_registered = self._store.is_registered(pid)
        if not was_registered and name:
            self._store.register_player(pid, name)

        self._events.emit(StatsUpdated())
        self._sync.save_local()
        if was_registered:
            self._sync.request_push()

    def on_battle_period(self, event: BattlePeriod) -> None:
        if not self.has_active_battle():
            return
        self.battle_period = event.tag
        self.last_update = self._clock()
        self._events.emit(StatsUpdated())

    def on_player_feedback(self, event: PlayerFeedback) -> None:
        pid = self.current_player_id
        arena_id = self.current_arena_id
        if arena_id is None or pid is None or not self._store.is_registered(pid):
            return

        store = self._store
        if event.kind == "damage":
            if event.damage <= 0:
                return
            store.mutate_player_stat(arena_id, pid, "damage", event.damage)
            store.mutate_player_stat(arena_id, pid, "points",
                                     event.damage * store.points_per_damage)
        else:
            store.mutate_player_stat(arena_id, pid, "kills", 1)
            store.mutate_player_stat(arena_id, pid, "points", store.points_per_frag)

        self.last_update = self._clock()
        self._events.emit(StatsUpdated())
        self._sync.request_push()

    def on_battle_result(self, event: BattleResult) -> None:
        arena_id = event.arena_id
        if arena_id is None:
            return
        if self._store.get_battle(arena_id) is None:
            log.warning("Battle result for unknown arena %s — dropped", arena_id)
            return

        pid = event.player_id or self.current_player_id
        self._store.set_battle_result(
            arena_id,
            duration=event.duration,
            win=resolve_win(event.winner_team, event.player_team),
            map_name=event.map_name or None,
            player_id=pid,
            damage=event.damage,
            kills=event.kills,
        )
        self._events.emit(StatsUpdated())
        self._sync.save_local()
        if self._store.is_registered(pid):
            self._sync.request_push()

    # -- Internal --------------------------------------------------------

    def _resolve_name(self) -> Optional[str]:
        """Live SDK name first, then the directory."""
        if self.current_player_name:
            return self.current_player_name
        if self.current_player_id is not None:
            return self._store.player_name(self.current_player_id)
        return None

    def _may_register(self) -> bool:
        """Squad-size guard against clobbering squad-mates' entries."""
        if self.platoon_size > self._max_squad_size:
            return False
        if not self.is_in_platoon and len(self._store.players_info) > 1:
            return False
        return True
