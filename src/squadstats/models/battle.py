"""Battle model — data container for one arena and its squad records.

A Battle is keyed externally by its ``arena_id``.  Business logic lives in
engine/stats_store.py; wire conversion in network/serialization.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from squadstats.util.constants import (
    UNKNOWN_MAP,
    UNKNOWN_PLAYER,
    UNKNOWN_VEHICLE,
    WIN_UNKNOWN,
)


@dataclass
class PlayerBattleRecord:
    """One player's contribution to one battle.

    Attributes:
        name: Display name (``"Unknown Player"`` until resolved).
        damage: Cumulative damage dealt.  Never decreases.
        kills: Cumulative frags.  Never decreases.
        points: Score for this battle.
        vehicle: Vehicle display name (``"Unknown Vehicle"`` until known).
    """

    name: str = UNKNOWN_PLAYER
    damage: int = 0
    kills: int = 0
    points: float = 0
    vehicle: str = UNKNOWN_VEHICLE


@dataclass
class Battle:
    """Mutable state for one match instance.

    Attributes:
        start_time: Milliseconds since epoch of the first observation.
        duration: Battle length in seconds; ``0`` while in progress.
        win: -1 unknown, 0 defeat, 1 victory, 2 draw.
        map_name: Display name of the map (``"Unknown Map"`` until known).
        players: Records keyed by player id.
    """

    start_time: int = 0
    duration: float = 0
    win: int = WIN_UNKNOWN
    map_name: str = UNKNOWN_MAP
    players: dict[str, PlayerBattleRecord] = field(default_factory=dict)

    @property
    def in_progress(self) -> bool:
        return self.duration == 0

    @property
    def is_decided(self) -> bool:
        return self.win != WIN_UNKNOWN
