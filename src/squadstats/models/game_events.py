"""Game SDK event models.

Typed Pydantic models for the game-state events the host SDK delivers.
Each event type gets its own model; ``parse_game_event`` turns a raw dict
``{"type": ..., ...}`` into the matching model.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict

from squadstats.util.constants import UNKNOWN_MAP


# -- Base ----------------------------------------------------------------

class GameEvent(BaseModel):
    """Base class for all SDK events."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str


def _as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# SDK ids arrive as ints or strings; the store keys everything by string.
EntityId = Annotated[Optional[str], BeforeValidator(_as_id)]


# -- Hangar / lobby ------------------------------------------------------

class HangarStatus(GameEvent):
    type: Literal["hangar_status"] = "hangar_status"
    is_in_hangar: bool = True
    player_id: EntityId = None
    player_name: str = ""


class VehicleInfo(GameEvent):
    type: Literal["vehicle_info"] = "vehicle_info"
    vehicle: str = ""


class PlatoonStatus(GameEvent):
    type: Literal["platoon_status"] = "platoon_status"
    is_in_platoon: bool = False
    size: int = 1


# -- Battle --------------------------------------------------------------

class ArenaInfo(GameEvent):
    type: Literal["arena_info"] = "arena_info"
    arena_id: EntityId = None
    map_name: str = UNKNOWN_MAP


class BattlePeriod(GameEvent):
    type: Literal["battle_period"] = "battle_period"
    tag: str = ""


class PlayerFeedback(GameEvent):
    """Damage dealt or an enemy destroyed by the local player."""

    type: Literal["player_feedback"] = "player_feedback"
    kind: Literal["damage", "kill"] = "damage"
    damage: int = 0


class BattleResult(GameEvent):
    """Server-authoritative result for one arena."""

    type: Literal["battle_result"] = "battle_result"
    arena_id: EntityId = None
    duration: float = 0
    winner_team: int = 0
    player_team: int = 0
    map_name: str = ""
    player_id: EntityId = None
    damage: int = 0
    kills: int = 0


# -- Registry ------------------------------------------------------------

EVENT_TYPES: dict[str, type[GameEvent]] = {
    "hangar_status": HangarStatus,
    "vehicle_info": VehicleInfo,
    "platoon_status": PlatoonStatus,
    "arena_info": ArenaInfo,
    "battle_period": BattlePeriod,
    "player_feedback": PlayerFeedback,
    "battle_result": BattleResult,
}


def parse_game_event(raw: dict[str, Any]) -> GameEvent:
    """Parse a raw SDK dict into the appropriate typed event.

    Unknown types fall back to the base GameEvent.
    """
    event_type = raw.get("type", "")
    cls = EVENT_TYPES.get(event_type, GameEvent)
    return cls.model_validate(raw)
