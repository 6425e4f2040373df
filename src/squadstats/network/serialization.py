"""Serialization — wire payloads ⇄ domain records.

The backend speaks camelCase JSON (``BattleStats``, ``PlayerInfo``,
``startTime`` …) and may wrap any record in an ``{"_id": <record>}``
envelope.  Decoding is total: every missing or wrong-typed field falls
back to its default or sentinel, nothing here raises on bad data.
"""

from __future__ import annotations

import json
import math
import time
from typing import Any, Mapping, Optional

from squadstats.models.battle import Battle, PlayerBattleRecord
from squadstats.util.constants import (
    POINTS_PER_DAMAGE,
    POINTS_PER_FRAG,
    UNKNOWN_MAP,
    UNKNOWN_PLAYER,
    UNKNOWN_VEHICLE,
    WIN_DEFEAT,
    WIN_DRAW,
    WIN_UNKNOWN,
    WIN_VICTORY,
)

ENVELOPE_KEY = "_id"

_VALID_WIN = {WIN_UNKNOWN, WIN_DEFEAT, WIN_VICTORY, WIN_DRAW}


def now_ms() -> int:
    return int(time.time() * 1000)


def _is_number(value: Any) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and (isinstance(value, int) or math.isfinite(value)))


def _count(value: Any) -> int:
    if not _is_number(value) or value < 0:
        return 0
    return int(value)


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value:
        return value
    return default


def unwrap(raw: Any) -> dict[str, Any]:
    """Strip an ``{"_id": {...}}`` envelope; non-dicts decode as empty."""
    if isinstance(raw, dict) and isinstance(raw.get(ENVELOPE_KEY), dict):
        raw = raw[ENVELOPE_KEY]
    return raw if isinstance(raw, dict) else {}


# ===================================================================
# Decoding
# ===================================================================


def decode_player(
    raw: Any,
    fallback_name: Optional[str] = None,
    points_per_frag: int = POINTS_PER_FRAG,
    points_per_damage: int = POINTS_PER_DAMAGE,
) -> PlayerBattleRecord:
    d = unwrap(raw)
    damage = _count(d.get("damage"))
    kills = _count(d.get("kills"))
    points = d.get("points")
    if not _is_number(points) or points < 0:
        points = damage * points_per_damage + kills * points_per_frag
    return PlayerBattleRecord(
        name=_text(d.get("name"), fallback_name or UNKNOWN_PLAYER),
        damage=damage,
        kills=kills,
        points=points,
        vehicle=_text(d.get("vehicle"), UNKNOWN_VEHICLE),
    )


def decode_battle(
    raw: Any,
    directory: Optional[Mapping[str, str]] = None,
    points_per_frag: int = POINTS_PER_FRAG,
    points_per_damage: int = POINTS_PER_DAMAGE,
) -> Battle:
    """Decode one battle.  ``start_time`` stays 0 when the payload has none."""
    d = unwrap(raw)
    directory = directory or {}

    players: dict[str, PlayerBattleRecord] = {}
    raw_players = d.get("players")
    if isinstance(raw_players, dict):
        for pid, p_raw in raw_players.items():
            pid = str(pid)
            players[pid] = decode_player(
                p_raw, directory.get(pid), points_per_frag, points_per_damage,
            )

    start_time = d.get("startTime")
    duration = d.get("duration")
    win = d.get("win")
    return Battle(
        start_time=int(start_time) if _is_number(start_time) and start_time > 0 else 0,
        duration=duration if _is_number(duration) and duration > 0 else 0,
        win=win if _is_number(win) and win in _VALID_WIN else WIN_UNKNOWN,
        map_name=_text(d.get("mapName"), UNKNOWN_MAP),
        players=players,
    )


def decode_directory(raw: Any) -> dict[str, str]:
    """Decode the player directory.

    Entries may be a bare name, ``{"_id": name}`` or ``{"name": name}``;
    anything else is skipped.
    """
    result: dict[str, str] = {}
    if not isinstance(raw, dict):
        return result
    for pid, entry in raw.items():
        name: Any = entry
        if isinstance(entry, dict):
            name = entry.get(ENVELOPE_KEY) or entry.get("name")
        if isinstance(name, str) and name:
            result[str(pid)] = name
    return result


def _first_dict(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, dict):
            return value
    return None


def decode_snapshot(
    payload: Any,
    directory: Optional[Mapping[str, str]] = None,
    points_per_frag: int = POINTS_PER_FRAG,
    points_per_damage: int = POINTS_PER_DAMAGE,
) -> tuple[dict[str, Battle], dict[str, str]]:
    """Decode a server or local snapshot into ``(battles, players_info)``.

    Accepts the REST envelope ``{"data": {...}}`` as well as the bare
    ``{"BattleStats": ..., "PlayerInfo": ...}`` shape.  ``directory`` is
    consulted for names the incoming directory does not provide.
    """
    if not isinstance(payload, dict):
        return {}, {}
    data = payload.get("data")
    if isinstance(data, dict) and ("BattleStats" in data or "PlayerInfo" in data):
        payload = data

    players_info = decode_directory(
        _first_dict(payload, "PlayerInfo", "PlayersInfo", "players")
    )
    names = dict(directory or {})
    names.update(players_info)

    battles: dict[str, Battle] = {}
    raw_battles = _first_dict(payload, "BattleStats", "battles") or {}
    for arena_id, b_raw in raw_battles.items():
        battles[str(arena_id)] = decode_battle(b_raw, names, points_per_frag, points_per_damage)
    return battles, players_info


# ===================================================================
# Encoding
# ===================================================================


def encode_player(p: PlayerBattleRecord) -> dict[str, Any]:
    return {
        "name": p.name,
        "damage": p.damage,
        "kills": p.kills,
        "points": p.points,
        "vehicle": p.vehicle,
    }


def encode_battle(b: Battle) -> dict[str, Any]:
    return {
        "startTime": b.start_time,
        "duration": b.duration,
        "win": b.win,
        "mapName": b.map_name,
        "players": {pid: encode_player(p) for pid, p in b.players.items()},
    }


def encode_battles(battles: Mapping[str, Battle]) -> dict[str, Any]:
    return {arena_id: encode_battle(b) for arena_id, b in battles.items()}


def encode_push_payload(
    battles: Mapping[str, Battle], players_info: Mapping[str, str],
) -> dict[str, Any]:
    """Body for the backend's update-stats operation (directory wrapped)."""
    return {
        "BattleStats": encode_battles(battles),
        "PlayerInfo": {pid: {ENVELOPE_KEY: name} for pid, name in players_info.items()},
    }


def fingerprint(battles: Mapping[str, Battle], players_info: Mapping[str, str]) -> str:
    """Canonical JSON used to detect whether a reconcile changed anything."""
    return json.dumps(
        {"BattleStats": encode_battles(battles), "PlayersInfo": dict(players_info)},
        sort_keys=True,
        separators=(",", ":"),
    )
