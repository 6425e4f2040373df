"""Stats store — canonical in-memory model of battles and players.

Responsibilities:
- Own ``battles`` (arena id → Battle) and ``players_info`` (player id → name)
- Apply local incremental mutations from live game events
- Reconcile server snapshots into local state without losing live data
- Serve memoized aggregates (battle, player, team, best/worst battle)

Merge rules for an arena present locally and in a snapshot:
- damage, kills, points, duration → max(local, incoming)
- win → incoming unless incoming is unknown (-1)
- map name, player name, vehicle → local unless local is the sentinel
- arenas and players the snapshot does not mention stay untouched

Every mutation bumps ``version``; cached aggregates are stamped with the
version they were computed at and never outlive a mutation.

No network I/O and no persistence here.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from squadstats.engine.cache import (
    BattleScope,
    BestWorstScope,
    CalculationCache,
    PlayerScope,
    TeamScope,
)
from squadstats.models.aggregates import (
    BattleTotals,
    BestWorstResult,
    PlayerTotals,
    RankedBattle,
    TeamTotals,
)
from squadstats.models.battle import Battle, PlayerBattleRecord
from squadstats.network.serialization import (
    decode_snapshot,
    encode_battles,
    encode_push_payload,
    fingerprint,
    now_ms,
)
from squadstats.util.constants import (
    POINTS_PER_DAMAGE,
    POINTS_PER_FRAG,
    POINTS_PER_TEAM_WIN,
    UNKNOWN_MAP,
    UNKNOWN_PLAYER,
    UNKNOWN_VEHICLE,
    WIN_UNKNOWN,
    WIN_VICTORY,
)

log = logging.getLogger(__name__)

STAT_FIELDS = ("damage", "kills", "points")


def _known(value: str, sentinel: str) -> bool:
    return bool(value) and value != sentinel


class StatsStore:
    """Owner of the battle/player model and its aggregate cache.

    Args:
        points_per_frag: Points per destroyed vehicle.
        points_per_damage: Points per damage point.
        points_per_team_win: Team bonus for a won battle.
        clock: Returns the current time in ms since epoch.
    """

    def __init__(
        self,
        points_per_frag: int = POINTS_PER_FRAG,
        points_per_damage: int = POINTS_PER_DAMAGE,
        points_per_team_win: int = POINTS_PER_TEAM_WIN,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.points_per_frag = points_per_frag
        self.points_per_damage = points_per_damage
        self.points_per_team_win = points_per_team_win
        self._clock = clock
        self._battles: dict[str, Battle] = {}
        self._players_info: dict[str, str] = {}
        self._cache = CalculationCache()
        self._version = 0
        self.current_arena_id: Optional[str] = None

    # -- Read access -----------------------------------------------------

    @property
    def battles(self) -> dict[str, Battle]:
        """All battles in insertion order.  Mutate only through the store."""
        return self._battles

    @property
    def players_info(self) -> dict[str, str]:
        return self._players_info

    @property
    def version(self) -> int:
        """Monotonic counter bumped by every mutation."""
        return self._version

    @property
    def cache(self) -> CalculationCache:
        return self._cache

    def get_battle(self, arena_id: str) -> Optional[Battle]:
        return self._battles.get(arena_id)

    def battles_list(self) -> list[tuple[str, Battle]]:
        return list(self._battles.items())

    def current_battle_id(self) -> Optional[str]:
        """The first arena whose battle is still in progress."""
        for arena_id, battle in self._battles.items():
            if battle.duration == 0:
                return arena_id
        return None

    # -- Player directory ------------------------------------------------

    def is_registered(self, player_id: Optional[str]) -> bool:
        return player_id is not None and player_id in self._players_info

    def player_name(self, player_id: str) -> Optional[str]:
        return self._players_info.get(player_id)

    def register_player(self, player_id: str, name: str) -> bool:
        """Add or rename a directory entry.  Returns True if anything changed."""
        if not player_id or not name:
            return False
        if self._players_info.get(player_id) == name:
            return False
        self._players_info[player_id] = name
        self._touch()
        log.info("Player registered: id=%s name=%r", player_id, name)
        return True

    # -- Local mutations -------------------------------------------------

    def open_battle(self, arena_id: str, map_name: Optional[str] = None,
                    start_time: Optional[int] = None) -> Battle:
        """Return the battle for ``arena_id``, creating it on first sight."""
        battle = self._battles.get(arena_id)
        if battle is None:
            battle = Battle(start_time=start_time or self._clock())
            self._battles[arena_id] = battle
            log.info("Battle opened: arena=%s", arena_id)
        if map_name and _known(map_name, UNKNOWN_MAP):
            battle.map_name = map_name
        self._invalidate_arena(arena_id)
        return battle

    def ensure_player(self, arena_id: str, player_id: str, name: Optional[str] = None,
                      vehicle: Optional[str] = None) -> PlayerBattleRecord:
        """Return the player's record in ``arena_id``, creating both lazily.

        A non-empty ``name`` or ``vehicle`` is stamped onto the record.
        """
        battle = self._battles.get(arena_id)
        if battle is None:
            battle = self.open_battle(arena_id)
        record = battle.players.get(player_id)
        if record is None:
            record = PlayerBattleRecord(
                name=self._players_info.get(player_id, UNKNOWN_PLAYER),
            )
            battle.players[player_id] = record
        if name:
            record.name = name
        if vehicle:
            record.vehicle = vehicle
        self._invalidate_arena(arena_id)
        return record

    def mutate_player_stat(self, arena_id: str, player_id: str, field: str,
                           value: float, absolute: bool = False) -> PlayerBattleRecord:
        """Apply a live update to one stat of one player.

        Delta mode adds ``value`` (non-positive deltas are ignored).
        Absolute mode keeps the larger of the stored and given value, so an
        out-of-order cumulative reading never lowers the total.
        """
        if field not in STAT_FIELDS:
            raise ValueError(f"Unknown stat field: {field!r}")
        record = self.ensure_player(arena_id, player_id)
        current = getattr(record, field)
        if absolute:
            setattr(record, field, max(current, value))
        elif value > 0:
            setattr(record, field, current + value)
        self._invalidate_arena(arena_id)
        return record

    def set_battle_result(
        self,
        arena_id: str,
        duration: float,
        win: int,
        map_name: Optional[str] = None,
        player_id: Optional[str] = None,
        damage: int = 0,
        kills: int = 0,
        points: Optional[float] = None,
    ) -> bool:
        """Finalize a battle with authoritative values.

        The player's damage/kills/points are overwritten exactly, not
        max-merged.  Returns False when the arena was never opened.
        """
        battle = self._battles.get(arena_id)
        if battle is None:
            return False
        battle.duration = duration
        battle.win = win
        if map_name and battle.map_name == UNKNOWN_MAP:
            battle.map_name = map_name
        if player_id is not None:
            record = battle.players.get(player_id)
            if record is None:
                record = PlayerBattleRecord(
                    name=self._players_info.get(player_id, UNKNOWN_PLAYER),
                )
                battle.players[player_id] = record
            record.damage = damage
            record.kills = kills
            record.points = points if points is not None else self.score(damage, kills)
        self._invalidate_arena(arena_id)
        log.info("Battle result: arena=%s win=%d duration=%s", arena_id, win, duration)
        return True

    def score(self, damage: int, kills: int) -> float:
        return damage * self.points_per_damage + kills * self.points_per_frag

    # -- Reconciliation --------------------------------------------------

    def reconcile(self, snapshot: Any, cold: bool = False) -> None:
        """Merge a server (or locally saved) snapshot into current state.

        Additive: arenas, players and directory entries missing from the
        snapshot are kept.  Applying the same snapshot twice is a no-op the
        second time.

        Args:
            snapshot: Raw payload, optionally wrapped in a REST envelope.
            cold: True when loading from scratch; drops the whole cache.
        """
        battles, players_info = decode_snapshot(
            snapshot, self._players_info, self.points_per_frag, self.points_per_damage,
        )
        self._players_info.update(players_info)

        for arena_id, incoming in battles.items():
            local = self._battles.get(arena_id)
            if local is None:
                if not incoming.start_time:
                    incoming.start_time = self._clock()
                self._battles[arena_id] = incoming
            else:
                self._merge_battle(local, incoming)

        self._touch()
        self._cache.invalidate_kind(BestWorstScope)
        if cold:
            self._cache.clear()
        log.debug("Reconciled %d battles, %d directory entries (cold=%s)",
                  len(battles), len(players_info), cold)

    def _merge_battle(self, local: Battle, incoming: Battle) -> None:
        if incoming.start_time:
            local.start_time = incoming.start_time
        local.duration = max(local.duration, incoming.duration)
        if incoming.win != WIN_UNKNOWN:
            local.win = incoming.win
        if not _known(local.map_name, UNKNOWN_MAP):
            local.map_name = incoming.map_name

        for player_id, inc in incoming.players.items():
            mine = local.players.get(player_id)
            if mine is None:
                local.players[player_id] = inc
                continue
            mine.damage = max(mine.damage, inc.damage)
            mine.kills = max(mine.kills, inc.kills)
            mine.points = max(mine.points, inc.points)
            if not _known(mine.name, UNKNOWN_PLAYER):
                mine.name = inc.name if _known(inc.name, UNKNOWN_PLAYER) else \
                    self._players_info.get(player_id, UNKNOWN_PLAYER)
            if not _known(mine.vehicle, UNKNOWN_VEHICLE):
                mine.vehicle = inc.vehicle

    def load_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        """Cold-load a saved snapshot (local state file)."""
        self.reconcile(snapshot, cold=True)
        arena_id = snapshot.get("current_arena_id")
        if arena_id and str(arena_id) in self._battles:
            self.current_arena_id = str(arena_id)

    def clear(self) -> None:
        """Wipe battles, directory and cache."""
        self._battles = {}
        self._players_info = {}
        self._cache.clear()
        self.current_arena_id = None
        self._touch()
        log.info("Stats cleared")

    # -- Export ----------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Plain-data copy of the model, suitable for YAML/JSON."""
        return {
            "BattleStats": encode_battles(self._battles),
            "PlayersInfo": dict(self._players_info),
            "current_arena_id": self.current_arena_id,
        }

    def push_payload(self) -> dict[str, Any]:
        return encode_push_payload(self._battles, self._players_info)

    def fingerprint(self) -> str:
        return fingerprint(self._battles, self._players_info)

    # -- Aggregates ------------------------------------------------------

    def calculate_battle_points(self, battle: Battle) -> float:
        """Team score of one battle: win bonus plus every player's points."""
        points: float = self.points_per_team_win if battle.win == WIN_VICTORY else 0
        for player in battle.players.values():
            points += player.points
        return points

    def get_battle_aggregate(self, arena_id: Optional[str] = None) -> BattleTotals:
        """Totals for one battle, defaulting to the battle in progress."""
        target = arena_id or self.current_battle_id()
        if target is None:
            return BattleTotals()
        return self._cache.get_or_compute(
            BattleScope(target), self._version, lambda: self._battle_totals(target),
        )

    def _battle_totals(self, arena_id: str) -> BattleTotals:
        battle = self._battles.get(arena_id)
        if battle is None:
            return BattleTotals()
        players = battle.players.values()
        return BattleTotals(
            points=sum(p.points for p in players),
            damage=sum(p.damage for p in players),
            kills=sum(p.kills for p in players),
        )

    def get_player_aggregate(self, player_id: str) -> PlayerTotals:
        """Lifetime totals of one player across all battles."""
        return self._cache.get_or_compute(
            PlayerScope(player_id), self._version, lambda: self._player_totals(player_id),
        )

    def _player_totals(self, player_id: str) -> PlayerTotals:
        points: float = 0
        damage = kills = 0
        for battle in self._battles.values():
            player = battle.players.get(player_id)
            if player is not None:
                points += player.points
                damage += player.damage
                kills += player.kills
        return PlayerTotals(points=points, damage=damage, kills=kills)

    def get_team_aggregate(self) -> TeamTotals:
        """Totals across the whole store, including the win bonuses."""
        return self._cache.get_or_compute(TeamScope(), self._version, self._team_totals)

    def _team_totals(self) -> TeamTotals:
        points: float = 0
        damage = kills = wins = 0
        for battle in self._battles.values():
            if battle.win == WIN_VICTORY:
                points += self.points_per_team_win
                wins += 1
            for player in battle.players.values():
                points += player.points
                damage += player.damage
                kills += player.kills
        return TeamTotals(points=points, damage=damage, kills=kills,
                          wins=wins, battles=len(self._battles))

    def find_best_and_worst_battle(self) -> BestWorstResult:
        """Highest and lowest scoring decided battles.

        Ties go to the battle encountered first, in insertion order.
        """
        scope = BestWorstScope(tuple(sorted(self._battles)))
        return self._cache.get_or_compute(scope, self._version, self._rank_battles)

    def _rank_battles(self) -> BestWorstResult:
        best: Optional[RankedBattle] = None
        worst: Optional[RankedBattle] = None
        for arena_id, battle in self._battles.items():
            if not battle.is_decided:
                continue
            points = self.calculate_battle_points(battle)
            if best is None or points > best.points:
                best = RankedBattle(arena_id, battle, points)
            if worst is None or points < worst.points:
                worst = RankedBattle(arena_id, battle, points)
        return BestWorstResult(best_battle=best, worst_battle=worst)

    # -- Internal --------------------------------------------------------

    def _touch(self) -> None:
        self._version += 1

    def _invalidate_arena(self, arena_id: str) -> None:
        """Bump the version and drop caches an arena-level change affects."""
        self._touch()
        self._cache.invalidate(BattleScope(arena_id))
        self._cache.invalidate_kind(PlayerScope)
        self._cache.invalidate(TeamScope())
        self._cache.invalidate_kind(BestWorstScope)
