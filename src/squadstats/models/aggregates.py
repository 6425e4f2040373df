"""Aggregate result types returned by the store's memoized queries.

All results are frozen so a cached instance can be handed out repeatedly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from squadstats.models.battle import Battle


@dataclass(frozen=True)
class BattleTotals:
    points: float = 0
    damage: int = 0
    kills: int = 0


@dataclass(frozen=True)
class PlayerTotals:
    points: float = 0
    damage: int = 0
    kills: int = 0


@dataclass(frozen=True)
class TeamTotals:
    points: float = 0
    damage: int = 0
    kills: int = 0
    wins: int = 0
    battles: int = 0


@dataclass(frozen=True)
class RankedBattle:
    """A battle together with its team score."""
    arena_id: str
    battle: Battle
    points: float


@dataclass(frozen=True)
class BestWorstResult:
    best_battle: Optional[RankedBattle] = None
    worst_battle: Optional[RankedBattle] = None
