"""Tests for the version-stamped calculation cache."""

from squadstats.engine.cache import (
    BattleScope,
    BestWorstScope,
    CalculationCache,
    PlayerScope,
    TeamScope,
)


class TestCalculationCache:
    def test_hit_at_same_version(self):
        cache = CalculationCache()
        cache.put(TeamScope(), 1, "value")
        assert cache.get(TeamScope(), 1) == "value"
        assert cache.hits == 1

    def test_miss_at_other_version(self):
        cache = CalculationCache()
        cache.put(TeamScope(), 1, "value")
        assert cache.get(TeamScope(), 2) is None
        assert cache.misses == 1

    def test_get_or_compute_runs_once(self):
        cache = CalculationCache()
        calls = []

        def compute():
            calls.append(1)
            return len(calls)

        assert cache.get_or_compute(BattleScope("1"), 3, compute) == 1
        assert cache.get_or_compute(BattleScope("1"), 3, compute) == 1
        assert cache.get_or_compute(BattleScope("1"), 4, compute) == 2
        assert len(calls) == 2

    def test_cached_none_is_a_hit(self):
        cache = CalculationCache()
        calls = []
        cache.get_or_compute(TeamScope(), 1, lambda: calls.append(1))
        cache.get_or_compute(TeamScope(), 1, lambda: calls.append(1))
        assert calls == [1]

    def test_invalidate_single_scope(self):
        cache = CalculationCache()
        cache.put(BattleScope("1"), 1, "a")
        cache.put(BattleScope("2"), 1, "b")
        cache.invalidate(BattleScope("1"))
        assert BattleScope("1") not in cache
        assert BattleScope("2") in cache

    def test_invalidate_kind(self):
        cache = CalculationCache()
        cache.put(PlayerScope("1"), 1, "a")
        cache.put(PlayerScope("2"), 1, "b")
        cache.put(TeamScope(), 1, "t")
        assert cache.invalidate_kind(PlayerScope) == 2
        assert len(cache) == 1

    def test_invalidate_kind_with_predicate(self):
        cache = CalculationCache()
        cache.put(BestWorstScope(("1",)), 1, "a")
        cache.put(BestWorstScope(("1", "2")), 1, "b")
        dropped = cache.invalidate_kind(BestWorstScope, lambda s: "2" in s.arena_ids)
        assert dropped == 1
        assert BestWorstScope(("1",)) in cache

    def test_clear(self):
        cache = CalculationCache()
        cache.put(TeamScope(), 1, "t")
        cache.clear()
        assert len(cache) == 0
