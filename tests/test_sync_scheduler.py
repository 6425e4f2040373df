"""Tests for debouncing and the push/pull scheduler."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from squadstats.engine.stats_store import StatsStore
from squadstats.engine.sync_scheduler import SyncScheduler
from squadstats.util.debounce import Debouncer
from squadstats.util.errors import MissingCredentialError, TransportError
from squadstats.util.events import EventBus, HistoryCleared, StatsUpdated, SyncFailed

KEY = "secret-key"
DELAY_MS = 10


def _snapshot(damage: int = 100) -> dict[str, Any]:
    return {
        "success": True,
        "data": {
            "BattleStats": {"1": {"startTime": 1000, "duration": 0, "win": -1,
                                  "mapName": "Ensk",
                                  "players": {"p": {"name": "A", "damage": damage,
                                                    "kills": 0, "points": damage,
                                                    "vehicle": "T-34"}}}},
            "PlayerInfo": {"p": {"_id": "A"}},
        },
    }


def _make(key: str | None = KEY):
    store = StatsStore(clock=lambda: 1000)
    transport = MagicMock()
    transport.push_stats = AsyncMock(return_value={"success": True})
    transport.fetch_stats = AsyncMock(return_value=_snapshot())
    persistence = MagicMock()
    persistence.get_access_key.return_value = key
    bus = EventBus()
    scheduler = SyncScheduler(store, transport, persistence, bus, debounce_delay_ms=DELAY_MS)
    return scheduler, store, transport, persistence, bus


# ===================================================================
# Debouncer
# ===================================================================


class TestDebouncer:
    @pytest.mark.asyncio
    async def test_burst_runs_once_with_last_args(self):
        calls = []

        async def record(value):
            calls.append(value)

        debounced = Debouncer(record, 0.01)
        for i in range(5):
            debounced(i)
        assert debounced.pending
        await asyncio.sleep(0.05)
        assert calls == [4]
        assert debounced.fire_count == 1
        assert not debounced.pending

    @pytest.mark.asyncio
    async def test_spaced_calls_run_separately(self):
        calls = []

        async def record():
            calls.append(1)

        debounced = Debouncer(record, 0.01)
        debounced()
        await asyncio.sleep(0.05)
        debounced()
        await asyncio.sleep(0.05)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_cancel(self):
        func = AsyncMock()
        debounced = Debouncer(func, 0.01)
        debounced()
        debounced.cancel()
        await asyncio.sleep(0.05)
        func.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_flush_runs_immediately(self):
        func = AsyncMock(return_value="done")
        debounced = Debouncer(func, 10.0)
        debounced("x")
        assert await debounced.flush() == "done"
        func.assert_awaited_once_with("x")
        assert not debounced.pending

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        func = AsyncMock(side_effect=RuntimeError("boom"))
        debounced = Debouncer(func, 10.0, name="push")
        debounced()
        assert await debounced.flush() is None
        assert "push failed" in caplog.text


# ===================================================================
# Push
# ===================================================================


class TestPush:
    @pytest.mark.asyncio
    async def test_rapid_requests_coalesce_into_one_push(self):
        scheduler, store, transport, _, _ = _make()
        for dmg in (10, 20, 30):
            store.mutate_player_stat("1", "p", "damage", dmg)
            scheduler.request_push()
        await asyncio.sleep(0.1)
        transport.push_stats.assert_awaited_once()
        key, payload = transport.push_stats.await_args.args
        assert key == KEY
        assert payload["BattleStats"]["1"]["players"]["p"]["damage"] == 60
        assert scheduler.push_count == 1

    @pytest.mark.asyncio
    async def test_push_saves_locally_first(self):
        scheduler, _, _, persistence, _ = _make()
        assert await scheduler.push_now() is True
        persistence.save.assert_called_once()

    @pytest.mark.asyncio
    async def test_push_failure_reported(self):
        scheduler, _, transport, _, bus = _make()
        transport.push_stats.side_effect = TransportError("down", channel="rest")
        failures = []
        bus.on(SyncFailed, failures.append)
        assert await scheduler.push_now() is False
        assert failures == [SyncFailed(operation="push", reason="down")]

    @pytest.mark.asyncio
    async def test_missing_key_reported(self):
        scheduler, _, transport, _, bus = _make(key=None)
        transport.push_stats.side_effect = MissingCredentialError("updateStats")
        failures = []
        bus.on(SyncFailed, failures.append)
        assert await scheduler.push_now() is False
        assert failures[0].operation == "push"

    def test_save_failure_is_swallowed(self, caplog):
        scheduler, _, _, persistence, _ = _make()
        persistence.save.side_effect = OSError("disk full")
        scheduler.save_local()
        assert "Local state save failed" in caplog.text


# ===================================================================
# Pull
# ===================================================================


class TestPull:
    @pytest.mark.asyncio
    async def test_pull_notifies_on_change(self):
        scheduler, store, _, persistence, bus = _make()
        updates = []
        bus.on(StatsUpdated, updates.append)
        assert await scheduler.pull() is True
        assert store.get_battle("1").players["p"].damage == 100
        assert updates == [StatsUpdated(source="server")]
        persistence.save.assert_called_once()

    @pytest.mark.asyncio
    async def test_identical_pull_is_silent(self):
        scheduler, _, _, persistence, bus = _make()
        await scheduler.pull()
        updates = []
        bus.on(StatsUpdated, updates.append)
        assert await scheduler.pull() is False
        assert updates == []
        assert persistence.save.call_count == 1
        assert scheduler.pull_count == 2

    @pytest.mark.asyncio
    async def test_pull_keeps_higher_local_values(self):
        scheduler, store, _, _, _ = _make()
        store.mutate_player_stat("1", "p", "damage", 500)
        await scheduler.pull()
        assert store.get_battle("1").players["p"].damage == 500

    @pytest.mark.asyncio
    async def test_pull_failure_reported(self):
        scheduler, _, transport, _, bus = _make()
        transport.fetch_stats.side_effect = TransportError("timeout")
        failures = []
        bus.on(SyncFailed, failures.append)
        assert await scheduler.pull() is False
        assert failures[0].operation == "pull"


# ===================================================================
# Server notifications
# ===================================================================


class TestNotifications:
    def test_attach_registers_handlers(self):
        scheduler, _, _, _, _ = _make()
        socket = MagicMock()
        scheduler.attach(socket)
        types = [c.args[0] for c in socket.on.call_args_list]
        assert sorted(types) == ["battleDeleted", "statsCleared", "statsUpdated"]

    @pytest.mark.asyncio
    async def test_remote_change_for_our_key_pulls(self):
        scheduler, store, transport, _, _ = _make()
        scheduler.on_remote_change({"type": "statsUpdated", "key": KEY})
        await scheduler.flush()
        transport.fetch_stats.assert_awaited_once_with(KEY)
        assert "1" in store.battles

    @pytest.mark.asyncio
    async def test_notification_burst_becomes_one_pull(self):
        scheduler, _, transport, _, _ = _make()
        for _ in range(5):
            scheduler.on_remote_change({"type": "statsUpdated", "key": KEY})
        await scheduler.flush()
        assert transport.fetch_stats.await_count == 1

    @pytest.mark.asyncio
    async def test_notification_burst_pulls_after_quiet_period(self):
        scheduler, _, transport, _, _ = _make()
        scheduler.on_remote_change({"type": "statsUpdated", "key": KEY})
        scheduler.on_remote_change({"type": "battleDeleted", "key": KEY})
        await asyncio.sleep(0.1)
        assert transport.fetch_stats.await_count == 1
        assert scheduler.pull_count == 1

    @pytest.mark.asyncio
    async def test_request_pull_is_debounced(self):
        scheduler, _, transport, _, _ = _make()
        scheduler.request_pull()
        scheduler.request_pull()
        await asyncio.sleep(0.1)
        transport.fetch_stats.assert_awaited_once_with(KEY)

    @pytest.mark.asyncio
    async def test_remote_change_for_other_key_ignored(self):
        scheduler, _, transport, _, _ = _make()
        scheduler.on_remote_change({"type": "statsUpdated", "key": "someone-else"})
        await scheduler.flush()
        transport.fetch_stats.assert_not_awaited()

    def test_remote_clear(self):
        scheduler, store, _, persistence, bus = _make()
        store.open_battle("1")
        cleared = []
        bus.on(HistoryCleared, cleared.append)
        scheduler.on_remote_cleared({"type": "statsCleared", "key": KEY})
        assert store.battles == {}
        persistence.clear.assert_called_once()
        assert len(cleared) == 1

    @pytest.mark.asyncio
    async def test_flush_runs_pending_push(self):
        scheduler, _, transport, _, _ = _make()
        scheduler.request_push()
        assert scheduler.push_pending
        await scheduler.flush()
        transport.push_stats.assert_awaited_once()
        assert not scheduler.push_pending
