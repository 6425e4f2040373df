"""Sync scheduler — moves stats between the local store and the backend.

Responsibilities:
- Debounce outbound pushes: a burst of local mutations becomes one push
  carrying the state as of the last mutation
- Pull on demand and when the backend announces a change for our key
- Notify dashboards only when a pull actually changed something
- Save the local state file alongside every sync

Failures never propagate out of the public coroutines: they are logged,
announced as ``SyncFailed`` and reported as a False return value.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from squadstats.util.constants import DEBOUNCE_DELAY_MS
from squadstats.util.debounce import Debouncer
from squadstats.util.errors import StatsError
from squadstats.util.events import HistoryCleared, StatsUpdated, SyncFailed

if TYPE_CHECKING:
    from squadstats.engine.stats_store import StatsStore
    from squadstats.network.socket_channel import SocketChannel
    from squadstats.network.transport import StatsTransport
    from squadstats.persistence.state_file import StateFile
    from squadstats.util.events import EventBus

log = logging.getLogger(__name__)


class SyncScheduler:
    """Debounced push / change-driven pull.

    Args:
        store: The stats store to sync.
        transport: Backend gateway.
        persistence: Local state file; also the source of the access key.
        event_bus: Bus for ``StatsUpdated`` / ``SyncFailed`` notifications.
        debounce_delay_ms: Quiet period before a push or pull runs.
    """

    def __init__(
        self,
        store: StatsStore,
        transport: StatsTransport,
        persistence: StateFile,
        event_bus: EventBus,
        debounce_delay_ms: float = DEBOUNCE_DELAY_MS,
    ) -> None:
        self._store = store
        self._transport = transport
        self._persistence = persistence
        self._events = event_bus
        delay = debounce_delay_ms / 1000.0
        self._push = Debouncer(self.push_now, delay, name="push")
        self._pull = Debouncer(self.pull, delay, name="pull")

        # --- Monitoring counters ---
        self.push_count: int = 0
        self.pull_count: int = 0

    @property
    def access_key(self) -> str | None:
        return self._persistence.get_access_key()

    @property
    def push_pending(self) -> bool:
        return self._push.pending

    # -- Local state -----------------------------------------------------

    def save_local(self) -> None:
        """Write the store snapshot to the state file."""
        try:
            self._persistence.save(self._store.snapshot())
        except Exception:
            log.exception("Local state save failed — continuing")

    # -- Push ------------------------------------------------------------

    def request_push(self) -> None:
        """Schedule a push after the debounce window (trailing edge)."""
        self._push()

    async def push_now(self) -> bool:
        """Save locally, then push the current state to the backend."""
        self.save_local()
        try:
            await self._transport.push_stats(self.access_key, self._store.push_payload())
        except StatsError as e:
            self._report("push", e)
            return False
        self.push_count += 1
        log.debug("Stats pushed (%d battles)", len(self._store.battles))
        return True

    # -- Pull ------------------------------------------------------------

    def request_pull(self) -> None:
        self._pull()

    async def pull(self, cold: bool = False) -> bool:
        """Fetch and reconcile the backend snapshot.

        Returns True if the local state changed.  ``StatsUpdated`` is only
        emitted in that case.
        """
        try:
            response = await self._transport.fetch_stats(self.access_key)
        except StatsError as e:
            self._report("pull", e)
            return False

        self.pull_count += 1
        before = self._store.fingerprint()
        self._store.reconcile(response, cold=cold)
        changed = self._store.fingerprint() != before
        if changed:
            log.info("Server data changed — %d battles, %d players",
                     len(self._store.battles), len(self._store.players_info))
            self._events.emit(StatsUpdated(source="server"))
            self.save_local()
        return changed

    # -- Server notifications --------------------------------------------

    def attach(self, socket: SocketChannel) -> None:
        """Subscribe to the backend's change notifications."""
        socket.on("statsUpdated", self.on_remote_change)
        socket.on("battleDeleted", self.on_remote_change)
        socket.on("statsCleared", self.on_remote_cleared)

    def _is_ours(self, data: dict[str, Any]) -> bool:
        key = self.access_key
        return bool(key) and data.get("key") == key

    def on_remote_change(self, data: dict[str, Any]) -> None:
        """Schedule a debounced re-pull when the backend reports a change
        for our access key.  A burst of notifications becomes one fetch.
        """
        if not self._is_ours(data):
            return
        self.request_pull()

    def on_remote_cleared(self, data: dict[str, Any]) -> None:
        if not self._is_ours(data):
            return
        self._store.clear()
        self._persistence.clear()
        self._events.emit(HistoryCleared())

    # -- Lifecycle -------------------------------------------------------

    async def flush(self) -> None:
        """Run pending debounced calls now, or wait for the running ones."""
        await self._push.flush()
        await self._pull.flush()

    def close(self) -> None:
        self._push.cancel()
        self._pull.cancel()

    # -- Internal --------------------------------------------------------

    def _report(self, operation: str, error: StatsError) -> None:
        log.error("Sync %s failed: %s", operation, error)
        self._events.emit(SyncFailed(operation=operation, reason=str(error)))
