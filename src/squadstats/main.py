"""Squad stats widget entry point.

Initializes all components and runs the asyncio event loop:
1. Load configuration (config/widget.yaml)
2. Create store, transport, scheduler, reconciler and history services
3. Wire SDK events and server notifications
4. Restore local state, connect, and pull the server snapshot
5. Replay SDK events from a JSON-lines file, or run until SIGINT/SIGTERM

Usage:
    python -m squadstats.main --config config/widget.yaml
    # or via entry point:
    squadstats --replay session.jsonl
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from squadstats.engine.event_reconciler import EventReconciler
from squadstats.engine.history_service import HistoryService
from squadstats.engine.stats_store import StatsStore
from squadstats.engine.sync_scheduler import SyncScheduler
from squadstats.loaders.config_loader import DEFAULT_CONFIG_PATH, WidgetConfig, load_widget_config
from squadstats.models.game_events import parse_game_event
from squadstats.network.rest_channel import RestChannel
from squadstats.network.socket_channel import SocketChannel
from squadstats.network.transport import StatsTransport
from squadstats.persistence.state_file import StateFile
from squadstats.util.events import EventBus, SyncFailed

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Container for all services (makes passing around easier)
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Holds references to all widget services."""

    config: WidgetConfig
    event_bus: EventBus
    store: StatsStore
    state_file: StateFile
    socket: SocketChannel
    transport: StatsTransport
    scheduler: SyncScheduler
    reconciler: EventReconciler
    history: HistoryService


# ===================================================================
# 1. Create services
# ===================================================================


def create_services(config: WidgetConfig) -> Services:
    """Instantiate all services with proper dependency injection.

    Wiring order matters: services that are injected into others are
    created first.
    """
    log.info("Creating services …")

    event_bus = EventBus()
    store = StatsStore(
        points_per_frag=config.points_per_frag,
        points_per_damage=config.points_per_damage,
        points_per_team_win=config.points_per_team_win,
    )
    state_file = StateFile(config.state_path, access_key=config.access_key or None)

    rest = RestChannel(config.server_url, timeout=max(config.request_timeout_s * 3, 10.0))
    socket = SocketChannel(
        config.ws_url,
        state_file.get_access_key() or "",
        reconnect_attempts=config.reconnect_attempts,
        reconnect_delay=config.reconnect_delay_s,
    )
    transport = StatsTransport(rest, socket, request_timeout=config.request_timeout_s)

    scheduler = SyncScheduler(
        store, transport, state_file, event_bus,
        debounce_delay_ms=config.debounce_delay_ms,
    )
    reconciler = EventReconciler(
        store, scheduler, event_bus, max_squad_size=config.max_squad_size,
    )
    history = HistoryService(store, transport, scheduler, state_file, event_bus)

    log.info("  all services created")
    return Services(
        config=config,
        event_bus=event_bus,
        store=store,
        state_file=state_file,
        socket=socket,
        transport=transport,
        scheduler=scheduler,
        reconciler=reconciler,
        history=history,
    )


# ===================================================================
# 2. Wire up event handlers
# ===================================================================


def wire_events(services: Services) -> None:
    """Connect SDK events to the reconciler and server notifications to
    the scheduler."""
    log.info("Wiring event handlers …")
    services.reconciler.register(services.event_bus)
    services.scheduler.attach(services.socket)
    services.event_bus.on(
        SyncFailed, lambda evt: log.warning("Sync %s failed: %s", evt.operation, evt.reason),
    )
    log.info("  %d event handlers registered", services.event_bus.subscriber_count())


# ===================================================================
# 3. Restore state and connect
# ===================================================================


async def start_sync(services: Services) -> None:
    """Cold-load local state, connect the socket, then pull the server copy."""
    saved = services.state_file.load()
    if saved is not None:
        services.store.load_snapshot(saved)
        log.info("Restored %d battles from local state", len(services.store.battles))
    else:
        log.info("No local state — fresh start")

    if not services.state_file.get_access_key():
        log.warning("No access key configured — running offline")
        return

    services.socket.start()
    await services.scheduler.pull(cold=True)


# ===================================================================
# 4. Feed SDK events
# ===================================================================


async def replay_events(services: Services, path: str) -> int:
    """Emit every SDK event in a JSON-lines file onto the event bus.

    Invalid lines are logged and skipped.  Returns the number of events
    emitted.
    """
    count = 0
    with Path(path).open(encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                event = parse_game_event(json.loads(line))
            except (json.JSONDecodeError, ValidationError) as e:
                log.warning("Skipping invalid event at %s:%d: %s", path, lineno, e)
                continue
            services.event_bus.emit(event)
            count += 1
            # Let debounced timers and socket traffic run between events.
            await asyncio.sleep(0)
    log.info("Replayed %d events from %s", count, path)
    return count


async def wait_for_shutdown() -> None:
    """Block until SIGINT or SIGTERM is received."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _request_shutdown() -> None:
        log.info("Shutdown signal received — stopping …")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_shutdown)
    await stop.wait()


async def shutdown(services: Services) -> None:
    """Flush pending sync work and close every channel."""
    log.info("Shutting down …")
    await services.scheduler.flush()
    services.scheduler.close()
    services.scheduler.save_local()
    await services.transport.close()
    log.info("  goodbye")


# ===================================================================
# Entry points
# ===================================================================


async def _start(config_path: str = DEFAULT_CONFIG_PATH, replay: Optional[str] = None) -> None:
    """Initialize and run all widget components."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    log.info("=== Squad stats starting ===")

    config = load_widget_config(config_path)
    logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    services = create_services(config)
    wire_events(services)
    try:
        await start_sync(services)
        if replay:
            await replay_events(services, replay)
        else:
            await wait_for_shutdown()
    finally:
        await shutdown(services)


def main() -> None:
    parser = argparse.ArgumentParser(description="Squad battle stats widget")
    parser.add_argument(
        "--config",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the widget config (default: {DEFAULT_CONFIG_PATH})"
    )
    parser.add_argument(
        "--replay",
        type=str,
        default=None,
        metavar="PATH",
        help="Replay game events from a JSON-lines file, then exit"
    )
    args = parser.parse_args()

    asyncio.run(_start(config_path=args.config, replay=args.replay))


if __name__ == "__main__":
    main()
