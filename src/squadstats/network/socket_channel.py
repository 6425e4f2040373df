"""WebSocket channel — real-time request/acknowledgment link to the backend.

Outgoing requests carry a ``request_id``; the backend echoes it in the
reply so the waiting caller can be resumed.  Messages without a
``request_id`` are server-initiated notifications (``statsUpdated``,
``statsCleared``, ``battleDeleted``) and are dispatched to handlers
registered with :meth:`SocketChannel.on`.

Uses the ``websockets`` library with asyncio.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import websockets
from websockets.asyncio.client import connect

from squadstats.util.constants import LATE_REPLY_GRACE_S, RECONNECT_ATTEMPTS, RECONNECT_DELAY_S
from squadstats.util.errors import TransportError

log = logging.getLogger(__name__)

Notification = Callable[[dict[str, Any]], None]


class SocketChannel:
    """asyncio WebSocket client with bounded reconnection.

    After ``reconnect_attempts`` consecutive failed (re)connections the
    channel gives up silently; callers then rely on the REST fallback.

    Args:
        url: Backend WebSocket URL.
        access_key: Sent as ``?key=`` query parameter on connect.
        reconnect_attempts: Retries before giving up.
        reconnect_delay: Fixed pause between retries, in seconds.
        late_reply_grace: Seconds a timed-out request stays registered for
            its late reply before it is forgotten.
    """

    def __init__(self, url: str, access_key: str,
                 reconnect_attempts: int = RECONNECT_ATTEMPTS,
                 reconnect_delay: float = RECONNECT_DELAY_S,
                 late_reply_grace: float = LATE_REPLY_GRACE_S) -> None:
        self._url = url
        self._access_key = access_key
        self._reconnect_attempts = reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._late_reply_grace = late_reply_grace
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._handlers: dict[str, list[Notification]] = defaultdict(list)
        self._pending: dict[int, asyncio.Future] = {}
        self._next_request_id = 1
        self.gave_up = False

    # -- Lifecycle -------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        """Connect in the background and keep the link alive."""
        if self._task is None:
            self._running = True
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._running = False
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.detach()
        log.info("WebSocket channel stopped")

    def attach(self, ws: Any) -> None:
        """Adopt an open connection for sending."""
        self._ws = ws

    def detach(self) -> None:
        """Forget the connection and fail every request still waiting."""
        self._ws = None
        pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(TransportError("connection lost", channel="socket"))

    async def _run(self) -> None:
        uri = f"{self._url}?{urlencode({'key': self._access_key})}"
        failures = 0
        while self._running:
            try:
                async with connect(uri) as ws:
                    self.attach(ws)
                    failures = 0
                    log.info("Connected to %s", self._url)
                    async for raw in ws:
                        self.handle_raw(raw)
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                log.warning("WebSocket connection error: %s", e)
            finally:
                self.detach()

            if not self._running:
                break
            failures += 1
            if failures > self._reconnect_attempts:
                self.gave_up = True
                log.warning("WebSocket gave up after %d attempts — using REST only",
                            self._reconnect_attempts)
                break
            await asyncio.sleep(self._reconnect_delay)

    # -- Notifications ---------------------------------------------------

    def on(self, msg_type: str, handler: Notification) -> None:
        """Register a handler for a server-initiated message type."""
        self._handlers[msg_type].append(handler)

    def handle_raw(self, raw: Any) -> None:
        """Parse one incoming frame and resolve or dispatch it."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            log.warning("Ignoring invalid JSON from server: %s", e)
            return
        if not isinstance(data, dict):
            log.warning("Ignoring non-object message from server")
            return

        request_id = data.get("request_id")
        if request_id is not None:
            fut = self._pending.pop(request_id, None)
            if fut is None:
                log.debug("Late or unknown reply: request_id=%s", request_id)
            elif not fut.done():
                fut.set_result(data)
            return

        msg_type = data.get("type", "")
        log.debug("Server notification: type=%s", msg_type)
        for handler in list(self._handlers.get(msg_type, [])):
            handler(data)

    # -- Requests --------------------------------------------------------

    async def request(self, msg_type: str, payload: dict[str, Any],
                      timeout: float) -> dict[str, Any]:
        """Send a request and wait up to ``timeout`` seconds for its reply.

        On timeout the request stays registered for ``late_reply_grace``
        seconds: a late reply is accepted and discarded, the caller has
        already moved on.

        Raises:
            TransportError: Not connected, send failed, connection lost,
                or no reply in time.
        """
        if self._ws is None:
            raise TransportError("socket not connected", channel="socket")

        request_id = self._next_request_id
        self._next_request_id += 1
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        # Mark the outcome as retrieved even when nobody awaits it any more.
        fut.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._pending[request_id] = fut

        message = {"type": msg_type, "request_id": request_id, **payload}
        try:
            await self._ws.send(json.dumps(message, ensure_ascii=False, default=str))
        except websockets.ConnectionClosed as e:
            self._pending.pop(request_id, None)
            raise TransportError(f"send failed: {e}", channel="socket") from e

        try:
            return await asyncio.wait_for(asyncio.shield(fut), timeout)
        except asyncio.TimeoutError:
            asyncio.get_running_loop().call_later(
                self._late_reply_grace, self._forget, request_id,
            )
            raise TransportError(
                f"no acknowledgment for {msg_type} within {timeout:g}s", channel="socket",
            ) from None

    def _forget(self, request_id: int) -> None:
        fut = self._pending.pop(request_id, None)
        if fut is not None and not fut.done():
            log.debug("No late reply for request_id=%s — dropped", request_id)
            fut.cancel()
