"""Stats transport — one gateway over the socket and REST channels.

Every operation prefers the WebSocket channel when it is connected and
waits a bounded time for the acknowledgment.  On timeout, error or a
non-success reply it falls back to REST once; if REST fails too the
error propagates to the caller.

A timed-out socket request is left running, so the same update can reach
the backend twice.  Updates are merges on the backend, so that is safe.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from squadstats.network.rest_channel import (
    BATTLE_PATH,
    CLEAR_PATH,
    IMPORT_PATH,
    STATS_PATH,
    UPDATE_PATH,
    RestChannel,
)
from squadstats.network.socket_channel import SocketChannel
from squadstats.util.constants import REQUEST_TIMEOUT_S
from squadstats.util.errors import MissingCredentialError, TransportError

log = logging.getLogger(__name__)


def _acknowledged(resp: dict[str, Any]) -> bool:
    return resp.get("success") is True or resp.get("status") == 200


class StatsTransport:
    """Gateway used by the sync scheduler and history service.

    Args:
        rest: Request/response channel (always available).
        socket: Real-time channel, or None for REST-only operation.
        request_timeout: Seconds to wait for a socket acknowledgment.
    """

    def __init__(self, rest: RestChannel, socket: Optional[SocketChannel] = None,
                 request_timeout: float = REQUEST_TIMEOUT_S) -> None:
        self._rest = rest
        self._socket = socket
        self._timeout = request_timeout

    @property
    def socket(self) -> Optional[SocketChannel]:
        return self._socket

    @property
    def socket_connected(self) -> bool:
        return self._socket is not None and self._socket.connected

    async def close(self) -> None:
        if self._socket is not None:
            await self._socket.stop()
        await self._rest.close()

    # -- Operations ------------------------------------------------------

    async def fetch_stats(self, access_key: Optional[str]) -> dict[str, Any]:
        """Fetch the full stats snapshot for ``access_key``."""
        return await self._call(
            "getStats", access_key, {"page": 1, "limit": 0},
            "GET", STATS_PATH, params={"limit": 0},
        )

    async def push_stats(self, access_key: Optional[str],
                         payload: dict[str, Any]) -> dict[str, Any]:
        """Push battles and directory (``{"BattleStats", "PlayerInfo"}``)."""
        return await self._call(
            "updateStats", access_key, {"body": payload},
            "POST", UPDATE_PATH, body=payload,
        )

    async def clear_stats(self, access_key: Optional[str]) -> dict[str, Any]:
        return await self._call("clearStats", access_key, {}, "DELETE", CLEAR_PATH)

    async def delete_battle(self, access_key: Optional[str], arena_id: str) -> dict[str, Any]:
        return await self._call(
            "deleteBattle", access_key, {"battleId": arena_id},
            "DELETE", BATTLE_PATH.format(arena_id=arena_id),
        )

    async def import_stats(self, access_key: Optional[str],
                           payload: dict[str, Any]) -> dict[str, Any]:
        return await self._call(
            "importStats", access_key, {"body": payload},
            "POST", IMPORT_PATH, body=payload,
        )

    # -- Internal --------------------------------------------------------

    async def _call(
        self,
        operation: str,
        access_key: Optional[str],
        socket_payload: dict[str, Any],
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        if not access_key:
            raise MissingCredentialError(operation)

        if self.socket_connected:
            try:
                resp = await self._socket.request(
                    operation, {"key": access_key, **socket_payload}, self._timeout,
                )
            except TransportError as e:
                log.warning("%s via socket failed (%s) — falling back to REST", operation, e)
            else:
                if _acknowledged(resp):
                    return resp
                log.warning("%s via socket rejected (%s) — falling back to REST",
                            operation, resp.get("message", "no message"))

        resp = await self._rest.request(method, path, access_key, json=body, params=params)
        if resp.get("success") is False:
            raise TransportError(resp.get("message") or f"{operation} failed", channel="rest")
        return resp
