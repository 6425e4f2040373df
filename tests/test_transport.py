"""Tests for the REST channel, the WebSocket channel and the transport gateway.

REST calls run against an in-memory FastAPI backend through httpx's
ASGITransport; the socket side uses a fake connection that can reply,
reject or stay silent.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi import FastAPI, Header, HTTPException, Request
from httpx import ASGITransport, AsyncClient

from squadstats.network.rest_channel import STATS_PATH, RestChannel
from squadstats.network.socket_channel import SocketChannel
from squadstats.network.transport import StatsTransport
from squadstats.util.errors import MissingCredentialError, TransportError

KEY = "secret-key"


# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------


def create_backend() -> FastAPI:
    """Minimal battle-stats API keeping one bucket per access key."""
    app = FastAPI()
    buckets: dict[str, dict[str, Any]] = {}
    app.state.buckets = buckets

    def _bucket(key: Optional[str]) -> dict[str, Any]:
        if not key:
            raise HTTPException(status_code=401, detail="missing key")
        return buckets.setdefault(key, {"BattleStats": {}, "PlayerInfo": {}})

    @app.get("/api/battle-stats/stats")
    async def get_stats(limit: int = 0, x_api_key: Optional[str] = Header(default=None)):
        return {"success": True, "data": _bucket(x_api_key)}

    @app.post("/api/battle-stats/update-stats")
    async def update_stats(request: Request, x_api_key: Optional[str] = Header(default=None)):
        bucket = _bucket(x_api_key)
        body = await request.json()
        bucket["BattleStats"].update(body.get("BattleStats", {}))
        bucket["PlayerInfo"].update(body.get("PlayerInfo", {}))
        return {"success": True}

    @app.delete("/api/battle-stats/clear")
    async def clear(x_api_key: Optional[str] = Header(default=None)):
        buckets[x_api_key] = {"BattleStats": {}, "PlayerInfo": {}}
        return {"success": True}

    @app.delete("/api/battle-stats/battle/{arena_id}")
    async def delete_battle(arena_id: str, x_api_key: Optional[str] = Header(default=None)):
        if _bucket(x_api_key)["BattleStats"].pop(arena_id, None) is None:
            return {"success": False, "message": "Battle not found"}
        return {"success": True}

    @app.post("/api/battle-stats/import")
    async def import_stats(request: Request, x_api_key: Optional[str] = Header(default=None)):
        body = await request.json()
        _bucket(x_api_key)["BattleStats"].update(body.get("BattleStats", body))
        return {"success": True}

    @app.get("/api/list")
    async def not_an_object():
        return [1, 2, 3]

    return app


@pytest.fixture
def backend():
    return create_backend()


@pytest.fixture
async def rest(backend):
    """RestChannel wired to the in-memory backend."""
    client = AsyncClient(transport=ASGITransport(app=backend), base_url="http://test")
    channel = RestChannel(client=client)
    yield channel
    await client.aclose()


class FakeWebSocket:
    """Fake connection for SocketChannel.

    ``reply`` is merged into an automatic answer to every request; when it
    is None the backend stays silent.
    """

    def __init__(self, channel: SocketChannel, reply: Optional[dict[str, Any]] = None) -> None:
        self.channel = channel
        self.reply = reply
        self.sent: list[str] = []
        self.closed = False

    async def send(self, data: str) -> None:
        self.sent.append(data)
        if self.reply is not None:
            msg = json.loads(data)
            answer = json.dumps({"request_id": msg["request_id"], **self.reply})
            asyncio.get_running_loop().call_soon(self.channel.handle_raw, answer)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True

    @property
    def last_sent_json(self) -> dict[str, Any]:
        assert self.sent, "No messages sent"
        return json.loads(self.sent[-1])


def _socket(reply: Optional[dict[str, Any]] = None,
            late_reply_grace: float = 30.0) -> tuple[SocketChannel, FakeWebSocket]:
    channel = SocketChannel("ws://test/ws", KEY, late_reply_grace=late_reply_grace)
    ws = FakeWebSocket(channel, reply)
    channel.attach(ws)
    return channel, ws


# ===================================================================
# REST channel
# ===================================================================


class TestRestChannel:
    @pytest.mark.asyncio
    async def test_get_sends_key_header(self, rest, backend):
        resp = await rest.request("GET", STATS_PATH, KEY, params={"limit": 0})
        assert resp["success"] is True
        assert KEY in backend.state.buckets

    @pytest.mark.asyncio
    async def test_error_status_raises(self, rest):
        with pytest.raises(TransportError) as exc:
            await rest.request("GET", STATS_PATH, "")
        assert "401" in str(exc.value)
        assert exc.value.channel == "rest"

    @pytest.mark.asyncio
    async def test_non_object_body_raises(self, rest):
        with pytest.raises(TransportError):
            await rest.request("GET", "/api/list", KEY)

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://test")
        channel = RestChannel(client=client)
        with pytest.raises(TransportError):
            await channel.request("GET", STATS_PATH, KEY)
        await client.aclose()


# ===================================================================
# Socket channel
# ===================================================================


class TestSocketChannel:
    @pytest.mark.asyncio
    async def test_not_connected(self):
        channel = SocketChannel("ws://test/ws", KEY)
        with pytest.raises(TransportError):
            await channel.request("getStats", {}, 0.1)

    @pytest.mark.asyncio
    async def test_reply_resolves_request(self):
        channel, ws = _socket(reply={"success": True, "data": {"x": 1}})
        resp = await channel.request("getStats", {"key": KEY}, 1.0)
        assert resp["data"] == {"x": 1}
        assert ws.last_sent_json["type"] == "getStats"
        assert ws.last_sent_json["key"] == KEY
        assert channel.pending_count == 0

    @pytest.mark.asyncio
    async def test_request_ids_increase(self):
        channel, ws = _socket(reply={"success": True})
        await channel.request("getStats", {}, 1.0)
        await channel.request("getStats", {}, 1.0)
        ids = [json.loads(s)["request_id"] for s in ws.sent]
        assert ids[1] > ids[0]

    @pytest.mark.asyncio
    async def test_timeout_keeps_request_for_late_reply(self):
        channel, _ = _socket(reply=None)
        with pytest.raises(TransportError):
            await channel.request("updateStats", {}, 0.01)
        assert channel.pending_count == 1
        # A late reply is accepted and dropped.
        channel.handle_raw(json.dumps({"request_id": 1, "success": True}))
        assert channel.pending_count == 0

    @pytest.mark.asyncio
    async def test_unanswered_requests_expire(self):
        channel, _ = _socket(reply=None, late_reply_grace=0.02)
        for _ in range(50):
            with pytest.raises(TransportError):
                await channel.request("updateStats", {}, 0.001)
        assert channel.pending_count > 0
        await asyncio.sleep(0.1)
        assert channel.pending_count == 0

    @pytest.mark.asyncio
    async def test_reply_after_expiry_is_ignored(self):
        channel, _ = _socket(reply=None, late_reply_grace=0.01)
        with pytest.raises(TransportError):
            await channel.request("getStats", {}, 0.001)
        await asyncio.sleep(0.05)
        channel.handle_raw(json.dumps({"request_id": 1, "success": True}))
        assert channel.pending_count == 0

    @pytest.mark.asyncio
    async def test_detach_fails_waiting_requests(self):
        channel, _ = _socket(reply=None)
        task = asyncio.ensure_future(channel.request("getStats", {}, 5.0))
        await asyncio.sleep(0)
        channel.detach()
        with pytest.raises(TransportError):
            await task
        assert not channel.connected

    def test_notifications_dispatched(self):
        channel = SocketChannel("ws://test/ws", KEY)
        received = []
        channel.on("statsUpdated", received.append)
        channel.handle_raw(json.dumps({"type": "statsUpdated", "key": KEY}))
        channel.handle_raw(json.dumps({"type": "statsCleared", "key": KEY}))
        assert received == [{"type": "statsUpdated", "key": KEY}]

    def test_invalid_frames_ignored(self):
        channel = SocketChannel("ws://test/ws", KEY)
        handler = MagicMock()
        channel.on("statsUpdated", handler)
        channel.handle_raw("{not json")
        channel.handle_raw(b"[1, 2]")
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_closes_connection(self):
        channel, ws = _socket()
        await channel.stop()
        assert ws.closed
        assert not channel.connected


# ===================================================================
# Transport gateway
# ===================================================================


class TestStatsTransport:
    @pytest.mark.asyncio
    async def test_missing_key_fails_fast(self):
        rest = MagicMock()
        rest.request = AsyncMock()
        transport = StatsTransport(rest)
        with pytest.raises(MissingCredentialError):
            await transport.fetch_stats(None)
        rest.request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rest_only_push_then_fetch(self, rest):
        transport = StatsTransport(rest)
        payload = {"BattleStats": {"1": {"mapName": "Ensk"}}, "PlayerInfo": {"p": {"_id": "A"}}}
        await transport.push_stats(KEY, payload)
        resp = await transport.fetch_stats(KEY)
        assert resp["data"]["BattleStats"]["1"]["mapName"] == "Ensk"

    @pytest.mark.asyncio
    async def test_socket_ack_skips_rest(self):
        rest = MagicMock()
        rest.request = AsyncMock()
        socket, ws = _socket(reply={"success": True})
        transport = StatsTransport(rest, socket, request_timeout=1.0)
        resp = await transport.push_stats(KEY, {"BattleStats": {}})
        assert resp["success"] is True
        assert ws.last_sent_json["body"] == {"BattleStats": {}}
        rest.request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_200_counts_as_ack(self):
        rest = MagicMock()
        rest.request = AsyncMock()
        socket, _ = _socket(reply={"status": 200})
        transport = StatsTransport(rest, socket, request_timeout=1.0)
        await transport.clear_stats(KEY)
        rest.request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_socket_timeout_falls_back_to_rest(self, rest, backend):
        socket, _ = _socket(reply=None)
        transport = StatsTransport(rest, socket, request_timeout=0.01)
        await transport.push_stats(KEY, {"BattleStats": {"9": {}}, "PlayerInfo": {}})
        assert "9" in backend.state.buckets[KEY]["BattleStats"]
        assert socket.pending_count == 1

    @pytest.mark.asyncio
    async def test_socket_rejection_falls_back_to_rest(self, rest):
        socket, _ = _socket(reply={"success": False, "message": "nope"})
        transport = StatsTransport(rest, socket, request_timeout=1.0)
        resp = await transport.fetch_stats(KEY)
        assert resp["success"] is True

    @pytest.mark.asyncio
    async def test_rest_failure_propagates(self, rest):
        transport = StatsTransport(rest)
        with pytest.raises(TransportError) as exc:
            await transport.delete_battle(KEY, "missing")
        assert "Battle not found" in str(exc.value)

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, rest, backend):
        transport = StatsTransport(rest)
        await transport.import_stats(KEY, {"BattleStats": {"1": {}, "2": {}}})
        await transport.delete_battle(KEY, "1")
        assert list(backend.state.buckets[KEY]["BattleStats"]) == ["2"]
        await transport.clear_stats(KEY)
        assert backend.state.buckets[KEY]["BattleStats"] == {}

    @pytest.mark.asyncio
    async def test_delete_over_socket_sends_battle_id(self):
        rest = MagicMock()
        rest.request = AsyncMock()
        socket, ws = _socket(reply={"success": True})
        transport = StatsTransport(rest, socket, request_timeout=1.0)
        await transport.delete_battle(KEY, "42")
        assert ws.last_sent_json["type"] == "deleteBattle"
        assert ws.last_sent_json["battleId"] == "42"
