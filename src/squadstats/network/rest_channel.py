"""REST channel — plain request/response fallback to the backend.

Every request carries the access key in the ``X-API-Key`` header.
Uses an ``httpx.AsyncClient``; tests inject one wired to an ASGI app.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from squadstats.util.errors import TransportError

log = logging.getLogger(__name__)

STATS_PATH = "/api/battle-stats/stats"
UPDATE_PATH = "/api/battle-stats/update-stats"
CLEAR_PATH = "/api/battle-stats/clear"
BATTLE_PATH = "/api/battle-stats/battle/{arena_id}"
IMPORT_PATH = "/api/battle-stats/import"


class RestChannel:
    """Async HTTP client for the battle-stats API.

    Args:
        base_url: Backend root URL.
        timeout: Per-request timeout in seconds.
        client: Pre-built client (its base URL is used as-is).
    """

    def __init__(self, base_url: str = "", timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        access_key: str,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Perform one call and return the decoded JSON object.

        Raises:
            TransportError: Network error, HTTP error status, or a body
                that is not a JSON object.
        """
        headers = {"X-API-Key": access_key, "Accept": "application/json"}
        try:
            resp = await self._client.request(
                method, path, headers=headers, json=json, params=params,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}", channel="rest") from e

        if resp.status_code >= 400:
            raise TransportError(
                f"Server error: {resp.status_code} {resp.reason_phrase}", channel="rest",
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise TransportError(f"{method} {path}: invalid JSON", channel="rest") from e
        if not isinstance(body, dict):
            raise TransportError(f"{method} {path}: expected a JSON object", channel="rest")
        log.debug("%s %s → %d", method, path, resp.status_code)
        return body
