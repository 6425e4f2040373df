"""State file — persists the stats snapshot to YAML.

The store's snapshot (battles, player directory, current arena) is
written after every significant change so a restarted client can resume
mid-battle.  The access key is kept in the same file unless it comes from
configuration.

File format (stats_state.yaml):
    meta:
      version: 1
      saved_at: "2026-10-19T14:00:00"
    access_key: "abc123"
    current_arena_id: "7012345"
    BattleStats: {...}
    PlayersInfo: {...}
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Optional

import yaml

log = logging.getLogger(__name__)

DEFAULT_STATE_PATH = "stats_state.yaml"
STATE_VERSION = 1


def _key_in(raw: Optional[dict[str, Any]]) -> Optional[str]:
    key = raw.get("access_key") if raw else None
    return key if isinstance(key, str) and key else None


class StateFile:
    """YAML-backed persistence gateway.

    All writes are atomic (temporary file + rename).  ``load`` never
    raises: a missing or unreadable file yields None.

    Args:
        path: Path to the YAML file.  Created on first save.
        access_key: Key supplied by configuration; takes precedence over
            the one stored in the file.
    """

    def __init__(self, path: str = DEFAULT_STATE_PATH, access_key: Optional[str] = None) -> None:
        self._path = Path(path)
        self._access_key = access_key or None
        self._stored_key: Optional[str] = None
        self._stored_key_loaded = False

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Load / Save
    # ------------------------------------------------------------------

    def load(self) -> Optional[dict[str, Any]]:
        """Return the saved snapshot, or None if there is none."""
        raw = self._read()
        if raw is None:
            return None
        if not self._stored_key_loaded:
            self._remember_key(_key_in(raw))
        snapshot = {k: v for k, v in raw.items() if k not in ("meta", "access_key")}
        log.info("State loaded from %s (saved at %s, %d battles)",
                 self._path, raw.get("meta", {}).get("saved_at", "?"),
                 len(snapshot.get("BattleStats") or {}))
        return snapshot

    def save(self, snapshot: dict[str, Any]) -> None:
        """Persist ``snapshot``; the stored access key is carried over."""
        state: dict[str, Any] = {
            "meta": {
                "version": STATE_VERSION,
                "saved_at": time.strftime("%Y-%m-%dT%H:%M:%S"),
            },
        }
        stored_key = self._stored_access_key()
        if stored_key:
            state["access_key"] = stored_key
        state.update(snapshot)
        self._write(state)

    def clear(self) -> None:
        """Drop saved stats but keep the access key."""
        stored_key = self._stored_access_key()
        if stored_key:
            self._write({"access_key": stored_key})
        elif self._path.exists():
            self._path.unlink()
        log.info("State cleared at %s", self._path)

    # ------------------------------------------------------------------
    # Access key
    # ------------------------------------------------------------------

    def get_access_key(self) -> Optional[str]:
        return self._access_key or self._stored_access_key()

    def set_access_key(self, key: str) -> None:
        """Store ``key`` in the state file for later sessions."""
        raw = self._read() or {}
        raw["access_key"] = key
        self._write(raw)
        self._remember_key(key)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _stored_access_key(self) -> Optional[str]:
        """Key kept in the file; read from disk once, then from memory."""
        if not self._stored_key_loaded:
            self._remember_key(_key_in(self._read(quiet=True)))
        return self._stored_key

    def _remember_key(self, key: Optional[str]) -> None:
        self._stored_key = key
        self._stored_key_loaded = True

    def _read(self, quiet: bool = False) -> Optional[dict[str, Any]]:
        if not self._path.exists():
            if not quiet:
                log.info("No state file found at %s", self._path)
            return None
        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except Exception:
            log.exception("Failed to parse state file %s", self._path)
            return None
        if not isinstance(raw, dict):
            log.warning("State file %s has unexpected format (not a dict)", self._path)
            return None
        return raw

    def _write(self, data: dict[str, Any]) -> None:
        tmp = self._path.with_suffix(".yaml.tmp")
        try:
            tmp.write_text(
                yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False),
                encoding="utf-8",
            )
            tmp.replace(self._path)
        except Exception:
            log.exception("Failed to save state to %s", self._path)
            if tmp.exists():
                tmp.unlink(missing_ok=True)
            raise
