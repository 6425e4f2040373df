"""Widget configuration — loads tunable settings from config/widget.yaml.

Provides a single ``WidgetConfig`` dataclass that is loaded once at
startup and then passed (or injected) wherever settings are needed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from squadstats.util import constants as C

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/widget.yaml"
ACCESS_KEY_ENV = "SQUADSTATS_ACCESS_KEY"


@dataclass
class WidgetConfig:
    """All tunable settings.

    Every field has a sensible default so the widget can start even
    without the file.
    """

    # -- Backend -----------------------------------------------------
    server_url: str = "http://localhost:3000"
    ws_url: str = "ws://localhost:3000/ws"
    access_key: str = ""

    # -- Local state -------------------------------------------------
    state_path: str = "stats_state.yaml"

    # -- Sync --------------------------------------------------------
    debounce_delay_ms: float = C.DEBOUNCE_DELAY_MS
    request_timeout_s: float = C.REQUEST_TIMEOUT_S
    reconnect_attempts: int = C.RECONNECT_ATTEMPTS
    reconnect_delay_s: float = C.RECONNECT_DELAY_S

    # -- Squad -------------------------------------------------------
    max_squad_size: int = C.MAX_SQUAD_SIZE

    # -- Scoring -----------------------------------------------------
    points_per_frag: int = C.POINTS_PER_FRAG
    points_per_damage: int = C.POINTS_PER_DAMAGE
    points_per_team_win: int = C.POINTS_PER_TEAM_WIN

    # -- Logging -----------------------------------------------------
    log_level: str = "INFO"


def load_widget_config(path: str = DEFAULT_CONFIG_PATH) -> WidgetConfig:
    """Load widget configuration from a YAML file.

    Missing keys fall back to dataclass defaults.  If the file does not
    exist, a warning is logged and pure defaults are returned.  The
    ``SQUADSTATS_ACCESS_KEY`` environment variable overrides the file.
    """
    p = Path(path)
    raw: dict = {}
    if not p.exists():
        log.warning("Widget config not found at %s — using defaults", p)
    else:
        with p.open() as f:
            raw = yaml.safe_load(f) or {}
        log.info("Loaded widget config from %s (%d keys)", p, len(raw))

    cfg = WidgetConfig(**{
        k: v for k, v in raw.items()
        if k in WidgetConfig.__dataclass_fields__
    })
    env_key = os.environ.get(ACCESS_KEY_ENV)
    if env_key:
        cfg.access_key = env_key
    return cfg
