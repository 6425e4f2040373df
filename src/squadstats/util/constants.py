"""Stats constants — scoring, sentinels, timing defaults.

All magic numbers of the widget, centralized here.  Scoring values can be
overridden via ``config/widget.yaml``.
"""

# -- Scoring -------------------------------------------------------------

POINTS_PER_FRAG: int = 400
"""Points awarded for every destroyed enemy vehicle."""

POINTS_PER_DAMAGE: int = 1
"""Points awarded per point of damage dealt."""

POINTS_PER_TEAM_WIN: int = 1000
"""Bonus added once to a battle's team score when the battle is won."""

# -- Battle outcome ------------------------------------------------------

WIN_UNKNOWN: int = -1
WIN_DEFEAT: int = 0
WIN_VICTORY: int = 1
WIN_DRAW: int = 2

# -- Sentinels -----------------------------------------------------------

UNKNOWN_MAP: str = "Unknown Map"
UNKNOWN_PLAYER: str = "Unknown Player"
UNKNOWN_VEHICLE: str = "Unknown Vehicle"

# -- Sync ----------------------------------------------------------------

DEBOUNCE_DELAY_MS: float = 500.0
"""Quiet period before a burst of local changes is pushed."""

REQUEST_TIMEOUT_S: float = 3.0
"""Bounded wait for a WebSocket acknowledgment before falling back to REST."""

LATE_REPLY_GRACE_S: float = 30.0
"""How long a timed-out request still accepts its late acknowledgment."""

RECONNECT_ATTEMPTS: int = 5
RECONNECT_DELAY_S: float = 1.0

# -- Squad ---------------------------------------------------------------

MAX_SQUAD_SIZE: int = 3
"""Largest platoon for which the local client registers its player."""
