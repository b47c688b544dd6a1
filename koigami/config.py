"""
koigami.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for presentation and timing settings (guest display
name, toast delays, check-in calendar zone, API store lifetime).  Secrets such as
``DATABASE_URL`` and ``JWT_SECRET`` stay in the environment / ``.env``.

Usage::

    from koigami.config import load_config

    cfg = load_config()               # reads ./config.yaml by default
    print(cfg.guest_display_name)     # "Builder User"
    print(cfg.level_up_delay_seconds) # 2.5
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from koigami.constants import DEFAULT_PROFILE_NAME


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class KoigamiConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    app_name: str = "Koigami"

    # Display defaults for members without a profile row (or no session)
    guest_display_name: str = DEFAULT_PROFILE_NAME

    # Notifications
    level_up_delay_seconds: float = 2.5  # keeps level-up clear of the XP toast
    toast_duration_seconds: float | None = None  # None → display layer completes

    # Daily check-in calendar
    checkin_timezone: str = "UTC"

    # API
    leaderboard_limit: int = 10
    session_idle_seconds: float = 1800.0  # live member stores closed after this


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> KoigamiConfig:
    """Read *path* and return a :class:`KoigamiConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    toast = raw.get("toast_duration_seconds")
    return KoigamiConfig(
        app_name=raw["app_name"],
        guest_display_name=raw.get("guest_display_name", DEFAULT_PROFILE_NAME),
        level_up_delay_seconds=float(raw.get("level_up_delay_seconds", 2.5)),
        toast_duration_seconds=float(toast) if toast else None,
        checkin_timezone=raw.get("checkin_timezone", "UTC"),
        session_idle_seconds=float(raw.get("session_idle_seconds", 1800)),
        leaderboard_limit=int(raw.get("leaderboard_limit", 10)),
    )
