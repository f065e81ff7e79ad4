"""Engine settings with JSON persistence.

Settings are stored at:
    ~/Library/Application Support/FocusPact/settings.json

(or ``$FOCUSPACT_HOME/settings.json`` when that variable is set).

Usage::

    settings = load_settings()
    settings.timezone = "Europe/London"
    save_settings(settings)

Everything in the engine reads the process-wide instance through
:func:`get_settings`.  Hosts that embed the engine (and the test suite)
inject their own with :func:`configure_settings`.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, asdict, field, fields
from pathlib import Path
from zoneinfo import ZoneInfo


APP_SUPPORT_DIR = Path(
    os.environ.get("FOCUSPACT_HOME")
    or Path.home() / "Library" / "Application Support" / "FocusPact"
)
SETTINGS_PATH = APP_SUPPORT_DIR / "settings.json"


@dataclass
class Settings:
    """All tunable engine behaviour."""

    # ── calendar ──────────────────────────────────────────────────────
    timezone: str = "UTC"                  # reference zone for calendar days

    # ── ingestion ─────────────────────────────────────────────────────
    dedup_window_ms: int = 1000
    min_duration_seconds: int = 1
    max_duration_seconds: int = 4 * 60 * 60
    max_future_skew_seconds: int = 5 * 60

    # ── stats ─────────────────────────────────────────────────────────
    fitness_days: int = 90
    fitness_decay: float = 0.976
    fitness_weight: float = 1.0
    weekly_streak_min_sessions: int = 5

    # ── pacts ─────────────────────────────────────────────────────────
    default_pact_days: int = 4
    max_pact_days: int = 30
    max_required_pomos_per_day: int = 24

    # ── admin ─────────────────────────────────────────────────────────
    admin_emails: list[str] = field(default_factory=list)

    # ── worker ────────────────────────────────────────────────────────
    sweep_interval_seconds: int = 15 * 60
    challenge_sweep_lookback_hours: int = 48
    task_poll_interval_ms: int = 250
    log_level: str = "INFO"
    database_url: str | None = None

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_admin_email(self, email: str | None) -> bool:
        if not email:
            return False
        allowed = {e.strip().lower() for e in self.admin_emails}
        return email.strip().lower() in allowed


def load_settings() -> Settings:
    """Load settings from disk, falling back to defaults."""
    try:
        if SETTINGS_PATH.exists():
            data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
            # Only use keys that exist in the dataclass
            valid_keys = {f.name for f in fields(Settings)}
            filtered = {k: v for k, v in data.items() if k in valid_keys}
            return Settings(**filtered)
    except (OSError, ValueError, TypeError):
        pass
    return Settings()


def save_settings(settings: Settings) -> None:
    """Write settings to disk as JSON."""
    APP_SUPPORT_DIR.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(asdict(settings), indent=2) + "\n",
        encoding="utf-8",
    )


# ── process-wide instance ────────────────────────────────────────────────

_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def configure_settings(settings: Settings | None) -> None:
    """Replace the process-wide settings (``None`` reloads from disk)."""
    global _settings
    _settings = settings
