"""Centralized sync engine configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env if env is not None else os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    override = environ.get("EDGESYNC_DATA_DIR")
    if override:
        return Path(override).expanduser()

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = home_dir / "Library" / "Application Support"
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return base.expanduser() / sanitized


APP_NAME = "EdgeSync"


DATA_DIR = get_default_data_dir(APP_NAME)
LOG_DIR = DATA_DIR / "logs"

DB_PATH = DATA_DIR / "edge.db"
CONFIG_PATH = DATA_DIR / "sync_config.json"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


@dataclass(frozen=True)
class BackoffSettings:
    base_delay_sec: float = 1.0
    max_delay_sec: float = 300.0
    multiplier: float = 2.0
    # must stay below ``multiplier - 1`` so delays keep growing until the cap
    jitter: float = 0.3
    unknown_factor: float = 1.5
    max_retry_hint_sec: float = 3600.0


@dataclass(frozen=True)
class SyncSettings:
    enabled: bool = True
    store_id: str = "default"
    api_base_url: str = "http://localhost:8080/api/v1"
    api_key: Optional[str] = None
    request_timeout_sec: float = 30.0
    interval_sec: int = 60
    batch_size: int = 50
    max_attempts: int = 5
    max_pages_per_pull: int = 20
    purge_after_days: int = 30
    backoff: BackoffSettings = BackoffSettings()


SYNC = SyncSettings()


@dataclass(frozen=True)
class LogSettings:
    path: Path = SYNC_LOG_PATH
    max_bytes: int = 1_000_000
    backup_count: int = 3
    level: str = "INFO"


LOGGING = LogSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "SYNC_LOG_PATH",
    "BackoffSettings",
    "SyncSettings",
    "LogSettings",
    "SYNC",
    "LOGGING",
    "get_default_data_dir",
]
