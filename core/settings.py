"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
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
    """Return an OS-specific user data directory for ``app_name``.

    ``SCHOOLDESK_DATA_DIR`` in ``env`` takes precedence over the platform
    defaults.
    """

    platform_id = (platform or sys.platform).lower()
    environ = dict(env if env is not None else os.environ)
    override = environ.get("SCHOOLDESK_DATA_DIR")
    if override:
        return Path(override).expanduser()

    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


APP_NAME = "SchoolDesk"


DATA_DIR = get_default_data_dir(APP_NAME)
SECRETS_DIR = DATA_DIR / "secrets"
BACKUP_DIR = DATA_DIR / "backups"
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, SECRETS_DIR, BACKUP_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "schooldesk.db"
CONFIG_PATH = DATA_DIR / "config.json"
FIREBASE_CREDENTIALS_PATH = SECRETS_DIR / "firebase-service-account.json"


@dataclass(frozen=True)
class RemoteSettings:
    # "firebase" or "postgres"
    backend: str = os.environ.get("SCHOOLDESK_REMOTE_BACKEND", "firebase")
    firebase_database_url: str = os.environ.get("SCHOOLDESK_FIREBASE_URL", "")
    firebase_credentials_path: Path = Path(
        os.environ.get("SCHOOLDESK_FIREBASE_CREDENTIALS", str(FIREBASE_CREDENTIALS_PATH))
    )
    postgres_url: str = os.environ.get("SCHOOLDESK_POSTGRES_URL", "")
    postgres_table: str = "remote_records"


REMOTE = RemoteSettings()


@dataclass(frozen=True)
class SyncSettings:
    enabled: bool = _env_bool("SCHOOLDESK_SYNC_ENABLED", True)
    auto_sync_interval_sec: int = _env_int("SCHOOLDESK_SYNC_INTERVAL", 60)
    max_attempts: int = _env_int("SCHOOLDESK_SYNC_MAX_ATTEMPTS", 10)
    base_delay_sec: int = 2
    max_delay_sec: int = 300
    tables: tuple[str, ...] = (
        "users",
        "students",
        "applications",
        "classes",
        "subjects",
        "attendance",
        "assessments",
        "payments",
        "studentBalances",
        "promotionRequests",
    )


SYNC = SyncSettings()


@dataclass(frozen=True)
class SchoolSettings:
    name: str = "SchoolDesk Academy"
    student_code_prefix: str = "SD"
    receipt_prefix: str = "RCP"
    currency: str = "GHS"
    class_progression: tuple[tuple[str, str], ...] = (
        ("Nursery 1", "Nursery 2"),
        ("Nursery 2", "KG 1"),
        ("KG 1", "KG 2"),
        ("KG 2", "Primary 1"),
        ("Primary 1", "Primary 2"),
        ("Primary 2", "Primary 3"),
        ("Primary 3", "Primary 4"),
        ("Primary 4", "Primary 5"),
        ("Primary 5", "Primary 6"),
        ("Primary 6", "JHS 1"),
        ("JHS 1", "JHS 2"),
        ("JHS 2", "JHS 3"),
        ("JHS 3", "Graduated"),
    )


SCHOOL = SchoolSettings()


@dataclass(frozen=True)
class ThemeColors:
    safe_surface_bg: str = "#F1F5F9"
    outline: str = "#E5E7EB"
    text_subtle: str = "#6B7280"
    status_ok: str = "#16A34A"
    status_pending: str = "#F59E0B"
    status_error: str = "#EF4444"


@dataclass(frozen=True)
class UISettings:
    app_title: str = APP_NAME
    theme_mode: str = "system"
    color_scheme_seed: str = "#4F46E5"
    window_min_width: int = 900
    window_min_height: int = 600
    nav_width: int = 96
    theme: ThemeColors = field(default_factory=ThemeColors)


UI = UISettings()


@dataclass(frozen=True)
class BackupSettings:
    enabled: bool = True
    directory: Path = BACKUP_DIR
    keep_days: int = 7


BACKUP = BackupSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "SECRETS_DIR",
    "BACKUP_DIR",
    "LOG_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "FIREBASE_CREDENTIALS_PATH",
    "REMOTE",
    "SYNC",
    "SCHOOL",
    "UI",
    "BACKUP",
    "get_default_data_dir",
]
