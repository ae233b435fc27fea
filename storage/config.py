"""Per-device preferences: who signed in last, the working term, which backend to use.

School-wide values live in ``core.settings``; this file only holds what an
operator changes from the Settings page.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from core.errors import ValidationError
from core.log import get_logger
from core.settings import CONFIG_PATH

BACKENDS = ("firebase", "postgres")

logger = get_logger("schooldesk.config")


@dataclass
class AppConfig:
    last_username: Optional[str] = None
    academic_year: Optional[str] = None
    term_id: Optional[str] = None
    remote_backend: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "AppConfig":
        names = {f.name for f in fields(cls)}
        config = cls(**{key: value for key, value in data.items() if key in names})
        if config.remote_backend not in (None, *BACKENDS):
            logger.warning("Ignoring unknown backend %r in preferences", config.remote_backend)
            config.remote_backend = None
        return config


def _read(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Preferences at %s unreadable, using defaults: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_config(path: Optional[Path] = None) -> AppConfig:
    return AppConfig.from_mapping(_read(path or CONFIG_PATH))


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    """Write through a sibling temp file so a crash never leaves half a file."""

    target = path or CONFIG_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    staging = target.with_suffix(".tmp")
    staging.write_text(json.dumps(asdict(config), ensure_ascii=False, indent=2, sort_keys=True), encoding="utf-8")
    staging.replace(target)


def update_config(path: Optional[Path] = None, **changes: Any) -> AppConfig:
    backend = changes.get("remote_backend")
    if backend is not None and backend not in BACKENDS:
        raise ValidationError(f"Unknown backend {backend!r}; expected one of {', '.join(BACKENDS)}")
    config = load_config(path)
    for key, value in changes.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            logger.debug("Unknown preference %s dropped", key)
    save_config(config, path)
    return config


__all__ = ["AppConfig", "BACKENDS", "load_config", "save_config", "update_config"]
