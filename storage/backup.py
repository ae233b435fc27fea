"""Dated SQLite snapshots of the local store with rotation."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import List


def _parse_backup_date(path: Path, prefix: str) -> datetime | None:
    stem = path.stem
    if not stem.startswith(prefix):
        return None
    date_part = stem[len(prefix) :]
    try:
        return datetime.strptime(date_part, "%Y-%m-%d")
    except ValueError:
        return None


def _snapshot(source: Path, destination: Path) -> None:
    # online backup API; safe while the app holds a connection
    src = sqlite3.connect(str(source))
    try:
        dst = sqlite3.connect(str(destination))
        try:
            src.backup(dst)
        finally:
            dst.close()
    finally:
        src.close()


def list_backups(db_path: str | Path, backup_dir: str | Path) -> List[Path]:
    db_file = Path(db_path)
    backups = Path(backup_dir)
    if not backups.exists():
        return []
    prefix = f"{db_file.stem}_"
    found = [
        path
        for path in backups.glob(f"{db_file.stem}_*{db_file.suffix}")
        if _parse_backup_date(path, prefix) is not None
    ]
    return sorted(found)


def ensure_daily_backup(
    db_path: str | Path,
    backup_dir: str | Path,
    *,
    keep_days: int = 7,
) -> Path | None:
    """Snapshot the local store once per day and drop copies older than ``keep_days``."""

    db_file = Path(db_path)
    if not db_file.exists():
        return None

    backups = Path(backup_dir)
    backups.mkdir(parents=True, exist_ok=True)

    today = datetime.now().date()
    prefix = f"{db_file.stem}_"
    destination = backups / f"{prefix}{today.isoformat()}{db_file.suffix}"

    created_path: Path | None = None
    if not destination.exists():
        _snapshot(db_file, destination)
        created_path = destination

    if keep_days > 0:
        cutoff = today - timedelta(days=keep_days - 1)
        for file in list_backups(db_file, backups):
            backup_date = _parse_backup_date(file, prefix)
            if backup_date and backup_date.date() < cutoff:
                try:
                    file.unlink()
                except OSError:
                    pass

    return created_path


__all__ = ["ensure_daily_backup", "list_backups"]
