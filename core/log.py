"""Rotating file loggers for the sync engine, auth and domain services."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from core.settings import LOG_DIR


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def log_path(filename: str, directory: Optional[Path] = None) -> Path:
    return (directory or LOG_DIR) / filename


def get_logger(name: str, filename: str = "schooldesk.log", level: int = logging.INFO) -> logging.Logger:
    """Return ``name`` with a rotating file handler attached exactly once."""

    logger = logging.getLogger(name)
    if not logger.handlers:
        path = log_path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def read_log_tail(filename: str, lines: int = 100) -> str:
    path = log_path(filename)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            content = fh.readlines()
    except FileNotFoundError:
        return "No log entries yet."
    return "\n".join(line.rstrip("\n") for line in content[-lines:])


__all__ = ["LOG_FORMAT", "get_logger", "log_path", "read_log_tail"]
