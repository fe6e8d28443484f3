from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

_LOGGER_NAME = "ios_agent"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(log_dir: Path | str | None = None, verbose: bool = False) -> Optional[Path]:
    """
    Configure process-wide logging for the CLI.

    Console output goes to stderr so stdout stays reserved for the JSON envelope.
    A rotating session log is written only when `log_dir` is given. Subsequent
    calls keep the handlers installed by the first one.
    """
    os.environ.setdefault("PYTHONUTF8", "1")
    log_path = None
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / f"session-{datetime.now(UTC).strftime('%Y%m%d-%H%M%S')}.log"

    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return log_path

    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(_FORMAT)

    if log_path is not None:
        file_handler = RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return log_path


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a child logger below the package root logger.
    """
    if name:
        if name == _LOGGER_NAME or name.startswith(_LOGGER_NAME + "."):
            return logging.getLogger(name)
        return logging.getLogger(f"{_LOGGER_NAME}.{name}")
    return logging.getLogger(_LOGGER_NAME)


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """RFC3339 timestamp in UTC with second precision, e.g. 2026-01-01T00:00:00Z."""
    value = moment or datetime.now(UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def elapsed_ms(seconds: float) -> int:
    return int(round(max(0.0, seconds) * 1000))
