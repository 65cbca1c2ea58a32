"""Process logging setup and the run-level event logger."""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
SUCCESS = 25

logging.addLevelName(SUCCESS, "SUCCESS")


def log_file_path(log_dir: Path, today: date | None = None) -> Path:
    return log_dir / f"app-{(today or date.today()).isoformat()}.log"


def configure_logging(
    level: str = "INFO",
    log_dir: Path | None = None,
    enable_file: bool = True,
) -> Path | None:
    """Configure root logging; returns the daily log file when one is attached."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_path: Path | None = None
    if enable_file and log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_file_path(log_dir)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    return log_path


class RunLogger:
    """Operational event log for one collection run.

    Structured ``data`` is appended to the message as JSON. Delivery goes
    through stdlib logging, so a failing handler never interrupts the run.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("subcollector.run")

    def _emit(self, level: int, message: str, data: dict[str, Any]) -> None:
        if data:
            message = f"{message} {json.dumps(data, ensure_ascii=False, default=str, sort_keys=True)}"
        self._logger.log(level, message)

    def info(self, message: str, **data: Any) -> None:
        self._emit(logging.INFO, message, data)

    def success(self, message: str, **data: Any) -> None:
        self._emit(SUCCESS, message, data)

    def warning(self, message: str, **data: Any) -> None:
        self._emit(logging.WARNING, message, data)

    def error(self, message: str, **data: Any) -> None:
        self._emit(logging.ERROR, message, data)

    def debug(self, message: str, **data: Any) -> None:
        self._emit(logging.DEBUG, message, data)

    def session_start(self, name: str) -> None:
        self.info(f"===== {name} started =====")

    def session_end(self, name: str, duration_seconds: float) -> None:
        self.info(f"===== {name} finished =====", duration_seconds=round(duration_seconds, 2))
