from __future__ import annotations

import logging
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "route_planner"
LOG_FILE_NAME = "route_planner.log.jsonl"

# LogRecord attributes that `extra` may not overwrite.
_RESERVED_FIELDS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _writable_log_dir(out_dir: str) -> Path | None:
    for log_dir in (Path(out_dir) / "logs", Path(gettempdir()) / "route-planner" / "logs"):
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            marker = log_dir / ".writetest"
            marker.touch(exist_ok=True)
            marker.unlink(missing_ok=True)
        except OSError:
            continue
        return log_dir
    return None


def _handlers(formatter: logging.Formatter) -> list[logging.Handler]:
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    handlers: list[logging.Handler] = [stream]

    log_dir = _writable_log_dir(settings.out_dir)
    if log_dir is None:
        return handlers
    try:
        jsonl = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
    except OSError:
        return handlers
    jsonl.setFormatter(formatter)
    handlers.append(jsonl)
    return handlers


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if getattr(logger, "_configured", False):
        return logger

    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False
    formatter = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    for handler in _handlers(formatter):
        logger.addHandler(handler)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one structured record; ``event`` is both the message and a field."""
    global LOGGER
    if LOGGER is None:
        LOGGER = get_logger()
    if not LOGGER.isEnabledFor(level):
        return
    extra = {(f"field_{key}" if key in _RESERVED_FIELDS else key): value for key, value in fields.items()}
    extra["event"] = event
    LOGGER.log(level, event, extra=extra)
