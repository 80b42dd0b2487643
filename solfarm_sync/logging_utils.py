from __future__ import annotations

import json
import logging
import os
import sys
import threading
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, TextIO

DEFAULT_FORMAT = "%(asctime)sZ [%(levelname)s] %(name)s:%(lineno)d | %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 5_000_000
DEFAULT_BACKUP_COUNT = 3

_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "aiohttp.access", "solana", "httpx")

_warn_once_lock = threading.Lock()
_warn_once_last_emit: dict[str, float] = {}


class _UTCFormatter(logging.Formatter):
    """Formatter that renders timestamps in UTC."""

    converter = time.gmtime


_LOG_RECORD_RESERVED = set(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__.keys())


class JsonFormatter(logging.Formatter):
    """Structured logging formatter producing JSON payloads."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - short summary sufficient
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "msg": record.getMessage(),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        # ``extra=`` fields end up as plain record attributes
        for key, value in record.__dict__.items():
            if key in payload or key.startswith("_") or key in _LOG_RECORD_RESERVED:
                continue
            payload[key] = value

        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)


def _parse_log_level(value: str | int | None) -> int:
    if not value:
        return logging.INFO
    if isinstance(value, int):
        return value
    level = value.strip().upper()
    if level.isdigit():
        return int(level)
    return getattr(logging, level, logging.INFO)


def configure_logging(
    *,
    level: str | int | None = None,
    json_logs: bool | None = None,
    logfile: str | Path | None = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    stream: TextIO | None = None,
) -> logging.Handler:
    """Install a single stream handler (plus optional rotating file) on the root logger.

    ``LOG_LEVEL``, ``LOG_JSON`` and ``LOG_FILE`` are consulted when the
    matching argument is not given. Calling this again replaces the handlers
    it installed previously instead of stacking duplicates.
    """

    resolved_level = _parse_log_level(level or os.getenv("LOG_LEVEL"))
    if json_logs is None:
        json_logs = os.getenv("LOG_JSON", "").strip().lower() in {"1", "true", "yes", "on"}

    formatter: logging.Formatter
    if json_logs:
        formatter = JsonFormatter()
    else:
        formatter = _UTCFormatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    for handler in list(root.handlers):
        if getattr(handler, "_solfarm_handler", False):
            root.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(stream or sys.stdout)
    stream_handler.setLevel(resolved_level)
    stream_handler.setFormatter(formatter)
    stream_handler._solfarm_handler = True  # type: ignore[attr-defined]
    root.addHandler(stream_handler)

    target = logfile or os.getenv("LOG_FILE")
    if target:
        log_path = Path(target)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(resolved_level)
        file_handler.setFormatter(formatter)
        file_handler._solfarm_handler = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))

    root.debug("Logging initialised", extra={"json_logs": bool(json_logs)})
    return stream_handler


def warn_once_per(
    minutes: float,
    key: str,
    message: str,
    *args: Any,
    logger: logging.Logger | None = None,
    **kwargs: Any,
) -> bool:
    """Emit ``logger.warning`` for *message* at most once per *minutes* interval."""

    interval = max(0.0, minutes) * 60.0
    now = time.monotonic()

    with _warn_once_lock:
        last = _warn_once_last_emit.get(key)
        if last is not None and interval > 0 and now - last < interval:
            return False
        _warn_once_last_emit[key] = now

    target = logger or logging.getLogger()
    target.warning(message, *args, **kwargs)
    return True


def reset_warn_once_cache() -> None:
    """Clear cached emission timestamps for :func:`warn_once_per`."""

    with _warn_once_lock:
        _warn_once_last_emit.clear()


__all__ = [
    "JsonFormatter",
    "configure_logging",
    "reset_warn_once_cache",
    "warn_once_per",
]
