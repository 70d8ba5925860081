"""Structured logging helpers for guarded requests and downloads."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from .settings import LOG_DIR

__all__ = ["JSONFormatter", "setup_logging", "LOGGER_NAME"]

LOGGER_NAME = "RestGuard"

_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_SENSITIVE_KEYS = ("authorization", "cookie", "token", "secret", "password")


def _mask(payload: Dict[str, Any]) -> Dict[str, Any]:
    masked: Dict[str, Any] = {}
    for key, value in payload.items():
        if any(marker in key.lower() for marker in _SENSITIVE_KEYS):
            masked[key] = "***masked***"
        else:
            masked[key] = value
    return masked


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(_mask(payload), default=str)


def _resolve_log_dir(log_dir: Optional[Path]) -> Path:
    if log_dir is not None:
        return Path(log_dir)
    from_env = os.environ.get("RESTGUARD_LOG_DIR", "").strip()
    return Path(from_env) if from_env else LOG_DIR


def _detach_managed_handlers(logger: logging.Logger) -> None:
    for handler in [item for item in logger.handlers if getattr(item, "_restguard_managed", False)]:
        logger.removeHandler(handler)
        # Never close the process-wide console streams.
        if getattr(handler, "stream", None) not in (sys.stdout, sys.stderr):
            handler.close()


def _managed(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler._restguard_managed = True  # type: ignore[attr-defined]
    return handler


def setup_logging(
    *,
    level: str = "INFO",
    max_log_size_mb: int = 100,
    backup_count: int = 5,
    log_dir: Optional[Path] = None,
    propagate: bool = False,
) -> logging.Logger:
    """Attach a console handler and a rotating JSONL file to the ``RestGuard`` logger.

    Attempt failures, accepted requests and downloads are logged by the
    ``RestGuard.*`` child loggers with their ticket, service and node as
    ``extra`` fields, which the file handler keeps as JSON keys.  Calling this
    again swaps out the handlers installed by the previous call.  The file
    lives in ``log_dir``, else ``RESTGUARD_LOG_DIR``, else the platform user
    log directory, and rotates at ``max_log_size_mb``.
    """

    directory = _resolve_log_dir(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    _detach_managed_handlers(logger)

    logger.addHandler(
        _managed(logging.StreamHandler(sys.stderr), logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    )
    log_file = directory / f"restguard-{datetime.now(timezone.utc):%Y%m%d}.jsonl"
    logger.addHandler(
        _managed(
            RotatingFileHandler(
                log_file,
                maxBytes=int(max_log_size_mb * 1024 * 1024),
                backupCount=backup_count,
                encoding="utf-8",
            ),
            JSONFormatter(),
        )
    )
    logger.propagate = propagate
    return logger
