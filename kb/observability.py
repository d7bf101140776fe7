"""
Logging
-------
One way to get a structured logger across the knowledge base.

- Root handler configured once (stdout).
- Level from KB_LOG_LEVEL (KB_DEBUG=1 forces DEBUG).
- Formatter appends any `extra={}` fields as key=value.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Dict, Optional


class KeyValueExtrasFormatter(logging.Formatter):
    """Append custom attributes passed via `extra={}` as key=value pairs."""

    _RESERVED = {
        "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
        "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
        "created", "msecs", "relativeCreated", "thread", "threadName", "process",
        "processName", "message", "asctime", "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        extras: Dict[str, Any] = {
            k: v for k, v in record.__dict__.items()
            if k not in self._RESERVED and not k.startswith("_")
        }
        if extras:
            extra_str = " ".join(f"{k}={v!r}" for k, v in extras.items())
            return f"{base} | {extra_str}"
        return base


_CONFIGURED = False


def _level_from_env() -> int:
    if os.environ.get("KB_DEBUG", "").strip() in ("1", "true", "yes"):
        return logging.DEBUG
    level_name = os.environ.get("KB_LOG_LEVEL", "INFO").upper().strip()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[int] = None) -> None:
    """Configure the root logger once (stdout handler + extras-aware formatter)."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    root = logging.getLogger()
    root.setLevel(level if level is not None else _level_from_env())

    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(KeyValueExtrasFormatter(
            fmt="%(asctime)s | %(levelname)-8s | [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(root.level, logging.WARNING))

    _CONFIGURED = True


def set_log_level(level_name: str) -> None:
    """Change the root logger level at runtime, e.g. set_log_level('DEBUG')."""
    configure_logging()
    level = logging.getLevelName(level_name.upper())
    logging.getLogger().setLevel(level if isinstance(level, int) else logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """
    Named logger; messages propagate to the single root handler.
    Attach structured fields with `logger.info(..., extra={'key': val})`.
    """
    configure_logging()
    return logging.getLogger(name)
