"""Logging under the ``mnemo`` namespace.

Library modules only call :func:`get_logger`; handlers are installed by
the application (the CLI does it from ``[logging]`` in the config).
"""
from __future__ import annotations

import json
import logging
import sys
from typing import IO

_ROOT = "mnemo"


class JSONFormatter(logging.Formatter):
    """One JSON object per line. Includes ``scope`` when the record has one."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": record.created,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        scope = getattr(record, "scope", None)
        if scope is not None:
            payload["scope"] = scope
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(
    level: str = "WARNING",
    json_output: bool = False,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Configure and return the root mnemo logger.

    Calling it again replaces the handler installed by the previous call,
    so the latest level, format and stream always win.
    """
    logger = logging.getLogger(_ROOT)
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    for old in [h for h in logger.handlers if getattr(h, "_mnemo", False)]:
        logger.removeHandler(old)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler._mnemo = True  # type: ignore[attr-defined]
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))

    logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the mnemo namespace."""
    return logging.getLogger(f"{_ROOT}.{name}")
