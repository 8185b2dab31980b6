"""Structured logging singleton.

Reads os.environ directly; the logger must initialize before pydantic
Settings so that config loading itself can log. ``LOG_LEVEL`` sets the
level; ``LOG_FORMAT=json`` switches to one JSON object per line for
editors that collect host logs.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def _renderer() -> structlog.types.Processor:
    if os.environ.get("LOG_FORMAT", "").lower() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def _setup_logging() -> structlog.stdlib.BoundLogger:
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)

    # stdlib root logger first, so filter_by_level sees the configured level
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            _renderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("quire")


logger = _setup_logging()


def set_level(level_name: str) -> None:
    """Apply a level from config after startup (LOG_LEVEL wins when set)."""
    if "LOG_LEVEL" in os.environ:
        return
    logging.getLogger().setLevel(getattr(logging, level_name.upper(), logging.INFO))
