"""Logging setup for the aumai-devbox command line."""

from __future__ import annotations

import json
import logging
from logging.config import dictConfig
from typing import Any


class ExtrasFormatter(logging.Formatter):
    """Append structured ``data`` payloads when present."""

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        record_data = record.__dict__.get("data")
        if record_data:
            try:
                encoded = json.dumps(record_data, sort_keys=True, separators=(",", ":"))
            except TypeError:
                encoded = str(record_data)
            return f"{formatted} | data={encoded}"
        return formatted


def build_log_config(level: str = "WARNING") -> dict[str, Any]:
    """Return a dictConfig-compatible configuration with one stderr handler."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "extras": {
                "()": ExtrasFormatter,
                "format": "%(levelname)s %(name)s: %(message)s",
            },
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "extras",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "aumai_devbox": {
                "handlers": ["stderr"],
                "level": level.upper(),
                "propagate": False,
            },
        },
    }


def configure_logging(level: str = "WARNING") -> None:
    """Install the aumai-devbox logging configuration."""
    dictConfig(build_log_config(level))


__all__ = ["ExtrasFormatter", "build_log_config", "configure_logging"]
