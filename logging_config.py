from __future__ import annotations

import logging
import time
from logging.config import dictConfig
from typing import Any, Iterable, Sequence

from settings import get_settings

# Context attached through ``extra=`` by the ingest, aggregation and report paths.
USAGE_CONTEXT_KEYS = (
    "device_id",
    "user_id",
    "topic",
    "days",
    "device_count",
    "row_count",
    "total_energy_usage",
    "threshold",
    "alert_count",
    "duration_ms",
    "reason",
)

LOG_FORMAT = "%(asctime)s.%(msecs)03dZ %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_configured = False


def _render(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    if isinstance(value, (list, tuple, set)):
        return ",".join(str(item) for item in value)
    return str(value)


class ContextualFormatter(logging.Formatter):
    """Renders UTC timestamps and appends usage context as ``key=value``."""

    converter = time.gmtime

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        context_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt or LOG_FORMAT, datefmt=datefmt or DATE_FORMAT, style=style)
        self.context_keys: Sequence[str] = tuple(context_keys or USAGE_CONTEXT_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = " ".join(
            f"{key}={_render(getattr(record, key))}"
            for key in self.context_keys
            if getattr(record, key, None) is not None
        )
        return f"{message} | {context}" if context else message


def configure_logging(level: str | int | None = None) -> None:
    """Install the contextual handler on the root logger once per process."""
    global _configured
    if _configured:
        return

    log_level = level if level is not None else get_settings().log_level
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "usage": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": LOG_FORMAT,
                    "datefmt": DATE_FORMAT,
                    "context_keys": list(USAGE_CONTEXT_KEYS),
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "usage",
                }
            },
            "root": {"handlers": ["console"], "level": log_level},
            # paho logs every packet at DEBUG
            "loggers": {"paho": {"level": "WARNING"}, "httpx": {"level": "WARNING"}},
        }
    )
    _configured = True
