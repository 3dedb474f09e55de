"""Structured logging for the bridge service and CLI."""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping

from .config import Config

REDACTED = "***REDACTED***"

# Attributes every LogRecord carries; anything else on a record came from `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_REDACT_KEYS = frozenset({"authorization", "bond-token", "token", "bridge_token"})


def redact_mapping(values: Mapping[str, Any], extra_keys: Iterable[str] = ()) -> Dict[str, Any]:
    """Return a copy of `values` with token-like keys masked, nested mappings included."""

    redact_keys = _REDACT_KEYS | {key.lower() for key in extra_keys}
    redacted: Dict[str, Any] = {}
    for key, value in values.items():
        if str(key).lower() in redact_keys:
            redacted[key] = REDACTED if value is not None else None
        elif isinstance(value, Mapping):
            redacted[key] = redact_mapping(value, extra_keys)
        else:
            redacted[key] = value
    return redacted


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed through `extra=`, with bridge credentials masked."""

    extras = {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }
    return redact_mapping(extras)


class JsonFormatter(logging.Formatter):
    """One JSON object per record; `extra=` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record_extras(record).items():
            entry.setdefault(key, value)
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging(config: Config) -> None:
    """Configure global logging based on the provided config."""

    level = config.log_level.upper()
    client_level = (config.client_log_level or config.log_level).upper()
    poller_level = (config.poller_log_level or config.log_level).upper()
    if config.log_format == "json":
        formatter = {
            "format": "json",
            "()": f"{__name__}.JsonFormatter",
        }
    else:
        formatter = {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            "datefmt": "%Y-%m-%dT%H:%M:%S%z",
        }

    def _logger(logger_level: str) -> Dict[str, Any]:
        return {"level": logger_level, "handlers": ["console"], "propagate": False}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": formatter,
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": "DEBUG",
                }
            },
            "loggers": {
                "bond": _logger(level),
                "bond.client": _logger(client_level),
                "bond.poller": _logger(poller_level),
                "bond.devices": _logger(level),
                "bond.validator": _logger(level),
                "bond.pairing": _logger(level),
                "bond.settings": _logger(level),
            },
            "root": {"level": level, "handlers": ["console"]},
        }
    )


def get_logger(name: str) -> logging.Logger:
    """Return a namespaced logger for the requested subsystem."""

    return logging.getLogger(name)
