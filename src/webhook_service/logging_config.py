"""structlog setup for the webhook service.

Every entry is rendered on a single line, either as ``key=value`` pairs or as
JSON. Webhook secrets and signatures never reach the output.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

REDACTED = "[redacted]"

# Keys whose values are key material or derived from it.
SENSITIVE_KEYS = frozenset({"secret", "webhook_secret", "signature", "x-webhook-signature"})

_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r", "\t": "\\t", "\x00": "\\0"}
_ESCAPE_TABLE = str.maketrans(_ESCAPES)


def _escape(value: str) -> str:
    return value.translate(_ESCAPE_TABLE)


def _escape_value(value: Any) -> Any:
    if isinstance(value, str):
        return _escape(value)
    if isinstance(value, (list, tuple)):
        return [_escape(item) if isinstance(item, str) else item for item in value]
    return value


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else _redact(item)
            for key, item in value.items()
        }
    return value


def redact_secrets_processor(logger, method_name, event_dict):
    """Mask secrets and signatures, including inside logged header mappings."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact(event_dict[key])
    return event_dict


def replace_newlines_processor(logger, method_name, event_dict):
    """Escape line breaks, tabs and NULs in string values, tracebacks included."""
    for key, value in event_dict.items():
        event_dict[key] = _escape_value(value)
    return event_dict


class SingleLineFormatter(logging.Formatter):
    def format(self, record):
        message = super().format(record)
        return message.replace("\n", "\\n").replace("\r", "\\r")


def _renderer(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer(sort_keys=False)
    return structlog.processors.KeyValueRenderer(
        key_order=["timestamp", "level", "logger", "event"],
        drop_missing=True,
    )


def configure_logging(level: str = "INFO", log_format: str = "kv") -> None:
    """Route stdlib and structlog output through one stream on stdout.

    ``log_format`` is ``"kv"`` (key=value) or ``"json"``.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SingleLineFormatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level.upper())

    aiohttp_logger = logging.getLogger("aiohttp.access")
    aiohttp_logger.setLevel(logging.INFO)
    aiohttp_logger.propagate = True
    aiohttp_logger.handlers = []

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_secrets_processor,
    ]
    if log_format != "json":
        # JSON escapes control characters itself
        processors.append(replace_newlines_processor)
    processors.append(_renderer(log_format))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
