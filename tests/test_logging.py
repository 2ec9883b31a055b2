from __future__ import annotations

import json
import logging

import structlog

from webhook_service.logging_config import (
    REDACTED,
    configure_logging,
    redact_secrets_processor,
    replace_newlines_processor,
)


def test_newlines_are_escaped():
    event = {"event": "boom", "exception": "Traceback\n  line\tx", "items": ["a\nb", 1]}
    result = replace_newlines_processor(None, "error", event)
    assert result["exception"] == "Traceback\\n  line\\tx"
    assert result["items"] == ["a\\nb", 1]


def test_nul_is_escaped():
    result = replace_newlines_processor(None, "info", {"body": "ok\x00done"})
    assert result["body"] == "ok\\0done"


def test_secrets_and_signatures_are_redacted():
    event = {
        "event": "webhook_created",
        "secret": "s" * 64,
        "headers": {"X-Webhook-Signature": "abc123", "X-Webhook-Event": "order.created"},
        "webhook_id": 4,
    }
    result = redact_secrets_processor(None, "info", event)
    assert result["secret"] == REDACTED
    assert result["headers"] == {"X-Webhook-Signature": REDACTED, "X-Webhook-Event": "order.created"}
    assert result["webhook_id"] == 4


def test_json_format_renders_one_object_per_line(capsys):
    root_logger = logging.getLogger()
    handlers, level = root_logger.handlers[:], root_logger.level
    configure_logging("INFO", "json")
    try:
        structlog.get_logger("webhook_service.test").info(
            "webhook_delivered", delivery_id=7, webhook_secret="k" * 64
        )
        [line] = capsys.readouterr().out.strip().splitlines()
        entry = json.loads(line)
        assert entry["event"] == "webhook_delivered"
        assert entry["delivery_id"] == 7
        assert entry["webhook_secret"] == REDACTED
    finally:
        structlog.reset_defaults()
        root_logger.handlers = handlers
        root_logger.setLevel(level)
