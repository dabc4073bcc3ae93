"""Structured logging helpers."""

from __future__ import annotations

import json
import logging

from StubNet.logging_utils import JSONFormatter, mask_headers, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("StubNet.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_mask_headers() -> None:
    masked = mask_headers({"Authorization": "Bearer x", "Accept": "application/json", "cookie": "c"})

    assert masked == {"Authorization": "***masked***", "Accept": "application/json", "cookie": "***masked***"}


def test_json_formatter_includes_extra_fields() -> None:
    payload = json.loads(JSONFormatter().format(_record(stub_rule="GET: /a", retry_count=2)))

    assert payload["message"] == "hello world"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "StubNet.test"
    assert payload["stub_rule"] == "GET: /a"
    assert payload["retry_count"] == 2
    assert payload["timestamp"].endswith("Z")


def test_json_formatter_masks_header_extras() -> None:
    payload = json.loads(JSONFormatter().format(_record(headers={"Authorization": "secret"})))

    assert payload["headers"] == {"Authorization": "***masked***"}


def test_setup_logging_replaces_managed_handlers(tmp_path) -> None:
    log_file = tmp_path / "logs" / "stubnet.jsonl"
    foreign = logging.NullHandler()
    logger = logging.getLogger("StubNet")
    logger.addHandler(foreign)
    try:
        setup_logging(level="DEBUG", log_file=log_file)
        logger = setup_logging(level="info", json_format=True, log_file=log_file)

        managed = [h for h in logger.handlers if getattr(h, "_stubnet_managed", False)]
        assert len(managed) == 2
        assert foreign in logger.handlers
        assert logger.level == logging.INFO
        assert logger.propagate is False

        logging.getLogger("StubNet.registry").info("stored", extra={"stub_count": 3})
        for handler in managed:
            handler.flush()
    finally:
        logger.removeHandler(foreign)

    lines = log_file.read_text(encoding="utf-8").strip().splitlines()
    assert json.loads(lines[-1])["stub_count"] == 3
