"""Tests for the shared logger factory and formatters."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from utils.logging import _ConsoleFormatter, _StructuredFormatter, get_logger


def _record(**extra: object) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "thyme.test", "levelno": logging.INFO, "levelname": "INFO"})
    record.msg = "photo_created"
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_adapter_merges_call_site_extra_with_base_extra(caplog) -> None:
    logger = get_logger("thyme.test.merge", extra={"component": "scanner"})

    with caplog.at_level("INFO"):
        logger.info("photo_created", extra={"photo_id": 7})

    record = caplog.records[-1]
    assert record.component == "scanner"
    assert record.photo_id == 7


def test_structured_formatter_emits_json_with_extras() -> None:
    line = _StructuredFormatter().format(_record(photo_id=3, path=Path("/photos/a.jpg")))

    payload = json.loads(line)
    assert payload["message"] == "photo_created"
    assert payload["level"] == "INFO"
    assert payload["photo_id"] == 3
    assert payload["path"] == "/photos/a.jpg"


def test_console_formatter_renders_extras_as_key_value_pairs() -> None:
    line = _ConsoleFormatter("%(levelname)s %(message)s").format(_record(set_id=2, set_name="trip"))

    assert line == "INFO photo_created | set_id=2 set_name='trip'"
