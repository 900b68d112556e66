"""Tests for the logging setup."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from manifest_back.runtime.logging import (
    ROOT_LOGGER_NAME,
    JSONLFormatter,
    get_logger,
    log_with_context,
    setup_logging,
)


@pytest.fixture(autouse=True)
def reset_root_logger():
    yield
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


def _read_entries(log_file: Path) -> list[dict]:
    return [json.loads(line) for line in log_file.read_text().splitlines() if line]


class TestSetupLogging:
    def test_writes_jsonl(self, tmp_path: Path) -> None:
        log_file = setup_logging(tmp_path / "logs", "DEBUG")
        assert log_file is not None

        log_with_context(get_logger("crud"), logging.INFO, "Stored Cat 1", entity="cats", id=1)

        entries = _read_entries(log_file)
        entry = entries[-1]
        assert entry["level"] == "INFO"
        assert entry["component"] == "crud"
        assert entry["message"] == "Stored Cat 1"
        assert entry["context"] == {"entity": "cats", "id": 1}

    def test_console_only(self, tmp_path: Path) -> None:
        assert setup_logging(None) is None

        handlers = logging.getLogger(ROOT_LOGGER_NAME).handlers
        assert len(handlers) == 1

    def test_level_filters_records(self, tmp_path: Path) -> None:
        log_file = setup_logging(tmp_path, "WARNING")
        assert log_file is not None

        logger = get_logger("db")
        logger.info("ignored")
        logger.warning("kept")

        messages = [e["message"] for e in _read_entries(log_file)]
        assert messages == ["kept"]

    def test_setup_is_repeatable(self, tmp_path: Path) -> None:
        setup_logging(tmp_path)
        setup_logging(tmp_path)

        assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 2


class TestJSONLFormatter:
    def test_warning_carries_source(self) -> None:
        record = logging.LogRecord(
            name="manifest_back.http",
            level=logging.WARNING,
            pathname="/app/handlers.py",
            lineno=12,
            msg="Bad request",
            args=(),
            exc_info=None,
            func="handler",
        )

        entry = json.loads(JSONLFormatter().format(record))

        assert entry["component"] == "http"
        assert entry["source"] == {"file": "/app/handlers.py", "line": 12, "function": "handler"}

    def test_get_logger_is_cached(self) -> None:
        assert get_logger("crud") is get_logger("crud")
        assert get_logger("crud").name == "manifest_back.crud"
