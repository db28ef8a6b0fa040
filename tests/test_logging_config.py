"""Tests for structured JSON logging and job id binding."""

import json
import logging

import pytest

from invoice_scanner.logging_config import (
    _JsonFormatter,
    bind_job_id,
    configure_logging,
    get_job_id,
)


def _record(msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("invoice_scanner.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_single_line_json():
    payload = json.loads(_JsonFormatter().format(_record()))
    assert payload["level"] == "INFO"
    assert payload["logger"] == "invoice_scanner.test"
    assert payload["message"] == "hello"
    assert "job_id" not in payload


def test_formatter_includes_extra_fields():
    payload = json.loads(_JsonFormatter().format(_record(interval=3.0)))
    assert payload["interval"] == 3.0


def test_bound_job_id_is_added():
    with bind_job_id("job-42"):
        assert get_job_id() == "job-42"
        payload = json.loads(_JsonFormatter().format(_record()))
    assert payload["job_id"] == "job-42"
    assert get_job_id() == ""


def test_bind_job_id_nests():
    with bind_job_id("outer"):
        with bind_job_id("inner"):
            assert get_job_id() == "inner"
        assert get_job_id() == "outer"


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_installs_json_handler(restore_root_logger):
    configure_logging("debug")

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, _JsonFormatter)
    assert logging.getLogger("httpx").level == logging.WARNING


def test_configure_logging_unknown_level_defaults_to_info(restore_root_logger):
    configure_logging("chatty")
    assert restore_root_logger.level == logging.INFO


def test_formatter_skips_standard_record_attributes():
    payload = json.loads(_JsonFormatter().format(_record()))
    assert set(payload) == {"timestamp", "level", "logger", "message"}
