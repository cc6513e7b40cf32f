"""Structured logging setup tests."""

from __future__ import annotations

import json
import logging

import structlog

from natours.logging_config import setup_logging


def _render(json_format: bool, capsys) -> str:
    setup_logging(log_level="info", json_format=json_format)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id="req-abc123")
    structlog.get_logger("natours.test").info("natours_started", port=3000)
    structlog.contextvars.clear_contextvars()
    return capsys.readouterr().out.strip().splitlines()[-1]


def test_json_lines(capsys):
    entry = json.loads(_render(True, capsys))
    assert entry["event"] == "natours_started"
    assert entry["port"] == 3000
    assert entry["request_id"] == "req-abc123"
    assert entry["level"] == "info"
    assert entry["module"] == "natours.test"
    assert entry["timestamp"].endswith("Z")


def test_console_output(capsys):
    line = _render(False, capsys)
    assert "natours_started" in line


def test_level_applied():
    setup_logging(log_level="warning")
    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING
