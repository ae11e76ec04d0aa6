# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for pageblocks.logging_config: structlog + stdlib bridge."""

from __future__ import annotations

import json
import logging
import sys

import pytest
import structlog

from pageblocks.logging_config import configure, request_context


@pytest.fixture(autouse=True)
def _reset_logging():
    """Ensure clean logging state before/after each test."""
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestConsoleRenderer:
    """CLI/STDIO mode: ConsoleRenderer (human-readable)."""

    def test_single_stderr_handler(self):
        configure(json_output=False)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stderr

    def test_output_is_human_readable(self, capsys):
        configure(json_output=False)
        logging.getLogger("test.console").info("hello world")
        captured = capsys.readouterr()
        assert "hello world" in captured.err
        assert not captured.err.strip().startswith("{")
        assert captured.out == ""


class TestJSONRenderer:
    """HTTP mode: one JSON object per line."""

    def test_json_lines(self, capsys):
        configure(json_output=True)
        logging.getLogger("test.json").warning("render failed for %s", "https://example.com")
        line = capsys.readouterr().err.strip().splitlines()[-1]
        data = json.loads(line)
        assert data["event"] == "render failed for https://example.com"
        assert data["level"] == "warning"
        assert data["logger"] == "test.json"
        assert "timestamp" in data

    def test_request_context_fields(self, capsys):
        configure(json_output=True)
        with request_context(request_id="abc123", url="https://example.com"):
            logging.getLogger("test.ctx").info("inside")
        logging.getLogger("test.ctx").info("outside")
        lines = [json.loads(x) for x in capsys.readouterr().err.strip().splitlines()]
        assert lines[0]["request_id"] == "abc123"
        assert lines[0]["url"] == "https://example.com"
        assert "request_id" not in lines[1]


class TestLevels:
    def test_root_level(self):
        configure(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        configure(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_noisy_loggers_capped(self):
        configure(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("mcp").level == logging.WARNING

    def test_noisy_loggers_follow_debug(self):
        configure(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.DEBUG
