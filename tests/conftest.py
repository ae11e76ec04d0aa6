# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import pageblocks  # noqa: F401
except ImportError:
    raise ImportError("pageblocks is not installed. Run: pip install -e '.[dev]'") from None

import pytest


@pytest.fixture(autouse=True)
def _block_real_browser(monkeypatch):
    """Safety net: prevent real Chromium launches in unit tests.

    Tests that need a renderer should patch ``pageblocks.server._get_renderer``
    or pass a fake renderer explicitly. Patches applied inside a test take
    priority over this fixture.
    """

    def _no_real_playwright():
        raise RuntimeError("Test tried to start a real Playwright instance. Mock async_playwright in your test.")

    monkeypatch.setattr("pageblocks.browser_session.async_playwright", _no_real_playwright)
    monkeypatch.setattr("pageblocks.browser_pool.async_playwright", _no_real_playwright)

    def _no_real_renderer():
        raise RuntimeError("Test tried to use the real renderer. Patch 'pageblocks.server._get_renderer'.")

    monkeypatch.setattr("pageblocks.server._get_renderer", _no_real_renderer)


@pytest.fixture(autouse=True)
def _reset_server_state():
    """Reset module-level server state before and after each test."""
    import pageblocks.server as srv

    old = (srv._config, srv._transport_mode, srv._pool, srv._renderer)
    yield
    srv._config, srv._transport_mode, srv._pool, srv._renderer = old
