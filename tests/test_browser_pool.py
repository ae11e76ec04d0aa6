# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for BrowserPool: shared browser with one fresh context per render.

All tests mock Playwright/Browser/BrowserSession to avoid launching a real browser.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pageblocks.browser_pool import BrowserPool, PoolHealth
from pageblocks.browser_session import BrowserConfig, BrowserSession

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _mock_playwright_and_browser():
    pw = AsyncMock()
    browser = AsyncMock()
    browser.is_connected = MagicMock(return_value=True)
    browser.close = AsyncMock()
    pw.chromium.launch = AsyncMock(return_value=browser)
    pw.stop = AsyncMock()
    return pw, browser


@pytest.fixture
def mock_pw():
    """Patch async_playwright to return mock objects."""
    pw, browser = _mock_playwright_and_browser()
    with patch("pageblocks.browser_pool.async_playwright") as mock_apw:
        mock_apw.return_value.start = AsyncMock(return_value=pw)
        yield pw, browser


@pytest.fixture
def sessions():
    """Patch BrowserSession; every constructed session is recorded."""
    created: list[MagicMock] = []

    def _factory(config):
        sess = AsyncMock(spec=BrowserSession)
        sess.config = config
        sess.start_from_pool = AsyncMock()
        sess.stop = AsyncMock()
        created.append(sess)
        return sess

    with patch("pageblocks.browser_pool.BrowserSession", side_effect=_factory):
        yield created


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_start_launches_browser(self, mock_pw):
        pw, browser = mock_pw
        async with BrowserPool(max_contexts=2) as pool:
            assert pool.health().browser_connected
        pw.chromium.launch.assert_awaited_once()
        browser.close.assert_awaited_once()
        pw.stop.assert_awaited_once()

    async def test_context_before_start_raises(self):
        pool = BrowserPool()
        with pytest.raises(RuntimeError, match="not started"):
            async with pool.context():
                pass

    async def test_launch_failure_stops_playwright(self, mock_pw):
        pw, _ = mock_pw
        pw.chromium.launch = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError, match="boom"):
            await BrowserPool().start()
        pw.stop.assert_awaited_once()

    async def test_shutdown_closes_open_sessions(self, mock_pw, sessions):
        pool = await BrowserPool().start()
        cm = pool.context()
        await cm.__aenter__()
        assert pool.active_count == 1

        await pool.shutdown()

        sessions[0].stop.assert_awaited()
        assert pool.active_count == 0
        assert not pool.health().browser_connected
        await cm.__aexit__(None, None, None)


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------


class TestContext:
    async def test_session_started_on_shared_browser(self, mock_pw, sessions):
        _, browser = mock_pw
        async with BrowserPool() as pool:
            async with pool.context() as session:
                assert session is sessions[0]
                assert pool.active_count == 1
            session.start_from_pool.assert_awaited_once_with(browser)
            session.stop.assert_awaited_once()
            assert pool.active_count == 0

    async def test_overrides_reach_config(self, mock_pw, sessions):
        base = BrowserConfig(user_agent="base-agent")
        async with BrowserPool(config=base) as pool:
            async with pool.context(width=800, height=600, user_agent="custom") as session:
                assert session.config.viewport_width == 800
                assert session.config.viewport_height == 600
                assert session.config.user_agent == "custom"
        assert base.viewport_width == 1920

    async def test_missing_overrides_keep_defaults(self, mock_pw, sessions):
        async with BrowserPool(config=BrowserConfig(user_agent="base-agent")) as pool:
            async with pool.context(width=None, user_agent=None) as session:
                assert session.config.viewport_width == 1920
                assert session.config.user_agent == "base-agent"

    async def test_every_render_gets_fresh_session(self, mock_pw, sessions):
        async with BrowserPool() as pool:
            async with pool.context():
                pass
            async with pool.context():
                pass
        assert len(sessions) == 2
        assert sessions[0] is not sessions[1]

    async def test_released_on_exception(self, mock_pw, sessions):
        async with BrowserPool(max_contexts=1) as pool:
            with pytest.raises(ValueError):
                async with pool.context():
                    raise ValueError("render failed")
            sessions[0].stop.assert_awaited_once()
            # Capacity is back: a second context does not block
            async with asyncio.timeout(1):
                async with pool.context():
                    pass

    async def test_released_when_start_fails(self, mock_pw, sessions):
        async with BrowserPool(max_contexts=1) as pool:
            with patch("pageblocks.browser_pool.BrowserSession") as bad:
                bad.return_value.start_from_pool = AsyncMock(side_effect=RuntimeError("context crashed"))
                bad.return_value.stop = AsyncMock()
                with pytest.raises(RuntimeError, match="context crashed"):
                    async with pool.context():
                        pass
            assert pool.active_count == 0
            async with asyncio.timeout(1):
                async with pool.context():
                    pass

    async def test_capacity_blocks_then_times_out(self, mock_pw, sessions):
        async with BrowserPool(max_contexts=1, acquire_timeout=0.05) as pool:
            async with pool.context():
                with pytest.raises(TimeoutError):
                    async with pool.context():
                        pass

    async def test_concurrency_bounded(self, mock_pw, sessions):
        peak = 0

        async def _render(pool: BrowserPool):
            nonlocal peak
            async with pool.context():
                peak = max(peak, pool.active_count)
                await asyncio.sleep(0.01)

        async with BrowserPool(max_contexts=2) as pool:
            await asyncio.gather(*(_render(pool) for _ in range(6)))
        assert peak == 2
        assert len(sessions) == 6


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    async def test_snapshot(self, mock_pw, sessions):
        async with BrowserPool(max_contexts=3) as pool:
            async with pool.context():
                health = pool.health()
        assert health == PoolHealth(active=1, max_contexts=3, browser_connected=True)
        assert health.to_dict() == {"active": 1, "max_contexts": 3, "browser_connected": True}

    async def test_disconnected_browser(self, mock_pw):
        _, browser = mock_pw
        async with BrowserPool() as pool:
            browser.is_connected = MagicMock(return_value=False)
            assert not pool.health().browser_connected

    def test_capacity(self):
        assert BrowserPool(max_contexts=7).capacity == 7
