# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for PageRenderer: timeouts, error mapping and context release."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pageblocks.browser_session import BrowserConfig, BrowserSession
from pageblocks.errors import RenderError, RenderTimeoutError, ResourceExhaustionError
from pageblocks.renderer import PageRenderer

SNAPSHOT = {
    "xpath": "/html/body",
    "tag": "body",
    "width": 1920,
    "height": 1080,
    "attributes": {"width": 1920, "height": 1080},
    "children": [{"xpath": "/html/body/div", "width": 1920, "height": 400}],
}


def _fake_page(status: int = 200, truncated: bool = False) -> MagicMock:
    page = MagicMock()
    page.url = "https://example.com/"
    response = MagicMock()
    response.status = status
    page.goto = AsyncMock(return_value=response)
    page.screenshot = AsyncMock(return_value=b"\x89PNG fake")

    async def _evaluate(script, arg):
        if "maxNodes" in script:
            return {"root": SNAPSHOT, "nodeCount": 2, "truncated": truncated}
        return {"waited_ms": 0, "mutations": 0, "reason": "quiet"}

    page.evaluate = AsyncMock(side_effect=_evaluate)
    return page


def _session(page: MagicMock) -> BrowserSession:
    session = BrowserSession(BrowserConfig())
    session._page = page
    return session


class FakePool:
    """Stands in for BrowserPool.context(); counts opened/released contexts."""

    def __init__(self, session: BrowserSession) -> None:
        self.session = session
        self.calls: list[dict] = []
        self.released = 0

    @asynccontextmanager
    async def context(self, **kwargs):
        self.calls.append(kwargs)
        try:
            yield self.session
        finally:
            self.released += 1


class TestRetrieve:
    async def test_returns_render_tree(self):
        pool = FakePool(_session(_fake_page()))
        tree = await PageRenderer(pool).retrieve("https://example.com", 1280, 720, user_agent="agent/1.0")

        assert tree.xpath == "/html/body"
        assert tree.children[0].height == 400.0
        assert pool.calls == [{"width": 1280, "height": 720, "user_agent": "agent/1.0"}]
        assert pool.released == 1

    async def test_navigates_with_load_wait(self):
        page = _fake_page()
        await PageRenderer(FakePool(_session(page))).retrieve("https://example.com", 1920, 1080)
        page.goto.assert_awaited_once()
        assert page.goto.await_args.kwargs["wait_until"] == "load"

    async def test_http_error_status_still_rendered(self):
        pool = FakePool(_session(_fake_page(status=404)))
        tree = await PageRenderer(pool).retrieve("https://example.com/missing", 1920, 1080)
        assert tree.xpath == "/html/body"

    async def test_extra_wait_sleeps(self):
        pool = FakePool(_session(_fake_page()))
        with patch("pageblocks.browser_session.asyncio.sleep", new=AsyncMock()) as sleep:
            await PageRenderer(pool).retrieve("https://example.com", 1920, 1080, wait_ms=1500)
        sleep.assert_awaited_once_with(1.5)


class TestErrors:
    async def test_playwright_error_becomes_render_error(self):
        page = _fake_page()
        page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
        pool = FakePool(_session(page))

        with pytest.raises(RenderError, match="ERR_NAME_NOT_RESOLVED") as exc_info:
            await PageRenderer(pool).retrieve("https://nope.invalid", 1920, 1080)

        assert not isinstance(exc_info.value, RenderTimeoutError)
        assert exc_info.value.url == "https://nope.invalid"
        assert pool.released == 1

    async def test_playwright_timeout_becomes_render_timeout(self):
        page = _fake_page()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 30000ms exceeded"))
        pool = FakePool(_session(page))

        with pytest.raises(RenderTimeoutError, match="30000ms"):
            await PageRenderer(pool).retrieve("https://slow.example.com", 1920, 1080)
        assert pool.released == 1

    async def test_budget_expiry_becomes_render_timeout(self):
        page = _fake_page()

        async def _hang(*args, **kwargs):
            await asyncio.sleep(10)

        page.goto = AsyncMock(side_effect=_hang)
        pool = FakePool(_session(page))

        with pytest.raises(RenderTimeoutError) as exc_info:
            await PageRenderer(pool, timeout_s=0.05).retrieve("https://hang.example.com", 1920, 1080, wait_ms=100)

        # the requested wait extends the budget
        assert exc_info.value.timeout_s == pytest.approx(0.15)
        assert pool.released == 1

    async def test_snapshot_limit_propagates(self):
        pool = FakePool(_session(_fake_page(truncated=True)))
        with pytest.raises(ResourceExhaustionError):
            await PageRenderer(pool).retrieve("https://huge.example.com", 1920, 1080)
        assert pool.released == 1


class TestScreenshot:
    async def test_full_page_png(self):
        page = _fake_page()
        pool = FakePool(_session(page))

        data = await PageRenderer(pool).screenshot("https://example.com", 1024, 768)

        assert data == b"\x89PNG fake"
        page.screenshot.assert_awaited_once_with(full_page=True, type="png")
        assert pool.calls == [{"width": 1024, "height": 768, "user_agent": None}]


class TestStandalone:
    async def test_session_config_overrides(self):
        seen: list[BrowserConfig] = []
        page = _fake_page()

        @asynccontextmanager
        async def _fake_create_session(config):
            seen.append(config)
            yield _session(page)

        base = BrowserConfig(user_agent="base-agent")
        with patch("pageblocks.renderer.create_session", new=_fake_create_session):
            renderer = PageRenderer(config=base)
            await renderer.retrieve("https://example.com", 800, 600)
            await renderer.retrieve("https://example.com", 800, 600, user_agent="custom")

        assert (seen[0].viewport_width, seen[0].viewport_height) == (800, 600)
        assert seen[0].user_agent == "base-agent"
        assert seen[1].user_agent == "custom"
        assert base.viewport_width == 1920
