# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser session for rendering pages.

Manages the Chromium lifecycle and one isolated BrowserContext per session.
A session renders a URL at a given viewport and hands back either a render
snapshot (for segmentation) or a full-page screenshot (for Vicram).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Route,
    async_playwright,
)

from . import RenderNode
from .config import DEFAULT_HEIGHT, DEFAULT_WIDTH
from .errors import RenderError
from .render_snapshot import MAX_RENDER_DEPTH, MAX_RENDER_NODES, capture_render_tree

logger = logging.getLogger(__name__)

# Dangerous URL schemes blocked at context level.
# about:blank is explicitly allowed (initial page of every context).
BLOCKED_URL_SCHEMES = (
    "chrome://",
    "devtools://",
    "chrome-extension://",
    "file://",
    "view-source://",
)
DEFAULT_LOCALE = "en-US"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class BrowserConfig:
    """Browser launch and rendering configuration."""

    headless: bool = True
    locale: str = DEFAULT_LOCALE
    viewport_width: int = DEFAULT_WIDTH
    viewport_height: int = DEFAULT_HEIGHT
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 30000  # navigation timeout
    settle_quiet_ms: int = 200  # DOM mutation quiet period (ms)
    settle_max_ms: int = 3000  # Maximum settle wait (ms)
    max_render_nodes: int = MAX_RENDER_NODES
    max_render_depth: int = MAX_RENDER_DEPTH


@dataclass(frozen=True, slots=True)
class NavigationResult:
    """Outcome of a page navigation."""

    settle_metrics: dict | None  # DOM settle: {waited_ms, mutations, reason}
    http_status: int | None = None


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds, Chromium is a ~140MB download


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Returns True if install succeeded, False otherwise.
    stdout/stderr are captured to avoid polluting the MCP STDIO stream.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium' …")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
        if proc.returncode == 0:
            logger.info("Chromium installed successfully")
            return True
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except Exception:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Hardened Chromium launch arguments shared by BrowserSession and BrowserPool."""
    return [
        "--disable-blink-features=AutomationControlled",
        f"--lang={config.locale}",
        "--disable-extensions",
        "--disable-plugins",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--force-webrtc-ip-handling-policy=disable_non_proxied_udp",
        "--deny-permission-prompts",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
        "--noerrdialogs",
    ]


async def launch_chromium(playwright: Playwright, config: BrowserConfig) -> Browser:
    """Launch Chromium, auto-installing on the first 'executable doesn't exist' error."""
    args = chromium_launch_args(config)
    try:
        return await playwright.chromium.launch(headless=config.headless, args=args)
    except Exception as exc:
        if "executable doesn't exist" not in str(exc).lower():
            raise
        if await _auto_install_chromium():
            return await playwright.chromium.launch(headless=config.headless, args=args)
        raise RenderError(
            "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
        ) from exc


class BrowserSession:
    """One isolated BrowserContext + Page, standalone or on a pooled browser."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._owns_browser: bool = True  # False when created via start_from_pool()

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started. Use async with or call start().")
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise RuntimeError("Browser session not started.")
        return self._context

    async def _create_context(self, browser: Browser) -> None:
        """Create BrowserContext + Page on the given browser."""
        self._context = await browser.new_context(
            viewport={
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
            locale=self.config.locale,
            user_agent=self.config.user_agent,
            service_workers="block",
            permissions=[],
            accept_downloads=False,
        )
        self._page = await self._context.new_page()
        await self._install_scheme_block_route()

    async def start(self) -> None:
        """Launch browser and create the initial page.

        A failed or cancelled start closes whatever was already launched.
        """
        try:
            self._playwright = await async_playwright().start()
            self._browser = await launch_chromium(self._playwright, self.config)
            await self._create_context(self._browser)
        except BaseException:
            await self.stop()
            raise
        logger.info("Browser session started (headless=%s)", self.config.headless)

    async def start_from_pool(self, browser: Browser) -> None:
        """Start on a shared browser owned by the pool.

        stop() then only closes the context, not the browser or playwright.
        """
        self._owns_browser = False
        self._browser = browser
        await self._create_context(browser)
        logger.debug("Browser session started from pool")

    async def _install_scheme_block_route(self) -> None:
        async def _handler(route: Route) -> None:
            url = route.request.url
            if url == "about:blank":
                await route.continue_()
                return
            if url.startswith(BLOCKED_URL_SCHEMES) or url.startswith("about:"):
                logger.debug("Scheme blocked: %s", url)
                await route.abort("blockedbyclient")
                return
            await route.continue_()

        await self._context.route("**/*", _handler)

    async def stop(self) -> None:
        """Close the context (and browser, when owned). Safe on a crashed browser."""
        if self._context:
            with suppress(Exception):
                await self._context.close()
            self._context = None
        self._page = None

        if self._owns_browser:
            if self._browser:
                with suppress(Exception):
                    await self._browser.close()
                self._browser = None
            if self._playwright:
                with suppress(Exception):
                    await self._playwright.stop()
                self._playwright = None
        else:
            self._browser = None

        logger.debug("Browser session stopped (owned_browser=%s)", self._owns_browser)

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    async def navigate(self, url: str, wait_ms: int = 0) -> NavigationResult:
        """Load *url*, let the DOM settle, then idle for *wait_ms* extra milliseconds."""
        response = await self.page.goto(url, wait_until="load", timeout=self.config.timeout_ms)
        settle = await self.wait_for_dom_settle()
        if wait_ms > 0:
            await asyncio.sleep(wait_ms / 1000)
        return NavigationResult(settle_metrics=settle, http_status=response.status if response else None)

    async def wait_for_dom_settle(
        self,
        quiet_ms: int | None = None,
        max_ms: int | None = None,
    ) -> dict | None:
        """Wait for DOM mutations to settle using MutationObserver.

        Returns:
            Metrics dict {"waited_ms": int, "mutations": int, "reason": "quiet"|"timeout"}
            or None if page.evaluate failed (crash, navigation, etc.).
        """
        q = quiet_ms if quiet_ms is not None else self.config.settle_quiet_ms
        m = max_ms if max_ms is not None else self.config.settle_max_ms
        try:
            result = await self.page.evaluate(_DOM_SETTLE_JS, [q, m])
            logger.debug(
                "DOM settle: %dms, %d mutations, reason=%s",
                result.get("waited_ms", 0),
                result.get("mutations", 0),
                result.get("reason", "unknown"),
            )
            return result
        except Exception:
            logger.debug("DOM settle failed, continuing", exc_info=True)
            return None

    async def capture_render_tree(self) -> RenderNode:
        """Render snapshot of the current page."""
        return await capture_render_tree(self.page, self.config.max_render_nodes, self.config.max_render_depth)

    async def screenshot(self, full_page: bool = True) -> bytes:
        """PNG screenshot of the current page."""
        return await self.page.screenshot(full_page=full_page, type="png")


@asynccontextmanager
async def create_session(
    config: BrowserConfig | None = None,
) -> AsyncGenerator[BrowserSession, None]:
    """Context manager to create and manage a standalone browser session."""
    session = BrowserSession(config)
    await session.start()
    try:
        yield session
    finally:
        await session.stop()


_DOM_SETTLE_JS = """([quietMs, maxMs]) => new Promise(resolve => {
  let mutations = 0;
  let quietTimer = null;
  let maxTimer = null;
  const start = performance.now();

  const finish = (reason) => {
    observer.disconnect();
    if (quietTimer) clearTimeout(quietTimer);
    if (maxTimer) clearTimeout(maxTimer);
    resolve({
      waited_ms: Math.round(performance.now() - start),
      mutations: mutations,
      reason: reason
    });
  };

  const resetQuiet = () => {
    if (quietTimer) clearTimeout(quietTimer);
    quietTimer = setTimeout(() => finish('quiet'), quietMs);
  };

  const observer = new MutationObserver((records) => {
    mutations += records.length;
    resetQuiet();
  });

  observer.observe(document.documentElement, {
    childList: true,
    subtree: true,
    characterData: true
  });

  resetQuiet();
  maxTimer = setTimeout(() => finish('timeout'), maxMs);
})"""
