# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BrowserPool: shared Playwright Browser with one fresh BrowserContext per render.

A single Chromium process hosts up to ``max_contexts`` concurrent contexts.
Capacity is gated by ``asyncio.Semaphore`` (CPython FIFO-guaranteed). Every
context is created for a single request and closed on exit, so no cookies,
storage or cache leak between requests.

    async with BrowserPool(max_contexts=5) as pool:
        async with pool.context(width=1920, height=1080) as session:
            await session.navigate("https://example.com")
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from types import TracebackType

from playwright.async_api import Browser, Playwright, async_playwright

from .browser_session import BrowserConfig, BrowserSession, launch_chromium

logger = logging.getLogger(__name__)

_DEFAULT_MAX_CONTEXTS = 5
_ACQUIRE_TIMEOUT = 30.0


@dataclass(frozen=True, slots=True)
class PoolHealth:
    """Immutable snapshot of pool state for monitoring."""

    active: int
    max_contexts: int
    browser_connected: bool

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


class BrowserPool:
    """Shared browser; per-request BrowserContext isolation."""

    def __init__(
        self,
        *,
        max_contexts: int = _DEFAULT_MAX_CONTEXTS,
        acquire_timeout: float = _ACQUIRE_TIMEOUT,
        config: BrowserConfig | None = None,
    ) -> None:
        self._max_contexts = max_contexts
        self._acquire_timeout = acquire_timeout
        self._config = config or BrowserConfig()

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._semaphore = asyncio.Semaphore(max_contexts)
        self._active: set[BrowserSession] = set()

    # ── AsyncContextManager ──────────────────────────────────────────

    async def start(self) -> BrowserPool:
        self._playwright = await async_playwright().start()
        try:
            self._browser = await launch_chromium(self._playwright, self._config)
        except BaseException:
            await self._playwright.stop()
            self._playwright = None
            raise
        logger.info("BrowserPool started (max_contexts=%d)", self._max_contexts)
        return self

    async def __aenter__(self) -> BrowserPool:
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ── Resource management ──────────────────────────────────────────

    @asynccontextmanager
    async def context(
        self,
        *,
        width: int | None = None,
        height: int | None = None,
        user_agent: str | None = None,
    ) -> AsyncIterator[BrowserSession]:
        """Open a fresh BrowserSession for one render; always closed on exit.

        Blocks while the pool is at capacity (up to ``acquire_timeout`` seconds).
        """
        if self._browser is None:
            raise RuntimeError("BrowserPool not started. Use async with or call start().")

        overrides: dict = {}
        if width:
            overrides["viewport_width"] = width
        if height:
            overrides["viewport_height"] = height
        if user_agent:
            overrides["user_agent"] = user_agent
        config = dataclasses.replace(self._config, **overrides)

        async with asyncio.timeout(self._acquire_timeout):
            await self._semaphore.acquire()
        session = BrowserSession(config)
        try:
            await session.start_from_pool(self._browser)
            self._active.add(session)
            logger.debug("Pool opened context (active=%d)", len(self._active))
            yield session
        finally:
            self._active.discard(session)
            with suppress(Exception):
                await session.stop()
            self._semaphore.release()

    # ── Monitoring ───────────────────────────────────────────────────

    def health(self) -> PoolHealth:
        """Return a snapshot of pool health."""
        return PoolHealth(
            active=len(self._active),
            max_contexts=self._max_contexts,
            browser_connected=self._browser is not None and self._browser.is_connected(),
        )

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def capacity(self) -> int:
        return self._max_contexts

    # ── Shutdown ─────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Close open contexts, the browser and playwright."""
        for session in list(self._active):
            with suppress(Exception):
                await session.stop()
        self._active.clear()

        if self._browser:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None

        logger.info("BrowserPool shut down")
