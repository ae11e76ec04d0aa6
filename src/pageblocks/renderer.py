# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Render collaborator: URL → render snapshot or screenshot.

Every call runs in its own BrowserContext (from a shared BrowserPool in
service mode, a standalone session otherwise) and is bounded by
``asyncio.timeout``. Playwright failures surface as ``RenderError``; an
expired budget surfaces as ``RenderTimeoutError``. The context is released
on every exit path.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from . import RenderNode
from .browser_pool import BrowserPool
from .browser_session import BrowserConfig, BrowserSession, create_session
from .errors import RenderError, RenderTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RENDER_TIMEOUT_S = 60.0


class PageRenderer:
    """Renders pages through a BrowserPool, or standalone sessions when no pool is given."""

    def __init__(
        self,
        pool: BrowserPool | None = None,
        *,
        config: BrowserConfig | None = None,
        timeout_s: float = DEFAULT_RENDER_TIMEOUT_S,
    ) -> None:
        self._pool = pool
        self._config = config or BrowserConfig()
        self.timeout_s = timeout_s

    @asynccontextmanager
    async def _session(self, width: int, height: int, user_agent: str | None) -> AsyncIterator[BrowserSession]:
        if self._pool is not None:
            async with self._pool.context(width=width, height=height, user_agent=user_agent) as session:
                yield session
            return

        overrides: dict = {"viewport_width": width, "viewport_height": height}
        if user_agent:
            overrides["user_agent"] = user_agent
        async with create_session(dataclasses.replace(self._config, **overrides)) as session:
            yield session

    async def _run(
        self,
        url: str,
        width: int,
        height: int,
        user_agent: str | None,
        wait_ms: int,
        action: Callable[[BrowserSession], Awaitable[T]],
    ) -> T:
        budget = self.timeout_s + max(wait_ms, 0) / 1000
        try:
            async with asyncio.timeout(budget):
                async with self._session(width, height, user_agent) as session:
                    nav = await session.navigate(url, wait_ms=wait_ms)
                    if nav.http_status is not None and nav.http_status >= 400:
                        logger.info("Rendering %s returned HTTP %d", url, nav.http_status)
                    return await action(session)
        except TimeoutError as exc:
            raise RenderTimeoutError(
                f"Rendering timed out after {budget:.1f}s", url=url, timeout_s=budget
            ) from exc
        except PlaywrightTimeoutError as exc:
            raise RenderTimeoutError(f"Navigation timed out: {exc.message}", url=url, timeout_s=budget) from exc
        except PlaywrightError as exc:
            raise RenderError(f"Could not render page: {exc.message}", url=url) from exc

    async def retrieve(
        self,
        url: str,
        width: int,
        height: int,
        user_agent: str | None = None,
        wait_ms: int = 0,
    ) -> RenderNode:
        """Render *url* at the given viewport and return its render snapshot."""
        tree = await self._run(url, width, height, user_agent, wait_ms, BrowserSession.capture_render_tree)
        logger.debug("Retrieved render tree for %s", url)
        return tree

    async def screenshot(self, url: str, width: int, height: int) -> bytes:
        """Render *url* and return a full-page PNG."""
        return await self._run(url, width, height, None, 0, BrowserSession.screenshot)
