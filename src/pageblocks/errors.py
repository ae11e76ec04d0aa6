# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Blocks exception hierarchy.

All errors inherit from PageBlocksError. Only the render boundary raises
terminal errors; segmentation, geometry and role classification are total
over well-formed snapshots.
"""

from __future__ import annotations


class PageBlocksError(Exception):
    """Base exception for all Page Blocks errors."""


class RenderError(PageBlocksError):
    """The render collaborator could not produce a snapshot for a URL."""

    def __init__(self, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class RenderTimeoutError(RenderError):
    """Rendering did not finish within the allotted time."""

    def __init__(self, message: str, *, url: str = "", timeout_s: float = 0.0) -> None:
        super().__init__(message, url=url)
        self.timeout_s = timeout_s


class ResourceExhaustionError(RenderError):
    """Page exceeds snapshot limits (rendered node count)."""


class InvalidRequestError(PageBlocksError):
    """Request rejected at the service boundary (bad URL or dimensions)."""
