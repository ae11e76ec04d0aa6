# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tunable constants for segmentation, role scoring, Vicram and the service.

Every threshold lives here as a frozen dataclass field so callers can
override it per request without touching module globals. Service settings
are read from ``PAGEBLOCKS_*`` environment variables.
"""

from __future__ import annotations

import os
from contextlib import suppress
from dataclasses import dataclass

DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080

# Fixed identifier substituted for any caller-supplied UA in legacy mode
LEGACY_USER_AGENT = "Mozilla/5.0 (Windows NT 6.1; WOW64; rv:27.0) Gecko/20100101 Firefox/27.0"


@dataclass(frozen=True, slots=True)
class SegmenterConfig:
    """Visual-coherence decomposition thresholds."""

    coherence_threshold: float = 0.6  # mean adjacent similarity below this → split
    min_block_area: float = 1600.0  # px² (40×40); smaller nodes never become blocks on their own
    leaf_area_ratio: float = 0.05  # homogeneous blocks below this share of the page stay leaves
    max_depth: int = 12
    gap_threshold: float = 40.0  # px of whitespace treated as a full separator
    font_size_tolerance: float = 4.0  # px difference treated as a full style change
    # Similarity weights (sum to 1.0)
    gap_weight: float = 0.35
    background_weight: float = 0.2
    border_weight: float = 0.1
    font_size_weight: float = 0.15
    font_color_weight: float = 0.1
    tag_weight: float = 0.1


@dataclass(frozen=True, slots=True)
class ClassifierConfig:
    """Role scoring thresholds. Signal weights live in the role_classifier registry."""

    min_score: float = 0.25  # best normalized score below this → Unknown
    tie_tolerance: float = 0.02
    edge_band: float = 0.15  # top/bottom share of the page treated as "near the edge"
    short_height_ratio: float = 0.3  # header/footer strips are at most this tall
    full_width_ratio: float = 0.9
    narrow_width_ratio: float = 0.35
    tall_aspect: float = 1.5  # height / width
    large_area_ratio: float = 0.2
    container_area_ratio: float = 0.25
    text_density_threshold: float = 0.2
    low_whitespace_ratio: float = 0.4
    link_density_threshold: float = 0.5
    small_child_ratio: float = 0.1  # child area / block area below this counts as "small"
    min_nav_links: int = 3
    default_font_size: float = 16.0
    # Approximate glyph box as a multiple of font size (width, line height)
    glyph_width_factor: float = 0.55
    line_height_factor: float = 1.2


@dataclass(frozen=True, slots=True)
class VicramConfig:
    """Quad-tree partitioning limits for the complexity estimator."""

    min_partition: int = 16  # px; partitions smaller than this are not split
    max_depth: int = 7
    homogeneity_epsilon: float = 0.01  # std below this (0..1 scale) counts as homogeneous
    max_image_side: int = 2048  # screenshots are downscaled to this before scoring


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """HTTP/MCP service settings (read-only after startup)."""

    host: str = "127.0.0.1"
    port: int = 8000
    max_contexts: int = 5
    render_timeout_s: float = 60.0
    max_wait_ms: int = 30_000
    legacy_user_agent: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Build config from ``PAGEBLOCKS_*`` env vars; malformed values keep defaults."""
        values: dict = {}

        host = os.environ.get("PAGEBLOCKS_HOST", "").strip()
        if host:
            values["host"] = host

        for env, key, conv in (
            ("PAGEBLOCKS_PORT", "port", int),
            ("PAGEBLOCKS_MAX_CONTEXTS", "max_contexts", int),
            ("PAGEBLOCKS_RENDER_TIMEOUT", "render_timeout_s", float),
            ("PAGEBLOCKS_MAX_WAIT_MS", "max_wait_ms", int),
        ):
            raw = os.environ.get(env, "").strip()
            if raw:
                with suppress(ValueError):
                    values[key] = conv(raw)

        legacy = os.environ.get("PAGEBLOCKS_LEGACY_USER_AGENT", "").strip().lower()
        if legacy:
            values["legacy_user_agent"] = legacy in ("1", "true", "yes")

        level = os.environ.get("PAGEBLOCKS_LOG_LEVEL", "").strip()
        if level:
            values["log_level"] = level.upper()

        return cls(**values)
