# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Vicram: visual complexity of a rendered page.

The page screenshot is partitioned as a quad-tree. Each partition adds its
color inhomogeneity (mean per-channel standard deviation, 0..1 scale)
weighted by its share of the page. A partition is split further only while
it is inhomogeneous, above ``min_partition`` pixels per side and below
``max_depth``. A single-color page therefore scores exactly 0; dense
multi-column layouts accumulate score at many levels.

Independent of segmentation: never reads or mutates a block tree.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image

from . import VicramResult
from .config import DEFAULT_HEIGHT, DEFAULT_WIDTH, VicramConfig

if TYPE_CHECKING:
    from .renderer import PageRenderer

logger = logging.getLogger(__name__)


class ComplexityTarget(Protocol):
    url: str
    width: int | None
    height: int | None


def now_ms() -> int:
    return int(time.time() * 1000)


def load_pixels(data: bytes, config: VicramConfig | None = None) -> np.ndarray:
    """Decode an image to an (H, W, 3) float array in [0, 1], downscaled to ``max_image_side``."""
    cfg = config or VicramConfig()
    with Image.open(io.BytesIO(data)) as img:
        rgb = img.convert("RGB")
    if max(rgb.size) > cfg.max_image_side:
        rgb.thumbnail((cfg.max_image_side, cfg.max_image_side), Image.LANCZOS)
    return np.asarray(rgb, dtype=np.float32) / 255.0


def vicram_score(pixels: np.ndarray, config: VicramConfig | None = None) -> float:
    """Quad-tree inhomogeneity score of a pixel array (H×W or H×W×C, values 0..1)."""
    cfg = config or VicramConfig()
    if pixels.ndim == 2:
        pixels = pixels[:, :, np.newaxis]
    height, width = pixels.shape[:2]
    total = float(height * width)
    if total == 0:
        return 0.0
    channels = pixels.shape[2]

    score = 0.0
    stack = [(0, 0, height, width, 0)]
    while stack:
        y0, x0, y1, x1, depth = stack.pop()
        region = pixels[y0:y1, x0:x1].reshape(-1, channels)
        spread = float(region.std(axis=0).mean())
        if spread <= cfg.homogeneity_epsilon:
            continue
        score += ((y1 - y0) * (x1 - x0) / total) * spread

        half_h = (y1 - y0) // 2
        half_w = (x1 - x0) // 2
        if depth + 1 > cfg.max_depth or half_h < cfg.min_partition or half_w < cfg.min_partition:
            continue
        ym, xm = y0 + half_h, x0 + half_w
        stack.extend(
            [
                (y0, x0, ym, xm, depth + 1),
                (y0, xm, ym, x1, depth + 1),
                (ym, x0, y1, xm, depth + 1),
                (ym, xm, y1, x1, depth + 1),
            ]
        )
    return round(score, 6)


def vicram_from_png(data: bytes, config: VicramConfig | None = None) -> float:
    """Score an encoded screenshot offline."""
    return vicram_score(load_pixels(data, config), config)


async def calculate_vicram(
    request: ComplexityTarget,
    renderer: PageRenderer,
    config: VicramConfig | None = None,
) -> VicramResult:
    """Render ``request.url`` and score its screenshot.

    ``t0``/``t1`` bracket rendering (epoch ms). Render failures propagate
    as ``RenderError``; no score is produced.
    """
    cfg = config or VicramConfig()
    t0 = now_ms()
    png = await renderer.screenshot(
        request.url,
        request.width or DEFAULT_WIDTH,
        request.height or DEFAULT_HEIGHT,
    )
    t1 = now_ms()
    score = await asyncio.to_thread(vicram_from_png, png, cfg)
    logger.info("Vicram %s: score=%.4f render=%dms", request.url, score, t1 - t0)
    return VicramResult(url=request.url, t0=t0, t1=t1, score=score)
