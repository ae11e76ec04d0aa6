# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Analysis orchestration: render → segment → resolve geometry → classify.

``analyze_render_tree`` is the offline, fully synchronous pipeline over a
snapshot. ``analyze_url`` adds the rendering stage in front of it; the render
call is the only suspension point.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from . import AnalysisResult, PageContext, RenderNode
from .config import LEGACY_USER_AGENT, ClassifierConfig, SegmenterConfig
from .geometry import resolve_geometry
from .pipeline_timer import PipelineTimer
from .role_classifier import detect_roles
from .segmenter import segment

if TYPE_CHECKING:
    from .renderer import PageRenderer
    from .schemas import AnalysisRequest

logger = logging.getLogger(__name__)


def effective_user_agent(requested: str | None, legacy: bool = True) -> str | None:
    """User agent actually sent to the browser.

    In legacy mode any supplied value is replaced by ``LEGACY_USER_AGENT``;
    an absent value always keeps the browser default.
    """
    if not requested:
        return None
    return LEGACY_USER_AGENT if legacy else requested


def page_context(render_tree: RenderNode, width: float, height: float) -> PageContext:
    """Page dimensions and default font from the snapshot root, viewport as fallback."""
    attrs = render_tree.attributes or {}
    page_width = attrs.get("width")
    page_height = attrs.get("height")
    font_size = attrs.get("fontSize")
    return PageContext(
        width=float(page_width) if page_width is not None else float(width),
        height=float(page_height) if page_height is not None else float(height),
        font_size=float(font_size) if font_size is not None else None,
        font_color=attrs.get("fontColor"),
    )


def analyze_render_tree(
    render_tree: RenderNode,
    width: float,
    height: float,
    explain: bool = False,
    *,
    url: str = "",
    segmenter_config: SegmenterConfig | None = None,
    classifier_config: ClassifierConfig | None = None,
    timer: PipelineTimer | None = None,
) -> AnalysisResult:
    """Run segmentation, geometry and role classification on a snapshot."""
    timer = timer or PipelineTimer()
    page = page_context(render_tree, width, height)

    timer.stage("segmentation")
    tree = segment(render_tree, width, height, segmenter_config)

    timer.stage("geometry")
    tree = resolve_geometry(tree)

    timer.stage("reasoning")
    tree = detect_roles(
        tree,
        page.width,
        page.height,
        page.font_size,
        page.font_color,
        explain=explain,
        config=classifier_config,
    )
    timer.finalize()

    timing = timer.elapsed_per_stage()
    return AnalysisResult(
        url=url,
        block_tree=tree,
        page=page,
        rendering_ms=timing.get("rendering", 0.0),
        # Geometry resolution is reported as part of segmentation
        segmentation_ms=timing.get("segmentation", 0.0) + timing.get("geometry", 0.0),
        reasoning_ms=timing.get("reasoning", 0.0),
        stage_timing=timing,
    )


async def analyze_url(
    request: AnalysisRequest,
    renderer: PageRenderer,
    *,
    legacy_user_agent: bool = True,
    segmenter_config: SegmenterConfig | None = None,
    classifier_config: ClassifierConfig | None = None,
    timer: PipelineTimer | None = None,
) -> AnalysisResult:
    """Render ``request.url`` and analyze it.

    On failure the ``rendering`` stage is left running on *timer* so the
    caller can report where the request stopped.

    Raises:
        RenderError: the page could not be rendered (``RenderTimeoutError`` on timeout).
    """
    timer = timer or PipelineTimer()
    timer.stage("rendering")
    render_tree = await renderer.retrieve(
        request.url,
        request.width,
        request.height,
        user_agent=effective_user_agent(request.user_agent, legacy_user_agent),
        wait_ms=request.wait,
    )

    result = analyze_render_tree(
        render_tree,
        request.width,
        request.height,
        request.explain_roles,
        url=request.url,
        segmenter_config=segmenter_config,
        classifier_config=classifier_config,
        timer=timer,
    )
    logger.info(
        "Analyzed %s: %d blocks (render=%.0fms seg=%.0fms roles=%.0fms)",
        request.url,
        sum(1 for _ in result.block_tree.iter_blocks()),
        result.rendering_ms,
        result.segmentation_ms,
        result.reasoning_ms,
    )
    return result
