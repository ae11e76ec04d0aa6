# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Block tree serialization and service response envelopes.

Wire format per block (camelCase, as returned by the HTTP service):

    {xpath, role, topX, topY, width, height, whitespaceArea,
     explanation?: [{role, score, feature}], children: [...]}

``explanation`` is present only when role explanation was requested.
"""

from __future__ import annotations

import json
from typing import Any

from . import AnalysisResult, Block, Role, RoleCandidate, VicramResult


def block_to_dict(block: Block) -> dict[str, Any]:
    """Recursively convert a block tree to its wire dict."""
    data: dict[str, Any] = {
        "xpath": block.xpath,
        "role": str(block.role) if block.role is not None else None,
        "topX": block.top_x,
        "topY": block.top_y,
        "width": block.width,
        "height": block.height,
        "whitespaceArea": block.whitespace_area,
    }
    if block.explanation is not None:
        data["explanation"] = [{"role": str(c.role), "score": c.score, "feature": c.feature} for c in block.explanation]
    data["children"] = [block_to_dict(c) for c in block.children]
    return data


def to_json(block: Block, indent: int | None = 2) -> str:
    """Serialize a block tree to a JSON string.

    Args:
        block: Root of the tree to serialize
        indent: JSON indentation level (None for compact output)

    Returns:
        JSON string
    """
    return json.dumps(block_to_dict(block), ensure_ascii=False, indent=indent)


def block_from_dict(data: dict[str, Any], parent: Block | None = None) -> Block:
    """Rebuild a block tree from its wire dict.

    Parent-relative ``x``/``y`` are recovered from the absolute positions so
    the result can be fed back through geometry resolution unchanged.
    """
    top_x = data.get("topX")
    top_y = data.get("topY")
    px = parent.top_x if parent is not None and parent.top_x is not None else 0.0
    py = parent.top_y if parent is not None and parent.top_y is not None else 0.0
    role = data.get("role")
    explanation = data.get("explanation")

    block = Block(
        xpath=data.get("xpath", ""),
        x=(top_x or 0.0) - px,
        y=(top_y or 0.0) - py,
        width=float(data.get("width") or 0.0),
        height=float(data.get("height") or 0.0),
        top_x=top_x,
        top_y=top_y,
        role=Role(role) if role else None,
        whitespace_area=data.get("whitespaceArea"),
        explanation=(
            [RoleCandidate(role=Role(e["role"]), score=e["score"], feature=e["feature"]) for e in explanation]
            if explanation is not None
            else None
        ),
        parent=parent,
    )
    block.children = [block_from_dict(c, block) for c in data.get("children") or ()]
    return block


def from_json(text: str) -> Block:
    return block_from_dict(json.loads(text))


# ---------------------------------------------------------------------------
# Service envelopes
# ---------------------------------------------------------------------------


def analysis_response(result: AnalysisResult) -> dict[str, Any]:
    """Success envelope for an analysis request (timings in ms)."""
    return {
        "success": True,
        "renderingTime": round(result.rendering_ms),
        "segmentationTime": round(result.segmentation_ms),
        "reasoningTime": round(result.reasoning_ms),
        "result": block_to_dict(result.block_tree),
    }


def vicram_response(result: VicramResult, t2: int) -> dict[str, Any]:
    """Success envelope for a complexity request.

    ``t0``/``t1`` on the result bracket rendering; *t2* marks the end of
    the calculation (all epoch ms).
    """
    return {
        "success": True,
        "renderingTime": result.t1 - result.t0,
        "calculationTime": t2 - result.t1,
        "result": {"url": result.url, "t0": result.t0, "t1": result.t1, "score": result.score},
    }


def error_response(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}
