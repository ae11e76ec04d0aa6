# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Vision-based page segmentation: render snapshot → block tree.

Recursive decomposition driven by visual coherence between siblings:

  1. Prepare   – absolute boxes clipped by overflow-clipping ancestors;
                 drop invisible and off-page nodes, lift the children of
                 zero-size wrappers; aggregate text and link counts
  2. Coherence – similarity of each adjacent sibling pair from whitespace
                 gaps, background/border discontinuities, font changes, tags
  3. Split     – heterogeneous children break into runs of mutually
                 coherent siblings (one block per run); homogeneous children
                 stay together and are only descended while the block is
                 larger than the leaf area
  4. Emit      – block geometry is stored relative to the parent block so
                 the geometry resolver can rebuild page coordinates

The root block always covers the full page. An empty or zero-area page
yields a root-only tree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import pairwise

from . import Block, RenderNode
from .config import SegmenterConfig

logger = logging.getLogger(__name__)

_EDGE_EPS = 0.5  # px slack when deciding stacked vs side-by-side


# ---------------------------------------------------------------------------
# Prepared boxes
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _Box:
    """A visible render node with page-absolute, clipped geometry."""

    node: RenderNode
    left: float
    top: float
    right: float
    bottom: float
    clip: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)  # (left, top, right, bottom) it was cut by
    children: list[_Box] = field(default_factory=list)
    text_length: int = 0
    link_text_length: int = 0
    link_count: int = 0
    node_count: int = 1

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return self.width * self.height


def _aggregate(box: _Box) -> _Box:
    node = box.node
    text = node.text_length + sum(c.text_length for c in box.children)
    box.text_length = text
    box.link_text_length = text if node.is_link else sum(c.link_text_length for c in box.children)
    box.link_count = int(node.is_link) + sum(c.link_count for c in box.children)
    box.node_count = 1 + sum(c.node_count for c in box.children)
    return box


def _overflow(box: _Box) -> None:
    """Grow a non-clipping box over its children, within its own clip."""
    if box.node.clips or not box.children:
        return
    box.left = max(min(box.left, *(c.left for c in box.children)), box.clip[0])
    box.top = max(min(box.top, *(c.top for c in box.children)), box.clip[1])
    box.right = min(max(box.right, *(c.right for c in box.children)), box.clip[2])
    box.bottom = min(max(box.bottom, *(c.bottom for c in box.children)), box.clip[3])


def _prepare_root(node: RenderNode, page_width: float, page_height: float) -> _Box:
    """Build the visible box tree under the page root.

    Walks the snapshot iteratively so nesting depth is unbounded:

    - invisible nodes are dropped with their subtree
    - a node with no visible area of its own (zero size, or outside the
      current clip) is not a box; unless it clips, its children are lifted
      into the nearest enclosing box
    - only clipping ancestors (and the page) cut descendants; a
      non-clipping box grows over its overflowing children so every child
      box stays inside its parent's
    """
    page_clip = (0.0, 0.0, page_width, page_height)
    root = _Box(node=node, left=0.0, top=0.0, right=page_width, bottom=page_height, clip=page_clip)
    if page_width <= 0 or page_height <= 0:
        return _aggregate(root)

    boxes: list[_Box] = []  # pre-order
    # (node, abs_x, abs_y, clip, enclosing box)
    stack = [(child, child.x, child.y, page_clip, root) for child in reversed(node.children)]
    while stack:
        current, abs_x, abs_y, clip, host = stack.pop()
        if not current.visible:
            continue
        left = max(abs_x, clip[0])
        top = max(abs_y, clip[1])
        right = min(abs_x + max(current.width, 0.0), clip[2])
        bottom = min(abs_y + max(current.height, 0.0), clip[3])

        if right <= left or bottom <= top:
            if current.clips:
                continue
            target, child_clip = host, clip
        else:
            target = _Box(node=current, left=left, top=top, right=right, bottom=bottom, clip=clip)
            host.children.append(target)
            boxes.append(target)
            child_clip = (left, top, right, bottom) if current.clips else clip

        stack.extend(
            (child, abs_x + child.x, abs_y + child.y, child_clip, target) for child in reversed(current.children)
        )

    for box in reversed(boxes):
        _overflow(box)
        _aggregate(box)
    return _aggregate(root)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def common_ancestor(xpaths: list[str]) -> str:
    """Nearest common ancestor of xpath-like identifiers (segment prefix)."""
    if not xpaths:
        return ""
    split = [p.split("/") for p in xpaths]
    prefix: list[str] = []
    for segments in zip(*split, strict=False):
        if all(s == segments[0] for s in segments):
            prefix.append(segments[0])
        else:
            break
    joined = "/".join(prefix)
    return joined or "/"


def _tokens(nodes: list[RenderNode]) -> tuple[str, ...]:
    out: list[str] = []
    for node in nodes:
        for token in (node.tag, *node.classes, node.element_id):
            token = token.strip().lower()
            if token and token not in out:
                out.append(token)
    return tuple(out)


def _gap(a: _Box, b: _Box) -> float:
    """Whitespace between two boxes along the axis that separates them (0 if overlapping)."""
    if a.bottom <= b.top + _EDGE_EPS:
        return b.top - a.bottom
    if b.bottom <= a.top + _EDGE_EPS:
        return a.top - b.bottom
    if a.right <= b.left + _EDGE_EPS:
        return b.left - a.right
    if b.right <= a.left + _EDGE_EPS:
        return a.left - b.right
    return 0.0


# ---------------------------------------------------------------------------
# Segmenter
# ---------------------------------------------------------------------------


class _Segmenter:
    """Single-use decomposition state for one page."""

    def __init__(self, config: SegmenterConfig, page_area: float) -> None:
        self.config = config
        self.leaf_area = page_area * config.leaf_area_ratio

    def similarity(self, a: _Box, b: _Box) -> float:
        """Visual similarity of two adjacent siblings in [0, 1]."""
        cfg = self.config
        gap_sim = 1.0 - min(max(_gap(a, b), 0.0) / cfg.gap_threshold, 1.0)
        bg_sim = 1.0 if a.node.background == b.node.background else 0.0
        border_sim = 1.0 if a.node.border == b.node.border else 0.0
        fa, fb = a.node.font_size, b.node.font_size
        font_sim = 1.0 if fa is None or fb is None else 1.0 - min(abs(fa - fb) / cfg.font_size_tolerance, 1.0)
        ca, cb = a.node.font_color, b.node.font_color
        color_sim = 1.0 if ca is None or cb is None or ca == cb else 0.0
        tag_sim = 1.0 if a.node.tag == b.node.tag else 0.0
        return (
            cfg.gap_weight * gap_sim
            + cfg.background_weight * bg_sim
            + cfg.border_weight * border_sim
            + cfg.font_size_weight * font_sim
            + cfg.font_color_weight * color_sim
            + cfg.tag_weight * tag_sim
        )

    def coherence(self, kids: list[_Box]) -> tuple[float, list[float]]:
        sims = [self.similarity(a, b) for a, b in pairwise(kids)]
        if not sims:
            return 1.0, sims
        return sum(sims) / len(sims), sims

    def _is_divisible(self, box: _Box, depth: int) -> bool:
        cfg = self.config
        if not box.children or depth >= cfg.max_depth or box.area < cfg.min_block_area:
            return False
        return any(k.area >= cfg.min_block_area for k in box.children)

    def _dissolvable(self, box: _Box, parent: _Box, depth: int) -> bool:
        """A wrapper without its own visual boundary whose children disagree."""
        node = box.node
        if node.border or (node.background is not None and node.background != parent.node.background):
            return False
        if len(box.children) < 2 or not self._is_divisible(box, depth):
            return False
        coherence, _ = self.coherence(box.children)
        return coherence < self.config.coherence_threshold

    def node_block(self, box: _Box, depth: int) -> Block:
        return _make_block([box], box.node.xpath, box, self.content(box, depth))

    def content(self, box: _Box, depth: int) -> list[Block]:
        """Sub-blocks of *box*; empty when *box* is a leaf."""
        kids = box.children
        if len(kids) == 1:
            # Single-child wrapper: the child's content is this box's content
            return self.content(kids[0], depth + 1) if self._is_divisible(box, depth) else []
        if not self._is_divisible(box, depth):
            return []

        cfg = self.config
        coherence, sims = self.coherence(kids)
        if coherence >= cfg.coherence_threshold:
            if box.area <= self.leaf_area:
                return []
            return [self.node_block(k, depth + 1) for k in kids if k.area >= cfg.min_block_area]

        runs: list[list[_Box]] = [[kids[0]]]
        for kid, sim in zip(kids[1:], sims, strict=True):
            if sim >= cfg.coherence_threshold:
                runs[-1].append(kid)
            else:
                runs.append([kid])

        blocks: list[Block] = []
        for run in runs:
            if len(run) == 1:
                kid = run[0]
                if kid.area < cfg.min_block_area:
                    continue
                if self._dissolvable(kid, box, depth + 1):
                    blocks.extend(self.content(kid, depth + 1))
                else:
                    blocks.append(self.node_block(kid, depth + 1))
                continue

            bounds = _Box(
                node=run[0].node,
                left=min(k.left for k in run),
                top=min(k.top for k in run),
                right=max(k.right for k in run),
                bottom=max(k.bottom for k in run),
            )
            if bounds.area < cfg.min_block_area:
                continue
            children: list[Block] = []
            if bounds.area > self.leaf_area and depth + 1 < cfg.max_depth:
                children = [self.node_block(k, depth + 2) for k in run if k.area >= cfg.min_block_area]
            xpath = common_ancestor([k.node.xpath for k in run])
            blocks.append(_make_block(run, xpath, bounds, children))
        return blocks


def _make_block(sources: list[_Box], xpath: str, bounds: _Box, children: list[Block]) -> Block:
    """Block with page-absolute geometry in x/y (made relative by _relativize)."""
    nodes = [s.node for s in sources]
    font_size = next((n.font_size for n in nodes if n.font_size is not None), None)
    font_color = next((n.font_color for n in nodes if n.font_color is not None), None)
    return Block(
        xpath=xpath,
        x=bounds.left,
        y=bounds.top,
        width=bounds.width,
        height=bounds.height,
        tag=nodes[0].tag if len(nodes) == 1 else "",
        tokens=_tokens(nodes),
        font_size=font_size,
        font_color=font_color,
        text_length=sum(s.text_length for s in sources),
        link_text_length=sum(s.link_text_length for s in sources),
        link_count=sum(s.link_count for s in sources),
        node_count=sum(s.node_count for s in sources),
        children=children,
    )


def _relativize(root: Block) -> None:
    stack = [(root, 0.0, 0.0)]
    while stack:
        block, parent_x, parent_y = stack.pop()
        abs_x, abs_y = block.x, block.y
        stack.extend((child, abs_x, abs_y) for child in block.children)
        block.x = abs_x - parent_x
        block.y = abs_y - parent_y


def _page_dimension(value: object, fallback: float) -> float:
    if value is None:
        return float(max(fallback, 0))
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return float(max(fallback, 0))


def segment(
    render_tree: RenderNode,
    viewport_width: float,
    viewport_height: float,
    config: SegmenterConfig | None = None,
) -> Block:
    """Decompose a render snapshot into a block tree.

    Page size comes from the root's ``width``/``height`` attributes, falling
    back to the viewport when the snapshot does not report one.

    Returns:
        Root Block covering {0, 0, page_width, page_height}; child geometry
        is parent-relative and roles are unassigned.
    """
    cfg = config or SegmenterConfig()
    attrs = render_tree.attributes or {}
    page_width = _page_dimension(attrs.get("width"), viewport_width)
    page_height = _page_dimension(attrs.get("height"), viewport_height)

    root_box = _prepare_root(render_tree, page_width, page_height)
    if root_box.area <= 0 or not root_box.children:
        logger.debug(
            "Degenerate snapshot (%.0fx%.0f, %d visible children): root-only block tree",
            page_width,
            page_height,
            len(root_box.children),
        )
        root = _make_block([root_box], render_tree.xpath, root_box, [])
        return root.link_children()

    seg = _Segmenter(cfg, root_box.area)
    children = seg.content(root_box, 0)
    root = _make_block([root_box], render_tree.xpath, root_box, children)
    _relativize(root)
    block_count = sum(1 for _ in root.iter_blocks())
    logger.debug("Segmented %s into %d blocks", render_tree.xpath or "(root)", block_count)
    return root.link_children()
