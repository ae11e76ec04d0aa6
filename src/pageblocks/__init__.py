# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Blocks: semantic layout blocks for rendered web pages.

Turns a rendered page into a tree of visual blocks labelled with layout
roles, working from geometry and style only:
- segmentation: render snapshot → block tree (visual coherence)
- geometry: absolute positions + whitespace area
- roles: Header, Footer, Navigation, Sidebar, Article, Container, Unknown

A separate estimator (Vicram) scores the visual complexity of a page.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum


class Role(StrEnum):
    """Semantic layout role of a block."""

    HEADER = "Header"
    FOOTER = "Footer"
    NAVIGATION = "Navigation"
    SIDEBAR = "Sidebar"
    ARTICLE = "Article"
    CONTAINER = "Container"
    UNKNOWN = "Unknown"


# Roles a parent block can count towards container inference
RECOGNIZED_ROLES = frozenset(r for r in Role if r is not Role.UNKNOWN)


@dataclass
class RenderNode:
    """A single rendered DOM element as captured from the browser.

    Geometry is relative to the parent node's box. The root node carries
    page-level ``attributes`` (width, height, fontSize, fontColor).
    """

    xpath: str
    tag: str = "div"
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    classes: tuple[str, ...] = ()
    element_id: str = ""
    font_size: float | None = None
    font_color: str | None = None
    background: str | None = None  # None = transparent
    border: bool = False
    clips: bool = False  # overflow != visible
    visible: bool = True
    text_length: int = 0  # own (direct) text characters
    is_link: bool = False
    children: list[RenderNode] = field(default_factory=list)
    attributes: dict = field(default_factory=dict)

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)


@dataclass(frozen=True, slots=True)
class RoleCandidate:
    """One ranked role hypothesis for a block (explain mode)."""

    role: Role
    score: float
    feature: str  # dominant contributing signal


@dataclass(slots=True)
class Block:
    """A visually coherent region of the page.

    ``x``/``y`` are offsets from the parent block; ``top_x``/``top_y`` are
    page-absolute and stay ``None`` until geometry is resolved.
    """

    xpath: str
    x: float
    y: float
    width: float
    height: float
    tag: str = ""
    tokens: tuple[str, ...] = ()  # lowercased tag/class/id tokens
    font_size: float | None = None
    font_color: str | None = None
    text_length: int = 0  # subtree totals
    link_text_length: int = 0
    link_count: int = 0
    node_count: int = 1
    top_x: float | None = None
    top_y: float | None = None
    role: Role | None = None
    whitespace_area: float | None = None
    explanation: list[RoleCandidate] | None = None
    children: list[Block] = field(default_factory=list)
    parent: Block | None = field(default=None, repr=False, compare=False)

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def is_resolved(self) -> bool:
        return self.top_x is not None and self.top_y is not None and self.whitespace_area is not None

    def iter_blocks(self) -> Iterator[Block]:
        """Pre-order traversal of this block and all descendants."""
        stack = [self]
        while stack:
            block = stack.pop()
            yield block
            stack.extend(reversed(block.children))

    def iter_post_order(self) -> Iterator[Block]:
        """Children before parents (bottom-up)."""
        stack: list[tuple[Block, bool]] = [(self, False)]
        while stack:
            block, expanded = stack.pop()
            if expanded:
                yield block
                continue
            stack.append((block, True))
            stack.extend((child, False) for child in reversed(block.children))

    def link_children(self) -> Block:
        """Re-attach parent back-references throughout the subtree."""
        for block in self.iter_blocks():
            for child in block.children:
                child.parent = block
        return self

    def to_json(self) -> dict:
        from .serializer import block_to_dict

        return block_to_dict(self)


@dataclass(frozen=True, slots=True)
class PageContext:
    """Page-level defaults the classifier normalizes against."""

    width: float
    height: float
    font_size: float | None = None
    font_color: str | None = None

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)


@dataclass
class AnalysisResult:
    """Outcome of one analysis request."""

    url: str
    block_tree: Block
    page: PageContext
    rendering_ms: float = 0.0
    segmentation_ms: float = 0.0
    reasoning_ms: float = 0.0
    stage_timing: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class VicramResult:
    """Visual complexity of a page. Timestamps are epoch milliseconds."""

    url: str
    t0: int
    t1: int
    score: float
