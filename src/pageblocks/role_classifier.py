# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Weighted-signal role classifier for segmented blocks.

Each block is reduced to an immutable ``BlockFeatures`` snapshot
(normalized position and extent, text/link density, whitespace ratio,
child statistics, vocabulary hits). A registry of signals then votes:
every fired signal adds positive *and* negative weights to several roles,
scaled by its strength in [0, 1]. Scores are normalized by 100.

Resolution order:
  1. zero-area blocks            → Unknown
  2. best score < min_score      → Unknown
  3. ties within tie_tolerance   → role with the tighter positional prior
                                   (Header < Footer < Navigation < Sidebar
                                   < Article < Container)

Blocks are visited bottom-up so the container signal can see the roles
already assigned to children. Scoring is a pure function of the feature
snapshot; there is no randomness, so re-running a pass reproduces it.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass

from . import RECOGNIZED_ROLES, Block, PageContext, Role, RoleCandidate
from .config import ClassifierConfig
from .geometry import resolve_geometry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Structural vocabulary (substring match against tag/class/id tokens)
# ---------------------------------------------------------------------------

VOCABULARY: dict[Role, tuple[str, ...]] = {
    Role.HEADER: ("header", "masthead", "banner", "topbar", "top-bar"),
    Role.FOOTER: ("footer", "copyright", "colophon"),
    Role.NAVIGATION: ("nav", "menu", "breadcrumb", "toolbar"),
    Role.SIDEBAR: ("sidebar", "side-bar", "aside", "rail"),
    Role.ARTICLE: ("article", "content", "main", "post", "story", "entry"),
}

# Lower rank = tighter positional prior (wins ties)
POSITIONAL_VARIANCE: dict[Role, int] = {
    Role.HEADER: 0,
    Role.FOOTER: 1,
    Role.NAVIGATION: 2,
    Role.SIDEBAR: 3,
    Role.ARTICLE: 4,
    Role.CONTAINER: 5,
    Role.UNKNOWN: 6,
}

_SCORED_ROLES: tuple[Role, ...] = (
    Role.HEADER,
    Role.FOOTER,
    Role.NAVIGATION,
    Role.SIDEBAR,
    Role.ARTICLE,
    Role.CONTAINER,
)

_ALIGN_TOLERANCE = 2.0  # px

# ---------------------------------------------------------------------------
# Feature snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BlockFeatures:
    """Everything role scoring may look at, normalized to the page."""

    top: float
    bottom: float
    left: float
    right: float
    center_x: float
    rel_width: float
    rel_height: float
    area_ratio: float
    aspect: float  # height / width
    font_size_delta: float  # relative to the page default
    font_color_differs: bool
    whitespace_ratio: float
    text_density: float
    link_density: float
    text_length: int
    link_count: int
    child_count: int
    small_child_ratio: float
    children_aligned: bool
    child_roles: frozenset[Role]
    token_hits: frozenset[Role]
    is_leaf: bool


def match_vocabulary(tokens: tuple[str, ...] | list[str]) -> frozenset[Role]:
    """Roles whose vocabulary term occurs as a substring of any token."""
    lowered = [t.lower() for t in tokens]
    return frozenset(role for role, terms in VOCABULARY.items() if any(term in tok for tok in lowered for term in terms))


def _children_aligned(block: Block) -> bool:
    kids = block.children
    if len(kids) < 2:
        return False
    tops = [k.top_y or 0.0 for k in kids]
    lefts = [k.top_x or 0.0 for k in kids]
    return max(tops) - min(tops) <= _ALIGN_TOLERANCE or max(lefts) - min(lefts) <= _ALIGN_TOLERANCE


def extract_features(block: Block, page: PageContext, config: ClassifierConfig | None = None) -> BlockFeatures:
    """Feature snapshot of a geometry-resolved block."""
    cfg = config or ClassifierConfig()
    page_w = page.width if page.width > 0 else 1.0
    page_h = page.height if page.height > 0 else 1.0
    area = block.area
    top_x = block.top_x or 0.0
    top_y = block.top_y or 0.0

    page_font = page.font_size or cfg.default_font_size
    font = block.font_size or page_font
    glyph_area = (font * cfg.glyph_width_factor) * (font * cfg.line_height_factor)
    text_density = min(1.0, block.text_length * glyph_area / area) if area > 0 else 0.0

    if block.is_leaf:
        whitespace_ratio = 1.0 - text_density
    elif area > 0 and block.whitespace_area is not None:
        whitespace_ratio = block.whitespace_area / area
    else:
        whitespace_ratio = 1.0

    if block.text_length > 0:
        link_density = block.link_text_length / block.text_length
    else:
        link_density = block.link_count / max(block.node_count, 1)

    kids = block.children
    small = sum(1 for k in kids if area > 0 and k.area / area < cfg.small_child_ratio)

    return BlockFeatures(
        top=top_y / page_h,
        bottom=(top_y + block.height) / page_h,
        left=top_x / page_w,
        right=(top_x + block.width) / page_w,
        center_x=(top_x + block.width / 2) / page_w,
        rel_width=block.width / page_w,
        rel_height=block.height / page_h,
        area_ratio=area / (page_w * page_h),
        aspect=block.height / block.width if block.width > 0 else 0.0,
        font_size_delta=(font - page_font) / page_font if page_font else 0.0,
        font_color_differs=(
            block.font_color is not None and page.font_color is not None and block.font_color != page.font_color
        ),
        whitespace_ratio=min(max(whitespace_ratio, 0.0), 1.0),
        text_density=text_density,
        link_density=min(link_density, 1.0),
        text_length=block.text_length,
        link_count=block.link_count,
        child_count=len(kids),
        small_child_ratio=small / len(kids) if kids else 0.0,
        children_aligned=_children_aligned(block),
        child_roles=frozenset(k.role for k in kids if k.role in RECOGNIZED_ROLES),
        token_hits=match_vocabulary(block.tokens),
        is_leaf=block.is_leaf,
    )


# ---------------------------------------------------------------------------
# Signal registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RoleSignal:
    """A feature test that contributes weighted votes to one or more roles."""

    name: str
    scores: dict[Role, int]  # {role: weight}, positive or negative
    strength: Callable[[BlockFeatures, ClassifierConfig], float]  # 0 = not fired


def _when(cond: bool, value: float = 1.0) -> float:
    return value if cond else 0.0


def _near_top(f: BlockFeatures, c: ClassifierConfig) -> float:
    if f.top > c.edge_band or f.rel_height > c.short_height_ratio:
        return 0.0
    return 1.0 - 0.5 * (f.top / c.edge_band)


def _near_bottom(f: BlockFeatures, c: ClassifierConfig) -> float:
    gap = 1.0 - f.bottom
    if gap > c.edge_band or f.rel_height > c.short_height_ratio or f.top < 0.5:
        return 0.0
    return 1.0 - 0.5 * (max(gap, 0.0) / c.edge_band)


def _has_token(role: Role) -> Callable[[BlockFeatures, ClassifierConfig], float]:
    return lambda f, c: _when(role in f.token_hits)


SIGNALS: tuple[RoleSignal, ...] = (
    # ---- position / extent ----
    RoleSignal("near_top", {Role.HEADER: 30, Role.FOOTER: -20}, _near_top),
    RoleSignal("near_bottom", {Role.FOOTER: 30, Role.HEADER: -20}, _near_bottom),
    RoleSignal(
        "full_width",
        {Role.HEADER: 15, Role.FOOTER: 15, Role.SIDEBAR: -25},
        lambda f, c: _when(f.rel_width >= c.full_width_ratio),
    ),
    RoleSignal(
        "short_strip",
        {Role.HEADER: 10, Role.FOOTER: 10, Role.NAVIGATION: 5},
        lambda f, c: _when(f.rel_height <= c.short_height_ratio and f.rel_width >= 0.5),
    ),
    RoleSignal(
        "narrow_column",
        {Role.SIDEBAR: 20, Role.ARTICLE: -10, Role.HEADER: -15, Role.FOOTER: -15},
        lambda f, c: _when(0.05 < f.rel_width <= c.narrow_width_ratio and f.rel_height >= c.short_height_ratio),
    ),
    RoleSignal(
        "tall_aspect",
        {Role.SIDEBAR: 15, Role.NAVIGATION: 5},
        lambda f, c: _when(f.aspect >= c.tall_aspect),
    ),
    RoleSignal(
        "side_third",
        {Role.SIDEBAR: 15, Role.ARTICLE: -5},
        lambda f, c: _when(f.rel_width <= 1 / 3 and (f.center_x < 1 / 3 or f.center_x > 2 / 3)),
    ),
    RoleSignal(
        "central",
        {Role.ARTICLE: 15},
        lambda f, c: _when(1 / 3 <= f.center_x <= 2 / 3),
    ),
    RoleSignal(
        "large_area",
        {Role.ARTICLE: 20, Role.CONTAINER: 10},
        lambda f, c: _when(f.area_ratio >= c.large_area_ratio),
    ),
    RoleSignal(
        "small_area",
        {Role.HEADER: -20, Role.FOOTER: -20, Role.SIDEBAR: -20, Role.ARTICLE: -20, Role.CONTAINER: -20},
        lambda f, c: _when(f.area_ratio < 0.01),
    ),
    # ---- style ----
    RoleSignal(
        "larger_font",
        {Role.HEADER: 5},
        lambda f, c: _when(f.font_size_delta >= 0.25),
    ),
    RoleSignal(
        "distinct_color",
        {Role.HEADER: 5, Role.FOOTER: 5, Role.NAVIGATION: 5},
        lambda f, c: _when(f.font_color_differs),
    ),
    # ---- content ----
    RoleSignal(
        "text_dense",
        {Role.ARTICLE: 25, Role.NAVIGATION: -10},
        lambda f, c: _when(f.text_density >= c.text_density_threshold and f.link_density < c.link_density_threshold),
    ),
    RoleSignal(
        "low_whitespace",
        {Role.ARTICLE: 10},
        lambda f, c: _when(f.text_length > 0 and f.whitespace_ratio <= c.low_whitespace_ratio),
    ),
    RoleSignal(
        "link_dense",
        {Role.NAVIGATION: 30, Role.ARTICLE: -15},
        lambda f, c: _when(
            f.link_density >= c.link_density_threshold and f.link_count >= c.min_nav_links,
            f.link_density,
        ),
    ),
    RoleSignal(
        "many_small_children",
        {Role.NAVIGATION: 15},
        lambda f, c: _when(f.child_count >= 3 and f.small_child_ratio >= 0.6 and f.link_count >= c.min_nav_links),
    ),
    RoleSignal(
        "aligned_children",
        {Role.NAVIGATION: 10},
        lambda f, c: _when(f.child_count >= 3 and f.children_aligned),
    ),
    # ---- structure ----
    RoleSignal(
        "wraps_roles",
        {
            Role.CONTAINER: 80,
            Role.ARTICLE: -30,
            Role.HEADER: -30,
            Role.FOOTER: -30,
            Role.NAVIGATION: -20,
            Role.SIDEBAR: -20,
        },
        lambda f, c: _when(len(f.child_roles) >= 2 and f.area_ratio >= c.container_area_ratio),
    ),
    # ---- vocabulary ----
    RoleSignal("token_header", {Role.HEADER: 35}, _has_token(Role.HEADER)),
    RoleSignal("token_footer", {Role.FOOTER: 35}, _has_token(Role.FOOTER)),
    RoleSignal("token_nav", {Role.NAVIGATION: 50, Role.HEADER: -20}, _has_token(Role.NAVIGATION)),
    RoleSignal("token_sidebar", {Role.SIDEBAR: 35}, _has_token(Role.SIDEBAR)),
    RoleSignal("token_article", {Role.ARTICLE: 35}, _has_token(Role.ARTICLE)),
)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RoleDecision:
    """Winning role plus the full ranked candidate list."""

    role: Role
    score: float
    candidates: tuple[RoleCandidate, ...]


def score_roles(features: BlockFeatures, config: ClassifierConfig | None = None) -> tuple[RoleCandidate, ...]:
    """Score every role; ranked by score, then positional variance."""
    cfg = config or ClassifierConfig()
    raw: dict[Role, float] = dict.fromkeys(_SCORED_ROLES, 0.0)
    best_signal: dict[Role, tuple[float, str]] = {}

    for sig in SIGNALS:
        strength = sig.strength(features, cfg)
        if strength <= 0:
            continue
        for role, weight in sig.scores.items():
            contribution = weight * strength
            raw[role] += contribution
            if contribution > 0 and contribution > best_signal.get(role, (0.0, ""))[0]:
                best_signal[role] = (contribution, sig.name)

    candidates = [
        RoleCandidate(
            role=role,
            score=round(raw[role] / 100.0, 4),
            feature=best_signal.get(role, (0.0, "none"))[1],
        )
        for role in _SCORED_ROLES
    ]
    candidates.sort(key=lambda c: (-c.score, POSITIONAL_VARIANCE[c.role]))
    return tuple(candidates)


def classify_block(features: BlockFeatures, config: ClassifierConfig | None = None) -> RoleDecision:
    """Pick the winning role for one feature snapshot."""
    cfg = config or ClassifierConfig()
    if features.area_ratio <= 0:
        return RoleDecision(role=Role.UNKNOWN, score=0.0, candidates=())

    candidates = score_roles(features, cfg)
    best = candidates[0]
    if best.score < cfg.min_score:
        return RoleDecision(role=Role.UNKNOWN, score=best.score, candidates=candidates)

    contenders = [c for c in candidates if best.score - c.score <= cfg.tie_tolerance]
    winner = min(contenders, key=lambda c: POSITIONAL_VARIANCE[c.role])
    return RoleDecision(role=winner.role, score=winner.score, candidates=candidates)


def detect_roles(
    block_tree: Block,
    page_width: float,
    page_height: float,
    font_size: float | None = None,
    font_color: str | None = None,
    explain: bool = False,
    config: ClassifierConfig | None = None,
) -> Block:
    """Assign a role to every block of the tree, children before parents.

    An unresolved tree is passed through ``resolve_geometry`` first, so
    scoring always reads page-absolute positions.

    Returns:
        The classified tree (the resolved tree, roles set in place).
    """
    cfg = config or ClassifierConfig()
    if not block_tree.is_resolved:
        logger.debug("Block tree geometry unresolved, resolving before classification")
        block_tree = resolve_geometry(block_tree)

    page = PageContext(
        width=float(page_width or 0),
        height=float(page_height or 0),
        font_size=font_size or cfg.default_font_size,
        font_color=font_color,
    )
    page_degenerate = page.area <= 0

    for block in block_tree.iter_post_order():
        if page_degenerate:
            block.role = Role.UNKNOWN
            block.explanation = [] if explain else None
            continue
        decision = classify_block(extract_features(block, page, cfg), cfg)
        block.role = decision.role
        block.explanation = list(decision.candidates) if explain else None

    counts = Counter(b.role for b in block_tree.iter_blocks())
    logger.info(
        "Roles detected: %s",
        ", ".join(f"{role}={n}" for role, n in sorted(counts.items(), key=lambda kv: POSITIONAL_VARIANCE[kv[0]])),
    )
    return block_tree
