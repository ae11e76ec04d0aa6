# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Geometry resolution over a block tree.

Two ordered passes, each returning a rebuilt tree and leaving its input
untouched:

  1. set_location_data        – parent-relative offsets → page coordinates
  2. calculate_whitespace_area – area not covered by child boxes

``resolve_geometry`` runs both. Role scoring reads page-absolute position,
so it must only ever see the output of this module.
"""

from __future__ import annotations

import dataclasses
from itertools import pairwise

from . import Block


def _rebuild(block: Block, children: list[Block], **changes) -> Block:
    return dataclasses.replace(block, children=children, parent=None, **changes)


def set_location_data(tree: Block) -> Block:
    """Accumulate ancestor offsets into absolute ``top_x``/``top_y``."""
    root = _rebuild(tree, [], top_x=tree.x, top_y=tree.y)
    stack = [(tree, root)]
    while stack:
        source, located = stack.pop()
        for child in source.children:
            copy = _rebuild(child, [], top_x=located.top_x + child.x, top_y=located.top_y + child.y)
            located.children.append(copy)
            stack.append((child, copy))
    return root.link_children()


def union_area(rects: list[tuple[float, float, float, float]]) -> float:
    """Area covered by the union of (left, top, right, bottom) rectangles.

    Column sweep over the distinct x edges; within each column the covered
    y intervals are merged.
    """
    rects = [r for r in rects if r[2] > r[0] and r[3] > r[1]]
    if not rects:
        return 0.0
    xs = sorted({x for r in rects for x in (r[0], r[2])})
    total = 0.0
    for x0, x1 in pairwise(xs):
        spans = sorted((r[1], r[3]) for r in rects if r[0] <= x0 and r[2] >= x1)
        covered = 0.0
        cur_start: float | None = None
        cur_end = 0.0
        for start, end in spans:
            if cur_start is None or start > cur_end:
                if cur_start is not None:
                    covered += cur_end - cur_start
                cur_start, cur_end = start, end
            else:
                cur_end = max(cur_end, end)
        if cur_start is not None:
            covered += cur_end - cur_start
        total += (x1 - x0) * covered
    return total


def _whitespace(block: Block) -> float:
    area = block.area
    if not block.children:
        return area
    # Child boxes clipped to this block; overlaps counted once
    rects = [
        (
            max(c.x, 0.0),
            max(c.y, 0.0),
            min(c.x + c.width, block.width),
            min(c.y + c.height, block.height),
        )
        for c in block.children
    ]
    covered = union_area(rects)
    return min(max(area - covered, 0.0), area)


def calculate_whitespace_area(tree: Block, recursive: bool = True) -> Block:
    """Compute ``whitespace_area`` for every block.

    Children contribute their bounding-box area only, never their own
    internal whitespace, so blocks can be computed in any order. With
    ``recursive=False`` only the root is (re)computed and descendants keep
    their current values.
    """
    root = _rebuild(tree, [], whitespace_area=_whitespace(tree))
    stack = [(tree, root)]
    while stack:
        source, rebuilt = stack.pop()
        for child in source.children:
            changes = {"whitespace_area": _whitespace(child)} if recursive else {}
            copy = _rebuild(child, [], **changes)
            rebuilt.children.append(copy)
            stack.append((child, copy))
    return root.link_children()


def resolve_geometry(tree: Block) -> Block:
    """Absolute positions, then whitespace areas."""
    return calculate_whitespace_area(set_location_data(tree), recursive=True)
