# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Render snapshot capture and (de)serialization.

A single ``page.evaluate`` walks the rendered DOM and returns a nested JSON
tree: parent-relative boxes, computed style hints, an xpath per element,
visibility, own text length and a link flag. The root carries page-level
attributes (scroll size, default font size/color).

The same JSON shape is used for offline snapshot files, so
``parse_render_tree`` / ``render_tree_to_dict`` round-trip it.
"""

from __future__ import annotations

import logging
from typing import Any

from playwright.async_api import Page

from . import RenderNode
from .errors import ResourceExhaustionError

logger = logging.getLogger(__name__)

MAX_RENDER_NODES = 20_000
MAX_RENDER_DEPTH = 512

_RENDER_TREE_JS = """\
([maxNodes, maxDepth]) => {
  const SKIP = new Set(["script", "style", "noscript", "template", "link", "meta", "head", "title"]);
  let count = 0;
  let truncated = false;
  let tooDeep = false;

  function xpathOf(el) {
    if (el === document.documentElement) return "/html";
    const parent = el.parentElement;
    if (!parent) return "/" + el.localName;
    let index = 1;
    let same = 0;
    for (const sib of parent.children) {
      if (sib.localName === el.localName) {
        same++;
        if (sib === el) index = same;
      }
    }
    const seg = same > 1 ? el.localName + "[" + index + "]" : el.localName;
    return xpathOf(parent) + "/" + seg;
  }

  function ownText(el) {
    let n = 0;
    for (const c of el.childNodes) {
      if (c.nodeType === Node.TEXT_NODE) n += c.textContent.trim().length;
    }
    return n;
  }

  function hasBorder(cs) {
    return ["Top", "Right", "Bottom", "Left"].some(
      s => parseFloat(cs["border" + s + "Width"]) > 0 && cs["border" + s + "Style"] !== "none"
    );
  }

  function background(cs) {
    const bg = cs.backgroundColor;
    if (!bg || bg === "transparent" || bg === "rgba(0, 0, 0, 0)") {
      return cs.backgroundImage && cs.backgroundImage !== "none" ? "image" : null;
    }
    return bg;
  }

  function walk(el, parentRect, path, depth) {
    if (depth > maxDepth) { tooDeep = true; return null; }
    if (count >= maxNodes) { truncated = true; return null; }
    count++;
    const cs = getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    const node = {
      xpath: path,
      tag: el.localName,
      x: rect.left - parentRect.left,
      y: rect.top - parentRect.top,
      width: rect.width,
      height: rect.height,
      classes: Array.from(el.classList || []),
      id: el.id || "",
      fontSize: parseFloat(cs.fontSize) || null,
      fontColor: cs.color || null,
      background: background(cs),
      border: hasBorder(cs),
      clips: cs.overflow !== "visible",
      visible: cs.display !== "none" && cs.visibility !== "hidden" && cs.opacity !== "0",
      textLength: ownText(el),
      isLink: el.localName === "a" && el.hasAttribute("href"),
      children: []
    };
    const seen = {};
    for (const child of el.children) {
      if (SKIP.has(child.localName)) continue;
      seen[child.localName] = (seen[child.localName] || 0) + 1;
      const total = Array.from(el.children).filter(c => c.localName === child.localName).length;
      const seg = total > 1 ? child.localName + "[" + seen[child.localName] + "]" : child.localName;
      const sub = walk(child, rect, path + "/" + seg, depth + 1);
      if (sub) node.children.push(sub);
    }
    return node;
  }

  const body = document.body || document.documentElement;
  const origin = {left: -window.scrollX, top: -window.scrollY};
  const root = walk(body, origin, xpathOf(body), 0);
  const doc = document.documentElement;
  const bodyStyle = getComputedStyle(body);
  // Root spans the whole page: re-anchor its children at the page origin
  for (const child of root.children) {
    child.x += root.x;
    child.y += root.y;
  }
  root.x = 0;
  root.y = 0;
  root.width = Math.max(doc.scrollWidth, body.scrollWidth);
  root.height = Math.max(doc.scrollHeight, body.scrollHeight);
  root.attributes = {
    width: root.width,
    height: root.height,
    fontSize: parseFloat(bodyStyle.fontSize) || null,
    fontColor: bodyStyle.color || null
  };
  return {root: root, nodeCount: count, truncated: truncated, tooDeep: tooDeep};
}
"""


async def capture_render_tree(
    page: Page,
    max_nodes: int = MAX_RENDER_NODES,
    max_depth: int = MAX_RENDER_DEPTH,
) -> RenderNode:
    """Evaluate the snapshot script on *page* and parse the result.

    Raises:
        ResourceExhaustionError: the page has more rendered elements than
            *max_nodes*, or nests them deeper than *max_depth*.
    """
    result = await page.evaluate(_RENDER_TREE_JS, [max_nodes, max_depth])
    if result.get("truncated"):
        raise ResourceExhaustionError(
            f"Page has more than {max_nodes:,} rendered elements",
            url=page.url,
        )
    if result.get("tooDeep"):
        raise ResourceExhaustionError(
            f"Page nests rendered elements deeper than {max_depth:,} levels",
            url=page.url,
        )
    logger.debug("Render snapshot captured: %d nodes", result.get("nodeCount", 0))
    return parse_render_tree(result["root"])


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_node(data: dict[str, Any]) -> RenderNode:
    font_size = data.get("fontSize")
    classes = data.get("classes") or ()
    if isinstance(classes, str):
        classes = classes.split()
    return RenderNode(
        xpath=str(data.get("xpath", "")),
        tag=str(data.get("tag") or "div").lower(),
        x=_float(data.get("x")),
        y=_float(data.get("y")),
        width=_float(data.get("width")),
        height=_float(data.get("height")),
        classes=tuple(str(c) for c in classes),
        element_id=str(data.get("id") or ""),
        font_size=_float(font_size) if font_size is not None else None,
        font_color=data.get("fontColor"),
        background=data.get("background"),
        border=bool(data.get("border", False)),
        clips=bool(data.get("clips", False)),
        visible=bool(data.get("visible", True)),
        text_length=int(data.get("textLength") or 0),
        is_link=bool(data.get("isLink", False)),
        attributes=dict(data.get("attributes") or {}),
    )


def parse_render_tree(data: dict[str, Any]) -> RenderNode:
    """Convert snapshot JSON into a RenderNode tree.

    Missing fields take RenderNode defaults, so hand-written fixtures only
    need ``xpath`` and geometry. Nesting depth is not limited.
    """
    root = _parse_node(data)
    stack = [(data, root)]
    while stack:
        raw, parsed = stack.pop()
        for child_data in raw.get("children") or ():
            if not isinstance(child_data, dict):
                continue
            child = _parse_node(child_data)
            parsed.children.append(child)
            stack.append((child_data, child))
    return root


def _node_dict(node: RenderNode) -> dict[str, Any]:
    data: dict[str, Any] = {
        "xpath": node.xpath,
        "tag": node.tag,
        "x": node.x,
        "y": node.y,
        "width": node.width,
        "height": node.height,
        "classes": list(node.classes),
        "id": node.element_id,
        "fontSize": node.font_size,
        "fontColor": node.font_color,
        "background": node.background,
        "border": node.border,
        "clips": node.clips,
        "visible": node.visible,
        "textLength": node.text_length,
        "isLink": node.is_link,
        "children": [],
    }
    if node.attributes:
        data["attributes"] = dict(node.attributes)
    return data


def render_tree_to_dict(node: RenderNode) -> dict[str, Any]:
    """Inverse of :func:`parse_render_tree` (snapshot file format)."""
    root = _node_dict(node)
    stack = [(node, root)]
    while stack:
        current, data = stack.pop()
        for child in current.children:
            child_data = _node_dict(child)
            data["children"].append(child_data)
            stack.append((child, child_data))
    return root
