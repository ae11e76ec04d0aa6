# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for render snapshot capture and parsing."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from pageblocks.errors import RenderError, ResourceExhaustionError
from pageblocks.render_snapshot import (
    MAX_RENDER_DEPTH,
    MAX_RENDER_NODES,
    capture_render_tree,
    parse_render_tree,
    render_tree_to_dict,
)

from _layouts import header_article_page

SNAPSHOT = {
    "xpath": "/html/body",
    "tag": "BODY",
    "width": 1280,
    "height": 2000,
    "attributes": {"width": 1280, "height": 2000, "fontSize": 16, "fontColor": "rgb(0, 0, 0)"},
    "children": [
        {
            "xpath": "/html/body/nav",
            "tag": "nav",
            "x": 0,
            "y": 0,
            "width": 1280,
            "height": 60,
            "classes": ["top", "menu"],
            "id": "primary",
            "fontSize": 14,
            "background": "rgb(20, 20, 20)",
            "children": [
                {"xpath": "/html/body/nav/a", "tag": "a", "x": 10, "y": 10, "width": 80, "height": 20,
                 "textLength": 4, "isLink": True},
            ],
        },
    ],
}


class TestParseRenderTree:
    def test_fields(self):
        root = parse_render_tree(SNAPSHOT)
        assert root.tag == "body"
        assert root.width == 1280.0
        assert root.attributes["fontSize"] == 16
        nav = root.children[0]
        assert nav.classes == ("top", "menu")
        assert nav.element_id == "primary"
        assert nav.font_size == 14.0
        assert nav.background == "rgb(20, 20, 20)"
        link = nav.children[0]
        assert link.is_link
        assert link.text_length == 4

    def test_defaults_for_minimal_node(self):
        node = parse_render_tree({"xpath": "/html/body/div"})
        assert node.tag == "div"
        assert (node.x, node.y, node.width, node.height) == (0.0, 0.0, 0.0, 0.0)
        assert node.visible
        assert node.font_size is None
        assert node.background is None
        assert node.children == []

    def test_classes_as_string(self):
        node = parse_render_tree({"xpath": "/x", "classes": "site-header dark"})
        assert node.classes == ("site-header", "dark")

    def test_bad_numbers_fall_back(self):
        node = parse_render_tree({"xpath": "/x", "width": "n/a", "height": None})
        assert node.width == 0.0
        assert node.height == 0.0

    def test_round_trip(self):
        tree = header_article_page()
        assert parse_render_tree(render_tree_to_dict(tree)) == tree

    def test_attributes_only_on_root(self):
        data = render_tree_to_dict(parse_render_tree(SNAPSHOT))
        assert "attributes" in data
        assert "attributes" not in data["children"][0]

    def test_deeply_nested_snapshot(self):
        data = {"xpath": "/html/body", "width": 1920, "height": 1080}
        leaf = data
        for depth in range(3000):
            child = {"xpath": f"/n{depth}", "width": 1920, "height": 1080}
            leaf["children"] = [child]
            leaf = child

        root = parse_render_tree(data)

        depth = 0
        current = root
        while current.children:
            current = current.children[0]
            depth += 1
        assert depth == 3000
        assert current.xpath == "/n2999"

        dumped = render_tree_to_dict(root)
        levels = 0
        while dumped["children"]:
            dumped = dumped["children"][0]
            levels += 1
        assert levels == 3000
        assert dumped["xpath"] == "/n2999"


class TestCaptureRenderTree:
    async def test_parses_evaluate_result(self):
        page = MagicMock()
        page.url = "https://example.com/"
        page.evaluate = AsyncMock(return_value={"root": SNAPSHOT, "nodeCount": 3, "truncated": False})

        root = await capture_render_tree(page)

        assert root.children[0].xpath == "/html/body/nav"
        args = page.evaluate.await_args.args
        assert args[1] == [MAX_RENDER_NODES, MAX_RENDER_DEPTH]

    async def test_truncated_snapshot_raises(self):
        page = MagicMock()
        page.url = "https://huge.example.com/"
        page.evaluate = AsyncMock(return_value={"root": SNAPSHOT, "nodeCount": 100, "truncated": True})

        with pytest.raises(ResourceExhaustionError) as exc_info:
            await capture_render_tree(page, max_nodes=100)

        assert isinstance(exc_info.value, RenderError)
        assert exc_info.value.url == "https://huge.example.com/"
        assert "100" in str(exc_info.value)

    async def test_too_deep_snapshot_raises(self):
        page = MagicMock()
        page.url = "https://nested.example.com/"
        page.evaluate = AsyncMock(return_value={"root": SNAPSHOT, "nodeCount": 40, "truncated": False, "tooDeep": True})

        with pytest.raises(ResourceExhaustionError, match="deeper than 32 levels"):
            await capture_render_tree(page, max_depth=32)
