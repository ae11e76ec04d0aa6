# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the pageblocks CLI (commands, output and exit codes)."""

from __future__ import annotations

import io
import json
import logging
from unittest.mock import AsyncMock, patch

import pytest
import structlog
from PIL import Image

from pageblocks.cli import COMMANDS, build_parser, main
from pageblocks.errors import RenderError
from pageblocks.render_snapshot import render_tree_to_dict

from _layouts import header_article_page


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    old_handlers, old_level = root.handlers[:], root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.reset_defaults()


@pytest.fixture
def snapshot_file(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps({"root": render_tree_to_dict(header_article_page())}), encoding="utf-8")
    return path


@pytest.fixture
def fake_renderer():
    with patch("pageblocks.renderer.PageRenderer") as cls:
        instance = cls.return_value
        instance.retrieve = AsyncMock(return_value=header_article_page())
        yield instance


class TestParser:
    def test_commands_registered(self):
        assert set(COMMANDS) == {"analyze", "vicram", "snapshot", "segment", "serve"}

    def test_analyze_defaults(self):
        args = build_parser().parse_args(["analyze", "https://example.com"])
        assert (args.width, args.height) == (1920, 1080)
        assert args.explain is False
        assert args.wait == 0

    def test_snapshot_requires_output(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["snapshot", "https://example.com"])

    def test_unknown_args_rejected_outside_serve(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["segment", "x.json", "--frobnicate"])
        assert exc_info.value.code == 2

    def test_serve_forwards_extra_args(self):
        with patch("pageblocks.server.main") as server_main:
            main(["serve", "--transport", "stdio", "--port", "9100"])
        server_main.assert_called_once_with(argv=["--transport", "stdio", "--port", "9100"])


class TestSegment:
    def test_prints_analysis(self, snapshot_file, capsys):
        main(["segment", str(snapshot_file)])
        data = json.loads(capsys.readouterr().out)
        assert data["success"] is True
        assert [c["role"] for c in data["result"]["children"]] == ["Header", "Article"]

    def test_raw_root_node_accepted(self, tmp_path, capsys):
        path = tmp_path / "raw.json"
        path.write_text(json.dumps(render_tree_to_dict(header_article_page())), encoding="utf-8")
        main(["segment", str(path), "--compact"])
        out = capsys.readouterr().out
        assert out.count("\n") == 1
        assert json.loads(out)["result"]["xpath"] == "/html/body"

    def test_explain(self, snapshot_file, capsys):
        main(["segment", str(snapshot_file), "--explain"])
        data = json.loads(capsys.readouterr().out)
        assert data["result"]["explanation"]

    def test_output_file(self, snapshot_file, tmp_path, capsys):
        out = tmp_path / "out" / "blocks.json"
        main(["segment", str(snapshot_file), "-o", str(out)])
        assert json.loads(out.read_text(encoding="utf-8"))["success"] is True
        assert "Saved to" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["segment", str(tmp_path / "nope.json")])
        assert exc_info.value.code == 1
        assert "not found" in capsys.readouterr().err

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("{not json", "cannot read snapshot"),
            ("[1, 2, 3]", "not a render tree object"),
            ('{"root": "body"}', "not a render tree object"),
        ],
    )
    def test_malformed_snapshot(self, tmp_path, capsys, content, message):
        path = tmp_path / "broken.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            main(["segment", str(path)])
        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert err.startswith("Error: ")
        assert message in err
        assert "Traceback" not in err


class TestAnalyze:
    def test_success(self, fake_renderer, capsys):
        main(["analyze", "https://example.com", "--width", "1920"])
        data = json.loads(capsys.readouterr().out)
        assert data["result"]["role"] == "Container"
        fake_renderer.retrieve.assert_awaited_once()

    def test_invalid_url_exit_code(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["analyze", "example.com"])
        assert exc_info.value.code == 2
        assert "url" in capsys.readouterr().err

    def test_render_error_exit_code(self, fake_renderer, capsys):
        fake_renderer.retrieve.side_effect = RenderError("Could not render page: net::ERR_NAME_NOT_RESOLVED")
        with pytest.raises(SystemExit) as exc_info:
            main(["analyze", "https://nope.invalid"])
        assert exc_info.value.code == 1
        assert "ERR_NAME_NOT_RESOLVED" in capsys.readouterr().err


class TestVicram:
    def test_prints_score(self, fake_renderer, capsys):
        buf = io.BytesIO()
        Image.new("RGB", (32, 32), "white").save(buf, format="PNG")
        fake_renderer.screenshot = AsyncMock(return_value=buf.getvalue())

        main(["vicram", "https://example.com"])

        data = json.loads(capsys.readouterr().out)
        assert data["success"] is True
        assert data["result"]["score"] == 0.0
        assert data["result"]["url"] == "https://example.com"


class TestSnapshot:
    def test_writes_snapshot(self, fake_renderer, tmp_path):
        out = tmp_path / "snap.json"
        main(["snapshot", "https://example.com", "-o", str(out)])
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["xpath"] == "/html/body"
        assert data["attributes"]["width"] == 1920
