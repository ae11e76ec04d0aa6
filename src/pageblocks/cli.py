# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Blocks CLI: analyze, vicram, snapshot, segment, serve commands.

Usage:
    pageblocks analyze URL [--width W] [--height H] [--explain] [--user-agent UA] [--wait MS] [-o FILE]
    pageblocks vicram URL [--width W] [--height H]
    pageblocks snapshot URL -o FILE [--width W] [--height H] [--wait MS]
    pageblocks segment FILE [--width W] [--height H] [--explain] [-o FILE]
    pageblocks serve [server options]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from .config import DEFAULT_HEIGHT, DEFAULT_WIDTH, ServiceConfig
from .errors import InvalidRequestError, PageBlocksError


def _write_or_print(text: str, output: str | None) -> None:
    if not output:
        print(text)
        return
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    print(f"Saved to {path}", file=sys.stderr)


def _dump(payload: dict, compact: bool) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=None if compact else 2)


def cmd_analyze(args: argparse.Namespace) -> None:
    """Render a URL and print its role-labelled block tree."""
    from ._progress import print_step, status_spinner
    from .analyzer import analyze_url
    from .renderer import PageRenderer
    from .schemas import AnalysisRequest, parse_request
    from .serializer import analysis_response

    config = ServiceConfig.from_env()
    request = parse_request(
        AnalysisRequest,
        dict(
            url=args.url,
            width=args.width,
            height=args.height,
            explain_roles=args.explain,
            user_agent=args.user_agent,
            wait=args.wait,
        ),
    )
    renderer = PageRenderer(timeout_s=config.render_timeout_s)
    with status_spinner(f"Analyzing {args.url}..."):
        result = asyncio.run(analyze_url(request, renderer, legacy_user_agent=config.legacy_user_agent))

    _write_or_print(_dump(analysis_response(result), args.compact), args.output)
    print_step(f"Blocks: {sum(1 for _ in result.block_tree.iter_blocks())}")
    print_step(f"Rendering: {result.rendering_ms:.0f}ms")


def cmd_vicram(args: argparse.Namespace) -> None:
    """Render a URL and print its visual complexity score."""
    from ._progress import status_spinner
    from .renderer import PageRenderer
    from .schemas import ComplexityRequest, parse_request
    from .serializer import vicram_response
    from .vicram import calculate_vicram, now_ms

    config = ServiceConfig.from_env()
    request = parse_request(ComplexityRequest, dict(url=args.url, width=args.width, height=args.height))
    renderer = PageRenderer(timeout_s=config.render_timeout_s)
    with status_spinner(f"Scoring {args.url}..."):
        result = asyncio.run(calculate_vicram(request, renderer))
    print(_dump(vicram_response(result, now_ms()), compact=False))


def cmd_snapshot(args: argparse.Namespace) -> None:
    """Render a URL and save its render snapshot as JSON for offline analysis."""
    from ._progress import status_spinner
    from .render_snapshot import render_tree_to_dict
    from .renderer import PageRenderer
    from .schemas import AnalysisRequest, parse_request

    config = ServiceConfig.from_env()
    request = parse_request(AnalysisRequest, dict(url=args.url, width=args.width, height=args.height, wait=args.wait))
    renderer = PageRenderer(timeout_s=config.render_timeout_s)
    with status_spinner(f"Capturing {args.url}..."):
        tree = asyncio.run(renderer.retrieve(request.url, request.width, request.height, wait_ms=request.wait))
    _write_or_print(_dump(render_tree_to_dict(tree), compact=False), args.output)


def cmd_segment(args: argparse.Namespace) -> None:
    """Analyze a saved render snapshot without a browser."""
    from .analyzer import analyze_render_tree
    from .render_snapshot import parse_render_tree
    from .serializer import analysis_response

    path = Path(args.file)
    if not path.is_file():
        print(f"Error: snapshot file not found: {path}", file=sys.stderr)
        sys.exit(1)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        print(f"Error: cannot read snapshot {path}: {e}", file=sys.stderr)
        sys.exit(1)
    root = data.get("root", data) if isinstance(data, dict) else None
    if not isinstance(root, dict):
        print(f"Error: snapshot {path} is not a render tree object", file=sys.stderr)
        sys.exit(1)
    tree = parse_render_tree(root)
    result = analyze_render_tree(tree, args.width, args.height, args.explain, url=str(path))
    _write_or_print(_dump(analysis_response(result), args.compact), args.output)


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the service, forwarding any extra args to the server."""
    from .server import main

    main(argv=getattr(args, "_server_argv", []))


def _add_viewport(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--width", type=int, default=DEFAULT_WIDTH, help=f"Viewport width (default: {DEFAULT_WIDTH})")
    parser.add_argument(
        "--height", type=int, default=DEFAULT_HEIGHT, help=f"Viewport height (default: {DEFAULT_HEIGHT})"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Page Blocks CLI", prog="pageblocks")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_analyze = subparsers.add_parser("analyze", help="Segment a live URL into role-labelled blocks")
    p_analyze.add_argument("url")
    _add_viewport(p_analyze)
    p_analyze.add_argument("--explain", action="store_true", help="Include ranked role candidates")
    p_analyze.add_argument("--user-agent", default=None, help="Browser user agent")
    p_analyze.add_argument("--wait", type=int, default=0, help="Extra settle time after load (ms)")
    p_analyze.add_argument("-o", "--output", default=None, help="Write JSON to FILE instead of stdout")
    p_analyze.add_argument("--compact", action="store_true", help="Single-line JSON")

    p_vicram = subparsers.add_parser("vicram", help="Visual complexity score of a live URL")
    p_vicram.add_argument("url")
    _add_viewport(p_vicram)

    p_snapshot = subparsers.add_parser("snapshot", help="Save a render snapshot for offline analysis")
    p_snapshot.add_argument("url")
    _add_viewport(p_snapshot)
    p_snapshot.add_argument("--wait", type=int, default=0, help="Extra settle time after load (ms)")
    p_snapshot.add_argument("-o", "--output", required=True, help="Snapshot JSON file")

    p_segment = subparsers.add_parser("segment", help="Analyze a saved render snapshot")
    p_segment.add_argument("file")
    _add_viewport(p_segment)
    p_segment.add_argument("--explain", action="store_true", help="Include ranked role candidates")
    p_segment.add_argument("-o", "--output", default=None, help="Write JSON to FILE instead of stdout")
    p_segment.add_argument("--compact", action="store_true", help="Single-line JSON")

    subparsers.add_parser(
        "serve",
        help="Start the HTTP/MCP service",
        description="Extra options are forwarded to the server (--transport, --host, --port, ...).",
    )
    return parser


COMMANDS = {
    "analyze": cmd_analyze,
    "vicram": cmd_vicram,
    "snapshot": cmd_snapshot,
    "segment": cmd_segment,
    "serve": cmd_serve,
}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args, remaining = parser.parse_known_args(argv)

    # Forward remaining args to server when using 'serve' command
    if args.command == "serve":
        args._server_argv = remaining
    elif remaining:
        parser.error(f"unrecognized arguments: {' '.join(remaining)}")

    if args.command != "serve":
        from .logging_config import configure as configure_logging

        configure_logging(level="DEBUG" if args.verbose else "WARNING")

    try:
        COMMANDS[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except InvalidRequestError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except PageBlocksError as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
