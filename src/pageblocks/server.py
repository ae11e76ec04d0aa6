# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Blocks service.

HTTP routes (active in HTTP mode):
- POST /                   : render a URL and return its role-labelled block tree
- POST /visual-complexity  : render a URL and return its Vicram score
- GET  /health             : liveness + browser pool state

MCP tools (both transports):
- analyze_page       : same payload as POST /
- visual_complexity  : same payload as POST /visual-complexity

Supports STDIO and HTTP (Streamable HTTP) transports. All logging goes to stderr.
"""

from __future__ import annotations

import argparse
import dataclasses
import functools
import json
import logging
import os
import sys
import uuid

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from starlette.requests import Request
from starlette.responses import JSONResponse

from .analyzer import analyze_url
from .config import ServiceConfig, VicramConfig
from .errors import InvalidRequestError, RenderError, RenderTimeoutError
from .logging_config import request_context
from .pipeline_timer import PipelineTimer
from .renderer import PageRenderer
from .schemas import AnalysisRequest, ComplexityRequest, parse_request
from .serializer import analysis_response, error_response, vicram_response
from .vicram import calculate_vicram, now_ms

# Logging configured in main() via logging_config.configure()
logger = logging.getLogger("pageblocks.server")

mcp = FastMCP(
    name="pageblocks",
    instructions=(
        "Page Blocks segments a rendered web page into visual blocks and labels each with a layout role "
        "(Header, Footer, Navigation, Sidebar, Article, Container, Unknown). "
        "Use analyze_page for the block tree and visual_complexity for a single complexity score."
    ),
)

# Runtime state: set once by main() before serving, read-only after that
_config = ServiceConfig()
_transport_mode = "stdio"
_pool = None  # BrowserPool in HTTP mode
_renderer: PageRenderer | None = None


def _get_renderer() -> PageRenderer:
    """Shared renderer (pool-backed in HTTP mode, standalone sessions otherwise)."""
    global _renderer
    if _renderer is None:
        _renderer = PageRenderer(timeout_s=_config.render_timeout_s)
    return _renderer


def _request_id() -> str:
    return uuid.uuid4().hex[:12]


# ── Request handling (shared by HTTP routes and MCP tools) ───────────


async def _run_analysis(body: object) -> tuple[int, dict]:
    """Validate, render and analyze. Returns (http_status, payload)."""
    try:
        req = parse_request(AnalysisRequest, body)
    except InvalidRequestError as exc:
        return 400, error_response(str(exc))

    if req.wait > _config.max_wait_ms:
        req = req.model_copy(update={"wait": _config.max_wait_ms})

    timer = PipelineTimer()
    with request_context(request_id=_request_id(), url=req.url):
        try:
            result = await analyze_url(
                req, _get_renderer(), legacy_user_agent=_config.legacy_user_agent, timer=timer
            )
        except RenderTimeoutError as exc:
            report = timer.timeout_report()
            logger.warning(
                "Analysis of %s timed out during %s after %.1fs. %s",
                req.url,
                report["timed_out_at"],
                exc.timeout_s,
                report["hint"],
            )
            return 504, error_response(str(exc))
        except RenderError as exc:
            logger.warning("Render failed for %s: %s", req.url, exc)
            return 502, error_response(str(exc))
    return 200, analysis_response(result)


async def _run_complexity(body: object) -> tuple[int, dict]:
    """Validate, render and score. Any failure is reported as 400."""
    try:
        req = parse_request(ComplexityRequest, body)
    except InvalidRequestError as exc:
        return 400, error_response(str(exc))

    with request_context(request_id=_request_id(), url=req.url):
        try:
            result = await calculate_vicram(req, _get_renderer(), VicramConfig())
        except RenderError as exc:
            logger.warning("Complexity render failed for %s: %s", req.url, exc)
            return 400, error_response(str(exc))
    return 200, vicram_response(result, now_ms())


async def _json_body(request: Request) -> object | None:
    try:
        return await request.json()
    except ValueError:
        return None


# ── HTTP routes (active only in HTTP mode) ───────────────────────────


@mcp.custom_route("/", methods=["POST"])
async def _analyze_route(request: Request) -> JSONResponse:
    status, payload = await _run_analysis(await _json_body(request))
    return JSONResponse(payload, status_code=status)


@mcp.custom_route("/visual-complexity", methods=["POST"])
async def _complexity_route(request: Request) -> JSONResponse:
    status, payload = await _run_complexity(await _json_body(request))
    return JSONResponse(payload, status_code=status)


@mcp.custom_route("/health", methods=["GET"])
async def _health_check(request: Request) -> JSONResponse:
    data: dict = {"status": "ok", "transport": _transport_mode}
    if _pool is not None:
        health = _pool.health()
        data["pool"] = health.to_dict()
        if not health.browser_connected:
            data["status"] = "degraded"
            return JSONResponse(data, status_code=503)
    return JSONResponse(data)


# ── MCP tools ────────────────────────────────────────────────────────


@mcp.tool(annotations=ToolAnnotations(readOnlyHint=True, openWorldHint=True))
async def analyze_page(
    url: str,
    width: int = 1920,
    height: int = 1080,
    explain_roles: bool = False,
    user_agent: str | None = None,
    wait: int = 0,
) -> str:
    """Segment a web page into visual blocks labelled with layout roles.

    Args:
        url: Page to render (http or https).
        width: Viewport width in px.
        height: Viewport height in px.
        explain_roles: Include ranked role candidates for every block.
        user_agent: Browser user agent.
        wait: Extra settle time after load, in ms.
    """
    _status, payload = await _run_analysis(
        {
            "url": url,
            "width": width,
            "height": height,
            "explainRoles": explain_roles,
            "userAgent": user_agent,
            "wait": wait,
        }
    )
    return json.dumps(payload, ensure_ascii=False)


@mcp.tool(annotations=ToolAnnotations(readOnlyHint=True, openWorldHint=True))
async def visual_complexity(url: str, width: int = 1920, height: int = 1080) -> str:
    """Score the visual complexity (Vicram) of a rendered web page.

    Args:
        url: Page to render (http or https).
        width: Viewport width in px.
        height: Viewport height in px.
    """
    _status, payload = await _run_complexity({"url": url, "width": width, "height": height})
    return json.dumps(payload, ensure_ascii=False)


# ── Entry point ──────────────────────────────────────────────────────


def _parse_server_args(argv: list[str] | None = None) -> tuple[argparse.Namespace, ServiceConfig]:
    """Parse CLI args on top of ``PAGEBLOCKS_*`` env configuration.

    Explicit flags win over environment variables, which win over defaults.
    """
    parser = argparse.ArgumentParser(description="Page Blocks service")
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default=None,
        help="Transport mode: http (default) or stdio",
    )
    parser.add_argument("--host", default=None, help="HTTP server host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="HTTP server port (default: 8000)")
    parser.add_argument(
        "--max-contexts",
        type=int,
        default=None,
        help="Maximum concurrent browser contexts (default: 5)",
    )
    parser.add_argument(
        "--render-timeout",
        type=float,
        default=None,
        help="Render timeout in seconds, excluding the request's wait (default: 60)",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    args, _ = parser.parse_known_args(argv)

    if args.transport is None:
        env_transport = os.environ.get("PAGEBLOCKS_TRANSPORT", "").strip().lower()
        args.transport = env_transport if env_transport in ("stdio", "http") else "http"

    overrides = {
        key: value
        for key, value in (
            ("host", args.host),
            ("port", args.port),
            ("max_contexts", args.max_contexts),
            ("render_timeout_s", args.render_timeout),
            ("log_level", args.log_level.upper() if args.log_level else None),
        )
        if value is not None
    }
    return args, dataclasses.replace(ServiceConfig.from_env(), **overrides)


async def _run_http_server(config: ServiceConfig) -> None:
    """Serve HTTP routes + Streamable HTTP MCP with one shared BrowserPool."""
    global _pool, _renderer

    import uvicorn

    from .browser_pool import BrowserPool

    async with BrowserPool(max_contexts=config.max_contexts) as pool:
        _pool = pool
        _renderer = PageRenderer(pool, timeout_s=config.render_timeout_s)
        logger.info("HTTP mode: BrowserPool started (max_contexts=%d)", config.max_contexts)
        try:
            uv_config = uvicorn.Config(
                mcp.streamable_http_app(),
                host=config.host,
                port=config.port,
                log_level=config.log_level.lower(),
            )
            await uvicorn.Server(uv_config).serve()
        finally:
            _pool = None
            _renderer = None
            logger.info("HTTP mode: shutdown complete")


def main(argv: list[str] | None = None):
    """Entry point for the Page Blocks service."""
    global _config, _transport_mode

    args, config = _parse_server_args(argv if argv is not None else sys.argv[1:])
    _config = config
    _transport_mode = args.transport

    # Configure structlog BEFORE any log output
    from .logging_config import configure as configure_logging

    configure_logging(json_output=(_transport_mode == "http"), level=config.log_level)

    if config.legacy_user_agent:
        logger.info("Legacy user agent mode: supplied userAgent values are replaced by a fixed identifier")

    if _transport_mode == "stdio":
        logger.info("Starting Page Blocks MCP server (stdio)")
        mcp.run(transport="stdio")
        return

    logger.info("Starting Page Blocks service (http, host=%s, port=%d)", config.host, config.port)
    import anyio

    anyio.run(functools.partial(_run_http_server, config))


if __name__ == "__main__":
    main()
