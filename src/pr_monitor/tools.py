"""MCP tool definitions for the PR monitor."""

from __future__ import annotations

import logging

from fastmcp import Context

from pr_monitor.db import AppContext
from pr_monitor.logging_config import component
from pr_monitor.queries import DEFAULT_LIMIT
from pr_monitor.server import mcp

logger = logging.getLogger("pr_monitor.tools")

MAX_LIMIT = 500


def mcp_tool(*args, **kwargs):
    """Register with ``mcp.tool`` and guarantee a ``.fn`` attribute for direct calls."""
    raw_tool = mcp.tool

    # Bare decorator usage: @mcp_tool
    if args and callable(args[0]) and len(args) == 1 and not kwargs:
        fn = args[0]
        registered = raw_tool(fn)
        if not hasattr(registered, "fn"):
            registered.fn = registered
        return registered

    decorator = raw_tool(*args, **kwargs)

    def _decorate(fn):
        registered = decorator(fn)
        if not hasattr(registered, "fn"):
            registered.fn = registered
        return registered

    return _decorate


def _app_ctx(ctx: Context) -> AppContext:
    """Resolve the monitor AppContext from a FastMCP Context, across versions."""
    if ctx is None:
        raise RuntimeError("Missing MCP context")
    if hasattr(ctx, "lifespan_context"):
        return ctx.lifespan_context
    rc = getattr(ctx, "request_context", None)
    if rc is not None and hasattr(rc, "lifespan_context"):
        return rc.lifespan_context
    fm = getattr(ctx, "fastmcp", None)
    if fm is not None and hasattr(fm, "_lifespan_result"):
        return fm._lifespan_result
    raise RuntimeError("Unable to resolve monitor lifespan context")


def _db_error(tool_name: str, exc: Exception) -> dict:
    logger.exception("%s -> database error: %s", tool_name, exc)
    return {"error": f"{tool_name} failed due to database error: {exc}"}


def _limit_error(limit: int) -> dict | None:
    if limit < 1 or limit > MAX_LIMIT:
        return {"error": f"limit must be between 1 and {MAX_LIMIT}, got {limit}"}
    return None


@mcp_tool
async def list_unresolved_checks(limit: int = DEFAULT_LIMIT, ctx: Context = None) -> dict:
    """List check runs whose conclusion is not success, most recent first."""
    component.set("tools")
    if (error := _limit_error(limit)) is not None:
        return error
    app = _app_ctx(ctx)
    try:
        checks = await app.queries.failing_checks(limit=limit)
    except Exception as exc:
        return _db_error("list_unresolved_checks", exc)
    return {"checks": [check.model_dump(mode="json") for check in checks], "count": len(checks)}


@mcp_tool
async def list_unresolved_comments(limit: int = DEFAULT_LIMIT, ctx: Context = None) -> dict:
    """List unresolved inline review comments, most recent first."""
    component.set("tools")
    if (error := _limit_error(limit)) is not None:
        return error
    app = _app_ctx(ctx)
    try:
        comments = await app.queries.unresolved_comments(limit=limit)
    except Exception as exc:
        return _db_error("list_unresolved_comments", exc)
    return {
        "comments": [comment.model_dump(mode="json") for comment in comments],
        "count": len(comments),
    }


@mcp_tool
async def get_daily_context(ctx: Context = None) -> dict:
    """Return the most recent daily context summary, if any."""
    component.set("tools")
    app = _app_ctx(ctx)
    try:
        context = await app.queries.latest_daily_context()
    except Exception as exc:
        return _db_error("get_daily_context", exc)
    return {"daily_context": context.model_dump(mode="json") if context is not None else None}


@mcp_tool
async def get_roadmap_summary(ctx: Context = None) -> dict:
    """Per-project counts of repos, open PRs, failing checks and unresolved comments."""
    component.set("tools")
    app = _app_ctx(ctx)
    try:
        summaries = await app.queries.roadmap_summary()
    except Exception as exc:
        return _db_error("get_roadmap_summary", exc)
    return {"projects": [summary.model_dump(mode="json") for summary in summaries]}


@mcp_tool
async def list_fix_suggestions(limit: int = DEFAULT_LIMIT, ctx: Context = None) -> dict:
    """List pending fix suggestions, newest first."""
    component.set("tools")
    if (error := _limit_error(limit)) is not None:
        return error
    app = _app_ctx(ctx)
    try:
        suggestions = await app.queries.pending_fix_suggestions(limit=limit)
    except Exception as exc:
        return _db_error("list_fix_suggestions", exc)
    return {
        "suggestions": [suggestion.model_dump(mode="json") for suggestion in suggestions],
        "count": len(suggestions),
    }


@mcp_tool
async def list_notifications(
    limit: int = DEFAULT_LIMIT,
    include_handled: bool = False,
    ctx: Context = None,
) -> dict:
    """List notifications, newest first. Handled ones are hidden unless requested."""
    component.set("tools")
    if (error := _limit_error(limit)) is not None:
        return error
    app = _app_ctx(ctx)
    try:
        notifications = await app.queries.list_notifications(
            limit=limit, include_handled=include_handled
        )
    except Exception as exc:
        return _db_error("list_notifications", exc)
    return {
        "notifications": [item.model_dump(mode="json") for item in notifications],
        "count": len(notifications),
    }


@mcp_tool
async def approve_fix(id: str, ctx: Context = None) -> dict:
    """Approve a pending fix suggestion. Approved suggestions survive re-ingestion."""
    component.set("tools")
    if not id or not id.strip():
        return {"error": "id is required"}
    app = _app_ctx(ctx)
    try:
        suggestion = await app.queries.approve_fix_suggestion(id.strip())
    except (LookupError, ValueError) as exc:
        return {"error": str(exc)}
    except Exception as exc:
        return _db_error("approve_fix", exc)
    logger.info("approve_fix -> %s approved", suggestion.id[:8])
    return {
        "id": suggestion.id,
        "status": suggestion.status,
        "suggestion": suggestion.model_dump(mode="json"),
    }
