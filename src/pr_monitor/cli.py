"""CLI entry point for pr-monitor.

Commands:
  monitor       : run the ingestion daemon (once or on an interval)
  serve         : serve the MCP tool surface over stdio
  view          : print one pull request as unified JSON
  reply         : post a general comment on a pull request
  reply-to      : reply to a specific review comment or thread
  resolve       : mark a review thread resolved
  notifications : list notifications or acknowledge one
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from rich.console import Console

from pr_monitor import __version__
from pr_monitor.cli_runner import CommandRunner
from pr_monitor.config_schema import MonitorConfig, load_monitor_config
from pr_monitor.errors import ProviderError
from pr_monitor.filters import filter_by_resolution_status
from pr_monitor.models import ProviderType
from pr_monitor.providers.base import PRProvider
from pr_monitor.providers.factory import ProviderFactory

# Status lines go to stderr so stdout stays machine-readable.
console = Console(stderr=True)

T = TypeVar("T")

_provider_option = click.option(
    "--provider",
    type=click.Choice([member.value for member in ProviderType]),
    default=None,
    help="Force a provider instead of detecting it from the git remote.",
)
_repo_option = click.option("--repo", default=None, help="Repository override, e.g. owner/repo.")


def _run(coro_factory: Callable[[], Awaitable[T]]) -> T:
    try:
        return asyncio.run(coro_factory())
    except ProviderError as exc:
        raise click.ClickException(str(exc)) from exc


async def _provider(config: MonitorConfig, provider: str | None) -> PRProvider:
    runner = CommandRunner(timeout_seconds=config.command_timeout_seconds)
    return await ProviderFactory(runner).create_provider(provider or config.provider)


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2))


@click.group()
@click.version_option(version=__version__, prog_name="pr-monitor")
@click.option(
    "--config",
    "config_path",
    default=None,
    envvar="PR_MONITOR_CONFIG_PATH",
    type=click.Path(dir_okay=False),
    help="Path to config.json (defaults to the user config directory).",
)
@click.pass_context
def main(ctx: click.Context, config_path: str | None) -> None:
    """Track open pull requests across GitHub, GitLab and Azure DevOps."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_monitor_config(config_path)
    except ValueError as exc:
        raise click.ClickException(f"Invalid config: {exc}") from exc


@main.command("monitor")
@click.option("--once", is_flag=True, help="Run a single ingestion tick and exit.")
@click.option("--interval", type=click.IntRange(min=1), default=None, help="Minutes between ticks.")
@click.pass_context
def monitor_cmd(ctx: click.Context, once: bool, interval: int | None) -> None:
    """Run the ingestion daemon."""
    from pr_monitor.daemon import MonitorDaemon
    from pr_monitor.db import close_database, open_database
    from pr_monitor.logging_config import configure_logging
    from pr_monitor.queries import MonitorQueries

    config: MonitorConfig = ctx.obj["config"]
    configure_logging()

    async def _monitor():
        db = await open_database()
        try:
            daemon = MonitorDaemon(MonitorQueries(db), config)
            if once:
                return await daemon.run_once()
            await daemon.run(interval or config.interval_minutes)
        finally:
            await close_database(db)

    report = _run(_monitor)
    if report is not None:
        console.print(
            f"[green]Ingested[/green] {report.pull_requests} pull requests from "
            f"{report.repositories} repositories ({report.failed_repositories} failed, "
            f"{report.notifications} new notifications)"
        )


@main.command("serve")
def serve_cmd() -> None:
    """Serve the MCP tools over stdio."""
    from pr_monitor.server import main as serve_main

    serve_main()


@main.command("view")
@click.argument("identifier", required=False, default=None)
@click.option("--current", is_flag=True, help="Use the pull request of the current branch.")
@_repo_option
@_provider_option
@click.option("--unresolved", is_flag=True, help="Only unresolved (or unknown) inline comments.")
@click.option("--resolved", is_flag=True, help="Only resolved (or unknown) inline comments.")
@click.pass_context
def view_cmd(
    ctx: click.Context,
    identifier: str | None,
    current: bool,
    repo: str | None,
    provider: str | None,
    unresolved: bool,
    resolved: bool,
) -> None:
    """Print a pull request (number, URL or current branch) as unified JSON."""
    if identifier and current:
        raise click.UsageError("Pass either IDENTIFIER or --current, not both.")
    if unresolved and resolved:
        raise click.UsageError("--unresolved and --resolved are mutually exclusive.")
    config: MonitorConfig = ctx.obj["config"]

    async def _view():
        selected = await _provider(config, provider)
        return await selected.fetch_pr(identifier or "", repo)

    pr = _run(_view)
    if unresolved or resolved:
        pr = filter_by_resolution_status(pr, show_unresolved=unresolved)
    _echo_json(pr.model_dump(mode="json"))


@main.command("reply")
@click.argument("number")
@click.option("-m", "--message", required=True, help="Comment body.")
@_repo_option
@_provider_option
@click.pass_context
def reply_cmd(
    ctx: click.Context,
    number: str,
    message: str,
    repo: str | None,
    provider: str | None,
) -> None:
    """Post a general comment on a pull request."""
    config: MonitorConfig = ctx.obj["config"]

    async def _reply():
        selected = await _provider(config, provider)
        await selected.post_comment(number, message, repo)
        return selected.name

    name = _run(_reply)
    console.print(f"[green]Posted comment[/green] on #{number} via {name}")


@main.command("reply-to")
@click.argument("number")
@click.argument("comment_id")
@click.option("-m", "--message", required=True, help="Reply body.")
@_repo_option
@_provider_option
@click.pass_context
def reply_to_cmd(
    ctx: click.Context,
    number: str,
    comment_id: str,
    message: str,
    repo: str | None,
    provider: str | None,
) -> None:
    """Reply to a review comment (GitHub), thread (Azure) or the MR (GitLab)."""
    config: MonitorConfig = ctx.obj["config"]

    async def _reply_to():
        selected = await _provider(config, provider)
        await selected.reply_to_comment(number, comment_id, message, repo)
        return selected.name

    name = _run(_reply_to)
    console.print(f"[green]Replied[/green] to {comment_id} on #{number} via {name}")


@main.command("resolve")
@click.argument("number")
@click.argument("thread_id")
@_repo_option
@_provider_option
@click.pass_context
def resolve_cmd(
    ctx: click.Context,
    number: str,
    thread_id: str,
    repo: str | None,
    provider: str | None,
) -> None:
    """Mark a review thread resolved."""
    config: MonitorConfig = ctx.obj["config"]

    async def _resolve():
        selected = await _provider(config, provider)
        await selected.resolve_thread(number, thread_id, repo)
        return selected.name

    name = _run(_resolve)
    console.print(f"[green]Resolved[/green] thread {thread_id} on #{number} via {name}")


@main.command("notifications")
@click.option("--all", "include_handled", is_flag=True, help="Include handled notifications.")
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
@click.option("--ack", "ack_id", default=None, help="Mark a notification handled by id.")
def notifications_cmd(include_handled: bool, limit: int, ack_id: str | None) -> None:
    """List notifications as JSON, or acknowledge one with --ack."""
    from pr_monitor.db import close_database, open_database
    from pr_monitor.queries import MonitorQueries

    async def _notifications():
        db = await open_database()
        try:
            queries = MonitorQueries(db)
            if ack_id is not None:
                return [await queries.mark_notification_handled(ack_id)]
            return await queries.list_notifications(limit=limit, include_handled=include_handled)
        finally:
            await close_database(db)

    try:
        records = asyncio.run(_notifications())
    except LookupError as exc:
        raise click.ClickException(str(exc.args[0])) from exc
    _echo_json([record.model_dump(mode="json") for record in records])
