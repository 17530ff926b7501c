"""Shared test fixtures for the PR monitor."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiosqlite
import pytest

from pr_monitor.cli_runner import CommandRunner
from pr_monitor.db import AppContext, ensure_schema
from pr_monitor.errors import CommandFailed, ProviderUnavailable
from pr_monitor.models import CheckResult, ProviderType, PullRequest, PullRequestSummary
from pr_monitor.queries import MonitorQueries


@dataclass
class _MockFastMCP:
    """Stands in for the FastMCP instance so ctx.fastmcp._lifespan_result works."""

    _lifespan_result: AppContext


@dataclass
class MockContext:
    """Minimal mock for fastmcp.Context that provides fastmcp._lifespan_result."""

    fastmcp: _MockFastMCP

    @property
    def lifespan_context(self) -> AppContext:
        return self.fastmcp._lifespan_result


class FakeRunner(CommandRunner):
    """CommandRunner that answers from canned responses keyed by argv prefix.

    The first registered prefix matching ``(cli_name, *args)`` wins. Results
    may be JSON-serializable objects, raw bytes, exceptions to raise or
    callables taking the argv list and returning one of those.
    """

    def __init__(self, installed: Sequence[str] = ("gh", "glab", "az", "git")) -> None:
        super().__init__(timeout_seconds=5.0, search_dirs=())
        self.installed = set(installed)
        self.responses: list[tuple[tuple[str, ...], Any]] = []
        self.calls: list[tuple[str, list[str], str | None]] = []

    def add(self, *prefix: str, result: Any) -> FakeRunner:
        self.responses.append((tuple(prefix), result))
        return self

    def find_executable(self, name: str) -> str:
        if name in self.installed:
            return f"/usr/bin/{name}"
        raise ProviderUnavailable(name)

    async def run(self, executable: str, args: Sequence[str], *, cwd: str | None = None) -> bytes:
        name = Path(executable).name
        self.calls.append((name, list(args), cwd))
        argv = (name, *args)
        for prefix, result in self.responses:
            if argv[: len(prefix)] != prefix:
                continue
            if isinstance(result, BaseException):
                raise result
            if callable(result):
                result = result(list(argv))
            if isinstance(result, bytes):
                return result
            return json.dumps(result).encode("utf-8")
        raise CommandFailed(" ".join(argv), "no canned response")

    def argv_for(self, cli_name: str) -> list[list[str]]:
        return [args for name, args, _cwd in self.calls if name == cli_name]


@dataclass
class FakeProvider:
    """In-memory PRProvider returning fixed pull requests and checks."""

    pulls: list[PullRequestSummary] = field(default_factory=list)
    details: dict[int, PullRequest] = field(default_factory=dict)
    checks: dict[int, list[CheckResult]] = field(default_factory=dict)
    name: str = "Fake"
    provider_type: ProviderType = ProviderType.GITHUB
    posted: list[tuple[str, str, str | None]] = field(default_factory=list)
    replies: list[tuple[str, str, str, str | None]] = field(default_factory=list)
    resolved: list[tuple[str, str, str | None]] = field(default_factory=list)
    fetched: list[tuple[str, str | None]] = field(default_factory=list)

    async def fetch_pr(self, identifier: str, repo: str | None = None) -> PullRequest:
        self.fetched.append((identifier, repo))
        return self.details[int(identifier)] if identifier else next(iter(self.details.values()))

    async def reply_to_comment(
        self, pr_identifier: str, comment_id: str, body: str, repo: str | None = None
    ) -> None:
        self.replies.append((pr_identifier, comment_id, body, repo))

    async def resolve_thread(
        self, pr_identifier: str, thread_id: str, repo: str | None = None
    ) -> None:
        self.resolved.append((pr_identifier, thread_id, repo))

    async def post_comment(self, pr_identifier: str, body: str, repo: str | None = None) -> None:
        self.posted.append((pr_identifier, body, repo))

    async def list_open_pull_requests(self) -> list[PullRequestSummary]:
        return list(self.pulls)

    async def fetch_checks(self, number: int) -> list[CheckResult]:
        return list(self.checks.get(number, []))

    async def is_available(self) -> bool:
        return True


@pytest.fixture
async def db() -> AsyncIterator[aiosqlite.Connection]:
    """In-memory SQLite database for tests."""
    conn = await aiosqlite.connect(":memory:", isolation_level=None)
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys=ON")
    await ensure_schema(conn)
    yield conn
    await conn.close()


@pytest.fixture
def queries(db: aiosqlite.Connection) -> MonitorQueries:
    return MonitorQueries(db)


@pytest.fixture
def ctx(db: aiosqlite.Connection) -> MockContext:
    """Create a MockContext wrapping the in-memory db fixture."""
    return MockContext(fastmcp=_MockFastMCP(_lifespan_result=AppContext(db=db)))


async def count_rows(db: aiosqlite.Connection, table: str) -> int:
    cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")
    row = await cursor.fetchone()
    return int(row[0])
