"""Database connection, schema management, and lifespan for the PR monitor."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

import aiosqlite
from fastmcp import FastMCP

from pr_monitor.config_schema import default_user_config_dir
from pr_monitor.queries import MonitorQueries

DB_FILENAME = "monitor.sqlite3"
DB_PATH_ENV_VAR = "PR_MONITOR_DB_PATH"
logger = logging.getLogger("pr_monitor.db")

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS repos (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    path        TEXT NOT NULL,
    org         TEXT,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pull_requests (
    id          TEXT PRIMARY KEY,
    repo_id     TEXT NOT NULL REFERENCES repos(id) ON DELETE CASCADE,
    number      INTEGER NOT NULL,
    title       TEXT NOT NULL,
    author      TEXT,
    url         TEXT NOT NULL DEFAULT '',
    updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_pull_requests_repo ON pull_requests(repo_id);

CREATE TABLE IF NOT EXISTS check_runs (
    id          TEXT PRIMARY KEY,
    pr_id       TEXT NOT NULL REFERENCES pull_requests(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    status      TEXT NOT NULL,
    conclusion  TEXT,
    details_url TEXT,
    updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_check_runs_pr ON check_runs(pr_id);

CREATE TABLE IF NOT EXISTS comments (
    id          TEXT PRIMARY KEY,
    pr_id       TEXT NOT NULL REFERENCES pull_requests(id) ON DELETE CASCADE,
    comment_id  TEXT NOT NULL,
    kind        TEXT NOT NULL CHECK(kind IN ('general', 'inline')),
    author      TEXT NOT NULL,
    body        TEXT NOT NULL,
    url         TEXT NOT NULL DEFAULT '',
    is_resolved INTEGER NOT NULL DEFAULT 0 CHECK(is_resolved IN (0, 1)),
    updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_comments_pr ON comments(pr_id);
CREATE INDEX IF NOT EXISTS idx_comments_unresolved ON comments(kind, is_resolved, updated_at);

CREATE TABLE IF NOT EXISTS roadmap_mappings (
    id                TEXT PRIMARY KEY,
    repo_id           TEXT NOT NULL UNIQUE REFERENCES repos(id) ON DELETE CASCADE,
    project_id        TEXT NOT NULL,
    project_name      TEXT NOT NULL,
    status_option_id  TEXT,
    updated_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS fix_suggestions (
    id                  TEXT PRIMARY KEY,
    pr_id               TEXT NOT NULL REFERENCES pull_requests(id) ON DELETE CASCADE,
    summary             TEXT NOT NULL,
    severity            TEXT NOT NULL
                        CHECK(severity IN ('low', 'medium', 'high', 'critical')),
    recommended_action  TEXT NOT NULL,
    status              TEXT NOT NULL DEFAULT 'pending'
                        CHECK(status IN ('pending', 'approved')),
    created_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_fix_suggestions_pr_status ON fix_suggestions(pr_id, status);

CREATE TABLE IF NOT EXISTS notifications (
    id          TEXT PRIMARY KEY,
    type        TEXT NOT NULL CHECK(type IN ('check_failed', 'new_comment')),
    severity    TEXT NOT NULL
                CHECK(severity IN ('low', 'medium', 'high', 'critical')),
    message     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    handled_at  TEXT
);
CREATE INDEX IF NOT EXISTS idx_notifications_handled ON notifications(handled_at, created_at);

CREATE TABLE IF NOT EXISTS daily_contexts (
    id                TEXT PRIMARY KEY,
    date              TEXT NOT NULL,
    summary_markdown  TEXT NOT NULL,
    created_at        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_daily_contexts_date ON daily_contexts(date);
"""


@dataclass
class AppContext:
    """Application context holding the database connection."""

    db: aiosqlite.Connection
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def queries(self) -> MonitorQueries:
        return MonitorQueries(self.db, self.write_lock)


async def ensure_schema(db: aiosqlite.Connection) -> None:
    """Create tables and indexes if they don't exist."""
    await db.executescript(SCHEMA_SQL)


def resolve_db_path() -> Path:
    """Resolve the database path.

    Priority:
    1) Explicit PR_MONITOR_DB_PATH environment variable
    2) Standard user config directory (~/.config, APPDATA, or Application Support)
    """
    configured_path = os.environ.get(DB_PATH_ENV_VAR)
    if configured_path:
        return Path(configured_path).expanduser()

    return default_user_config_dir() / DB_FILENAME


async def open_database(db_path: str | Path | None = None) -> aiosqlite.Connection:
    """Open the SQLite store in WAL mode and make sure the schema exists."""
    path = Path(db_path) if db_path is not None else resolve_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(
        str(path),
        isolation_level=None,  # CRITICAL: enables manual BEGIN IMMEDIATE
    )
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA busy_timeout=5000")
    await db.execute("PRAGMA synchronous=NORMAL")
    await db.execute("PRAGMA foreign_keys=ON")
    await ensure_schema(db)
    logger.info("Database ready - db=%s", path)
    return db


async def close_database(db: aiosqlite.Connection) -> None:
    await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    await db.close()


@asynccontextmanager
async def monitor_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Open the store at server startup, checkpoint and close it on shutdown."""
    del server
    db = await open_database()
    try:
        yield AppContext(db=db)
    finally:
        await close_database(db)
