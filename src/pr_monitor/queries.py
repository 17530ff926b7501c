"""Storage operations over the monitor database.

Writes run inside ``BEGIN IMMEDIATE``/``COMMIT`` under a shared
``asyncio.Lock`` so concurrent ingestion tasks and MCP tools never interleave
transactions on the single connection. Reads take no lock.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime

import aiosqlite

from pr_monitor.models import (
    CheckRun,
    DailyContext,
    FixStatus,
    FixSuggestion,
    NotificationRecord,
    PRComment,
    PullRequestRecord,
    Repo,
    RoadmapMapping,
    RoadmapSummary,
)
from pr_monitor.state_machine import validate_transition

DEFAULT_LIMIT = 50

_FAILING_CONDITION = "(conclusion IS NULL OR lower(conclusion) != 'success')"
# General comments have no resolution state and never count as unresolved.
_UNRESOLVED_CONDITION = "(kind = 'inline' AND is_resolved = 0)"

_ROADMAP_SUMMARY_SQL = f"""\
SELECT project_id,
       MIN(project_name) AS project_name,
       COUNT(*) AS repo_count,
       SUM(pr_count) AS open_pull_request_count,
       SUM(failing_count) AS failing_check_count,
       SUM(unresolved_count) AS unresolved_comment_count
FROM (
    SELECT m.project_id,
           m.project_name,
           (SELECT COUNT(*) FROM pull_requests p WHERE p.repo_id = m.repo_id) AS pr_count,
           (SELECT COUNT(*) FROM check_runs c
              JOIN pull_requests p ON p.id = c.pr_id
             WHERE p.repo_id = m.repo_id AND {_FAILING_CONDITION}) AS failing_count,
           (SELECT COUNT(*) FROM comments c
              JOIN pull_requests p ON p.id = c.pr_id
             WHERE p.repo_id = m.repo_id AND {_UNRESOLVED_CONDITION}) AS unresolved_count
    FROM roadmap_mappings m
    JOIN repos r ON r.id = m.repo_id
)
GROUP BY project_id
ORDER BY lower(MIN(project_name)), project_id
"""


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


async def _rollback_quietly(db: aiosqlite.Connection) -> None:
    with suppress(Exception):
        await db.execute("ROLLBACK")


async def _write_checks(db: aiosqlite.Connection, pr_id: str, checks: Iterable[CheckRun]) -> None:
    await db.execute("DELETE FROM check_runs WHERE pr_id = ?", (pr_id,))
    await db.executemany(
        """INSERT OR REPLACE INTO check_runs
           (id, pr_id, name, status, conclusion, details_url, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        [
            (c.id, pr_id, c.name, c.status, c.conclusion, c.details_url, c.updated_at)
            for c in checks
        ],
    )


async def _write_comments(
    db: aiosqlite.Connection, pr_id: str, comments: Iterable[PRComment]
) -> None:
    await db.execute("DELETE FROM comments WHERE pr_id = ?", (pr_id,))
    await db.executemany(
        """INSERT OR REPLACE INTO comments
           (id, pr_id, comment_id, kind, author, body, url, is_resolved, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                c.id,
                pr_id,
                c.comment_id,
                c.kind,
                c.author,
                c.body,
                c.url,
                int(c.is_resolved),
                c.updated_at,
            )
            for c in comments
        ],
    )


async def _write_pending_suggestions(
    db: aiosqlite.Connection, pr_id: str, suggestions: Iterable[FixSuggestion]
) -> None:
    await db.execute(
        "DELETE FROM fix_suggestions WHERE pr_id = ? AND status = ?",
        (pr_id, FixStatus.PENDING),
    )
    await db.executemany(
        """INSERT INTO fix_suggestions
           (id, pr_id, summary, severity, recommended_action, status, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                s.id,
                pr_id,
                s.summary,
                s.severity,
                s.recommended_action,
                s.status,
                s.created_at,
            )
            for s in suggestions
        ],
    )


class MonitorQueries:
    def __init__(self, db: aiosqlite.Connection, write_lock: asyncio.Lock | None = None) -> None:
        self.db = db
        self.write_lock = write_lock or asyncio.Lock()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self.write_lock:
            await self.db.execute("BEGIN IMMEDIATE")
            try:
                yield self.db
            except BaseException:
                await _rollback_quietly(self.db)
                raise
            await self.db.execute("COMMIT")

    # ---- writes ----

    async def upsert_repo(self, repo: Repo) -> None:
        async with self._transaction() as db:
            await db.execute(
                """INSERT INTO repos (id, name, path, org, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       name = excluded.name,
                       path = excluded.path,
                       org = excluded.org,
                       updated_at = excluded.updated_at""",
                (repo.id, repo.name, repo.path, repo.org, repo.updated_at),
            )

    async def upsert_pull_request(self, pr: PullRequestRecord) -> None:
        async with self._transaction() as db:
            await db.execute(
                """INSERT INTO pull_requests (id, repo_id, number, title, author, url, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       repo_id = excluded.repo_id,
                       number = excluded.number,
                       title = excluded.title,
                       author = excluded.author,
                       url = excluded.url,
                       updated_at = excluded.updated_at""",
                (pr.id, pr.repo_id, pr.number, pr.title, pr.author, pr.url, pr.updated_at),
            )

    async def replace_checks(self, pr_id: str, checks: Iterable[CheckRun]) -> None:
        async with self._transaction() as db:
            await _write_checks(db, pr_id, checks)

    async def replace_comments(self, pr_id: str, comments: Iterable[PRComment]) -> None:
        async with self._transaction() as db:
            await _write_comments(db, pr_id, comments)

    async def upsert_roadmap_mapping(self, mapping: RoadmapMapping) -> None:
        async with self._transaction() as db:
            await db.execute("DELETE FROM roadmap_mappings WHERE repo_id = ?", (mapping.repo_id,))
            await db.execute(
                """INSERT INTO roadmap_mappings
                   (id, repo_id, project_id, project_name, status_option_id, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    mapping.id,
                    mapping.repo_id,
                    mapping.project_id,
                    mapping.project_name,
                    mapping.status_option_id,
                    mapping.updated_at,
                ),
            )

    async def delete_roadmap_mapping(self, repo_id: str) -> None:
        async with self._transaction() as db:
            await db.execute("DELETE FROM roadmap_mappings WHERE repo_id = ?", (repo_id,))

    async def replace_pending_fix_suggestions(
        self,
        pr_id: str,
        suggestions: Iterable[FixSuggestion],
    ) -> None:
        """Swap the PR's pending suggestions for ``suggestions``; approved rows stay."""
        async with self._transaction() as db:
            await _write_pending_suggestions(db, pr_id, suggestions)

    async def replace_pr_snapshot(
        self,
        pr_id: str,
        comments: Iterable[PRComment],
        checks: Iterable[CheckRun],
        suggestions: Iterable[FixSuggestion],
    ) -> None:
        """Replace a PR's comments, checks and pending suggestions in one transaction."""
        async with self._transaction() as db:
            await _write_comments(db, pr_id, comments)
            await _write_checks(db, pr_id, checks)
            await _write_pending_suggestions(db, pr_id, suggestions)

    async def approve_fix_suggestion(self, suggestion_id: str) -> FixSuggestion:
        """Move a suggestion from pending to approved.

        Raises LookupError for an unknown id and ValueError when the
        suggestion is already approved.
        """
        async with self._transaction() as db:
            cursor = await db.execute(
                "SELECT * FROM fix_suggestions WHERE id = ?", (suggestion_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise LookupError(f"Fix suggestion not found: {suggestion_id}")
            validate_transition(FixStatus(row["status"]), FixStatus.APPROVED)
            await db.execute(
                "UPDATE fix_suggestions SET status = ? WHERE id = ?",
                (FixStatus.APPROVED, suggestion_id),
            )
        return FixSuggestion.model_validate({**dict(row), "status": FixStatus.APPROVED})

    async def save_daily_context(self, context: DailyContext) -> None:
        async with self._transaction() as db:
            await db.execute(
                """INSERT INTO daily_contexts (id, date, summary_markdown, created_at)
                   VALUES (?, ?, ?, ?)""",
                (context.id, context.date, context.summary_markdown, context.created_at),
            )

    async def record_notifications(self, notifications: Iterable[NotificationRecord]) -> int:
        """Insert notifications, skipping ids already stored. Returns the insert count."""
        inserted = 0
        async with self._transaction() as db:
            for item in notifications:
                cursor = await db.execute(
                    """INSERT OR IGNORE INTO notifications
                       (id, type, severity, message, created_at, handled_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        item.id,
                        item.type,
                        item.severity,
                        item.message,
                        item.created_at,
                        item.handled_at,
                    ),
                )
                inserted += cursor.rowcount
        return inserted

    async def mark_notification_handled(self, notification_id: str) -> NotificationRecord:
        handled_at = utc_now()
        async with self._transaction() as db:
            cursor = await db.execute(
                "SELECT * FROM notifications WHERE id = ?", (notification_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise LookupError(f"Notification not found: {notification_id}")
            if row["handled_at"] is None:
                await db.execute(
                    "UPDATE notifications SET handled_at = ? WHERE id = ?",
                    (handled_at, notification_id),
                )
            else:
                handled_at = row["handled_at"]
        return NotificationRecord.model_validate({**dict(row), "handled_at": handled_at})

    # ---- reads ----

    async def failing_checks(self, limit: int = DEFAULT_LIMIT) -> list[CheckRun]:
        cursor = await self.db.execute(
            f"""SELECT * FROM check_runs WHERE {_FAILING_CONDITION}
                ORDER BY updated_at DESC LIMIT ?""",
            (limit,),
        )
        return [CheckRun.model_validate(dict(row)) for row in await cursor.fetchall()]

    async def unresolved_comments(self, limit: int = DEFAULT_LIMIT) -> list[PRComment]:
        cursor = await self.db.execute(
            f"""SELECT * FROM comments WHERE {_UNRESOLVED_CONDITION}
               ORDER BY updated_at DESC LIMIT ?""",
            (limit,),
        )
        return [PRComment.model_validate(dict(row)) for row in await cursor.fetchall()]

    async def pending_fix_suggestions(self, limit: int = DEFAULT_LIMIT) -> list[FixSuggestion]:
        cursor = await self.db.execute(
            """SELECT * FROM fix_suggestions WHERE status = ?
               ORDER BY created_at DESC LIMIT ?""",
            (FixStatus.PENDING, limit),
        )
        return [FixSuggestion.model_validate(dict(row)) for row in await cursor.fetchall()]

    async def fix_suggestions_for_pr(self, pr_id: str) -> list[FixSuggestion]:
        cursor = await self.db.execute(
            "SELECT * FROM fix_suggestions WHERE pr_id = ? ORDER BY created_at, summary",
            (pr_id,),
        )
        return [FixSuggestion.model_validate(dict(row)) for row in await cursor.fetchall()]

    async def latest_daily_context(self) -> DailyContext | None:
        cursor = await self.db.execute(
            "SELECT * FROM daily_contexts ORDER BY date DESC, created_at DESC LIMIT 1"
        )
        row = await cursor.fetchone()
        return DailyContext.model_validate(dict(row)) if row is not None else None

    async def roadmap_summary(self) -> list[RoadmapSummary]:
        cursor = await self.db.execute(_ROADMAP_SUMMARY_SQL)
        return [RoadmapSummary.model_validate(dict(row)) for row in await cursor.fetchall()]

    async def list_notifications(
        self,
        limit: int = DEFAULT_LIMIT,
        include_handled: bool = False,
    ) -> list[NotificationRecord]:
        where = "" if include_handled else "WHERE handled_at IS NULL"
        cursor = await self.db.execute(
            f"SELECT * FROM notifications {where} ORDER BY created_at DESC, id LIMIT ?",
            (limit,),
        )
        return [NotificationRecord.model_validate(dict(row)) for row in await cursor.fetchall()]

    async def comment_ids_for_pr(self, pr_id: str) -> set[str]:
        cursor = await self.db.execute("SELECT id FROM comments WHERE pr_id = ?", (pr_id,))
        return {row["id"] for row in await cursor.fetchall()}

    async def failing_check_ids_for_pr(self, pr_id: str) -> set[str]:
        cursor = await self.db.execute(
            f"SELECT id FROM check_runs WHERE pr_id = ? AND {_FAILING_CONDITION}",
            (pr_id,),
        )
        return {row["id"] for row in await cursor.fetchall()}
