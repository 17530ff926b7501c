"""Tests for storage operations: upserts, replacement, reads and approvals."""

from __future__ import annotations

import asyncio
import sqlite3

import pytest
from conftest import count_rows

from pr_monitor.models import (
    CheckRun,
    CommentKind,
    DailyContext,
    FixStatus,
    FixSuggestion,
    NotificationRecord,
    NotificationType,
    PRComment,
    PullRequestRecord,
    Repo,
    RoadmapMapping,
    Severity,
)
from pr_monitor.queries import MonitorQueries

NOW = "2024-05-02T12:00:00Z"


async def _seed_pr(queries: MonitorQueries, repo_id: str = "repo-1", pr_id: str = "pr-1") -> None:
    await queries.upsert_repo(
        Repo(id=repo_id, name=repo_id, path=f"/dev/{repo_id}", updated_at=NOW)
    )
    await queries.upsert_pull_request(
        PullRequestRecord(
            id=pr_id, repo_id=repo_id, number=7, title="Add cache", url="u", updated_at=NOW
        )
    )


def _check(check_id: str, conclusion: str | None, pr_id: str = "pr-1") -> CheckRun:
    return CheckRun(
        id=check_id, pr_id=pr_id, name=check_id, status="completed",
        conclusion=conclusion, updated_at=NOW,
    )


def _comment(
    comment_id: str,
    kind: CommentKind,
    resolved: bool,
    pr_id: str = "pr-1",
) -> PRComment:
    return PRComment(
        id=comment_id, pr_id=pr_id, comment_id=comment_id, kind=kind,
        author="alice", body="body", is_resolved=resolved, updated_at=NOW,
    )


def _suggestion(summary: str, severity: Severity, pr_id: str = "pr-1") -> FixSuggestion:
    return FixSuggestion(
        pr_id=pr_id, summary=summary, severity=severity,
        recommended_action="Look at it.", created_at=NOW,
    )


async def test_upserts_do_not_duplicate(queries, db) -> None:
    await _seed_pr(queries)
    await queries.upsert_pull_request(
        PullRequestRecord(
            id="pr-1", repo_id="repo-1", number=7, title="Renamed", url="u", updated_at=NOW
        )
    )
    assert await count_rows(db, "repos") == 1
    assert await count_rows(db, "pull_requests") == 1
    cursor = await db.execute("SELECT title FROM pull_requests WHERE id = 'pr-1'")
    assert (await cursor.fetchone())["title"] == "Renamed"


async def test_failing_checks_include_missing_conclusion(queries) -> None:
    await _seed_pr(queries)
    await queries.replace_checks(
        "pr-1",
        [_check("ok", "success"), _check("ok-upper", "SUCCESS"), _check("bad", "failure"),
         _check("running", None)],
    )
    assert {c.id for c in await queries.failing_checks()} == {"bad", "running"}
    assert await queries.failing_check_ids_for_pr("pr-1") == {"bad", "running"}


async def test_replace_checks_drops_stale_rows(queries, db) -> None:
    await _seed_pr(queries)
    await queries.replace_checks("pr-1", [_check("a", "failure"), _check("b", "success")])
    await queries.replace_checks("pr-1", [_check("b", "success")])
    assert await count_rows(db, "check_runs") == 1


async def test_unresolved_comments_are_inline_only(queries) -> None:
    await _seed_pr(queries)
    await queries.replace_comments(
        "pr-1",
        [
            _comment("g1", CommentKind.GENERAL, False),
            _comment("i1", CommentKind.INLINE, False),
            _comment("i2", CommentKind.INLINE, True),
        ],
    )
    unresolved = await queries.unresolved_comments()
    assert [c.id for c in unresolved] == ["i1"]
    assert unresolved[0].kind == CommentKind.INLINE
    assert await queries.comment_ids_for_pr("pr-1") == {"g1", "i1", "i2"}


async def test_read_limits_are_applied(queries) -> None:
    await _seed_pr(queries)
    await queries.replace_checks("pr-1", [_check(f"c{i}", "failure") for i in range(5)])
    assert len(await queries.failing_checks(limit=2)) == 2


async def test_pending_replacement_keeps_approved_suggestions(queries) -> None:
    await _seed_pr(queries)
    approved = _suggestion("Old approved fix", Severity.LOW)
    await queries.replace_pending_fix_suggestions("pr-1", [approved])
    await queries.approve_fix_suggestion(approved.id)

    check_fix = _suggestion("Check 'build' is failure", Severity.HIGH)
    comment_fix = _suggestion("Unresolved comment from alice", Severity.MEDIUM)
    await queries.replace_pending_fix_suggestions("pr-1", [check_fix, comment_fix])
    assert {s.summary for s in await queries.pending_fix_suggestions()} == {
        check_fix.summary,
        comment_fix.summary,
    }

    # Check now passes: only the comment-derived suggestion is pending.
    await queries.replace_pending_fix_suggestions(
        "pr-1", [_suggestion("Unresolved comment from alice", Severity.MEDIUM)]
    )
    pending = await queries.pending_fix_suggestions()
    assert [s.summary for s in pending] == ["Unresolved comment from alice"]

    by_status = {s.status: s for s in await queries.fix_suggestions_for_pr("pr-1")}
    assert by_status[FixStatus.APPROVED].id == approved.id
    assert by_status[FixStatus.APPROVED].summary == "Old approved fix"


async def test_pending_replacement_is_scoped_to_one_pr(queries) -> None:
    await _seed_pr(queries)
    await _seed_pr(queries, repo_id="repo-2", pr_id="pr-2")
    await queries.replace_pending_fix_suggestions("pr-1", [_suggestion("a", Severity.HIGH)])
    await queries.replace_pending_fix_suggestions(
        "pr-2", [_suggestion("b", Severity.HIGH, pr_id="pr-2")]
    )
    await queries.replace_pending_fix_suggestions("pr-1", [])
    assert [s.pr_id for s in await queries.pending_fix_suggestions()] == ["pr-2"]


async def test_approve_fix_suggestion_errors(queries) -> None:
    await _seed_pr(queries)
    suggestion = _suggestion("fix", Severity.HIGH)
    await queries.replace_pending_fix_suggestions("pr-1", [suggestion])

    approved = await queries.approve_fix_suggestion(suggestion.id)
    assert approved.status == FixStatus.APPROVED
    with pytest.raises(ValueError, match="Invalid transition"):
        await queries.approve_fix_suggestion(suggestion.id)
    with pytest.raises(LookupError):
        await queries.approve_fix_suggestion("missing")


async def test_failed_write_rolls_back(queries) -> None:
    await _seed_pr(queries)
    kept = _suggestion("kept", Severity.HIGH)
    await queries.replace_pending_fix_suggestions("pr-1", [kept])

    duplicate = _suggestion("dup", Severity.HIGH)
    with pytest.raises(sqlite3.IntegrityError):
        await queries.replace_pending_fix_suggestions("pr-1", [duplicate, duplicate])

    # The delete of the pending rows was rolled back with the failed insert.
    assert [s.id for s in await queries.pending_fix_suggestions()] == [kept.id]


async def test_pr_snapshot_is_written_as_one_unit(queries, db) -> None:
    await _seed_pr(queries)
    await queries.replace_pr_snapshot(
        "pr-1",
        [_comment("c1", CommentKind.INLINE, False)],
        [_check("build", "failure")],
        [_suggestion("old", Severity.HIGH)],
    )

    duplicate = _suggestion("dup", Severity.MEDIUM)
    with pytest.raises(sqlite3.IntegrityError):
        await queries.replace_pr_snapshot(
            "pr-1",
            [_comment("c2", CommentKind.INLINE, False)],
            [_check("build", "success")],
            [duplicate, duplicate],
        )

    # Comments and checks written before the failing insert were rolled back too.
    assert [c.comment_id for c in await queries.unresolved_comments()] == ["c1"]
    assert [c.name for c in await queries.failing_checks()] == ["build"]
    assert [s.summary for s in await queries.pending_fix_suggestions()] == ["old"]
    assert await count_rows(db, "comments") == 1


async def test_latest_daily_context(queries) -> None:
    assert await queries.latest_daily_context() is None
    await queries.save_daily_context(
        DailyContext(date="2024-05-01", summary_markdown="old", created_at=NOW)
    )
    await queries.save_daily_context(
        DailyContext(date="2024-05-02", summary_markdown="new", created_at=NOW)
    )
    latest = await queries.latest_daily_context()
    assert latest is not None and latest.summary_markdown == "new"


async def test_roadmap_summary_aggregates_per_project(queries) -> None:
    await _seed_pr(queries, "api", "pr-api")
    await _seed_pr(queries, "web", "pr-web")
    await _seed_pr(queries, "client", "pr-client")
    await queries.replace_checks(
        "pr-api", [_check("a1", "failure", "pr-api"), _check("a2", "success", "pr-api")]
    )
    await queries.replace_checks("pr-web", [_check("w1", None, "pr-web")])
    await queries.replace_comments(
        "pr-web",
        [
            _comment("w-i", CommentKind.INLINE, False, "pr-web"),
            _comment("w-g", CommentKind.GENERAL, False, "pr-web"),
        ],
    )
    for repo_id, project_id, name in [
        ("api", "PVT_corp", "Acme Roadmap"),
        ("web", "PVT_corp", "Acme Roadmap"),
        ("client", "PVT_client", "Client Work"),
    ]:
        await queries.upsert_roadmap_mapping(
            RoadmapMapping(
                id=f"map-{repo_id}", repo_id=repo_id, project_id=project_id,
                project_name=name, updated_at=NOW,
            )
        )

    corp, client = await queries.roadmap_summary()
    assert (corp.project_id, corp.repo_count, corp.open_pull_request_count) == ("PVT_corp", 2, 2)
    assert corp.failing_check_count == 2
    assert corp.unresolved_comment_count == 1
    assert (client.project_id, client.repo_count, client.failing_check_count) == (
        "PVT_client", 1, 0,
    )


async def test_roadmap_mapping_is_one_per_repo(queries, db) -> None:
    await _seed_pr(queries)
    for project_id in ("PVT_a", "PVT_b"):
        await queries.upsert_roadmap_mapping(
            RoadmapMapping(
                id=f"map-{project_id}", repo_id="repo-1", project_id=project_id,
                project_name=project_id, updated_at=NOW,
            )
        )
    assert await count_rows(db, "roadmap_mappings") == 1
    await queries.delete_roadmap_mapping("repo-1")
    assert await queries.roadmap_summary() == []


def _notification(notification_id: str, created_at: str = NOW) -> NotificationRecord:
    return NotificationRecord(
        id=notification_id, type=NotificationType.CHECK_FAILED, severity=Severity.HIGH,
        message="api #7: check 'build' is failure", created_at=created_at,
    )


async def test_notifications_are_recorded_once(queries) -> None:
    assert await queries.record_notifications([_notification("n1"), _notification("n2")]) == 2
    assert await queries.record_notifications([_notification("n1")]) == 0
    assert len(await queries.list_notifications()) == 2


async def test_mark_notification_handled(queries) -> None:
    await queries.record_notifications([_notification("n1"), _notification("n2")])
    handled = await queries.mark_notification_handled("n1")
    assert handled.handled_at is not None
    again = await queries.mark_notification_handled("n1")
    assert again.handled_at == handled.handled_at

    assert [n.id for n in await queries.list_notifications()] == ["n2"]
    assert {n.id for n in await queries.list_notifications(include_handled=True)} == {"n1", "n2"}
    with pytest.raises(LookupError):
        await queries.mark_notification_handled("missing")


async def test_concurrent_writers_are_serialized(queries, db) -> None:
    await _seed_pr(queries)
    await asyncio.gather(
        *(
            queries.replace_pending_fix_suggestions("pr-1", [_suggestion(f"s{i}", Severity.LOW)])
            for i in range(10)
        )
    )
    assert await count_rows(db, "fix_suggestions") == 1
