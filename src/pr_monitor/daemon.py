"""Ingestion daemon: discover repositories, pull provider data, persist and derive.

One tick walks every discovered repository, stores its open pull requests
with their comments and checks, replaces the pending fix suggestions, records
notifications, maps the repository to a roadmap project and finally fetches
the daily context when none exists for today. A failing repository is logged
and skipped; the tick carries on with the next one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from pr_monitor.cli_runner import CommandRunner
from pr_monitor.config_schema import MonitorConfig
from pr_monitor.daily_context import DailyContextClient
from pr_monitor.discovery import discover_repositories
from pr_monitor.errors import ProviderError
from pr_monitor.logging_config import component
from pr_monitor.models import (
    CheckResult,
    CheckRun,
    CommentKind,
    DailyContext,
    FixSuggestion,
    PRComment,
    PullRequest,
    PullRequestRecord,
    PullRequestSummary,
    Repo,
    RoadmapMapping,
)
from pr_monitor.notifications import derive_notifications
from pr_monitor.providers.base import PRProvider
from pr_monitor.providers.factory import ProviderFactory
from pr_monitor.queries import MonitorQueries, utc_now
from pr_monitor.roadmap import RoadmapMapper
from pr_monitor.severity import CHECK_FAILURE_SEVERITY, UNRESOLVED_COMMENT_SEVERITY
from pr_monitor.stable_id import check_key, comment_key, make_stable_id, pr_key

logger = logging.getLogger("pr_monitor.daemon")

ProviderResolver = Callable[[str], Awaitable[PRProvider]]


@dataclass
class TickReport:
    repositories: int = 0
    failed_repositories: int = 0
    pull_requests: int = 0
    notifications: int = 0
    daily_context_saved: bool = False


def flatten_comments(details: PullRequest, pr_id: str, repo_path: str, number: int) -> list[PRComment]:
    """Project general and inline comments onto storage rows.

    General comments are stored unresolved and keep their URL. Inline
    comments take the review's author, and unknown resolution is stored as
    unresolved. Inline keys include the review id since Azure DevOps numbers
    comments per thread.
    """
    results: list[PRComment] = []
    for comment in details.comments:
        results.append(
            PRComment(
                id=make_stable_id(comment_key(repo_path, number, CommentKind.GENERAL, comment.id)),
                pr_id=pr_id,
                comment_id=comment.id,
                kind=CommentKind.GENERAL,
                author=comment.author,
                body=comment.body,
                url=comment.url,
                is_resolved=False,
                updated_at=comment.created_at,
            )
        )
    for review in details.reviews:
        for review_comment in review.comments or []:
            results.append(
                PRComment(
                    id=make_stable_id(
                        comment_key(
                            repo_path,
                            number,
                            CommentKind.INLINE,
                            f"{review.id}:{review_comment.id}",
                        )
                    ),
                    pr_id=pr_id,
                    comment_id=review_comment.id,
                    kind=CommentKind.INLINE,
                    author=review.author,
                    body=review_comment.body,
                    url="",
                    is_resolved=bool(review_comment.is_resolved),
                    updated_at=review_comment.created_at,
                )
            )
    return results


def build_check_runs(
    checks: list[CheckResult],
    pr_id: str,
    repo_path: str,
    number: int,
    now: str,
) -> list[CheckRun]:
    return [
        CheckRun(
            id=make_stable_id(check_key(repo_path, number, check.name)),
            pr_id=pr_id,
            name=check.name,
            status=check.status,
            conclusion=check.conclusion,
            details_url=check.details_url,
            updated_at=check.completed_at or now,
        )
        for check in checks
    ]


def build_fix_suggestions(
    pr_id: str,
    checks: list[CheckRun],
    comments: list[PRComment],
    now: str,
) -> list[FixSuggestion]:
    """One high suggestion per failing check, one medium per unresolved inline comment."""
    suggestions: list[FixSuggestion] = []
    for check in checks:
        if not check.is_failing:
            continue
        action = (
            f"Review logs at {check.details_url}."
            if check.details_url
            else "Review check logs in the provider."
        )
        suggestions.append(
            FixSuggestion(
                pr_id=pr_id,
                summary=f"Check '{check.name}' is {check.conclusion or check.status}",
                severity=CHECK_FAILURE_SEVERITY,
                recommended_action=action,
                created_at=now,
            )
        )
    for comment in comments:
        if comment.kind != CommentKind.INLINE or comment.is_resolved:
            continue
        action = (
            f"Review comment at {comment.url}."
            if comment.url
            else "Review unresolved comment in the PR."
        )
        suggestions.append(
            FixSuggestion(
                pr_id=pr_id,
                summary=f"Unresolved comment from {comment.author}",
                severity=UNRESOLVED_COMMENT_SEVERITY,
                recommended_action=action,
                created_at=now,
            )
        )
    return suggestions


class MonitorDaemon:
    """Polling ingestion loop over the repositories under ``config.repo_roots``.

    ``provider_for`` maps a repository path to its provider and defaults to
    ``ProviderFactory`` detection; ``today`` and ``now`` are injectable clocks.
    """

    def __init__(
        self,
        queries: MonitorQueries,
        config: MonitorConfig | None = None,
        *,
        runner: CommandRunner | None = None,
        provider_for: ProviderResolver | None = None,
        daily_context: DailyContextClient | None = None,
        today: Callable[[], date] = date.today,
        now: Callable[[], str] = utc_now,
    ) -> None:
        self.queries = queries
        self.config = config or MonitorConfig()
        self.runner = runner or CommandRunner(timeout_seconds=self.config.command_timeout_seconds)
        self._provider_for = provider_for or self._detect_provider
        self.daily_context = daily_context or DailyContextClient(
            self.config.daily_context_command, self.config.daily_context_tool
        )
        self.mapper = RoadmapMapper(self.config.project_mapping)
        self._today = today
        self._now = now

    async def _detect_provider(self, repo_path: str) -> PRProvider:
        factory = ProviderFactory(self.runner, cwd=repo_path)
        return await factory.create_provider(self.config.provider)

    async def run(self, interval_minutes: int | None = None) -> None:
        """Tick forever, sleeping at least one minute between ticks."""
        minutes = max(1, interval_minutes or self.config.interval_minutes)
        while True:
            await self.run_once()
            await asyncio.sleep(minutes * 60)

    async def run_once(self) -> TickReport:
        repos = discover_repositories(self.config.expanded_repo_roots())
        logger.info("Discovered %d repositories", len(repos))
        report = TickReport(repositories=len(repos))

        # Permits are granted in submission order, so a limit of 1 is sequential.
        semaphore = asyncio.Semaphore(self.config.max_concurrent_repos)

        async def _guarded(path: Path) -> tuple[int, int] | None:
            async with semaphore:
                return await self._ingest_safely(path)

        for outcome in await asyncio.gather(*(_guarded(path) for path in repos)):
            if outcome is None:
                report.failed_repositories += 1
            else:
                report.pull_requests += outcome[0]
                report.notifications += outcome[1]

        report.daily_context_saved = await self.maybe_fetch_daily_context()
        logger.info(
            "Tick done: repos=%d failed=%d prs=%d notifications=%d",
            report.repositories,
            report.failed_repositories,
            report.pull_requests,
            report.notifications,
        )
        return report

    async def _ingest_safely(self, path: Path) -> tuple[int, int] | None:
        token = component.set(path.name)
        try:
            return await self.ingest_repository(path)
        except ProviderError as exc:
            logger.warning("Failed to ingest repo %s: %s", path.name, exc)
        except Exception:
            logger.exception("Failed to ingest repo %s", path.name)
        finally:
            component.reset(token)
        return None

    async def ingest_repository(self, path: Path) -> tuple[int, int]:
        """Ingest one repository. Returns ``(pull_requests, notifications)``."""
        repo_path = str(path)
        repo = Repo(
            id=make_stable_id(repo_path),
            name=path.name,
            path=repo_path,
            org=None,
            updated_at=self._now(),
        )
        await self.queries.upsert_repo(repo)

        provider = await self._provider_for(repo_path)
        summaries = await provider.list_open_pull_requests()
        logger.info("%s: %d open pull requests via %s", repo.name, len(summaries), provider.name)

        notifications = 0
        for summary in summaries:
            notifications += await self.ingest_pull_request(repo, provider, summary)

        await self.map_roadmap(repo)
        return len(summaries), notifications

    async def ingest_pull_request(
        self,
        repo: Repo,
        provider: PRProvider,
        summary: PullRequestSummary,
    ) -> int:
        """Persist one PR with its comments, checks and suggestions. Returns new notifications."""
        now = self._now()
        pr_id = make_stable_id(pr_key(repo.path, summary.number))
        await self.queries.upsert_pull_request(
            PullRequestRecord(
                id=pr_id,
                repo_id=repo.id,
                number=summary.number,
                title=summary.title,
                author=summary.author,
                url=summary.url,
                updated_at=summary.updated_at or now,
            )
        )

        details = await provider.fetch_pr(str(summary.number))
        comments = flatten_comments(details, pr_id, repo.path, summary.number)
        checks = build_check_runs(
            await provider.fetch_checks(summary.number), pr_id, repo.path, summary.number, now
        )

        previous_comment_ids = await self.queries.comment_ids_for_pr(pr_id)
        previous_failing_ids = await self.queries.failing_check_ids_for_pr(pr_id)

        await self.queries.replace_pr_snapshot(
            pr_id, comments, checks, build_fix_suggestions(pr_id, checks, comments, now)
        )

        notifications = derive_notifications(
            label=f"{repo.name} #{summary.number}",
            checks=checks,
            comments=comments,
            previous_failing_check_ids=previous_failing_ids,
            previous_comment_ids=previous_comment_ids,
            config=self.config.notifications,
            now=now,
        )
        return await self.queries.record_notifications(notifications) if notifications else 0

    async def map_roadmap(self, repo: Repo) -> None:
        project = self.mapper.project_for_repo_path(repo.path)
        if project is None:
            await self.queries.delete_roadmap_mapping(repo.id)
            return
        await self.queries.upsert_roadmap_mapping(
            RoadmapMapping(
                id=make_stable_id(f"{repo.path}#roadmap"),
                repo_id=repo.id,
                project_id=project.project_id,
                project_name=project.project_name,
                updated_at=self._now(),
            )
        )

    async def should_fetch_daily_context(self) -> bool:
        latest = await self.queries.latest_daily_context()
        return latest is None or latest.date != self._today().isoformat()

    async def maybe_fetch_daily_context(self) -> bool:
        """Fetch and store today's context once per local calendar day."""
        if not self.daily_context.enabled or not await self.should_fetch_daily_context():
            return False
        story = await self.daily_context.fetch_daily_story()
        if story is None:
            return False
        await self.queries.save_daily_context(
            DailyContext(
                date=self._today().isoformat(),
                summary_markdown=story,
                created_at=self._now(),
            )
        )
        return True
