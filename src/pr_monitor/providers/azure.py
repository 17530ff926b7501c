"""Azure DevOps provider backed by ``az repos`` and ``az devops invoke``.

Azure has no general comments: every discussion is a thread, and each thread
becomes one review in the unified model.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pr_monitor.cli_runner import CommandRunner
from pr_monitor.errors import InvalidConfiguration, InvalidResponse, ProviderError
from pr_monitor.models import (
    CheckResult,
    ProviderType,
    PullRequest,
    PullRequestSummary,
    Review,
    ReviewComment,
    ReviewState,
)

logger = logging.getLogger("pr_monitor.providers.azure")

RESOLVED_THREAD_STATUSES = frozenset({"fixed", "closed", "wontFix", "byDesign"})
CONTRIBUTOR_ASSOCIATION = "CONTRIBUTOR"
_PENDING_POLICY_STATES = frozenset({"queued", "running"})
_PULL_REQUEST_URL_RE = re.compile(r"/pullrequest/(\d+)/?(?:[?#].*)?$", re.IGNORECASE)


def _pull_request_id(identifier: str) -> str:
    if identifier.isascii() and identifier.isdigit():
        return identifier
    match = _PULL_REQUEST_URL_RE.search(identifier)
    if match:
        return match.group(1)
    raise InvalidConfiguration(
        f"Azure DevOps needs a pull request id or URL, got '{identifier or '<empty>'}'"
    )


def review_state_for(status: str | None) -> ReviewState:
    """``active`` or missing (system threads) is pending; everything else approved."""
    if status is None or status == "active":
        return ReviewState.PENDING
    return ReviewState.APPROVED


def parse_threads(threads: list[dict[str, Any]]) -> list[Review]:
    reviews: list[Review] = []
    try:
        for thread in threads:
            thread_id = str(thread["id"])
            status = thread.get("status")
            is_resolved = status in RESOLVED_THREAD_STATUSES
            context = thread.get("threadContext") or {}
            path = context.get("filePath") or ""
            line = (context.get("rightFileStart") or {}).get("line")
            raw_comments = thread.get("comments") or []
            first = raw_comments[0] if raw_comments else {}

            reviews.append(
                Review(
                    id=thread_id,
                    author=(first.get("author") or {}).get("displayName") or "Unknown",
                    author_association=CONTRIBUTOR_ASSOCIATION,
                    body=first.get("content"),
                    submitted_at=thread.get("publishedDate"),
                    state=review_state_for(status),
                    comments=[
                        ReviewComment(
                            id=str(comment["id"]),
                            path=path,
                            line=line,
                            body=comment.get("content") or "",
                            created_at=comment.get("publishedDate") or "",
                            thread_id=thread_id,
                            is_resolved=is_resolved,
                        )
                        for comment in raw_comments
                    ],
                )
            )
    except (KeyError, TypeError, AttributeError) as exc:
        raise InvalidResponse(f"unexpected pullRequestThreads payload: {exc!r}") from exc
    return reviews


def parse_policies(raw: Any) -> list[CheckResult]:
    """Map PR policy evaluations to checks; ``approved`` counts as success."""
    if not isinstance(raw, list):
        raise InvalidResponse("az repos pr policy list did not return a list")
    results: list[CheckResult] = []
    for item in raw:
        state = item.get("status") or "unknown"
        if state == "notApplicable":
            continue
        configuration = item.get("configuration") or {}
        settings = configuration.get("settings") or {}
        name = (
            settings.get("displayName")
            or (configuration.get("type") or {}).get("displayName")
            or str(item.get("evaluationId") or "policy")
        )
        pending = state in _PENDING_POLICY_STATES
        results.append(
            CheckResult(
                name=name,
                status=state if pending else "completed",
                conclusion=None if pending else ("success" if state == "approved" else state.lower()),
                details_url=None,
                completed_at=item.get("completedDate"),
            )
        )
    return results


class AzureDevOpsProvider:
    """Azure DevOps adapter. ``repo`` is passed as ``--repository`` where az accepts it."""

    name = "Azure DevOps"
    provider_type = ProviderType.AZURE
    cli_name = "az"

    def __init__(self, runner: CommandRunner | None = None, cwd: str | None = None) -> None:
        self._runner = runner or CommandRunner()
        self._cwd = cwd

    async def is_available(self) -> bool:
        return await self._runner.is_installed(self.cli_name)

    async def fetch_pr(self, identifier: str, repo: str | None = None) -> PullRequest:
        del repo  # az resolves the repository from the pull request id
        pr_id = _pull_request_id(identifier)
        az = self._runner.find_executable(self.cli_name)

        view = await self._runner.run_json(
            az, ["repos", "pr", "show", "--id", pr_id, "--output", "json"], cwd=self._cwd
        )
        if not isinstance(view, dict):
            raise InvalidResponse("az repos pr show did not return an object")

        repository = view.get("repository") or {}
        project = (repository.get("project") or {}).get("name") or ""
        reviews: list[Review] = []
        try:
            raw = await self._runner.run_json(
                az,
                [
                    "devops",
                    "invoke",
                    "--area",
                    "git",
                    "--resource",
                    "pullRequestThreads",
                    "--route-parameters",
                    f"project={project}",
                    f"repositoryId={repository.get('name') or ''}",
                    f"pullRequestId={pr_id}",
                    "--output",
                    "json",
                ],
                cwd=self._cwd,
            )
            threads = raw.get("value") if isinstance(raw, dict) else None
            if threads is None:
                raise InvalidResponse("pullRequestThreads response has no 'value' list")
            reviews = parse_threads(threads)
        except ProviderError as exc:
            logger.warning("Could not fetch threads for Azure PR %s: %s", pr_id, exc)

        return PullRequest(
            body=view.get("description") or "",
            comments=[],
            reviews=reviews,
            files=None,
            number=view.get("pullRequestId"),
        )

    def _with_repository(self, args: list[str], repo: str | None) -> list[str]:
        if repo is not None:
            args.extend(["--repository", repo])
        return args

    async def reply_to_comment(
        self,
        pr_identifier: str,
        comment_id: str,
        body: str,
        repo: str | None = None,
    ) -> None:
        # comment_id is the thread id; replies are appended to the thread.
        az = self._runner.find_executable(self.cli_name)
        args = [
            "repos",
            "pr",
            "thread",
            "comment",
            "create",
            "--thread-id",
            comment_id,
            "--content",
            body,
            "--pull-request-id",
            pr_identifier,
        ]
        await self._runner.run(az, self._with_repository(args, repo), cwd=self._cwd)

    async def resolve_thread(
        self,
        pr_identifier: str,
        thread_id: str,
        repo: str | None = None,
    ) -> None:
        az = self._runner.find_executable(self.cli_name)
        args = [
            "repos",
            "pr",
            "thread",
            "update",
            "--thread-id",
            thread_id,
            "--status",
            "fixed",
            "--pull-request-id",
            pr_identifier,
        ]
        await self._runner.run(az, self._with_repository(args, repo), cwd=self._cwd)

    async def post_comment(self, pr_identifier: str, body: str, repo: str | None = None) -> None:
        del repo
        az = self._runner.find_executable(self.cli_name)
        await self._runner.run(
            az,
            ["repos", "pr", "thread", "create", "--id", pr_identifier, "--content", body],
            cwd=self._cwd,
        )

    async def list_open_pull_requests(self) -> list[PullRequestSummary]:
        az = self._runner.find_executable(self.cli_name)
        raw = await self._runner.run_json(
            az, ["repos", "pr", "list", "--status", "active", "--output", "json"], cwd=self._cwd
        )
        if not isinstance(raw, list):
            raise InvalidResponse("az repos pr list did not return a list")
        try:
            return [
                PullRequestSummary(
                    number=item["pullRequestId"],
                    title=item.get("title") or "",
                    author=(item.get("createdBy") or {}).get("displayName"),
                    url=item.get("url") or "",
                    updated_at=item.get("creationDate"),
                )
                for item in raw
            ]
        except (KeyError, TypeError) as exc:
            raise InvalidResponse(f"unexpected az repos pr list payload: {exc!r}") from exc

    async def fetch_checks(self, number: int) -> list[CheckResult]:
        az = self._runner.find_executable(self.cli_name)
        raw = await self._runner.run_json(
            az, ["repos", "pr", "policy", "list", "--id", str(number), "--output", "json"],
            cwd=self._cwd,
        )
        return parse_policies(raw)
