"""GitLab provider backed by the ``glab`` CLI.

The discussions endpoint carries both general and inline notes, so one call
after ``glab mr view`` is enough to build the unified model.
"""

from __future__ import annotations

import logging
from typing import Any

from pr_monitor.cli_runner import CommandRunner
from pr_monitor.errors import InvalidResponse
from pr_monitor.models import (
    CheckResult,
    Comment,
    ProviderType,
    PullRequest,
    PullRequestSummary,
    Review,
    ReviewComment,
    ReviewState,
)
from pr_monitor.providers.base import parse_repo_identifier

logger = logging.getLogger("pr_monitor.providers.gitlab")

# GitLab has no author association; every participant is reported as a member.
MEMBER_ASSOCIATION = "MEMBER"
_TERMINAL_PIPELINE_STATES = frozenset({"success", "failed", "canceled", "skipped", "manual"})


def _note_author(note: dict[str, Any]) -> str:
    author = note.get("author") or {}
    return author.get("username") or author.get("name") or "unknown"


def parse_discussions(discussions: Any, web_url: str = "") -> tuple[list[Comment], list[Review]]:
    """Split discussions into general comments and one review per inline discussion.

    System notes are dropped. Inline notes (those with a diff ``position``)
    sharing a discussion id become comments of one ``COMMENTED`` review whose
    id is the discussion id.
    """
    if not isinstance(discussions, list):
        raise InvalidResponse("discussions endpoint did not return a list")

    comments: list[Comment] = []
    reviews: list[Review] = []
    try:
        for discussion in discussions:
            discussion_id = str(discussion["id"])
            inline: list[ReviewComment] = []
            first_inline: dict[str, Any] | None = None
            for note in discussion.get("notes") or []:
                if note.get("system"):
                    continue
                position = note.get("position")
                if position:
                    first_inline = first_inline or note
                    line = position.get("new_line")
                    if line is None:
                        line = position.get("old_line")
                    inline.append(
                        ReviewComment(
                            id=str(note["id"]),
                            path=position.get("new_path") or position.get("old_path") or "",
                            line=line,
                            body=note.get("body") or "",
                            created_at=note.get("created_at") or "",
                            thread_id=discussion_id,
                            is_resolved=bool(note.get("resolved")) if note.get("resolvable") else None,
                        )
                    )
                    continue
                comments.append(
                    Comment(
                        id=str(note["id"]),
                        author=_note_author(note),
                        author_association=MEMBER_ASSOCIATION,
                        body=note.get("body") or "",
                        created_at=note.get("created_at") or "",
                        url=f"{web_url}#note_{note['id']}" if web_url else "",
                    )
                )
            if first_inline is not None:
                reviews.append(
                    Review(
                        id=discussion_id,
                        author=_note_author(first_inline),
                        author_association=MEMBER_ASSOCIATION,
                        body=None,
                        submitted_at=first_inline.get("created_at"),
                        state=ReviewState.COMMENTED,
                        comments=inline,
                    )
                )
    except (KeyError, TypeError, AttributeError) as exc:
        raise InvalidResponse(f"unexpected discussions payload: {exc!r}") from exc
    return comments, reviews


def parse_pipelines(raw: Any) -> list[CheckResult]:
    """Report the most recent merge request pipeline as a single check."""
    if not isinstance(raw, list):
        raise InvalidResponse("pipelines endpoint did not return a list")
    if not raw:
        return []
    latest = raw[0]
    state = (latest.get("status") or "unknown").lower()
    terminal = state in _TERMINAL_PIPELINE_STATES
    return [
        CheckResult(
            name=f"pipeline {latest.get('ref') or latest.get('id')}",
            status="completed" if terminal else state,
            conclusion=state if terminal else None,
            details_url=latest.get("web_url"),
            completed_at=latest.get("updated_at") if terminal else None,
        )
    ]


class GitLabProvider:
    """GitLab adapter. ``repo`` overrides map to ``glab --repo``."""

    name = "GitLab"
    provider_type = ProviderType.GITLAB
    cli_name = "glab"

    def __init__(self, runner: CommandRunner | None = None, cwd: str | None = None) -> None:
        self._runner = runner or CommandRunner()
        self._cwd = cwd

    async def is_available(self) -> bool:
        return await self._runner.is_installed(self.cli_name)

    def _with_repo(self, args: list[str], repo: str | None) -> list[str]:
        if repo is not None:
            args.extend(["--repo", repo])
        return args

    async def fetch_pr(self, identifier: str, repo: str | None = None) -> PullRequest:
        if repo is not None:
            parse_repo_identifier(repo)
        glab = self._runner.find_executable(self.cli_name)

        args = ["mr", "view"]
        if identifier:
            args.append(identifier)
        args.extend(["--output", "json"])
        view = await self._runner.run_json(glab, self._with_repo(args, repo), cwd=self._cwd)
        if not isinstance(view, dict):
            raise InvalidResponse("glab mr view did not return an object")

        mr_ref = str(view.get("iid") or identifier)
        discussions = await self._runner.run_json(
            glab,
            self._with_repo(["api", f"projects/:id/merge_requests/{mr_ref}/discussions"], repo),
            cwd=self._cwd,
        )
        comments, reviews = parse_discussions(discussions, web_url=view.get("web_url") or "")
        return PullRequest(
            body=view.get("description") or "",
            comments=comments,
            reviews=reviews,
            files=None,
            number=None,
        )

    async def reply_to_comment(
        self,
        pr_identifier: str,
        comment_id: str,
        body: str,
        repo: str | None = None,
    ) -> None:
        # Note-level replies are not exposed; the reply lands as a general note.
        del comment_id
        glab = self._runner.find_executable(self.cli_name)
        args = [
            "api",
            f"projects/:id/merge_requests/{pr_identifier}/notes",
            "-f",
            f"body={body}",
            "--method",
            "POST",
        ]
        await self._runner.run(glab, self._with_repo(args, repo), cwd=self._cwd)

    async def resolve_thread(
        self,
        pr_identifier: str,
        thread_id: str,
        repo: str | None = None,
    ) -> None:
        glab = self._runner.find_executable(self.cli_name)
        args = [
            "api",
            f"projects/:id/merge_requests/{pr_identifier}/discussions/{thread_id}",
            "-f",
            "resolved=true",
            "--method",
            "PUT",
        ]
        await self._runner.run(glab, self._with_repo(args, repo), cwd=self._cwd)

    async def post_comment(self, pr_identifier: str, body: str, repo: str | None = None) -> None:
        glab = self._runner.find_executable(self.cli_name)
        args = ["mr", "note", pr_identifier, "--message", body]
        await self._runner.run(glab, self._with_repo(args, repo), cwd=self._cwd)

    async def list_open_pull_requests(self) -> list[PullRequestSummary]:
        glab = self._runner.find_executable(self.cli_name)
        raw = await self._runner.run_json(glab, ["mr", "list", "--output", "json"], cwd=self._cwd)
        if not isinstance(raw, list):
            raise InvalidResponse("glab mr list did not return a list")
        try:
            return [
                PullRequestSummary(
                    number=item["iid"],
                    title=item.get("title") or "",
                    author=(item.get("author") or {}).get("username"),
                    url=item.get("web_url") or "",
                    updated_at=item.get("updated_at"),
                )
                for item in raw
            ]
        except (KeyError, TypeError) as exc:
            raise InvalidResponse(f"unexpected glab mr list payload: {exc!r}") from exc

    async def fetch_checks(self, number: int) -> list[CheckResult]:
        glab = self._runner.find_executable(self.cli_name)
        raw = await self._runner.run_json(
            glab, ["api", f"projects/:id/merge_requests/{number}/pipelines"], cwd=self._cwd
        )
        return parse_pipelines(raw)
