"""GitHub provider backed by the ``gh`` CLI.

A complete picture of a pull request takes three calls:

1. ``gh pr view --json`` for the body, general comments and reviews. Inline
   review comments are not included.
2. ``gh api repos/.../pulls/N/comments`` for inline comments. These reference
   their review by an integer id that cannot be joined against the string
   review ids from (1), so they are attached to reviews by author login.
3. A GraphQL ``reviewThreads`` query for thread ids and resolution state,
   joined to the inline comments by ``(path, line, author)``. Failures here
   only cost resolution data; the fetch itself still succeeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pr_monitor.cli_runner import CommandRunner
from pr_monitor.errors import CommandFailed, InvalidConfiguration, InvalidResponse, ProviderError
from pr_monitor.models import (
    CheckResult,
    Comment,
    FileChange,
    ProviderType,
    PullRequest,
    PullRequestSummary,
    Review,
    ReviewComment,
    ReviewState,
)
from pr_monitor.providers.base import parse_git_remote_url, parse_repo_identifier

logger = logging.getLogger("pr_monitor.providers.github")

THREAD_ID_PREFIXES = ("PRRT_", "PRT_")
_PR_VIEW_FIELDS = "body,comments,reviews,files,number"
_PR_LIST_FIELDS = "number,title,author,url,updatedAt"
_UNSET_TIMESTAMP = "0001-01-01T00:00:00Z"

REVIEW_THREADS_QUERY = """\
query($owner: String!, $repo: String!, $prNumber: Int!, $after: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $prNumber) {
      reviewThreads(first: 100, after: $after) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          path
          line
          comments(first: 1) {
            nodes { id body author { login } }
          }
        }
      }
    }
  }
}"""

RESOLVE_THREAD_MUTATION = """\
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread { id isResolved }
  }
}"""


@dataclass(frozen=True)
class _InlineComment:
    """REST inline comment, reduced to what reconciliation needs."""

    id: str
    author: str
    path: str
    line: int | None
    body: str
    created_at: str


@dataclass(frozen=True)
class _ReviewThread:
    id: str
    is_resolved: bool
    path: str | None
    line: int | None
    first_author: str | None


def _login(author: dict[str, Any] | None) -> str:
    if not author:
        return "ghost"
    return author.get("login") or "ghost"


def parse_pr_view(raw: Any) -> PullRequest:
    """Convert ``gh pr view --json body,comments,reviews,files,number`` output."""
    if not isinstance(raw, dict):
        raise InvalidResponse("gh pr view did not return an object")
    try:
        comments = [
            Comment(
                id=str(item["id"]),
                author=_login(item.get("author")),
                author_association=item.get("authorAssociation") or "NONE",
                body=item.get("body") or "",
                created_at=item.get("createdAt") or "",
                url=item.get("url") or "",
            )
            for item in raw.get("comments") or []
        ]
        reviews = [
            Review(
                id=str(item["id"]),
                author=_login(item.get("author")),
                author_association=item.get("authorAssociation") or "NONE",
                body=item.get("body"),
                submitted_at=item.get("submittedAt"),
                state=item.get("state") or ReviewState.COMMENTED,
            )
            for item in raw.get("reviews") or []
        ]
        files = None
        if raw.get("files") is not None:
            files = [
                FileChange(
                    path=item["path"],
                    additions=item.get("additions") or 0,
                    deletions=item.get("deletions") or 0,
                )
                for item in raw["files"]
            ]
    except (KeyError, TypeError) as exc:
        raise InvalidResponse(f"unexpected gh pr view payload: {exc!r}") from exc

    return PullRequest(
        body=raw.get("body") or "",
        comments=comments,
        reviews=reviews,
        files=files,
        number=raw.get("number"),
    )


def parse_inline_comments(raw: Any) -> list[_InlineComment]:
    """Parse the slurped pages of the comments endpoint (a list of lists)."""
    if not isinstance(raw, list) or not all(isinstance(page, list) for page in raw):
        raise InvalidResponse("pull request comments endpoint did not return a list of pages")
    raw = [item for page in raw for item in page]
    try:
        return [
            _InlineComment(
                id=str(item["id"]),
                author=_login(item.get("user")),
                path=item["path"],
                line=item["line"] if item.get("line") is not None else item.get("original_line"),
                body=item.get("body") or "",
                created_at=item.get("created_at") or "",
            )
            for item in raw
        ]
    except (KeyError, TypeError) as exc:
        raise InvalidResponse(f"unexpected inline comment payload: {exc!r}") from exc


def merge_inline_comments(pr: PullRequest, inline: list[_InlineComment]) -> PullRequest:
    """Attach inline comments to reviews by author login.

    Comments go to the first review by the same author; authors without a
    review get one synthetic ``COMMENTED`` review dated at their earliest
    comment. Two reviews from one author cannot be told apart here, so the
    first one receives every inline comment of that author.
    """
    if not inline:
        return pr

    by_author: dict[str, list[ReviewComment]] = {}
    for item in inline:
        by_author.setdefault(item.author, []).append(
            ReviewComment(
                id=item.id,
                path=item.path,
                line=item.line,
                body=item.body,
                created_at=item.created_at,
            )
        )

    first_review_index: dict[str, int] = {}
    for index, review in enumerate(pr.reviews):
        first_review_index.setdefault(review.author, index)

    reviews = list(pr.reviews)
    for author, comments in by_author.items():
        index = first_review_index.get(author)
        if index is not None:
            existing = reviews[index]
            reviews[index] = existing.model_copy(
                update={"comments": [*(existing.comments or []), *comments]}
            )
            continue
        reviews.append(
            Review(
                id=f"inline-{author}",
                author=author,
                author_association="NONE",
                body=None,
                submitted_at=min(comment.created_at for comment in comments),
                state=ReviewState.COMMENTED,
                comments=comments,
            )
        )

    return pr.model_copy(update={"reviews": reviews})


def merge_review_threads(pr: PullRequest, threads: list[_ReviewThread]) -> PullRequest:
    """Copy GraphQL thread ids and resolution onto matching inline comments.

    The join key is ``(path, line, author)``. Unmatched comments keep
    ``thread_id`` and ``is_resolved`` unset.
    """
    if not threads:
        return pr

    lookup: dict[tuple[str, int, str], _ReviewThread] = {}
    for thread in threads:
        if thread.first_author is None or thread.path is None:
            continue
        lookup[(thread.path, thread.line or 0, thread.first_author)] = thread

    reviews: list[Review] = []
    for review in pr.reviews:
        if review.comments is None:
            reviews.append(review)
            continue
        updated: list[ReviewComment] = []
        for comment in review.comments:
            thread = None
            if comment.path is not None and comment.line is not None:
                thread = lookup.get((comment.path, comment.line, review.author))
            if thread is None:
                updated.append(comment)
            else:
                updated.append(
                    comment.model_copy(
                        update={"thread_id": thread.id, "is_resolved": thread.is_resolved}
                    )
                )
        reviews.append(review.model_copy(update={"comments": updated}))

    return pr.model_copy(update={"reviews": reviews})


def parse_review_threads(nodes: list[dict[str, Any]]) -> list[_ReviewThread]:
    threads: list[_ReviewThread] = []
    for node in nodes:
        first = next(iter((node.get("comments") or {}).get("nodes") or []), None)
        author = None
        if first is not None and first.get("author"):
            author = first["author"].get("login")
        threads.append(
            _ReviewThread(
                id=node["id"],
                is_resolved=bool(node.get("isResolved")),
                path=node.get("path"),
                line=node.get("line"),
                first_author=author,
            )
        )
    return threads


def _graphql_error_text(payload: dict[str, Any]) -> str | None:
    errors = payload.get("errors")
    if not errors:
        return None
    return "; ".join(str(error.get("message", "Unknown GraphQL error")) for error in errors)


def parse_status_check_rollup(raw: Any) -> list[CheckResult]:
    """Normalize ``statusCheckRollup`` entries (CheckRun and StatusContext)."""
    if not isinstance(raw, dict):
        raise InvalidResponse("gh pr view did not return an object")
    results: list[CheckResult] = []
    for item in raw.get("statusCheckRollup") or []:
        if item.get("__typename") == "StatusContext" or "context" in item:
            state = (item.get("state") or "").lower()
            pending = state in {"", "pending", "expected"}
            results.append(
                CheckResult(
                    name=item.get("context") or "status",
                    status="pending" if pending else "completed",
                    conclusion=None if pending else state,
                    details_url=item.get("targetUrl") or None,
                    completed_at=None,
                )
            )
            continue
        completed_at = item.get("completedAt")
        if completed_at == _UNSET_TIMESTAMP:
            completed_at = None
        conclusion = item.get("conclusion")
        results.append(
            CheckResult(
                name=item.get("name") or item.get("workflowName") or "check",
                status=(item.get("status") or "unknown").lower(),
                conclusion=conclusion.lower() if conclusion else None,
                details_url=item.get("detailsUrl") or None,
                completed_at=completed_at,
            )
        )
    return results


class GitHubProvider:
    """GitHub adapter. Runs ``gh`` in ``cwd`` (a repository checkout)."""

    name = "GitHub"
    provider_type = ProviderType.GITHUB
    cli_name = "gh"

    def __init__(self, runner: CommandRunner | None = None, cwd: str | None = None) -> None:
        self._runner = runner or CommandRunner()
        self._cwd = cwd

    async def is_available(self) -> bool:
        return await self._runner.is_installed(self.cli_name)

    async def fetch_pr(self, identifier: str, repo: str | None = None) -> PullRequest:
        if repo is not None:
            parse_repo_identifier(repo)
        gh = self._runner.find_executable(self.cli_name)

        args = ["pr", "view"]
        if identifier:
            args.append(identifier)
        args.extend(["--json", _PR_VIEW_FIELDS])
        if repo is not None:
            args.extend(["--repo", repo])
        pr = parse_pr_view(await self._runner.run_json(gh, args, cwd=self._cwd))

        # gh api has no --repo flag; {owner}/{repo} placeholders resolve from cwd.
        number = str(pr.number) if pr.number is not None else identifier
        repo_path = repo if repo is not None else "{owner}/{repo}"
        inline_raw = await self._runner.run_json(
            gh,
            [
                "api",
                "--paginate",
                "--slurp",
                f"repos/{repo_path}/pulls/{number}/comments?per_page=100",
            ],
            cwd=self._cwd,
        )
        pr = merge_inline_comments(pr, parse_inline_comments(inline_raw))

        if pr.number is not None:
            try:
                owner, name = await self._resolve_owner_repo(repo)
                threads = await self._fetch_review_threads(owner, name, pr.number)
            except ProviderError as exc:
                logger.warning("Could not fetch thread IDs for PR #%s: %s", pr.number, exc)
            else:
                pr = merge_review_threads(pr, threads)
        return pr

    async def _resolve_owner_repo(self, repo: str | None) -> tuple[str, str]:
        if repo is not None:
            return parse_repo_identifier(repo)
        return parse_git_remote_url(await self._runner.git_remote_url(cwd=self._cwd))

    async def _fetch_review_threads(self, owner: str, repo: str, number: int) -> list[_ReviewThread]:
        nodes: list[dict[str, Any]] = []
        after: str | None = None
        while True:
            variables: dict[str, Any] = {"owner": owner, "repo": repo, "prNumber": number}
            if after:
                variables["after"] = after
            payload = await self._runner.graphql(REVIEW_THREADS_QUERY, variables, cwd=self._cwd)
            if (errors := _graphql_error_text(payload)) is not None:
                logger.warning("Could not fetch GraphQL thread IDs: %s", errors)
                return []
            try:
                connection = payload["data"]["repository"]["pullRequest"]["reviewThreads"]
            except (KeyError, TypeError):
                return []
            nodes.extend(connection.get("nodes") or [])
            page_info = connection.get("pageInfo") or {}
            after = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not after:
                break
        try:
            return parse_review_threads(nodes)
        except (KeyError, TypeError) as exc:
            raise InvalidResponse(f"unexpected reviewThreads payload: {exc!r}") from exc

    async def reply_to_comment(
        self,
        pr_identifier: str,
        comment_id: str,
        body: str,
        repo: str | None = None,
    ) -> None:
        # Replies are new review comments carrying in_reply_to.
        if repo is not None:
            owner, name = parse_repo_identifier(repo)
            path = f"repos/{owner}/{name}/pulls/{pr_identifier}/comments"
        else:
            path = f"repos/{{owner}}/{{repo}}/pulls/{pr_identifier}/comments"
        gh = self._runner.find_executable(self.cli_name)
        await self._runner.run(
            gh,
            ["api", "-X", "POST", path, "-f", f"body={body}", "-F", f"in_reply_to={comment_id}"],
            cwd=self._cwd,
        )

    async def resolve_thread(
        self,
        pr_identifier: str,
        thread_id: str,
        repo: str | None = None,
    ) -> None:
        del pr_identifier, repo  # thread node ids are globally unique
        if not thread_id.startswith(THREAD_ID_PREFIXES):
            raise InvalidConfiguration(
                f"Invalid GitHub thread ID '{thread_id}'. Expected format: PRRT_xxx or PRT_xxx"
            )
        payload = await self._runner.graphql(
            RESOLVE_THREAD_MUTATION, {"threadId": thread_id}, cwd=self._cwd
        )

        if (errors := _graphql_error_text(payload)) is not None:
            if "Resource not accessible" in errors:
                raise CommandFailed(
                    "resolveReviewThread",
                    "Resource not accessible by integration. Ensure 'gh' is authenticated "
                    "with the 'repo' scope (gh auth refresh -s repo).",
                )
            raise CommandFailed("GraphQL mutation", errors)

        thread = ((payload.get("data") or {}).get("resolveReviewThread") or {}).get("thread")
        if not thread:
            raise CommandFailed(
                "resolveReviewThread", "Thread resolution failed or returned unexpected state"
            )
        if not thread.get("isResolved"):
            raise CommandFailed(
                "resolveReviewThread", "Thread was not marked as resolved after mutation"
            )

    async def post_comment(self, pr_identifier: str, body: str, repo: str | None = None) -> None:
        if repo is not None:
            parse_repo_identifier(repo)
        gh = self._runner.find_executable(self.cli_name)
        args = ["pr", "comment", pr_identifier, "--body", body]
        if repo is not None:
            args.extend(["--repo", repo])
        await self._runner.run(gh, args, cwd=self._cwd)

    async def list_open_pull_requests(self) -> list[PullRequestSummary]:
        gh = self._runner.find_executable(self.cli_name)
        raw = await self._runner.run_json(
            gh,
            ["pr", "list", "--state", "open", "--json", _PR_LIST_FIELDS],
            cwd=self._cwd,
        )
        if not isinstance(raw, list):
            raise InvalidResponse("gh pr list did not return a list")
        try:
            return [
                PullRequestSummary(
                    number=item["number"],
                    title=item.get("title") or "",
                    author=item["author"].get("login") if item.get("author") else None,
                    url=item.get("url") or "",
                    updated_at=item.get("updatedAt"),
                )
                for item in raw
            ]
        except (KeyError, TypeError) as exc:
            raise InvalidResponse(f"unexpected gh pr list payload: {exc!r}") from exc

    async def fetch_checks(self, number: int) -> list[CheckResult]:
        gh = self._runner.find_executable(self.cli_name)
        raw = await self._runner.run_json(
            gh, ["pr", "view", str(number), "--json", "statusCheckRollup"], cwd=self._cwd
        )
        return parse_status_check_rollup(raw)
