"""Provider contract shared by the GitHub, GitLab and Azure DevOps adapters."""

from __future__ import annotations

import re
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

from pr_monitor.errors import InvalidConfiguration
from pr_monitor.models import CheckResult, ProviderType, PullRequest, PullRequestSummary

_SCP_REMOTE_RE = re.compile(r"^(?:[^@/]+@)?[^:/]+:(?P<path>[^/].*)$")


@runtime_checkable
class PRProvider(Protocol):
    """Capability set every platform adapter implements.

    ``identifier`` arguments accept a PR/MR number, a URL, or an empty string
    meaning "the PR of the current branch". ``repo`` is an optional
    ``owner/repo`` override; without it the adapter resolves the repository
    from the version-control remote of its working directory.
    """

    name: str
    provider_type: ProviderType

    async def fetch_pr(self, identifier: str, repo: str | None = None) -> PullRequest: ...

    async def reply_to_comment(
        self,
        pr_identifier: str,
        comment_id: str,
        body: str,
        repo: str | None = None,
    ) -> None: ...

    async def resolve_thread(
        self,
        pr_identifier: str,
        thread_id: str,
        repo: str | None = None,
    ) -> None: ...

    async def post_comment(self, pr_identifier: str, body: str, repo: str | None = None) -> None: ...

    async def list_open_pull_requests(self) -> list[PullRequestSummary]: ...

    async def fetch_checks(self, number: int) -> list[CheckResult]: ...

    async def is_available(self) -> bool: ...


def detect_provider_type(remote_url: str) -> ProviderType | None:
    """Match a remote URL against known hosts; ``None`` when unrecognized."""
    url = remote_url.lower()
    if "github.com" in url:
        return ProviderType.GITHUB
    if "gitlab.com" in url or "gitlab" in url:
        return ProviderType.GITLAB
    if "dev.azure.com" in url or "visualstudio.com" in url:
        return ProviderType.AZURE
    return None


def parse_repo_identifier(repo: str) -> tuple[str, str]:
    """Split ``owner/repo`` into its two parts."""
    parts = repo.split("/", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidConfiguration(f"Invalid repo format '{repo}'. Expected 'owner/repo'")
    return parts[0], parts[1]


def parse_git_remote_url(url: str) -> tuple[str, str]:
    """Extract ``(owner, repo)`` from an SSH, scp-style or HTTPS remote URL."""
    path = ""
    if "://" in url:
        path = urlparse(url).path
    else:
        match = _SCP_REMOTE_RE.match(url)
        if match:
            path = match.group("path")

    components = [part for part in path.split("/") if part]
    if len(components) >= 2:
        owner = components[0]
        name = components[1]
        if name.endswith(".git"):
            name = name[: -len(".git")]
        if owner and name:
            return owner, name

    raise InvalidConfiguration(f"Could not parse repository from git remote URL: {url}")
