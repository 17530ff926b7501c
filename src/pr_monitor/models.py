"""Pydantic models and enums for the PR monitor.

Two families live here:

- The unified pull request model (``PullRequest`` and friends), rebuilt fresh
  from provider data on every fetch.
- Persisted records (``Repo``, ``PullRequestRecord``, ``CheckRun``, ...) that
  the daemon writes through ``MonitorQueries``.
"""

from __future__ import annotations

import uuid
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class ReviewState(StrEnum):
    """Review states shared by all providers."""

    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    DISMISSED = "DISMISSED"
    PENDING = "PENDING"


class ProviderType(StrEnum):
    """Supported code review platforms, in fallback priority order."""

    GITHUB = "github"
    GITLAB = "gitlab"
    AZURE = "azure"


class Severity(StrEnum):
    """Severity of fix suggestions and notifications."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FixStatus(StrEnum):
    """Fix suggestion lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"


class CommentKind(StrEnum):
    """Where a flattened comment came from. Only inline comments are resolvable."""

    GENERAL = "general"
    INLINE = "inline"


class NotificationType(StrEnum):
    CHECK_FAILED = "check_failed"
    NEW_COMMENT = "new_comment"


SUCCESS_CONCLUSION = "success"


# ---- Unified pull request model ----


class FileChange(BaseModel):
    path: str
    additions: int = 0
    deletions: int = 0


class Comment(BaseModel):
    """General (non-inline) discussion entry on a pull request."""

    id: str
    author: str
    author_association: str
    body: str
    created_at: str
    url: str = ""


class ReviewComment(BaseModel):
    """Inline code comment.

    ``is_resolved`` is tri-state: ``None`` means the provider gave no
    resolution data and must not be read as either resolved or unresolved.
    """

    id: str
    path: str | None = None
    line: int | None = None
    body: str
    created_at: str
    thread_id: str | None = None
    is_resolved: bool | None = None


class Review(BaseModel):
    """A reviewer pass, or a synthetic grouping of inline comments."""

    id: str
    author: str
    author_association: str
    body: str | None = None
    submitted_at: str | None = None
    state: str
    comments: list[ReviewComment] | None = None

    @field_validator("state")
    @classmethod
    def _uppercase_state(cls, value: str) -> str:
        return value.upper()


class PullRequest(BaseModel):
    """Provider-agnostic pull request.

    ``comments`` holds general discussion only; inline discussion lives under
    ``reviews[].comments``.
    """

    body: str = ""
    comments: list[Comment] = Field(default_factory=list)
    reviews: list[Review] = Field(default_factory=list)
    files: list[FileChange] | None = None
    number: int | None = None


class PullRequestSummary(BaseModel):
    """One row of a provider's open pull request listing."""

    number: int
    title: str
    author: str | None = None
    url: str = ""
    updated_at: str | None = None


class CheckResult(BaseModel):
    """CI status for a pull request, normalized across providers."""

    name: str
    status: str
    conclusion: str | None = None
    details_url: str | None = None
    completed_at: str | None = None

    @property
    def is_failing(self) -> bool:
        return (self.conclusion or "").lower() != SUCCESS_CONCLUSION


# ---- Persisted records ----


class Repo(BaseModel):
    id: str
    name: str
    path: str
    org: str | None = None
    updated_at: str


class PullRequestRecord(BaseModel):
    id: str
    repo_id: str
    number: int
    title: str
    author: str | None = None
    url: str
    updated_at: str


class CheckRun(BaseModel):
    id: str
    pr_id: str
    name: str
    status: str
    conclusion: str | None = None
    details_url: str | None = None
    updated_at: str

    @property
    def is_failing(self) -> bool:
        return (self.conclusion or "").lower() != SUCCESS_CONCLUSION


class PRComment(BaseModel):
    """Storage-shaped projection of a general comment or inline review comment."""

    id: str
    pr_id: str
    comment_id: str
    kind: CommentKind
    author: str
    body: str
    url: str = ""
    is_resolved: bool = False
    updated_at: str


class RoadmapMapping(BaseModel):
    id: str
    repo_id: str
    project_id: str
    project_name: str
    status_option_id: str | None = None
    updated_at: str


class RoadmapSummary(BaseModel):
    project_id: str
    project_name: str
    repo_count: int = 0
    open_pull_request_count: int = 0
    failing_check_count: int = 0
    unresolved_comment_count: int = 0


class FixSuggestion(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    pr_id: str
    summary: str
    severity: Severity
    recommended_action: str
    status: FixStatus = FixStatus.PENDING
    created_at: str


class NotificationRecord(BaseModel):
    id: str
    type: NotificationType
    severity: Severity
    message: str
    created_at: str
    handled_at: str | None = None


class DailyContext(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    date: str = Field(description="Local calendar date, YYYY-MM-DD")
    summary_markdown: str
    created_at: str
