"""Notification derivation by diffing a PR's previous and current state.

A check that is failing now but was not failing on the previous tick yields a
``check_failed`` notification; an unresolved comment whose row did not exist
before yields ``new_comment``. Notification ids derive from the entity id, so
each entity notifies at most once.
"""

from __future__ import annotations

from collections.abc import Iterable

from pr_monitor.config_schema import NotificationConfig
from pr_monitor.models import CheckRun, NotificationRecord, NotificationType, PRComment
from pr_monitor.severity import (
    CHECK_FAILURE_SEVERITY,
    UNRESOLVED_COMMENT_SEVERITY,
    meets_min_severity,
)
from pr_monitor.stable_id import make_stable_id


def notification_id(kind: NotificationType, entity_id: str) -> str:
    return make_stable_id(f"notification#{kind}#{entity_id}")


def derive_notifications(
    *,
    label: str,
    checks: Iterable[CheckRun],
    comments: Iterable[PRComment],
    previous_failing_check_ids: set[str],
    previous_comment_ids: set[str],
    config: NotificationConfig,
    now: str,
) -> list[NotificationRecord]:
    """Return notifications for newly failing checks and newly seen unresolved comments.

    ``label`` prefixes every message, e.g. ``"api #7"``.
    """
    results: list[NotificationRecord] = []

    if config.notify_on_failures and meets_min_severity(
        CHECK_FAILURE_SEVERITY, config.min_severity
    ):
        for check in checks:
            if not check.is_failing or check.id in previous_failing_check_ids:
                continue
            results.append(
                NotificationRecord(
                    id=notification_id(NotificationType.CHECK_FAILED, check.id),
                    type=NotificationType.CHECK_FAILED,
                    severity=CHECK_FAILURE_SEVERITY,
                    message=f"{label}: check '{check.name}' is {check.conclusion or check.status}",
                    created_at=now,
                )
            )

    if config.notify_on_new_comments and meets_min_severity(
        UNRESOLVED_COMMENT_SEVERITY, config.min_severity
    ):
        for comment in comments:
            if comment.is_resolved or comment.id in previous_comment_ids:
                continue
            results.append(
                NotificationRecord(
                    id=notification_id(NotificationType.NEW_COMMENT, comment.id),
                    type=NotificationType.NEW_COMMENT,
                    severity=UNRESOLVED_COMMENT_SEVERITY,
                    message=f"{label}: new comment from {comment.author}",
                    created_at=now,
                )
            )

    return results
