"""Severity ordering for fix suggestions and notifications.

Severities rank ``low < medium < high < critical``. Failing checks are
reported as high, unresolved comments as medium.
"""

from __future__ import annotations

from pr_monitor.models import Severity

SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

CHECK_FAILURE_SEVERITY = Severity.HIGH
UNRESOLVED_COMMENT_SEVERITY = Severity.MEDIUM


def meets_min_severity(severity: Severity | str, minimum: Severity | str) -> bool:
    """Return True when ``severity`` ranks at or above ``minimum``."""
    return SEVERITY_RANK[Severity(severity)] >= SEVERITY_RANK[Severity(minimum)]
