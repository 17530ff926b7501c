"""State machine for fix suggestion lifecycle transitions."""

from __future__ import annotations

from pr_monitor.models import FixStatus

VALID_TRANSITIONS: dict[FixStatus, set[FixStatus]] = {
    FixStatus.PENDING: {FixStatus.APPROVED},
    FixStatus.APPROVED: set(),  # terminal; ingestion never touches approved rows
}


def validate_transition(current: FixStatus, target: FixStatus) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current)
    if allowed is None:
        raise ValueError(f"Unknown state: {current}")
    if target not in allowed:
        raise ValueError(
            f"Invalid transition: {current} -> {target}. "
            f"Valid targets from {current}: {sorted(allowed)}"
        )
