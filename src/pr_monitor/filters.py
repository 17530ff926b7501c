"""Resolution-status filtering over the unified model."""

from __future__ import annotations

from pr_monitor.models import PullRequest


def filter_by_resolution_status(pr: PullRequest, show_unresolved: bool) -> PullRequest:
    """Keep inline comments matching the requested direction.

    Comments with unknown resolution (``is_resolved is None``) are kept in
    both directions. Reviews left without comments are dropped; reviews that
    never carried a comment list count as empty. General comments pass
    through untouched.
    """
    wanted = not show_unresolved
    reviews = []
    for review in pr.reviews:
        kept = [
            comment
            for comment in review.comments or []
            if comment.is_resolved is None or comment.is_resolved == wanted
        ]
        if kept:
            reviews.append(review.model_copy(update={"comments": kept}))
    return pr.model_copy(update={"reviews": reviews})
