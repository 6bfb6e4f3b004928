"""Parsers for AI workflow responses, one module per workflow shape.

Parsers never raise: malformed input yields an empty or failed result.
``WORKFLOW_KINDS`` maps the CLI name of each workflow to its module.
"""
from __future__ import annotations

from lachesis.shared.workflows import (
    archive_completed,
    enrich_tasks,
    init_summary,
    plan_work,
    promote_next,
    sync_commits,
)

WORKFLOW_KINDS = {
    "sync-commits": sync_commits,
    "archive-completed": archive_completed,
    "enrich-tasks": enrich_tasks,
    "plan-work": plan_work,
    "promote-next": promote_next,
    "init-summary": init_summary,
}

_DETECTORS = [
    ("sync-commits", sync_commits.contains_sync_commits_response),
    ("archive-completed", archive_completed.contains_archive_completed_response),
    ("enrich-tasks", enrich_tasks.contains_enrich_tasks_response),
    ("plan-work", plan_work.contains_plan_work_response),
    ("promote-next", promote_next.contains_promote_next_response),
    ("init-summary", init_summary.contains_init_summary_response),
]


def detect_workflow_kind(text: str) -> str | None:
    """Name of the first workflow whose response shape *text* matches."""
    for kind, detector in _DETECTORS:
        if detector(text or ""):
            return kind
    return None


__all__ = [
    "WORKFLOW_KINDS",
    "archive_completed",
    "detect_workflow_kind",
    "enrich_tasks",
    "init_summary",
    "plan_work",
    "promote_next",
    "sync_commits",
]
