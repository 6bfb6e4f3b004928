"""Apply accepted workflow candidates to project documents.

Each ``apply_*`` method reads the documents it needs, computes every new
content in memory as a sequential fold over the candidates, and only
then writes. A missing document or a failed anchor raises
PatchApplicationError before anything is written.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Mapping

from lachesis.adapters.project_files import ProjectFiles
from lachesis.engine.errors import DocumentNotFoundError, PatchApplicationError
from lachesis.shared.diff import ParsedDiff, apply_hunks
from lachesis.shared.workflows import (
    archive_completed,
    enrich_tasks,
    plan_work,
    promote_next,
    sync_commits,
)
from lachesis.shared.workflows.init_summary import ParsedInitSummary

logger = logging.getLogger(__name__)

TASKS = "Tasks.md"
ARCHIVE = "Archive.md"
ROADMAP = "Roadmap.md"


@dataclass
class WorkflowApplyResult:
    changed_files: list[str] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class WorkflowExecutor:
    """Writes accepted candidates through a ProjectFiles collaborator."""

    def __init__(self, files: ProjectFiles, *, today: Callable[[], date] = date.today) -> None:
        self.files = files
        self._today = today

    # ── Document access ──

    def _read(self, name: str, candidate: str) -> str:
        try:
            return self.files.read(name)
        except DocumentNotFoundError as exc:
            raise PatchApplicationError(name, candidate, "document not found") from exc

    def _commit(
        self, originals: Mapping[str, str], updated: Mapping[str, str], result: WorkflowApplyResult,
    ) -> WorkflowApplyResult:
        for name, content in updated.items():
            if content != originals.get(name):
                self.files.write(name, content)
                result.changed_files.append(name)
        logger.info(
            "Applied %d candidate(s), skipped %d, changed %s",
            len(result.applied), len(result.skipped), result.changed_files or "nothing",
        )
        return result

    # ── Workflows ──

    def apply_sync_commits(self, matches: list[sync_commits.CommitMatch]) -> WorkflowApplyResult:
        result = WorkflowApplyResult()
        active = []
        for match in matches:
            if match.action == sync_commits.SyncAction.SKIP:
                result.skipped.append(match.id)
            else:
                active.append(match)
                result.applied.append(match.id)
        if not active:
            return result

        originals = {TASKS: self._read(TASKS, "sync-commits")}
        updated = {TASKS: sync_commits.apply_task_completions(originals[TASKS], active)}
        entries = sync_commits.build_archive_entries(active, self._today())
        if entries:
            originals[ARCHIVE] = self._read(ARCHIVE, "sync-commits archive entries")
            updated[ARCHIVE] = sync_commits.apply_archive_entries(originals[ARCHIVE], entries)
        return self._commit(originals, updated, result)

    def apply_archive_completed(
        self, tasks: list[archive_completed.CompletedTask],
    ) -> WorkflowApplyResult:
        result = WorkflowApplyResult()
        archived = []
        for task in tasks:
            if task.action == archive_completed.ArchiveAction.ARCHIVE:
                archived.append(task)
                result.applied.append(task.id)
            else:
                result.skipped.append(task.id)
        if not archived:
            return result

        originals = {
            TASKS: self._read(TASKS, "archive-completed"),
            ARCHIVE: self._read(ARCHIVE, "archive-completed"),
        }
        updated = {
            TASKS: archive_completed.apply_archive_removal(originals[TASKS], archived),
            ARCHIVE: archive_completed.apply_archive_additions(
                originals[ARCHIVE], archive_completed.build_archive_entries(archived),
            ),
        }
        return self._commit(originals, updated, result)

    def apply_enrichments(self, enrichments: list[enrich_tasks.TaskEnrichment]) -> WorkflowApplyResult:
        result = WorkflowApplyResult(
            applied=[e.id for e in enrichments if e.selected],
            skipped=[e.id for e in enrichments if not e.selected],
        )
        if not result.applied:
            return result
        originals = {TASKS: self._read(TASKS, "enrich-tasks")}
        updated = {TASKS: enrich_tasks.apply_enrichments(originals[TASKS], enrichments)}
        return self._commit(originals, updated, result)

    def apply_promotion(
        self,
        parsed: promote_next.ParsedPromoteNext,
        action: promote_next.PromoteAction = promote_next.PromoteAction.PROMOTE,
    ) -> WorkflowApplyResult:
        result = WorkflowApplyResult()
        selected = parsed.selected_task
        if selected is None or parsed.status != promote_next.PromoteStatus.SUCCESS:
            return result
        if action == promote_next.PromoteAction.SKIP:
            result.skipped.append(selected.text)
            return result
        originals = {TASKS: self._read(TASKS, "promote-next")}
        updated = {TASKS: promote_next.apply_task_promotion(originals[TASKS], selected)}
        result.applied.append(selected.text)
        return self._commit(originals, updated, result)

    def apply_plan_work(
        self,
        tasks: list[plan_work.PlannedTask],
        slices: list[plan_work.SuggestedSlice] = (),
    ) -> WorkflowApplyResult:
        result = WorkflowApplyResult()
        for task in tasks:
            (result.applied if task.is_applied else result.skipped).append(task.id)
        for suggested in slices:
            (result.applied if suggested.selected else result.skipped).append(suggested.id)

        originals: dict[str, str] = {}
        updated: dict[str, str] = {}
        if any(t.is_applied for t in tasks):
            originals[TASKS] = self._read(TASKS, "plan-work tasks")
            updated[TASKS] = plan_work.apply_planned_tasks(originals[TASKS], tasks)
        if any(s.selected for s in slices):
            originals[ROADMAP] = self._read(ROADMAP, "plan-work slices")
            updated[ROADMAP] = plan_work.apply_suggested_slices(originals[ROADMAP], list(slices))
        return self._commit(originals, updated, result)

    def apply_diff(self, diff: ParsedDiff, selected: set[int] | None = None) -> WorkflowApplyResult:
        return self.apply_diffs([diff], {diff.file_name: selected} if selected is not None else None)

    def apply_diffs(
        self, diffs: list[ParsedDiff], selections: Mapping[str, set[int] | None] | None = None,
    ) -> WorkflowApplyResult:
        """Apply the selected hunks of each diff (all hunks by default).

        Several diffs for the same file fold over one another in order.
        """
        selections = selections or {}
        result = WorkflowApplyResult()
        originals: dict[str, str] = {}
        updated: dict[str, str] = {}
        for diff in diffs:
            chosen = selections.get(diff.file_name)
            indices = set(range(len(diff.hunks))) if chosen is None else set(chosen)
            candidate = f"diff for {diff.file_name}"
            if not indices:
                result.skipped.append(candidate)
                continue
            if diff.file_name not in originals:
                originals[diff.file_name] = self._read(diff.file_name, candidate)
                updated[diff.file_name] = originals[diff.file_name]
            updated[diff.file_name] = apply_hunks(
                updated[diff.file_name], diff, indices, candidate=candidate,
            )
            result.applied.append(candidate)
        return self._commit(originals, updated, result)

    def apply_init_summary(
        self,
        parsed: ParsedInitSummary,
        selections: Mapping[str, set[int] | None] | None = None,
    ) -> WorkflowApplyResult:
        diffs = [block.parsed for block in parsed.diffs.values() if block.parsed is not None]
        return self.apply_diffs(diffs, selections)
