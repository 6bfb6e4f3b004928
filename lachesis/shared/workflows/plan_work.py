"""Plan-work workflow: turn a described piece of work into enriched tasks,
optionally proposing new roadmap slices for them to hang off.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping

from lachesis.engine.errors import PatchApplicationError
from lachesis.shared.markdown_patch import insert_into_section, section_end
from lachesis.shared.roadmap import find_current_milestone, parse_roadmap
from lachesis.shared.sections import LATER_HEADING, NOW_HEADING, slice_link
from lachesis.shared.workflows.common import PARSE_ERRORS, load_object, pick, require, string_list, to_int
from lachesis.shared.workflows.enrich_tasks import TaskEnrichmentContent, format_enrichment_block

logger = logging.getLogger(__name__)

_MILESTONE_ID = re.compile(r"(M\d+)")
_ANY_HEADING = re.compile(r"^#{1,6}\s")


class TaskDestination(str, Enum):
    CURRENT = "current"
    LATER = "later"
    DISCARD = "discard"


@dataclass(frozen=True)
class PlannedTask:
    id: str
    text: str
    enrichment: TaskEnrichmentContent
    slice_link: str | None = None
    is_new_slice: bool = False
    selected: bool = True
    destination: TaskDestination = TaskDestination.CURRENT

    @property
    def is_applied(self) -> bool:
        return self.selected and self.destination != TaskDestination.DISCARD


@dataclass(frozen=True)
class SuggestedSlice:
    id: str
    vs_number: str
    name: str
    milestone: str | None = None
    purpose: str = ""
    acceptance: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    selected: bool = True

    @property
    def heading(self) -> str:
        return f"#### {self.vs_number} — {self.name}"


@dataclass
class ParsedPlanWork:
    success: bool
    tasks: list[PlannedTask] = field(default_factory=list)
    slices: list[SuggestedSlice] = field(default_factory=list)
    tasks_generated: int = 0
    notes: str = ""

    @property
    def tasks_added(self) -> int:
        return sum(1 for t in self.tasks if t.is_applied)


@dataclass(frozen=True)
class PlanWorkSummary:
    tasks_generated: int
    slice_count: int
    notes: str


def contains_plan_work_response(text: str) -> bool:
    return '"tasks"' in text and '"enrichment"' in text and '"tasksGenerated"' in text


def extract_plan_work_summary(text: str) -> PlanWorkSummary | None:
    payload = load_object(text)
    if payload is None or not isinstance(payload.get("tasks"), list):
        return None
    summary = payload.get("summary") if isinstance(payload.get("summary"), dict) else {}
    slices = payload.get("slices")
    return PlanWorkSummary(
        tasks_generated=to_int(summary.get("tasksGenerated"), len(payload["tasks"])),
        slice_count=len(slices) if isinstance(slices, list) else 0,
        notes=str(summary.get("notes") or ""),
    )


def parse_plan_work_response(text: str) -> ParsedPlanWork:
    payload = load_object(text)
    if payload is None or not isinstance(payload.get("tasks"), list):
        logger.warning("Plan work response missing tasks array")
        return ParsedPlanWork(success=False)
    try:
        tasks = [
            PlannedTask(
                id=f"plan-{index}",
                text=str(item["text"]),
                enrichment=TaskEnrichmentContent.from_dict(item.get("enrichment") or {}),
                slice_link=pick(item, "sliceLink", "slice_link") or None,
                is_new_slice=bool(pick(item, "isNewSlice", "is_new_slice", default=False)),
            )
            for index, item in enumerate(payload["tasks"])
        ]
        slices = [
            SuggestedSlice(
                id=str(item.get("id") or f"slice-{index}"),
                vs_number=str(require(item, "vsNumber", "vs_number")),
                name=str(item["name"]),
                milestone=item.get("milestone") or None,
                purpose=str(item.get("purpose") or ""),
                acceptance=tuple(string_list(item.get("acceptance"))),
                dependencies=tuple(string_list(item.get("dependencies"))),
            )
            for index, item in enumerate(payload.get("slices") or [])
        ]
    except PARSE_ERRORS as exc:
        logger.warning("Failed to parse plan work response: %s", exc)
        return ParsedPlanWork(success=False)

    summary = payload.get("summary") if isinstance(payload.get("summary"), dict) else {}
    return ParsedPlanWork(
        success=True,
        tasks=tasks,
        slices=slices,
        tasks_generated=to_int(summary.get("tasksGenerated"), len(tasks)),
        notes=str(summary.get("notes") or ""),
    )


def with_task_selections(
    tasks: list[PlannedTask], selections: Mapping[str, Mapping] | None,
) -> list[PlannedTask]:
    """Overlay ``{task_id: {"selected": bool, "destination": str}}``."""
    if not selections:
        return list(tasks)
    updated = []
    for task in tasks:
        choice = selections.get(task.id)
        if choice:
            task = replace(
                task,
                selected=bool(choice.get("selected", task.selected)),
                destination=TaskDestination(choice.get("destination", task.destination)),
            )
        updated.append(task)
    return updated


def with_slice_selections(
    slices: list[SuggestedSlice], selections: Mapping[str, bool] | None,
) -> list[SuggestedSlice]:
    if not selections:
        return list(slices)
    return [
        replace(s, selected=bool(selections[s.id])) if s.id in selections else s
        for s in slices
    ]


def format_planned_task(task: PlannedTask) -> str:
    line = f"- [ ] {task.text}"
    if task.slice_link:
        line += f" {slice_link(task.slice_link)}"
    return f"{line}\n\n{format_enrichment_block(task.enrichment)}"


def format_suggested_slice(suggested: SuggestedSlice) -> str:
    lines = [suggested.heading, ""]
    if suggested.purpose:
        lines.append(f"**Purpose:** {suggested.purpose}")
    if suggested.acceptance:
        lines.append("**Acceptance:**")
        lines.extend(f"- {item}" for item in suggested.acceptance)
    if suggested.dependencies:
        lines.append(f"**Dependencies:** {', '.join(suggested.dependencies)}")
    return "\n".join(lines).rstrip()


def apply_planned_tasks(content: str, tasks: list[PlannedTask]) -> str:
    """Append applied tasks to Now (current) or Later, in order.

    A task whose line is already in the document is not added again.
    """
    present = {line.strip() for line in content.split("\n")}
    for destination, heading in (
        (TaskDestination.CURRENT, NOW_HEADING),
        (TaskDestination.LATER, LATER_HEADING),
    ):
        chosen = [
            t for t in tasks
            if t.is_applied and t.destination == destination
            and format_planned_task(t).split("\n")[0] not in present
        ]
        if not chosen:
            continue
        block: list[str] = []
        for task in chosen:
            if block:
                block.append("")
            block.extend(format_planned_task(task).split("\n"))
        content = insert_into_section(
            content, heading, block, file_name="Tasks.md",
            candidate=f"{len(chosen)} planned task(s) for {destination.value}",
        )
    return content


def apply_suggested_slices(content: str, slices: list[SuggestedSlice]) -> str:
    """Insert each selected slice at the end of its milestone in Roadmap.md.

    Slices without a milestone go under the current (or last) one. A
    slice whose VS id already has a heading is skipped.
    """
    for suggested in slices:
        if not suggested.selected:
            continue
        roadmap = parse_roadmap(content)
        if any(s.id == suggested.vs_number for s in roadmap.slices):
            logger.debug("Slice %s already in roadmap", suggested.vs_number)
            continue
        milestone = None
        wanted = _MILESTONE_ID.search(suggested.milestone or "")
        if wanted:
            milestone = roadmap.milestone(wanted.group(1))
        elif roadmap.milestones:
            milestone = find_current_milestone(roadmap) or roadmap.milestones[-1]
        if milestone is None:
            raise PatchApplicationError(
                "Roadmap.md", suggested.heading,
                f"milestone {suggested.milestone or '(any)'} not found",
            )

        lines = content.split("\n")
        end = section_end(lines, milestone.line_number)
        insert_at = end
        while insert_at > milestone.line_number + 1 and not lines[insert_at - 1].strip():
            insert_at -= 1
        block = ["", *format_suggested_slice(suggested).split("\n")]
        if insert_at < len(lines) and _ANY_HEADING.match(lines[insert_at]):
            block.append("")
        lines[insert_at:insert_at] = block
        content = "\n".join(lines)
    return content
