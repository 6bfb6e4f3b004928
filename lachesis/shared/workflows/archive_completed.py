"""Archive-completed workflow: move checked-off tasks into Archive.md.

Completed tasks are read locally from Tasks.md; the AI only proposes a
grouping by vertical slice. AI groups are resolved back to local tasks
by line number, and a response that cannot be parsed falls back to the
local grouping, so every candidate is always a real line of the file.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping

from lachesis.shared.markdown_patch import (
    COMPLETED_WORK_HEADING,
    find_front_matter_end,
    find_heading,
)
from lachesis.shared.sections import (
    ANY_H2,
    BLOCKED_HEADING,
    COMPLETED_TASK,
    DONE_HEADING,
    LATER_HEADING,
    NEXT_HEADING,
    NOW_HEADING,
    SLICE_REF,
    collect_sub_items,
    slice_name,
    slice_number,
)
from lachesis.shared.workflows.common import PARSE_ERRORS, load_object, pick, to_int

logger = logging.getLogger(__name__)

STANDALONE_HEADING = "### Completed Tasks"


class ArchiveSection(str, Enum):
    NOW = "now"
    NEXT = "next"
    BLOCKED = "blocked"
    LATER = "later"
    DONE = "done"
    UNKNOWN = "unknown"


_SECTION_PATTERNS = [
    (NOW_HEADING, ArchiveSection.NOW),
    (NEXT_HEADING, ArchiveSection.NEXT),
    (BLOCKED_HEADING, ArchiveSection.BLOCKED),
    (LATER_HEADING, ArchiveSection.LATER),
    (DONE_HEADING, ArchiveSection.DONE),
]


class ArchiveAction(str, Enum):
    ARCHIVE = "archive"
    KEEP = "keep"


@dataclass(frozen=True)
class CompletedTask:
    id: str
    text: str
    full_line: str
    line_number: int
    slice_ref: str | None
    slice_name: str | None
    section: ArchiveSection
    sub_items: tuple[str, ...] = ()
    action: ArchiveAction = ArchiveAction.ARCHIVE


@dataclass
class SliceGroup:
    slice_ref: str
    slice_name: str
    tasks: list[CompletedTask] = field(default_factory=list)
    summary: str | None = None


@dataclass
class ParsedArchiveCompleted:
    success: bool
    slice_groups: list[SliceGroup] = field(default_factory=list)
    standalone_tasks: list[CompletedTask] = field(default_factory=list)
    total_completed: int = 0

    @property
    def slice_count(self) -> int:
        return len(self.slice_groups)

    @property
    def standalone_count(self) -> int:
        return len(self.standalone_tasks)

    def all_tasks(self) -> list[CompletedTask]:
        tasks = [t for g in self.slice_groups for t in g.tasks]
        return tasks + list(self.standalone_tasks)


@dataclass(frozen=True)
class ArchiveCompletedSummary:
    total_completed: int
    slice_count: int
    standalone_count: int
    slice_names: list[str]


def get_default_archive_action() -> ArchiveAction:
    return ArchiveAction.ARCHIVE


def extract_completed_tasks(content: str) -> list[CompletedTask]:
    lines = content.split("\n")
    tasks = []
    section = ArchiveSection.UNKNOWN
    for index, line in enumerate(lines):
        for pattern, candidate in _SECTION_PATTERNS:
            if pattern.match(line):
                section = candidate
                break
        found = COMPLETED_TASK.match(line)
        if not found:
            continue
        full_line = line.strip()
        ref_match = SLICE_REF.search(full_line)
        ref = ref_match.group(1) if ref_match else None
        tasks.append(CompletedTask(
            id=f"archive-{len(tasks)}",
            text=SLICE_REF.sub("", found.group(1)).strip(),
            full_line=full_line,
            line_number=index,
            slice_ref=ref,
            slice_name=slice_name(ref) if ref else None,
            section=section,
            sub_items=tuple(collect_sub_items(lines, index + 1)),
        ))
    return tasks


def group_tasks_by_slice(tasks: list[CompletedTask]) -> tuple[list[SliceGroup], list[CompletedTask]]:
    groups: dict[str, SliceGroup] = {}
    standalone = []
    for task in tasks:
        if task.slice_ref:
            group = groups.setdefault(
                task.slice_ref, SliceGroup(task.slice_ref, slice_name(task.slice_ref)),
            )
            group.tasks.append(task)
        else:
            standalone.append(task)
    ordered = sorted(groups.values(), key=lambda g: slice_number(g.slice_ref))
    return ordered, standalone


def contains_archive_completed_response(text: str) -> bool:
    return '"groups"' in text and '"standaloneTasks"' in text and '"totalCompleted"' in text


def extract_archive_completed_summary(text: str) -> ArchiveCompletedSummary | None:
    payload = load_object(text)
    if payload is None or not isinstance(payload.get("groups"), list):
        return None
    summary = payload.get("summary") if isinstance(payload.get("summary"), dict) else {}
    standalone = payload.get("standaloneTasks")
    return ArchiveCompletedSummary(
        total_completed=to_int(summary.get("totalCompleted")),
        slice_count=len(payload["groups"]),
        standalone_count=len(standalone) if isinstance(standalone, list) else 0,
        slice_names=[
            str(g.get("sliceName", "")) for g in payload["groups"] if isinstance(g, dict)
        ],
    )


def _local_result(local_tasks: list[CompletedTask]) -> ParsedArchiveCompleted:
    groups, standalone = group_tasks_by_slice(local_tasks)
    return ParsedArchiveCompleted(
        success=False,
        slice_groups=groups,
        standalone_tasks=standalone,
        total_completed=len(local_tasks),
    )


def parse_archive_completed_response(
    text: str, local_tasks: list[CompletedTask],
) -> ParsedArchiveCompleted:
    """Resolve the AI grouping against *local_tasks* by line number.

    Falls back to grouping the local tasks by slice (``success=False``)
    when the response cannot be parsed.
    """
    payload = load_object(text)
    if payload is None or not isinstance(payload.get("groups"), list):
        logger.warning("Archive completed response unparseable; using local grouping")
        return _local_result(local_tasks)

    by_line = {t.line_number: t for t in local_tasks}

    def resolve(entries: object) -> list[CompletedTask]:
        resolved = []
        for entry in entries or []:
            task = by_line.get(int(pick(entry, "lineNumber", "line_number", default=-1)))
            if task is not None:
                resolved.append(task)
        return resolved

    try:
        groups = [
            SliceGroup(
                slice_ref=str(pick(group, "sliceRef", "slice_ref", default="")),
                slice_name=str(pick(group, "sliceName", "slice_name", default="")),
                tasks=resolve(group.get("tasks")),
                summary=group.get("summary"),
            )
            for group in payload["groups"]
        ]
        standalone = resolve(payload.get("standaloneTasks"))
    except PARSE_ERRORS as exc:
        logger.warning("Failed to parse archive completed response: %s", exc)
        return _local_result(local_tasks)

    summary = payload.get("summary") if isinstance(payload.get("summary"), dict) else {}
    return ParsedArchiveCompleted(
        success=True,
        slice_groups=groups,
        standalone_tasks=standalone,
        total_completed=to_int(summary.get("totalCompleted"), len(local_tasks)),
    )


def with_actions(tasks: list[CompletedTask], actions: Mapping[str, str] | None) -> list[CompletedTask]:
    if not actions:
        return list(tasks)
    return [
        replace(t, action=ArchiveAction(actions[t.id])) if t.id in actions else t
        for t in tasks
    ]


def _locate_task(lines: list[str], task: CompletedTask, removed: set[int]) -> int | None:
    index = task.line_number
    if 0 <= index < len(lines) and index not in removed and lines[index].strip() == task.full_line:
        return index
    for index, line in enumerate(lines):
        if index not in removed and line.strip() == task.full_line:
            return index
    return None


def apply_archive_removal(content: str, tasks: list[CompletedTask]) -> str:
    """Delete archived tasks (and their sub-items) from Tasks.md.

    Each task is found at its recorded line, or by its exact text when
    the file has shifted. Tasks no longer present are skipped.
    """
    lines = content.split("\n")
    removed: set[int] = set()
    for task in tasks:
        if task.action != ArchiveAction.ARCHIVE:
            continue
        index = _locate_task(lines, task, removed)
        if index is None:
            logger.debug("Archive removal: %r no longer in Tasks.md", task.full_line)
            continue
        removed.add(index)
        for offset in range(len(collect_sub_items(lines, index + 1))):
            removed.add(index + 1 + offset)
    return "\n".join(line for i, line in enumerate(lines) if i not in removed)


def format_task_for_archive(task: CompletedTask) -> str:
    return "\n".join([task.full_line, *task.sub_items])


def build_archive_entries(tasks: list[CompletedTask]) -> dict[str, list[str]]:
    """Slice heading → formatted task blocks, in task order."""
    entries: dict[str, list[str]] = {}
    for task in tasks:
        if task.action != ArchiveAction.ARCHIVE:
            continue
        heading = f"### {task.slice_ref}" if task.slice_ref else STANDALONE_HEADING
        entries.setdefault(heading, []).append(format_task_for_archive(task))
    return entries


def _completed_work_bounds(lines: list[str]) -> tuple[int, int]:
    start = find_heading(lines, COMPLETED_WORK_HEADING)
    if start is None:
        insert_at = find_front_matter_end(lines)
        lines[insert_at:insert_at] = ["", "## Completed Work", ""]
        start = insert_at + 1
    end = find_heading(lines, ANY_H2, start + 1)
    return start, len(lines) if end is None else end


def apply_archive_additions(content: str, entries: Mapping[str, list[str]]) -> str:
    """Add task blocks under their slice heading inside ``## Completed Work``.

    Existing slice headings are extended at the end of their subsection;
    new headings go directly below ``## Completed Work``. Task blocks
    already present under a heading are not added twice.
    """
    if not entries:
        return content
    lines = content.split("\n")
    start, end = _completed_work_bounds(lines)

    for heading, blocks in entries.items():
        existing = next(
            (i for i in range(start + 1, end) if lines[i].strip() == heading.strip()), None,
        )
        if existing is None:
            insert_at = start + 1
            while insert_at < end and not lines[insert_at].strip():
                insert_at += 1
            new_lines = [heading, *"\n".join(blocks).split("\n"), ""]
            if insert_at == start + 1:
                new_lines.insert(0, "")
            lines[insert_at:insert_at] = new_lines
            end += len(new_lines)
            continue

        sub_end = existing + 1
        while sub_end < end and not re.match(r"^#{2,3}\s", lines[sub_end]):
            sub_end += 1
        present = {l.strip() for l in lines[existing + 1:sub_end]}
        fresh = [b for b in blocks if b.split("\n")[0].strip() not in present]
        if not fresh:
            continue
        insert_at = sub_end
        while insert_at > existing + 1 and not lines[insert_at - 1].strip():
            insert_at -= 1
        new_lines = "\n".join(fresh).split("\n")
        lines[insert_at:insert_at] = new_lines
        end += len(new_lines)

    return "\n".join(lines)
