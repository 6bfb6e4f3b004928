"""Promote-next workflow: pick one task from Next or Later and move it to
the top of ``## Now``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from lachesis.engine.errors import PatchApplicationError
from lachesis.shared.markdown_patch import find_heading
from lachesis.shared.sections import ANY_H2, SLICE_REF, UNCHECKED_TASK, collect_sub_items
from lachesis.shared.workflows.common import PARSE_ERRORS, load_object, pick

logger = logging.getLogger(__name__)

PROMOTE_MATCH_PREFIX = 40

_SECTION_HEADINGS = {
    "now": re.compile(r"^##\s*Now", re.IGNORECASE),
    "next": re.compile(r"^##\s*Next", re.IGNORECASE),
    "later": re.compile(r"^##\s*Later", re.IGNORECASE),
    "blocked": re.compile(r"^##\s*Blocked", re.IGNORECASE),
}


class PromoteStatus(str, Enum):
    SUCCESS = "success"
    ALREADY_ACTIVE = "already_active"
    NO_TASKS = "no_tasks"


class SourceSection(str, Enum):
    NEXT = "next"
    LATER = "later"


class PromoteAction(str, Enum):
    PROMOTE = "promote"
    SKIP = "skip"


@dataclass(frozen=True)
class SelectedTask:
    text: str
    source_section: SourceSection
    slice_link: str | None = None


@dataclass(frozen=True)
class CandidateTask:
    text: str
    source_section: SourceSection
    score: int
    note: str = ""
    slice_link: str | None = None


@dataclass
class ParsedPromoteNext:
    status: PromoteStatus
    selected_task: SelectedTask | None = None
    reasoning: str | None = None
    candidates: list[CandidateTask] = field(default_factory=list)
    current_now_task: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class PromoteNextSummary:
    status: PromoteStatus
    selected_task_text: str | None
    source_section: str | None
    candidate_count: int


@dataclass(frozen=True)
class SectionTask:
    text: str
    slice_link: str | None = None


def get_default_promote_action() -> PromoteAction:
    return PromoteAction.PROMOTE


def _source_section(value: object) -> SourceSection:
    return SourceSection.LATER if str(value).lower() == "later" else SourceSection.NEXT


def _clamp_score(value: object) -> int:
    return max(1, min(5, int(value)))


def contains_promote_next_response(text: str) -> bool:
    return '"status"' in text and (
        '"selectedTask"' in text or '"already_active"' in text or '"no_tasks"' in text
    )


def extract_promote_next_summary(text: str) -> PromoteNextSummary | None:
    payload = load_object(text)
    if payload is None or "status" not in payload:
        return None
    selected = payload.get("selectedTask") if isinstance(payload.get("selectedTask"), dict) else {}
    candidates = payload.get("candidates")
    try:
        status = PromoteStatus(payload["status"])
    except PARSE_ERRORS:
        return None
    return PromoteNextSummary(
        status=status,
        selected_task_text=selected.get("text"),
        source_section=selected.get("sourceSection"),
        candidate_count=len(candidates) if isinstance(candidates, list) else 0,
    )


def parse_promote_next_response(text: str) -> ParsedPromoteNext:
    """Parse the AI's promotion decision. Never raises.

    Anything unreadable becomes ``status=no_tasks`` with the message
    "Failed to parse AI response".
    """
    failed = ParsedPromoteNext(PromoteStatus.NO_TASKS, message="Failed to parse AI response")
    payload = load_object(text)
    if payload is None:
        logger.warning("Promote next response is not a JSON object")
        return failed
    try:
        status = PromoteStatus(payload["status"])
        raw_selected = payload.get("selectedTask")
        selected = None
        if isinstance(raw_selected, dict) and raw_selected.get("text"):
            selected = SelectedTask(
                text=str(raw_selected["text"]),
                source_section=_source_section(pick(raw_selected, "sourceSection", "source_section")),
                slice_link=pick(raw_selected, "sliceLink", "slice_link") or None,
            )
        candidates = [
            CandidateTask(
                text=str(c["text"]),
                source_section=_source_section(pick(c, "sourceSection", "source_section")),
                score=_clamp_score(c.get("score", 1)),
                note=str(c.get("note") or ""),
                slice_link=pick(c, "sliceLink", "slice_link") or None,
            )
            for c in payload.get("candidates") or []
        ]
    except PARSE_ERRORS as exc:
        logger.warning("Failed to parse promote next response: %s", exc)
        return failed

    if status == PromoteStatus.SUCCESS and selected is None:
        logger.warning("Promote next response reports success without a selected task")
        return failed

    return ParsedPromoteNext(
        status=status,
        selected_task=selected,
        reasoning=payload.get("reasoning"),
        candidates=candidates,
        current_now_task=pick(payload, "currentNowTask", "current_now_task"),
        message=payload.get("message"),
    )


def _section_range(lines: list[str], name: str) -> tuple[int, int] | None:
    start = find_heading(lines, _SECTION_HEADINGS[name])
    if start is None:
        return None
    end = find_heading(lines, ANY_H2, start + 1)
    return start, len(lines) if end is None else end


def has_active_now_task(content: str) -> bool:
    lines = content.split("\n")
    bounds = _section_range(lines, "now")
    if bounds is None:
        return False
    return any(UNCHECKED_TASK.match(line) for line in lines[bounds[0] + 1:bounds[1]])


def extract_tasks_from_section(content: str, section: SourceSection | str) -> list[SectionTask]:
    lines = content.split("\n")
    bounds = _section_range(lines, _source_section(section).value)
    if bounds is None:
        return []
    tasks = []
    for line in lines[bounds[0] + 1:bounds[1]]:
        found = UNCHECKED_TASK.match(line)
        if not found:
            continue
        text = found.group(1).strip()
        ref = SLICE_REF.search(text)
        tasks.append(SectionTask(text, f"[[Roadmap#{ref.group(1)}]]" if ref else None))
    return tasks


def apply_task_promotion(content: str, selected: SelectedTask) -> str:
    """Move *selected* (with its sub-items) to the top of ``## Now``.

    The task is found by its first characters anywhere in an unchecked
    line of its source section. Raises PatchApplicationError when the
    source section, the task, or the Now section is missing.
    """
    lines = content.split("\n")
    candidate = f"promote {selected.text[:PROMOTE_MATCH_PREFIX]!r}"
    source = _section_range(lines, selected.source_section.value)
    if source is None:
        raise PatchApplicationError("Tasks.md", candidate, f"no {selected.source_section.value} section")
    if find_heading(lines, _SECTION_HEADINGS["now"]) is None:
        raise PatchApplicationError("Tasks.md", candidate, "no Now section")

    prefix = selected.text.strip()[:PROMOTE_MATCH_PREFIX]
    task_index = next(
        (
            i for i in range(source[0] + 1, source[1])
            if UNCHECKED_TASK.match(lines[i]) and prefix in lines[i]
        ),
        None,
    )
    if task_index is None:
        raise PatchApplicationError(
            "Tasks.md", candidate, f"task not found in {selected.source_section.value} section",
        )

    block = [lines[task_index], *collect_sub_items(lines, task_index + 1, source[1])]
    del lines[task_index:task_index + len(block)]

    now = find_heading(lines, _SECTION_HEADINGS["now"])
    insert_at = now + 1
    while insert_at < len(lines) and not lines[insert_at].strip():
        insert_at += 1
    if insert_at < len(lines) and ANY_H2.match(lines[insert_at]):
        block.append("")
    lines[insert_at:insert_at] = block
    logger.info("Promoted %r from %s to Now", prefix, selected.source_section.value)
    return "\n".join(lines)
