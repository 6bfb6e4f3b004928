"""Task list conventions shared by the workflow parsers.

Tasks.md is split into ``## Now`` / ``## Next`` / ``## Later`` sections
(older projects use "Next 1-3 Actions", "Active Tasks", "Future Tasks").
Tasks are checkbox lines, optionally linked to a roadmap slice with
``[[Roadmap#VS1 — Slice Name]]``.
"""
from __future__ import annotations

import re
from enum import Enum


class TaskSection(str, Enum):
    NOW = "now"
    NEXT = "next"
    LATER = "later"


SECTION_LABELS = {
    TaskSection.NOW: "Now",
    TaskSection.NEXT: "Next",
    TaskSection.LATER: "Later",
}

NOW_HEADING = re.compile(r"^##\s*(?:Now|Next\s+1[–-]3\s+Actions)", re.IGNORECASE)
NEXT_HEADING = re.compile(r"^##\s*(?:Next|Active\s+Tasks)$", re.IGNORECASE)
LATER_HEADING = re.compile(
    r"^##\s*(?:Later|Future\s+Tasks|Potential\s+Future\s+Tasks)", re.IGNORECASE,
)
BLOCKED_HEADING = re.compile(r"^##\s*Blocked", re.IGNORECASE)
DONE_HEADING = re.compile(r"^##\s*(?:Done|Recently\s+Completed)", re.IGNORECASE)
ANY_H2 = re.compile(r"^##\s+")

UNCHECKED_TASK = re.compile(r"^\s*-\s*\[\s*\]\s+(.+)$")
COMPLETED_TASK = re.compile(r"^\s*-\s*\[x\]\s+(.+)$", re.IGNORECASE)
ANY_TASK = re.compile(r"^\s*-\s*\[[ xX]\]")
SUB_ITEM = re.compile(r"^\s{2,}")
CHECKBOX_LINE = re.compile(r"^\s*-\s*\[")

SLICE_REF = re.compile(r"\[\[Roadmap#(VS\d+\s*[—–-]\s*.+?)\]\]")
SLICE_NAME = re.compile(r"VS\d+\s*[—–-]\s*(.+)")
SLICE_NUMBER = re.compile(r"VS(\d+)")
HTML_COMMENT = re.compile(r"<!--.*?-->")


def normalize_task_section(value: str | None) -> TaskSection:
    """Map any section label to now / next / later. Defaults to next."""
    normalized = re.sub(r"[^a-z]", "", (value or "").lower())
    if normalized == "now" or "action" in normalized:
        return TaskSection.NOW
    if normalized == "later" or "future" in normalized:
        return TaskSection.LATER
    return TaskSection.NEXT


def section_for_heading(line: str) -> TaskSection | None:
    if NOW_HEADING.match(line):
        return TaskSection.NOW
    if NEXT_HEADING.match(line):
        return TaskSection.NEXT
    if LATER_HEADING.match(line):
        return TaskSection.LATER
    return None


def slice_name(slice_ref: str) -> str:
    match = SLICE_NAME.search(slice_ref)
    return match.group(1).strip() if match else slice_ref


def slice_number(slice_ref: str) -> int:
    match = SLICE_NUMBER.search(slice_ref)
    return int(match.group(1)) if match else 0


def slice_link(slice_ref: str) -> str:
    """Wiki link for a slice, accepting either a bare ref or a full link."""
    ref = slice_ref.strip()
    if ref.startswith("[["):
        return ref
    return f"[[Roadmap#{ref}]]"


def collect_sub_items(lines: list[str], start: int, end: int | None = None) -> list[str]:
    """Indented, non-checkbox lines directly after ``lines[start - 1]``."""
    stop = len(lines) if end is None else end
    items = []
    index = start
    while index < stop and SUB_ITEM.match(lines[index]) and not CHECKBOX_LINE.match(lines[index]):
        items.append(lines[index])
        index += 1
    return items
