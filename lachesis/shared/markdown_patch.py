"""Section-aware text surgery on project markdown documents.

Helpers here operate on whole-document strings and return new strings.
They never touch the filesystem; the workflow executor reads and writes.
"""
from __future__ import annotations

import logging
import re

from lachesis.engine.errors import PatchApplicationError

logger = logging.getLogger(__name__)

COMPLETED_WORK_HEADING = re.compile(r"^##\s*Completed\s+Work", re.IGNORECASE)
FRONT_MATTER_MARKER = "---"
CHECKBOX_MATCH_PREFIX = 50
_EMPTY_CHECKBOX = re.compile(r"\[\s*\]")
_HEADING_LEVEL = re.compile(r"^(#{1,6})\s")


def complete_checkbox(content: str, task_text: str) -> str:
    """Flip the first unchecked task whose text starts like *task_text*.

    Only the first ``CHECKBOX_MATCH_PREFIX`` characters are compared so
    trailing links and annotations may differ. Returns *content*
    unchanged when no unchecked line matches.
    """
    prefix = task_text.strip()[:CHECKBOX_MATCH_PREFIX]
    if not prefix:
        return content
    pattern = re.compile(rf"^(\s*-\s*)\[\s*\](\s+{re.escape(prefix)})")
    lines = content.split("\n")
    for index, line in enumerate(lines):
        if pattern.match(line):
            lines[index] = _EMPTY_CHECKBOX.sub("[x]", line, count=1)
            return "\n".join(lines)
    logger.debug("complete_checkbox: no unchecked task matches %r", prefix)
    return content


def find_front_matter_end(lines: list[str]) -> int:
    """Index of the first line after a leading ``---`` block, or 0."""
    if not lines or lines[0].strip() != FRONT_MATTER_MARKER:
        return 0
    for index in range(1, len(lines)):
        if lines[index].strip() == FRONT_MATTER_MARKER:
            return index + 1
    return 0


def insert_archive_entries(content: str, entries: str) -> str:
    """Insert *entries* directly below ``## Completed Work``.

    Blank lines after the heading are kept above the entries. Without
    the heading, one is created after the front matter (or at the top).
    """
    if not entries.strip():
        return content
    lines = content.split("\n")
    for index, line in enumerate(lines):
        if COMPLETED_WORK_HEADING.match(line):
            insert_at = index + 1
            while insert_at < len(lines) and not lines[insert_at].strip():
                insert_at += 1
            lines[insert_at:insert_at] = [entries]
            return "\n".join(lines)

    insert_at = find_front_matter_end(lines)
    lines[insert_at:insert_at] = ["", "## Completed Work", "", entries]
    return "\n".join(lines)


def find_heading(lines: list[str], pattern: re.Pattern[str], start: int = 0) -> int | None:
    for index in range(start, len(lines)):
        if pattern.match(lines[index]):
            return index
    return None


def section_end(lines: list[str], heading_index: int) -> int:
    """Index of the next heading at the same or a higher level."""
    match = _HEADING_LEVEL.match(lines[heading_index])
    level = len(match.group(1)) if match else 2
    for index in range(heading_index + 1, len(lines)):
        other = _HEADING_LEVEL.match(lines[index])
        if other and len(other.group(1)) <= level:
            return index
    return len(lines)


def insert_into_section(
    content: str,
    heading: re.Pattern[str],
    new_lines: list[str],
    *,
    position: str = "end",
    file_name: str = "Tasks.md",
    candidate: str = "section insert",
) -> str:
    """Insert *new_lines* at the top or bottom of the section under *heading*.

    ``position="top"`` places them after the blank lines that follow the
    heading; ``"end"`` places them after the section's last non-blank
    line. Raises PatchApplicationError when the heading is missing.
    """
    if not new_lines:
        return content
    lines = content.split("\n")
    start = find_heading(lines, heading)
    if start is None:
        raise PatchApplicationError(file_name, candidate, f"heading {heading.pattern!r} not found")

    if position == "top":
        insert_at = start + 1
        while insert_at < len(lines) and not lines[insert_at].strip():
            insert_at += 1
        lines[insert_at:insert_at] = new_lines
        return "\n".join(lines)

    end = section_end(lines, start)
    insert_at = end
    while insert_at > start + 1 and not lines[insert_at - 1].strip():
        insert_at -= 1
    block = list(new_lines)
    if insert_at == start + 1:
        block = [""] + block
    if insert_at < len(lines) and insert_at == end:
        block = block + [""]
    lines[insert_at:insert_at] = block
    return "\n".join(lines)
