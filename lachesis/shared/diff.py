"""Unified diff parsing and strict hunk application.

AI responses carry proposed document edits as ```diff fenced blocks.
Each block is parsed into a ``ParsedDiff``; the user picks hunks and
``apply_hunks`` rebuilds the document from the selected ones only.
A hunk whose old lines cannot be located raises instead of guessing.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from lachesis.engine.errors import PatchApplicationError

logger = logging.getLogger(__name__)

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
DIFF_FENCE = re.compile(r"```diff\n([\s\S]*?)```")


class DiffLineType(str, Enum):
    CONTEXT = "context"
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class DiffLine:
    type: DiffLineType
    content: str


@dataclass
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[DiffLine] = field(default_factory=list)

    @property
    def old_lines(self) -> list[str]:
        return [l.content for l in self.lines if l.type != DiffLineType.ADD]

    @property
    def new_lines(self) -> list[str]:
        return [l.content for l in self.lines if l.type != DiffLineType.REMOVE]

    @property
    def additions(self) -> int:
        return sum(1 for l in self.lines if l.type == DiffLineType.ADD)

    @property
    def deletions(self) -> int:
        return sum(1 for l in self.lines if l.type == DiffLineType.REMOVE)

    def to_dict(self) -> dict:
        return {
            "old_start": self.old_start,
            "old_count": self.old_count,
            "new_start": self.new_start,
            "new_count": self.new_count,
            "lines": [{"type": l.type.value, "content": l.content} for l in self.lines],
        }


@dataclass
class ParsedDiff:
    file_name: str
    hunks: list[Hunk] = field(default_factory=list)

    @property
    def additions(self) -> int:
        return sum(h.additions for h in self.hunks)

    @property
    def deletions(self) -> int:
        return sum(h.deletions for h in self.hunks)

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "hunks": [h.to_dict() for h in self.hunks],
        }


@dataclass
class DiffBlock:
    id: str
    raw_diff: str
    file_name: str
    parsed: ParsedDiff | None


def parse_diff(text: str) -> ParsedDiff | None:
    """Parse one unified diff. Returns None without a filename or hunks."""
    file_name = ""
    hunks: list[Hunk] = []
    current: Hunk | None = None

    for line in text.split("\n"):
        if line.startswith("--- "):
            continue
        if line.startswith("+++ "):
            file_name = line[4:].strip()
            if file_name.startswith("b/"):
                file_name = file_name[2:]
            continue
        header = HUNK_HEADER.match(line)
        if header:
            current = Hunk(
                old_start=int(header.group(1)),
                old_count=int(header.group(2) or 1),
                new_start=int(header.group(3)),
                new_count=int(header.group(4) or 1),
            )
            hunks.append(current)
            continue
        if current is None:
            continue
        if line.startswith("+"):
            current.lines.append(DiffLine(DiffLineType.ADD, line[1:]))
        elif line.startswith("-"):
            current.lines.append(DiffLine(DiffLineType.REMOVE, line[1:]))
        elif line.startswith(" "):
            current.lines.append(DiffLine(DiffLineType.CONTEXT, line[1:]))
        elif line == "":
            current.lines.append(DiffLine(DiffLineType.CONTEXT, ""))

    if not file_name or not hunks:
        return None
    # A trailing blank line inside the fence is not part of the last hunk
    last = hunks[-1].lines
    while last and last[-1].type == DiffLineType.CONTEXT and last[-1].content == "":
        last.pop()
    return ParsedDiff(file_name=file_name, hunks=hunks)


def extract_diff_blocks(text: str) -> list[DiffBlock]:
    blocks = []
    for index, match in enumerate(DIFF_FENCE.finditer(text or "")):
        raw = match.group(1).strip()
        parsed = parse_diff(raw)
        blocks.append(DiffBlock(
            id=f"diff-{index}",
            raw_diff=raw,
            file_name=parsed.file_name if parsed else "Unknown file",
            parsed=parsed,
        ))
    return blocks


def parse_diffs(text: str) -> list[ParsedDiff]:
    return [b.parsed for b in extract_diff_blocks(text) if b.parsed is not None]


def contains_diff_blocks(text: str) -> bool:
    return bool(DIFF_FENCE.search(text or ""))


def _matches_at(lines: list[str], pattern: list[str], position: int) -> bool:
    if position < 0 or position + len(pattern) > len(lines):
        return False
    return all(
        lines[position + i].strip() == expected.strip()
        for i, expected in enumerate(pattern)
    )


def _find_all(lines: list[str], pattern: list[str]) -> list[int]:
    return [i for i in range(len(lines) - len(pattern) + 1) if _matches_at(lines, pattern, i)]


def _locate(lines: list[str], pattern: list[str], hint: int) -> tuple[int | None, int]:
    """Match of *pattern* nearest *hint*, and how many matches there are.

    Returns ``(None, count)`` when nothing matches or when two matches
    are equally near.
    """
    if not pattern:
        return min(max(hint, 0), len(lines)), 1
    if _matches_at(lines, pattern, hint):
        return hint, 1
    found = sorted(_find_all(lines, pattern), key=lambda i: (abs(i - hint), i))
    if not found:
        return None, 0
    if len(found) > 1 and abs(found[0] - hint) == abs(found[1] - hint):
        return None, len(found)
    return found[0], len(found)


def _nearest(lines: list[str], pattern: list[str], hint: int) -> int | None:
    found = _find_all(lines, pattern)
    return min(found, key=lambda i: (abs(i - hint), i)) if found else None


def _already_applied(lines: list[str], old: list[str], new: list[str], hint: int) -> bool:
    # The new block sits at least as near the hint as any surviving old block
    if not new:
        return False
    if not old or old == new:
        return _matches_at(lines, new, hint)
    new_at = _nearest(lines, new, hint)
    if new_at is None:
        return False
    old_at = _nearest(lines, old, hint)
    return (
        old_at is None
        or new_at <= old_at < new_at + len(new)
        or abs(new_at - hint) <= abs(old_at - hint)
    )


def apply_hunks(
    content: str,
    diff: ParsedDiff,
    selected: set[int] | list[int] | None = None,
    *,
    candidate: str = "",
) -> str:
    """Apply the selected hunks of *diff* to *content*.

    Hunks are applied in their original order with a running line
    offset. Unselected hunks are skipped and their region left as is.
    A hunk whose old lines are not at the expected position is applied
    at the nearest place they do occur, so a diff can be applied in
    several passes. A hunk whose result is already in place is skipped,
    which makes re-applying a diff a no-op. Raises PatchApplicationError
    when a selected hunk's old lines are missing or equally near at two
    places.
    """
    indices = set(range(len(diff.hunks))) if selected is None else set(selected)
    lines = content.split("\n")
    offset = 0

    for index, hunk in enumerate(diff.hunks):
        if index not in indices:
            continue
        old, new = hunk.old_lines, hunk.new_lines
        hint = hunk.old_start - 1 + offset
        if hunk.old_count == 0:
            # Pure insertion headers point at the line *after* which to insert
            hint += 1
        delta = len(new) - len(old)
        if _already_applied(lines, old, new, hint):
            offset += delta
            logger.debug("Hunk %d already present in %s", index, diff.file_name)
            continue
        position, matches = _locate(lines, old, hint)
        if position is None:
            first = next((l for l in old if l.strip()), "(empty lines)")
            reason = "ambiguous context" if matches else "expected context not found"
            raise PatchApplicationError(
                diff.file_name,
                candidate or f"hunk {index}",
                f"{reason}: {first!r}",
            )
        lines[position:position + len(old)] = new
        offset += delta
        logger.debug(
            "Applied hunk %d to %s at line %d", index, diff.file_name, position + 1,
        )

    return "\n".join(lines)
