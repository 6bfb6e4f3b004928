"""Init-from-summary workflow: one response carrying ```diff blocks for
Overview.md, Roadmap.md and Tasks.md, or clarifying questions instead.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from lachesis.shared.diff import DIFF_FENCE, DiffBlock, extract_diff_blocks

logger = logging.getLogger(__name__)

INIT_SUMMARY_FILES = ("Overview.md", "Roadmap.md", "Tasks.md")
QUESTION_MIN_LENGTH = 50

_QUESTION_PATTERNS = [
    re.compile(r"\?\s*$", re.MULTILINE),
    re.compile(r"could you clarify", re.IGNORECASE),
    re.compile(r"what is the", re.IGNORECASE),
    re.compile(r"who are the", re.IGNORECASE),
    re.compile(r"can you tell me", re.IGNORECASE),
    re.compile(r"I need to understand", re.IGNORECASE),
    re.compile(r"before I can generate", re.IGNORECASE),
    re.compile(r"please provide", re.IGNORECASE),
    re.compile(r"could you describe", re.IGNORECASE),
]


@dataclass
class ParsedInitSummary:
    diffs: dict[str, DiffBlock] = field(default_factory=dict)
    missing_files: list[str] = field(default_factory=list)
    has_questions: bool = False
    question_content: str | None = None

    @property
    def has_all_files(self) -> bool:
        return not self.missing_files


@dataclass(frozen=True)
class FileChangeCount:
    name: str
    additions: int
    deletions: int


@dataclass(frozen=True)
class InitSummarySummary:
    file_count: int
    total_additions: int
    total_deletions: int
    files: list[FileChangeCount]


def contains_init_summary_response(text: str) -> bool:
    files = sum(1 for name in INIT_SUMMARY_FILES if name in text)
    return files >= 2 and "```diff" in text


def is_clarifying_question(text: str) -> bool:
    """The AI asked questions instead of producing diffs."""
    if "```diff" in text:
        return False
    return any(p.search(text) for p in _QUESTION_PATTERNS)


def parse_init_summary_response(text: str) -> ParsedInitSummary:
    diffs: dict[str, DiffBlock] = {}
    for block in extract_diff_blocks(text):
        if block.file_name in INIT_SUMMARY_FILES and block.parsed is not None:
            diffs[block.file_name] = block

    question_content = None
    asking = is_clarifying_question(text)
    if asking:
        prose = DIFF_FENCE.sub("", text).strip()
        if len(prose) > QUESTION_MIN_LENGTH:
            question_content = prose

    missing = [name for name in INIT_SUMMARY_FILES if name not in diffs]
    logger.debug("Init summary: %d diffs, missing %s", len(diffs), missing)
    return ParsedInitSummary(
        diffs=diffs,
        missing_files=missing,
        has_questions=asking,
        question_content=question_content,
    )


def extract_init_summary_summary(text: str) -> InitSummarySummary | None:
    parsed = parse_init_summary_response(text)
    if not parsed.diffs:
        return None
    files = [
        FileChangeCount(name, parsed.diffs[name].parsed.additions, parsed.diffs[name].parsed.deletions)
        for name in INIT_SUMMARY_FILES
        if name in parsed.diffs
    ]
    return InitSummarySummary(
        file_count=len(files),
        total_additions=sum(f.additions for f in files),
        total_deletions=sum(f.deletions for f in files),
        files=files,
    )
