"""Sync-commits workflow: match git commits to open tasks.

The AI proposes commit → task matches with a confidence. The local
Tasks.md is checked independently: a match whose task is already
checked off defaults to ``skip`` whatever the AI claims.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Iterable, Mapping

from lachesis.shared.markdown_patch import complete_checkbox, insert_archive_entries
from lachesis.shared.sections import (
    HTML_COMMENT,
    SLICE_REF,
    UNCHECKED_TASK,
    TaskSection,
    normalize_task_section,
    section_for_heading,
)
from lachesis.shared.workflows.common import (
    PARSE_ERRORS,
    Confidence,
    load_object,
    parse_confidence,
    pick,
    to_int,
)

logger = logging.getLogger(__name__)

ALREADY_COMPLETED_PREFIX = 30
ARCHIVE_TITLE_LIMIT = 60
NOTES_LIMIT = 100


class SyncAction(str, Enum):
    MARK_COMPLETE = "mark-complete"
    MARK_ARCHIVE = "mark-archive"
    SKIP = "skip"


ACTION_LABELS = {
    SyncAction.MARK_COMPLETE: "Mark Complete Only",
    SyncAction.MARK_ARCHIVE: "Mark + Archive",
    SyncAction.SKIP: "Skip",
}


@dataclass(frozen=True)
class GitCommit:
    sha: str
    message: str
    date: str = ""
    url: str | None = None


@dataclass(frozen=True)
class CommitMatch:
    id: str
    commit_sha: str
    commit_short_sha: str
    commit_message: str
    commit_title: str
    commit_date: str
    commit_url: str | None
    task_text: str
    task_section: TaskSection
    confidence: Confidence
    reasoning: str | None = None
    task_slice_link: str | None = None
    already_completed: bool = False
    action: SyncAction = SyncAction.SKIP


@dataclass(frozen=True)
class UnmatchedCommit:
    commit_sha: str
    commit_short_sha: str
    commit_title: str
    commit_date: str
    reasoning: str


@dataclass
class ParsedSyncCommits:
    success: bool
    matches: list[CommitMatch] = field(default_factory=list)
    unmatched_commits: list[UnmatchedCommit] = field(default_factory=list)
    total_commits: int = 0
    matched_count: int = 0
    unmatched_count: int = 0


@dataclass(frozen=True)
class SyncCommitsSummary:
    matched_count: int
    unmatched_count: int
    high_count: int
    medium_count: int
    low_count: int


@dataclass(frozen=True)
class UncheckedTask:
    text: str
    section: TaskSection
    line_number: int
    slice_link: str | None = None


def get_default_action(confidence: Confidence | str, already_completed: bool = False) -> SyncAction:
    if already_completed:
        return SyncAction.SKIP
    confidence = parse_confidence(confidence, default=Confidence.LOW)
    if confidence == Confidence.HIGH:
        return SyncAction.MARK_ARCHIVE
    if confidence == Confidence.MEDIUM:
        return SyncAction.MARK_COMPLETE
    return SyncAction.SKIP


def contains_sync_commits_response(text: str) -> bool:
    return (
        '"matches"' in text
        and '"unmatchedCommits"' in text
        and '"summary"' in text
        and ('"totalCommits"' in text or '"matchedCount"' in text)
    )


def extract_sync_commits_summary(text: str) -> SyncCommitsSummary | None:
    payload = load_object(text)
    if payload is None or not isinstance(payload.get("matches"), list):
        return None
    matches = payload["matches"]
    unmatched = payload.get("unmatchedCommits") or []

    def count(level: str) -> int:
        return sum(1 for m in matches if isinstance(m, dict) and m.get("confidence") == level)

    return SyncCommitsSummary(
        matched_count=len(matches),
        unmatched_count=len(unmatched) if isinstance(unmatched, list) else 0,
        high_count=count("high"),
        medium_count=count("medium"),
        low_count=count("low"),
    )


def _commit_index(commits: Iterable[GitCommit]) -> tuple[dict, dict]:
    commits = list(commits)
    return {c.sha: c for c in commits}, {c.sha[:7]: c for c in commits}


def _lookup(sha: str, by_sha: dict, by_short: dict) -> GitCommit | None:
    return by_sha.get(sha) or by_short.get(sha[:7])


def parse_sync_commits_response(
    text: str,
    commits: Iterable[GitCommit] = (),
    tasks_content: str | None = None,
) -> ParsedSyncCommits:
    """Build CommitMatch candidates from the AI response.

    With *tasks_content*, matches whose task is already checked off are
    flagged and default to skip. Never raises; malformed input gives
    ``success=False`` and no candidates.
    """
    payload = load_object(text)
    if payload is None or not isinstance(payload.get("matches"), list):
        logger.warning("Sync commits response missing matches array")
        return ParsedSyncCommits(success=False)

    try:
        by_sha, by_short = _commit_index(commits)
        matches = []
        for index, raw in enumerate(payload["matches"]):
            sha = str(pick(raw, "commitSha", "commit_sha", default=""))
            commit = _lookup(sha, by_sha, by_short)
            message = str(pick(raw, "commitMessage", "commit_message", default="")) or (
                commit.message if commit else ""
            )
            task_text = str(pick(raw, "taskText", "task_text", default=""))
            confidence = parse_confidence(raw.get("confidence"))
            slice_match = SLICE_REF.search(task_text)
            matches.append(CommitMatch(
                id=f"sync-{index}",
                commit_sha=sha,
                commit_short_sha=sha[:7],
                commit_message=message,
                commit_title=message.split("\n")[0],
                commit_date=commit.date if commit else "",
                commit_url=commit.url if commit else None,
                task_text=task_text,
                task_section=normalize_task_section(pick(raw, "taskSection", "task_section")),
                confidence=confidence,
                reasoning=raw.get("reasoning") or None,
                task_slice_link=slice_match.group(0) if slice_match else None,
                action=get_default_action(confidence),
            ))

        unmatched = []
        for raw in payload.get("unmatchedCommits") or []:
            sha = str(pick(raw, "commitSha", "commit_sha", default=""))
            commit = _lookup(sha, by_sha, by_short)
            message = str(pick(raw, "commitMessage", "commit_message", default=""))
            unmatched.append(UnmatchedCommit(
                commit_sha=sha,
                commit_short_sha=sha[:7],
                commit_title=message.split("\n")[0],
                commit_date=commit.date if commit else "",
                reasoning=str(raw.get("reasoning") or ""),
            ))
    except PARSE_ERRORS as exc:
        logger.warning("Failed to parse sync commits response: %s", exc)
        return ParsedSyncCommits(success=False)

    if tasks_content is not None:
        matches = mark_already_completed(matches, tasks_content)

    summary = payload.get("summary") if isinstance(payload.get("summary"), dict) else {}
    logger.debug("Parsed %d commit matches, %d unmatched", len(matches), len(unmatched))
    return ParsedSyncCommits(
        success=True,
        matches=matches,
        unmatched_commits=unmatched,
        total_commits=to_int(summary.get("totalCommits"), len(matches) + len(unmatched)),
        matched_count=to_int(summary.get("matchedCount"), len(matches)),
        unmatched_count=to_int(summary.get("unmatchedCount"), len(unmatched)),
    )


def is_task_completed(tasks_content: str, task_text: str) -> bool:
    prefix = task_text.strip()[:ALREADY_COMPLETED_PREFIX]
    if not prefix:
        return False
    pattern = re.compile(rf"^\s*-\s*\[x\]\s+{re.escape(prefix)}", re.IGNORECASE | re.MULTILINE)
    return bool(pattern.search(tasks_content))


def mark_already_completed(matches: list[CommitMatch], tasks_content: str) -> list[CommitMatch]:
    """Flag matches whose task is checked off locally; those default to skip."""
    marked = []
    for match in matches:
        if is_task_completed(tasks_content, match.task_text):
            match = replace(match, already_completed=True, action=SyncAction.SKIP)
        marked.append(match)
    return marked


def extract_unchecked_tasks(content: str) -> list[UncheckedTask]:
    tasks = []
    section = TaskSection.NEXT
    for index, line in enumerate(content.split("\n")):
        heading = section_for_heading(line)
        if heading is not None:
            section = heading
            continue
        found = UNCHECKED_TASK.match(line)
        if not found:
            continue
        text = HTML_COMMENT.sub("", found.group(1), count=1).strip()
        slice_match = SLICE_REF.search(text)
        tasks.append(UncheckedTask(
            text=text,
            section=section,
            line_number=index,
            slice_link=slice_match.group(0) if slice_match else None,
        ))
    return tasks


def with_actions(matches: list[CommitMatch], actions: Mapping[str, str] | None) -> list[CommitMatch]:
    """Apply user overrides (match id → action) on top of the defaults."""
    if not actions:
        return list(matches)
    return [
        replace(m, action=SyncAction(actions[m.id])) if m.id in actions else m
        for m in matches
    ]


def apply_task_completions(content: str, matches: list[CommitMatch]) -> str:
    """Check off the task of every match marked complete or archive."""
    for match in matches:
        if match.action in (SyncAction.MARK_COMPLETE, SyncAction.MARK_ARCHIVE):
            content = complete_checkbox(content, match.task_text)
    return content


def _summarize_body(body: str) -> str:
    lines = [
        l.strip() for l in body.split("\n")
        if l.strip() and not l.startswith("Co-Authored-By")
    ]
    if not lines:
        return "Completed via git commit"
    first = lines[0]
    return first if len(first) <= NOTES_LIMIT else first[:NOTES_LIMIT - 3] + "..."


def format_archive_entry(match: CommitMatch, today: date | None = None) -> str:
    today = today or date.today()
    title = match.task_text
    if len(title) > ARCHIVE_TITLE_LIMIT:
        title = title[:ARCHIVE_TITLE_LIMIT - 3] + "..."
    body = "\n".join(match.commit_message.split("\n")[1:]).strip()
    notes = _summarize_body(body) if body else "Completed via git commit"
    ref = f"[{match.commit_short_sha}]({match.commit_url})" if match.commit_url else match.commit_short_sha
    return "\n".join([
        f"### {today.isoformat()} - {title}",
        f"**What:** {match.task_text}",
        f"**Commit:** {ref}",
        f"**Notes:** {notes}",
        "",
    ])


def build_archive_entries(matches: list[CommitMatch], today: date | None = None) -> str:
    return "\n".join(
        format_archive_entry(m, today) for m in matches if m.action == SyncAction.MARK_ARCHIVE
    )


def apply_archive_entries(content: str, entries: str) -> str:
    return insert_archive_entries(content, entries)
