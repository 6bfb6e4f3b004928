"""Project snapshot: which core documents exist and how far each is filled in.

The snapshot is captured from disk when an existing-project session starts
and rendered into the system prompt, so the AI knows which documents are
missing or still template text before it suggests a workflow.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from lachesis.adapters.project_files import ProjectFiles

logger = logging.getLogger(__name__)

CORE_FILES = ("Overview.md", "Roadmap.md", "Log.md", "Archive.md", "Ideas.md", "Tasks.md")

# Order in which documents should be tended when a project is loaded
PRIORITY = ("Overview.md", "Ideas.md", "Tasks.md", "Roadmap.md", "Log.md", "Archive.md")

_FRONT_MATTER = re.compile(r"\A---\r?\n(.*?)\r?\n---\r?\n?", re.DOTALL)
_ANGLE_PLACEHOLDER = re.compile(r"<[^<>]{2,}>")
_HTML_TAG = re.compile(
    r"^/?(a|b|i|u|p|br|hr|div|span|img|pre|code|strong|em|ul|ol|li|table|tr|td|th|h[1-6]|"
    r"details|summary|sub|sup|kbd)\b",
    re.IGNORECASE,
)


class TemplateStatus(str, Enum):
    MISSING = "missing"
    TEMPLATE_ONLY = "template_only"
    THIN = "thin"
    FILLED = "filled"


@dataclass(frozen=True)
class TemplateRule:
    min_meaningful: int
    placeholders: tuple[str, ...] = ()


_SCAFFOLD_PLACEHOLDERS = ("(none identified yet)", "Project created.")

TEMPLATE_RULES: dict[str, TemplateRule] = {
    "Overview.md": TemplateRule(200, _SCAFFOLD_PLACEHOLDERS),
    "Roadmap.md": TemplateRule(
        150,
        _SCAFFOLD_PLACEHOLDERS + (
            "**Status:** planned",
            "**Goal:** Get something functional to validate the core idea.",
            "**Purpose:** Pin down what is being built and for whom.",
        ),
    ),
    "Tasks.md": TemplateRule(50, _SCAFFOLD_PLACEHOLDERS),
    "Log.md": TemplateRule(20, _SCAFFOLD_PLACEHOLDERS),
    "Ideas.md": TemplateRule(20, _SCAFFOLD_PLACEHOLDERS),
    "Archive.md": TemplateRule(50, _SCAFFOLD_PLACEHOLDERS),
}


@dataclass
class SnapshotFile:
    name: str
    exists: bool
    status: TemplateStatus
    findings: list[str] = field(default_factory=list)
    size_bytes: int | None = None
    modified_at: str | None = None
    front_matter: dict[str, Any] = field(default_factory=dict)


@dataclass
class Readiness:
    is_ready: bool
    missing_basics: list[str]
    prioritized_files: list[str]
    gating_summary: str


@dataclass
class ProjectSnapshot:
    project_name: str
    project_path: str
    captured_at: str
    files: dict[str, SnapshotFile]
    readiness: Readiness
    github_repos: list[str] = field(default_factory=list)

    @property
    def missing_files(self) -> list[str]:
        return [name for name in CORE_FILES if not self.files[name].exists]

    @property
    def thin_files(self) -> list[str]:
        return [
            name for name in CORE_FILES
            if self.files[name].status in (TemplateStatus.TEMPLATE_ONLY, TemplateStatus.THIN)
        ]


def split_front_matter(content: str) -> tuple[dict[str, Any], str]:
    """Return the parsed YAML front matter (empty when absent or invalid) and the body."""
    found = _FRONT_MATTER.match(content)
    if not found:
        return {}, content
    body = content[found.end():]
    try:
        parsed = yaml.safe_load(found.group(1))
    except yaml.YAMLError as exc:
        logger.debug("Ignoring unreadable front matter: %s", exc)
        return {}, body
    return (parsed if isinstance(parsed, dict) else {}), body


def count_placeholders(text: str) -> int:
    """Count ``<Like this>`` markers that look like unfilled template slots."""
    count = 0
    for found in _ANGLE_PLACEHOLDER.finditer(text):
        inner = found.group(0)[1:-1].strip()
        if re.match(r"^(https?|ftp)://", inner, re.IGNORECASE):
            continue
        if re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", inner):
            continue
        if _HTML_TAG.match(inner) or inner.endswith("/"):
            continue
        if re.search(r"[=:]", inner) and not re.match(r"^[A-Z][a-z]", inner):
            continue
        count += 1
    return count


def evaluate_template_status(name: str, content: str) -> tuple[TemplateStatus, list[str]]:
    rule = TEMPLATE_RULES.get(name)
    if rule is None:
        return TemplateStatus.FILLED, ["No template rules configured"]

    _, body = split_front_matter(content)
    body = body.replace("\r\n", "\n").strip()
    if not body:
        return TemplateStatus.TEMPLATE_ONLY, ["Body is empty"]

    placeholders = count_placeholders(body)
    meaningful = []
    for line in body.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        for placeholder in rule.placeholders:
            stripped = stripped.replace(placeholder, "")
        stripped = stripped.strip(" -")
        if stripped:
            meaningful.append(stripped)
    text = "\n".join(meaningful)

    if not text:
        return TemplateStatus.TEMPLATE_ONLY, ["Only template headings/placeholders present"]
    if placeholders > 5:
        return TemplateStatus.TEMPLATE_ONLY, [f"{placeholders} unfilled placeholders remain"]
    if len(text) < rule.min_meaningful:
        reasons = [f"Only {len(text)} chars of non-template content"]
        if placeholders:
            reasons.append(f"{placeholders} unfilled placeholders")
        return TemplateStatus.THIN, reasons
    if placeholders > 2:
        return TemplateStatus.THIN, [f"{placeholders} unfilled placeholders remain"]
    return TemplateStatus.FILLED, []


def assess_readiness(files: dict[str, SnapshotFile]) -> Readiness:
    """Decide whether the project has enough basis for the maintenance workflows.

    Overview.md, Tasks.md and Roadmap.md are the basics. Overview must be
    more than thin; Tasks and Roadmap only need to be past template text.
    """
    missing: list[str] = []
    prioritized: list[str] = []

    overview = files["Overview.md"]
    if not overview.exists:
        missing.append("Overview.md is missing")
    elif overview.status == TemplateStatus.TEMPLATE_ONLY:
        missing.append("Overview.md has not been filled in")
    elif overview.status == TemplateStatus.THIN:
        missing.append("Overview.md needs more content")
    if missing:
        prioritized.append("Overview.md")

    for name, empty in (
        ("Tasks.md", "Tasks.md has no actionable items"),
        ("Roadmap.md", "Roadmap.md has no milestones defined"),
    ):
        entry = files[name]
        if not entry.exists:
            missing.append(f"{name} is missing")
            prioritized.append(name)
        elif entry.status == TemplateStatus.TEMPLATE_ONLY:
            missing.append(empty)
            prioritized.append(name)

    for name in PRIORITY:
        if name not in prioritized and files[name].status != TemplateStatus.FILLED:
            prioritized.append(name)

    if not missing:
        summary = "Project has sufficient basis for workflows."
    elif len(missing) == 1:
        summary = f"Before workflows: {missing[0]}"
    else:
        summary = "Before workflows, address: " + "; ".join(missing[:2])
        if len(missing) > 2:
            summary += "..."
    return Readiness(not missing, missing, prioritized, summary)


def _github_repos(front_matter: dict[str, Any]) -> list[str]:
    raw = front_matter.get("github")
    if not isinstance(raw, str) or raw.strip().lower() in ("", "n/a"):
        return []
    return [repo.strip() for repo in raw.split(",") if repo.strip()]


def build_project_snapshot(project_path: str | Path) -> ProjectSnapshot:
    """Read the core documents under *project_path* and grade each one."""
    root = Path(project_path).expanduser()
    files = ProjectFiles(root)
    entries: dict[str, SnapshotFile] = {}
    for name in CORE_FILES:
        content = files.read_optional(name)
        if not content:
            entries[name] = SnapshotFile(name, False, TemplateStatus.MISSING, ["File missing"])
            continue
        stat = files.path_for(name).stat()
        front_matter, _ = split_front_matter(content)
        status, findings = evaluate_template_status(name, content)
        entries[name] = SnapshotFile(
            name,
            True,
            status,
            findings,
            size_bytes=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            front_matter=front_matter,
        )

    snapshot = ProjectSnapshot(
        project_name=root.name or str(root),
        project_path=str(project_path),
        captured_at=datetime.now(timezone.utc).isoformat(),
        files=entries,
        readiness=assess_readiness(entries),
        github_repos=_github_repos(entries["Overview.md"].front_matter),
    )
    logger.info(
        "Snapshot of %s: %d missing, %d thin, ready=%s",
        snapshot.project_name, len(snapshot.missing_files), len(snapshot.thin_files),
        snapshot.readiness.is_ready,
    )
    return snapshot


def format_snapshot_summary(snapshot: ProjectSnapshot) -> str:
    """Render the snapshot as the plain-text block the system prompt embeds."""
    lines = [
        f"PROJECT: {snapshot.project_name}",
        f"PATH: {snapshot.project_path}",
        f"CAPTURED: {snapshot.captured_at}",
        "",
        "FILES:",
    ]
    for name in CORE_FILES:
        entry = snapshot.files[name]
        line = f"- {name}: {entry.status.value}"
        if entry.findings and entry.status != TemplateStatus.MISSING:
            line += f" ({'; '.join(entry.findings)})"
        lines.append(line)
    lines += ["", f"READINESS: {snapshot.readiness.gating_summary}"]
    if snapshot.readiness.prioritized_files:
        lines.append("ATTENTION ORDER: " + ", ".join(snapshot.readiness.prioritized_files))
    if snapshot.github_repos:
        lines.append("GITHUB: " + ", ".join(snapshot.github_repos))
    return "\n".join(lines)
