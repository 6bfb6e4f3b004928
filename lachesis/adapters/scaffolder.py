"""Project scaffolding collaborator.

``Scaffolder`` is what the session engine calls; ``MarkdownScaffolder``
is the default implementation, writing the standard set of project
documents with YAML front matter.
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path

import yaml

from lachesis.adapters.project_files import atomic_write_text
from lachesis.engine.models import ExtractedProjectData

logger = logging.getLogger(__name__)


@dataclass
class ScaffoldRequest:
    project_name: str
    project_slug: str
    one_liner: str
    extracted: ExtractedProjectData


@dataclass
class ScaffoldResult:
    success: bool
    project_path: str | None = None
    error: str | None = None


class Scaffolder(abc.ABC):
    @abc.abstractmethod
    async def scaffold_project(
        self, root_path: str, slug: str, project: ScaffoldRequest
    ) -> ScaffoldResult:
        """Create the project directory and its initial documents."""


def _front_matter(project: ScaffoldRequest, **extra: object) -> str:
    fields = {
        "type": "project",
        "project": project.project_name,
        "slug": project.project_slug,
        "status": "active",
        "last_updated": date.today().isoformat(),
        **extra,
    }
    body = yaml.safe_dump(fields, sort_keys=False, allow_unicode=True)
    return f"---\n{body}---\n"


def _bullets(items: list[str], empty: str) -> str:
    return "\n".join(f"- {item}" for item in items) if items else f"- {empty}"


def render_overview(project: ScaffoldRequest) -> str:
    vision = project.extracted.vision
    constraints = project.extracted.constraints
    audience = vision.primary_audience
    if vision.secondary_audience:
        audience += f"\n\nSecondary: {vision.secondary_audience}"
    return f"""{_front_matter(project)}
# Overview: {project.project_name}

## Elevator Pitch

{vision.one_line_pitch}

## Description

{vision.description}

## Problem

{vision.problem_solved}

## Audience

{audience}

## Success Criteria

{vision.success_criteria}

## Constraints

{_bullets(constraints.known, "(none identified yet)")}

## Assumptions

{_bullets(constraints.assumptions, "(none identified yet)")}

## Anti-goals

{_bullets(constraints.anti_goals, "(none identified yet)")}
"""


def render_roadmap(project: ScaffoldRequest) -> str:
    risks = project.extracted.constraints.risks
    return f"""{_front_matter(project, roadmap_version=1)}
# Roadmap: {project.project_name}

## Milestones

### M1 — First Working Version

**Status:** planned
**Goal:** Get something functional to validate the core idea.

#### VS1 — Project Definition

**Purpose:** Pin down what is being built and for whom.

## Risks

{_bullets(risks, "(none identified yet)")}
"""


def render_tasks(project: ScaffoldRequest) -> str:
    first_move = project.extracted.execution.suggested_first_move
    now = f"- [ ] {first_move}" if first_move else "- [ ] Write elevator pitch [[Roadmap#VS1 — Project Definition]]"
    return f"""{_front_matter(project)}
# Tasks: {project.project_name}

## Now

{now}

## Next

## Later

## Done
"""


def render_log(project: ScaffoldRequest) -> str:
    return f"""{_front_matter(project)}
# Log: {project.project_name}

## {date.today().isoformat()}

Project created.
"""


def render_ideas(project: ScaffoldRequest) -> str:
    return f"""{_front_matter(project)}
# Ideas: {project.project_name}
"""


def render_archive(project: ScaffoldRequest) -> str:
    return f"""{_front_matter(project, archive_version=1)}
# Archive: {project.project_name}

## Completed Work
"""


DOCUMENTS = {
    "Overview.md": render_overview,
    "Roadmap.md": render_roadmap,
    "Tasks.md": render_tasks,
    "Log.md": render_log,
    "Ideas.md": render_ideas,
    "Archive.md": render_archive,
}


class MarkdownScaffolder(Scaffolder):
    """Writes the standard project documents into ``root_path/slug``."""

    async def scaffold_project(
        self, root_path: str, slug: str, project: ScaffoldRequest
    ) -> ScaffoldResult:
        if not root_path:
            return ScaffoldResult(success=False, error="Vault path is not configured.")
        project_dir = Path(root_path).expanduser() / slug
        if project_dir.exists():
            return ScaffoldResult(
                success=False,
                error=f"Project directory already exists: {project_dir}",
            )
        project_dir.mkdir(parents=True)
        for name, render in DOCUMENTS.items():
            atomic_write_text(project_dir / name, render(project))
        logger.info("Scaffolded %s with %d documents", project_dir, len(DOCUMENTS))
        return ScaffoldResult(success=True, project_path=str(project_dir))
