"""Project snapshot grading and readiness."""

from __future__ import annotations

import pytest

from lachesis.adapters.scaffolder import DOCUMENTS, MarkdownScaffolder, ScaffoldRequest
from lachesis.adapters.snapshot import (
    TemplateStatus,
    build_project_snapshot,
    count_placeholders,
    evaluate_template_status,
    format_snapshot_summary,
    split_front_matter,
)
from lachesis.engine.models import ExtractedProjectData

OVERVIEW = """---
project: Trails
github: hiker/trails, hiker/trails-api
---
# Overview: Trails

## Elevator Pitch

Offline trail maps for hikers who lose signal halfway up the mountain and
still need to know which fork leads back to the car park before dark.

## Problem

Phone map apps need a data connection to render tiles, and the printed maps
at trailheads are usually faded or missing entirely.
"""

FILLED_TASKS = """# Tasks: Trails

## Now

- [ ] Render cached tiles without a network connection [[Roadmap#VS1 — Offline Tiles]]
"""

FILLED_ROADMAP = """# Roadmap: Trails

## Milestones

### M1 — Offline Maps

**Status:** active
**Goal:** A hiker can open a downloaded region with airplane mode on and see
their position on the trail network, including junction names and distances.
"""


def _write(root, **documents):
    root.mkdir(exist_ok=True)
    for name, content in documents.items():
        (root / f"{name}.md").write_text(content, encoding="utf-8")
    return root


# ── Front matter and placeholders ──


def test_front_matter_is_parsed_with_yaml():
    front_matter, body = split_front_matter(OVERVIEW)
    assert front_matter["project"] == "Trails"
    assert body.startswith("# Overview: Trails")


def test_unreadable_front_matter_becomes_empty():
    front_matter, body = split_front_matter("---\nproject: [unclosed\n---\nBody\n")
    assert front_matter == {}
    assert body == "Body\n"


def test_placeholders_skip_links_tags_and_addresses():
    text = "<Who?> <What hurts today?> <br> <https://trails.example> <ops@trails.example> <a href=x>"
    assert count_placeholders(text) == 2


# ── Template status ──


def test_empty_body_is_template_only():
    assert evaluate_template_status("Ideas.md", "---\nproject: Trails\n---\n") == (
        TemplateStatus.TEMPLATE_ONLY, ["Body is empty"],
    )


def test_headings_alone_are_template_only():
    status, reasons = evaluate_template_status("Archive.md", "# Archive\n\n## Completed Work\n")
    assert status == TemplateStatus.TEMPLATE_ONLY
    assert reasons == ["Only template headings/placeholders present"]


def test_short_content_is_thin():
    status, reasons = evaluate_template_status("Tasks.md", "## Now\n\n- [ ] Write docs\n")
    assert status == TemplateStatus.THIN
    assert reasons[0].startswith("Only ")


def test_many_placeholders_are_template_only():
    body = "\n".join(f"<Fill in part {n}>" for n in range(6)) + "\n" + "x" * 300
    status, reasons = evaluate_template_status("Overview.md", body)
    assert status == TemplateStatus.TEMPLATE_ONLY
    assert reasons == ["6 unfilled placeholders remain"]


def test_long_content_is_filled():
    assert evaluate_template_status("Overview.md", OVERVIEW) == (TemplateStatus.FILLED, [])


# ── Snapshot ──


def test_filled_project_is_ready(tmp_path):
    root = _write(tmp_path / "Trails", Overview=OVERVIEW, Tasks=FILLED_TASKS, Roadmap=FILLED_ROADMAP)

    snapshot = build_project_snapshot(root)

    assert snapshot.project_name == "Trails"
    assert snapshot.readiness.is_ready
    assert snapshot.readiness.gating_summary == "Project has sufficient basis for workflows."
    assert snapshot.missing_files == ["Log.md", "Archive.md", "Ideas.md"]
    assert snapshot.readiness.prioritized_files == ["Ideas.md", "Log.md", "Archive.md"]
    assert snapshot.github_repos == ["hiker/trails", "hiker/trails-api"]
    assert snapshot.files["Overview.md"].size_bytes == len(OVERVIEW.encode("utf-8"))


def test_missing_basics_gate_workflows(tmp_path):
    root = _write(tmp_path / "Trails", Tasks="# Tasks\n\n## Now\n")

    snapshot = build_project_snapshot(root)

    assert not snapshot.readiness.is_ready
    assert snapshot.readiness.missing_basics == [
        "Overview.md is missing",
        "Tasks.md has no actionable items",
        "Roadmap.md is missing",
    ]
    assert snapshot.readiness.gating_summary == (
        "Before workflows, address: Overview.md is missing; Tasks.md has no actionable items..."
    )
    assert snapshot.readiness.prioritized_files[:3] == ["Overview.md", "Tasks.md", "Roadmap.md"]


def test_single_missing_basic_is_named(tmp_path):
    root = _write(tmp_path / "Trails", Overview=OVERVIEW, Tasks=FILLED_TASKS)
    snapshot = build_project_snapshot(root)
    assert snapshot.readiness.gating_summary == "Before workflows: Roadmap.md is missing"


@pytest.mark.asyncio
async def test_freshly_scaffolded_project_reports_template_documents(tmp_path):
    project = ScaffoldRequest("Trails", "trails", "Offline maps", ExtractedProjectData.fallback("Offline maps"))
    result = await MarkdownScaffolder().scaffold_project(str(tmp_path), "trails", project)

    snapshot = build_project_snapshot(result.project_path)

    assert snapshot.missing_files == []
    assert set(snapshot.files) == set(DOCUMENTS)
    assert snapshot.files["Ideas.md"].status == TemplateStatus.TEMPLATE_ONLY
    assert snapshot.files["Archive.md"].status == TemplateStatus.TEMPLATE_ONLY
    assert not snapshot.readiness.is_ready


def test_summary_lists_every_core_file(tmp_path):
    root = _write(tmp_path / "Trails", Overview=OVERVIEW, Tasks="## Now\n\n- [ ] Write docs\n")

    summary = format_snapshot_summary(build_project_snapshot(root))

    assert summary.startswith("PROJECT: Trails\n")
    assert "- Overview.md: filled" in summary
    assert "- Tasks.md: thin (Only " in summary
    assert "- Log.md: missing\n" in summary
    assert "READINESS: Before workflows: Roadmap.md is missing" in summary
    assert summary.endswith("GITHUB: hiker/trails, hiker/trails-api")


@pytest.mark.parametrize("line", ["github:", "github: N/A", "github: 42"])
def test_github_placeholder_values_are_ignored(tmp_path, line):
    overview = OVERVIEW.replace("github: hiker/trails, hiker/trails-api", line)
    root = _write(tmp_path / "Trails", Overview=overview)
    assert build_project_snapshot(root).github_repos == []
