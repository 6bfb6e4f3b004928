"""Command line entry point."""

from __future__ import annotations

import json

import pytest

from lachesis.cli import build_parser, main, to_jsonable
from lachesis.engine.models import SessionStep
from lachesis.shared.workflows import sync_commits

TASKS = "## Now\n\n- [ ] Write docs\n\n## Next\n\n- [x] Fix typo\n\n## Later\n"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("LACHESIS_STATE_FILE", "LACHESIS_PLANNING_LEVEL", "LACHESIS_MAX_SESSIONS"):
        monkeypatch.delenv(name, raising=False)


def _output(capsys) -> object:
    return json.loads(capsys.readouterr().out)


def test_parser_requires_project_for_apply():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["workflow", "apply", "plan-work", "response.md"])


def test_to_jsonable_handles_nested_results():
    match = sync_commits.parse_sync_commits_response(json.dumps({
        "matches": [{"commitSha": "abc1234", "taskText": "Build login", "confidence": "high"}],
        "unmatchedCommits": [],
    })).matches[0]

    data = to_jsonable({"match": match, "steps": {SessionStep.IDLE}})

    assert data["match"]["action"] == "mark-archive"
    assert data["match"]["task_section"] == "next"
    assert data["steps"] == ["idle"]


def test_session_state_persists_between_runs(tmp_path, capsys):
    state_file = tmp_path / "sessions.json"

    assert main(["--state-file", str(state_file), "session", "new", "--name", "Trails"]) == 0
    created = _output(capsys)
    assert created["step"] == "idle"

    assert main(["--state-file", str(state_file), "session", "list"]) == 0
    listed = _output(capsys)
    assert [s["id"] for s in listed] == [created["id"]]
    assert listed[0]["name"] == "Trails"

    assert main(["--state-file", str(state_file), "session", "delete", created["id"]]) == 0
    capsys.readouterr()
    assert json.loads(state_file.read_text())["sessions"] == []


def test_existing_project_session_captures_snapshot(tmp_path, capsys):
    project = tmp_path / "Trails"
    project.mkdir()
    (project / "Tasks.md").write_text(TASKS, encoding="utf-8")

    assert main(["session", "new", "--project-path", str(project)]) == 0

    created = _output(capsys)
    assert created["type"] == "existing_project"
    assert created["project_snapshot"].startswith("PROJECT: Trails")
    assert "- Overview.md: missing" in created["project_snapshot"]
    assert "READINESS: Before workflows, address: Overview.md is missing" in created["project_snapshot"]


def test_unknown_session_exits_nonzero(tmp_path, capsys):
    assert main(["--state-file", str(tmp_path / "s.json"), "session", "show", "sess_missing"]) == 1
    assert _output(capsys)["success"] is False


def test_workflow_detect(tmp_path, capsys):
    response = tmp_path / "response.md"
    response.write_text('{"status": "no_tasks", "message": "Nothing queued"}')

    assert main(["workflow", "detect", str(response)]) == 0
    assert _output(capsys) == {"kind": "promote-next"}


def test_workflow_parse_and_apply_archive(tmp_path, capsys):
    project = tmp_path / "Trails"
    project.mkdir()
    (project / "Tasks.md").write_text(TASKS)
    (project / "Archive.md").write_text("# Archive\n\n## Completed Work\n")
    response = tmp_path / "response.md"
    response.write_text("The model returned prose instead of JSON.")

    assert main(["workflow", "parse", "archive-completed", str(response), "--project", str(project)]) == 0
    parsed = _output(capsys)
    assert parsed["success"] is False
    assert parsed["standalone_tasks"][0]["text"] == "Fix typo"

    assert main(["workflow", "apply", "archive-completed", str(response), "--project", str(project)]) == 0
    applied = _output(capsys)
    assert sorted(applied["changed_files"]) == ["Archive.md", "Tasks.md"]
    assert "Fix typo" not in (project / "Tasks.md").read_text()


def test_workflow_apply_failure_reports_error(tmp_path, capsys):
    project = tmp_path / "Trails"
    project.mkdir()
    (project / "Tasks.md").write_text(TASKS)
    response = tmp_path / "response.md"
    response.write_text(json.dumps({
        "status": "success",
        "selectedTask": {"text": "Ship it", "sourceSection": "next"},
    }))

    assert main(["workflow", "apply", "promote-next", str(response), "--project", str(project)]) == 1
    result = _output(capsys)
    assert result["success"] is False
    assert "Ship it" in result["error"]
    assert (project / "Tasks.md").read_text() == TASKS


def test_sync_commits_reads_commit_file(tmp_path, capsys):
    commits = tmp_path / "commits.json"
    commits.write_text(json.dumps([{"sha": "abc1234ffff", "message": "Build login", "date": "2026-03-01"}]))
    response = tmp_path / "response.md"
    response.write_text(json.dumps({
        "matches": [{"commitSha": "abc1234", "taskText": "Write docs", "confidence": "medium"}],
        "unmatchedCommits": [],
    }))

    assert main(["workflow", "parse", "sync-commits", str(response), "--commits", str(commits)]) == 0
    parsed = _output(capsys)
    assert parsed["matches"][0]["commit_date"] == "2026-03-01"
    assert parsed["matches"][0]["action"] == "mark-complete"
