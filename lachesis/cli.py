"""CLI entry point for Lachesis.

Usage:
    lachesis session new --name "Trail Mapper" --one-liner "Offline trail maps"
    lachesis session ask SESSION_ID --message "Hikers without signal"
    lachesis session finalize SESSION_ID "Trail Mapper" --vault ~/Vault
    lachesis workflow parse sync-commits response.md --commits commits.json
    lachesis workflow apply archive-completed response.md --project ~/Vault/Trail\\ Mapper

Sessions only outlive one invocation when a state file is given
(--state-file or LACHESIS_STATE_FILE). Results are printed as JSON on
stdout; streamed AI text goes to stderr.
"""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import enum
import json
import logging
import sys
from pathlib import Path
from typing import Any

from lachesis.adapters.ai_client import ClaudeAIClient
from lachesis.adapters.project_files import ProjectFiles, atomic_write_text
from lachesis.adapters.snapshot import build_project_snapshot, format_snapshot_summary
from lachesis.adapters.workflow_executor import WorkflowApplyResult, WorkflowExecutor
from lachesis.engine.config import LachesisConfig
from lachesis.engine.errors import LachesisError
from lachesis.engine.models import SessionState, SessionType
from lachesis.engine.registry import SessionRegistry
from lachesis.engine.session_engine import SessionEngine
from lachesis.engine.yaml_config import load_yaml_config
from lachesis.shared.workflows import (
    WORKFLOW_KINDS,
    archive_completed,
    detect_workflow_kind,
    enrich_tasks,
    init_summary,
    plan_work,
    promote_next,
    sync_commits,
)

logger = logging.getLogger(__name__)

STATE_VERSION = 1


# ── Output ──

def to_jsonable(value: Any) -> Any:
    """Convert results (dataclasses, enums, sets) into JSON-ready values."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)
        }
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(to_jsonable(v) for v in value)
    return value


def _emit(value: Any) -> None:
    print(json.dumps(to_jsonable(value), indent=2, ensure_ascii=False))


class _StderrStream:
    """Writes the growing text of a streamed response to stderr."""

    def __init__(self) -> None:
        self._written = 0

    def __call__(self, text: str) -> None:
        if len(text) < self._written:
            self._written = 0
        sys.stderr.write(text[self._written:])
        sys.stderr.flush()
        self._written = len(text)

    def finish(self) -> None:
        if self._written:
            sys.stderr.write("\n")


# ── State file ──

def load_state(path: str | None, registry: SessionRegistry) -> None:
    if not path:
        return
    state_path = Path(path).expanduser()
    if not state_path.is_file():
        return
    try:
        data = json.loads(state_path.read_text(encoding="utf-8"))
        registry.load(SessionState.from_dict(item) for item in data.get("sessions", []))
    except (ValueError, KeyError, TypeError) as exc:
        raise LachesisError(f"Cannot read state file {state_path}: {exc}") from exc
    logger.debug("Loaded %d session(s) from %s", len(registry), state_path)


def save_state(path: str | None, registry: SessionRegistry) -> None:
    if not path:
        return
    payload = {
        "version": STATE_VERSION,
        "sessions": [state.to_dict() for state in registry.list()],
    }
    atomic_write_text(
        Path(path).expanduser(), json.dumps(payload, indent=2, ensure_ascii=False),
    )


# ── Session commands ──

async def _run_session_command(args: argparse.Namespace, config: LachesisConfig) -> int:
    registry = SessionRegistry(max_sessions=config.max_sessions)
    load_state(config.state_file, registry)
    engine = SessionEngine(ClaudeAIClient(), registry=registry)
    ai_config = config.ai_config(getattr(args, "project_path", None))
    status = 0

    if args.session_command == "new":
        project_path = args.project_path
        snapshot = None
        if project_path and args.snapshot:
            snapshot = Path(args.snapshot).read_text(encoding="utf-8")
        elif project_path:
            snapshot = format_snapshot_summary(build_project_snapshot(project_path))
        state = engine.create_session(
            SessionType.EXISTING_PROJECT if project_path else SessionType.NEW_PROJECT,
            project_name=args.name,
            one_liner=args.one_liner,
            planning_level=args.planning_level or config.planning_level,
            project_path=project_path,
            project_snapshot=snapshot,
        )
        _emit(state)

    elif args.session_command == "list":
        _emit([
            {"id": s.id, "type": s.type, "step": s.step, "name": s.selected_name or s.effective_project_name,
             "updated_at": s.updated_at}
            for s in engine.list_sessions()
        ])

    elif args.session_command == "show":
        state = engine.get_session(args.session_id)
        if state is None:
            _emit({"success": False, "error": f"Session not found: {args.session_id}"})
            status = 1
        else:
            _emit(state)

    elif args.session_command == "ask":
        stream = _StderrStream()
        state = engine.get_session(args.session_id)
        project_path = state.project_path if state else None
        ai_config = config.ai_config(project_path)
        if args.message:
            result = await engine.process_user_message(
                args.session_id,
                args.message,
                ai_config,
                agentic_enabled=config.agentic_enabled,
                project_path=project_path,
                on_partial=stream,
            )
        else:
            result = await engine.stream_question(args.session_id, ai_config, stream)
        stream.finish()
        _emit(result)
        status = 0 if result.success else 1

    elif args.session_command == "names":
        result = await engine.generate_name_suggestions(args.session_id, ai_config)
        _emit(result)
        status = 0 if result.success else 1

    elif args.session_command == "finalize":
        result = await engine.finalize_session(
            args.session_id,
            args.name,
            args.vault or config.vault_path,
            ai_config,
            is_custom_input=args.custom,
        )
        _emit(result)
        status = 0 if result.success else 1

    elif args.session_command == "restart":
        result = engine.restart(args.session_id)
        _emit(result)
        status = 0 if result.success else 1

    elif args.session_command == "delete":
        deleted = engine.delete_session(args.session_id)
        _emit({"success": deleted, "session_id": args.session_id})
        status = 0 if deleted else 1

    save_state(config.state_file, registry)
    return status


# ── Workflow commands ──

def _load_commits(path: str | None) -> list[sync_commits.GitCommit]:
    if not path:
        return []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return [
        sync_commits.GitCommit(
            sha=item["sha"], message=item.get("message", ""),
            date=item.get("date", ""), url=item.get("url"),
        )
        for item in data
    ]


def parse_workflow(
    kind: str, text: str, files: ProjectFiles | None, commits: list[sync_commits.GitCommit],
) -> Any:
    """Parse *text* as a *kind* response, using project files where the parser needs them."""
    tasks_content = files.read_optional("Tasks.md") if files else None
    if kind == "sync-commits":
        return sync_commits.parse_sync_commits_response(text, commits, tasks_content)
    if kind == "archive-completed":
        local = archive_completed.extract_completed_tasks(tasks_content or "")
        return archive_completed.parse_archive_completed_response(text, local)
    if kind == "enrich-tasks":
        return enrich_tasks.parse_enrich_tasks_response(text)
    if kind == "promote-next":
        return promote_next.parse_promote_next_response(text)
    if kind == "plan-work":
        return plan_work.parse_plan_work_response(text)
    if kind == "init-summary":
        return init_summary.parse_init_summary_response(text)
    raise LachesisError(f"Unknown workflow kind: {kind}")


def apply_workflow(kind: str, parsed: Any, executor: WorkflowExecutor) -> WorkflowApplyResult:
    """Apply a parsed response with its default actions."""
    if kind == "sync-commits":
        return executor.apply_sync_commits(parsed.matches)
    if kind == "archive-completed":
        return executor.apply_archive_completed(parsed.all_tasks())
    if kind == "enrich-tasks":
        return executor.apply_enrichments(parsed)
    if kind == "promote-next":
        return executor.apply_promotion(parsed)
    if kind == "plan-work":
        return executor.apply_plan_work(parsed.tasks, parsed.slices)
    if kind == "init-summary":
        return executor.apply_init_summary(parsed)
    raise LachesisError(f"Unknown workflow kind: {kind}")


def _run_workflow_command(args: argparse.Namespace) -> int:
    text = Path(args.response_file).read_text(encoding="utf-8")

    if args.workflow_command == "detect":
        _emit({"kind": detect_workflow_kind(text)})
        return 0

    files = ProjectFiles(Path(args.project).expanduser()) if args.project else None
    parsed = parse_workflow(args.kind, text, files, _load_commits(args.commits))

    if args.workflow_command == "parse":
        _emit(parsed)
        return 0

    result = apply_workflow(args.kind, parsed, WorkflowExecutor(files))
    _emit(result)
    return 0


# ── Argument parsing ──

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lachesis",
        description="AI-guided planning for markdown project folders",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file with a 'lachesis:' section",
    )
    parser.add_argument(
        "--state-file",
        default=None,
        help="JSON file that keeps sessions between runs (default: LACHESIS_STATE_FILE)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    groups = parser.add_subparsers(dest="group", required=True)

    # session
    session = groups.add_parser("session", help="Planning conversations")
    commands = session.add_subparsers(dest="session_command", required=True)

    new = commands.add_parser("new", help="Start a session")
    new.add_argument("--name", default="", help="Working project name")
    new.add_argument("--one-liner", default="", help="One-sentence description")
    new.add_argument("--planning-level", default=None, help="light, medium or heavy")
    new.add_argument(
        "--project-path",
        default=None,
        help="Existing project folder (starts an existing-project session)",
    )
    new.add_argument(
        "--snapshot",
        default=None,
        help="Text file summarising the existing project's state (default: built from its documents)",
    )

    commands.add_parser("list", help="List sessions")

    for name, help_text in (
        ("show", "Print one session"),
        ("names", "Generate project name suggestions"),
        ("restart", "Leave the error step"),
        ("delete", "Delete a session"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("session_id")

    ask = commands.add_parser("ask", help="Get the next AI message")
    ask.add_argument("session_id")
    ask.add_argument("--message", "-m", default=None, help="Your reply before the next question")

    finalize = commands.add_parser("finalize", help="Name, extract and scaffold the project")
    finalize.add_argument("session_id")
    finalize.add_argument("name", help="Chosen project name")
    finalize.add_argument(
        "--custom",
        action="store_true",
        help="Treat NAME as free text and extract the name from it",
    )
    finalize.add_argument("--vault", default=None, help="Where to create the project folder")

    # workflow
    workflow = groups.add_parser("workflow", help="Parse and apply AI workflow responses")
    wf_commands = workflow.add_subparsers(dest="workflow_command", required=True)

    detect = wf_commands.add_parser("detect", help="Guess which workflow produced a response")
    detect.add_argument("response_file")

    for name, help_text in (
        ("parse", "Print the change candidates in a response"),
        ("apply", "Apply a response with default actions"),
    ):
        sub = wf_commands.add_parser(name, help=help_text)
        sub.add_argument("kind", choices=sorted(WORKFLOW_KINDS))
        sub.add_argument("response_file")
        sub.add_argument(
            "--project", "-p",
            default=None,
            required=name == "apply",
            help="Project folder holding Tasks.md, Archive.md and friends",
        )
        sub.add_argument(
            "--commits",
            default=None,
            help="JSON list of commits (sha, message, date, url) for sync-commits",
        )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = LachesisConfig.from_env()
        if args.config:
            config = load_yaml_config(args.config, base=config)
        if args.state_file:
            config.state_file = args.state_file
    except LachesisError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    try:
        if args.group == "session":
            return asyncio.run(_run_session_command(args, config))
        return _run_workflow_command(args)
    except LachesisError as exc:
        logger.debug("Command failed", exc_info=True)
        _emit({"success": False, "error": str(exc)})
        return 1
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
