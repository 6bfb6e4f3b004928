"""Adapters package - collaborators the session engine talks to.

Collaborators the engine and CLI call into live here. The engine
depends only on their interfaces.
"""
from __future__ import annotations

__all__ = [
    "AIClient",
    "ClaudeAIClient",
    "EventBus",
    "MarkdownScaffolder",
    "ProjectFiles",
    "ProjectSnapshot",
    "Scaffolder",
    "WorkflowExecutor",
    "build_project_snapshot",
]

from lachesis.adapters.ai_client import AIClient, ClaudeAIClient
from lachesis.adapters.event_bus import EventBus
from lachesis.adapters.project_files import ProjectFiles
from lachesis.adapters.scaffolder import MarkdownScaffolder, Scaffolder
from lachesis.adapters.snapshot import ProjectSnapshot, build_project_snapshot
from lachesis.adapters.workflow_executor import WorkflowExecutor
