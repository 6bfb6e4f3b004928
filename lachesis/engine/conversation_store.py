"""Keyed in-memory store for conversation state.

Three independent namespaces:

- per-project conversation state, keyed by the exact project path
  string (no normalisation: ``/a/b`` and ``/a/b/`` are different keys)
- a single "new project in progress" draft
- a single "active project" pointer (name and path only)

Clearing one namespace never touches another. Values are deep-copied
on the way in and out so callers cannot mutate stored state.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

from .models import ConversationMessage, SessionStep

logger = logging.getLogger(__name__)


@dataclass
class StoredConversationState:
    messages: list[ConversationMessage] = field(default_factory=list)
    covered_topics: list[str] = field(default_factory=list)
    step: SessionStep = SessionStep.IDLE


@dataclass
class NewProjectDraft:
    """Draft of a new project still being planned."""
    conversation: StoredConversationState
    planning_level: str = "medium"
    project_name: str = ""
    one_liner: str = ""


@dataclass
class ActiveProject:
    name: str
    path: str


class ConversationStore:
    """Conversation state holder. Construct one per process or per test."""

    def __init__(self) -> None:
        self._by_path: dict[str, StoredConversationState] = {}
        self._new_project: NewProjectDraft | None = None
        self._active_project: ActiveProject | None = None

    # ── Per-project state ──

    def get_conversation_state(self, project_path: str) -> StoredConversationState | None:
        state = self._by_path.get(project_path)
        return copy.deepcopy(state) if state is not None else None

    def save_conversation_state(
        self, project_path: str, state: StoredConversationState
    ) -> None:
        self._by_path[project_path] = copy.deepcopy(state)
        logger.debug(
            "Saved conversation for %s (%d messages)",
            project_path, len(state.messages),
        )

    def clear_conversation_state(self, project_path: str) -> None:
        self._by_path.pop(project_path, None)

    def has_conversation_state(self, project_path: str) -> bool:
        return project_path in self._by_path

    # ── New project draft ──

    def get_new_project_in_progress(self) -> NewProjectDraft | None:
        return copy.deepcopy(self._new_project)

    def save_new_project_in_progress(self, draft: NewProjectDraft) -> None:
        self._new_project = copy.deepcopy(draft)

    def clear_new_project_in_progress(self) -> None:
        self._new_project = None

    def has_new_project_in_progress(self) -> bool:
        return self._new_project is not None

    # ── Active project pointer ──

    def get_active_project(self) -> ActiveProject | None:
        return copy.deepcopy(self._active_project)

    def set_active_project(self, name: str, path: str) -> None:
        self._active_project = ActiveProject(name=name, path=path)

    def clear_active_project(self) -> None:
        self._active_project = None

    def clear_all(self) -> None:
        self._by_path.clear()
        self._new_project = None
        self._active_project = None
