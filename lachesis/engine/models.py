"""Core data models for the session engine.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

_BASE36 = string.digits + string.ascii_lowercase


class SessionStep(str, Enum):
    """Session FSM positions. See lifecycle.py for transition rules."""
    IDLE = "idle"
    GENERATING_QUESTION = "generating_question"
    WAITING_FOR_ANSWER = "waiting_for_answer"
    GENERATING_NAMES = "generating_names"
    NAMING_PROJECT = "naming_project"
    EXTRACTING_DATA = "extracting_data"
    READY_TO_SCAFFOLD = "ready_to_scaffold"
    SCAFFOLDING = "scaffolding"
    COMPLETE = "complete"
    ERROR = "error"


class SessionType(str, Enum):
    NEW_PROJECT = "new_project"
    EXISTING_PROJECT = "existing_project"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


STEP_DESCRIPTIONS: dict[SessionStep, str] = {
    SessionStep.IDLE: "Session created",
    SessionStep.GENERATING_QUESTION: "Generating next question",
    SessionStep.WAITING_FOR_ANSWER: "Waiting for your response",
    SessionStep.GENERATING_NAMES: "Generating project name suggestions",
    SessionStep.NAMING_PROJECT: "Choose a project name",
    SessionStep.EXTRACTING_DATA: "Extracting project details",
    SessionStep.READY_TO_SCAFFOLD: "Ready to create project files",
    SessionStep.SCAFFOLDING: "Creating project files",
    SessionStep.COMPLETE: "Project created successfully",
    SessionStep.ERROR: "An error occurred",
}

_FINALIZE_STEPS = [
    SessionStep.GENERATING_NAMES,
    SessionStep.NAMING_PROJECT,
    SessionStep.EXTRACTING_DATA,
    SessionStep.READY_TO_SCAFFOLD,
    SessionStep.SCAFFOLDING,
    SessionStep.COMPLETE,
]


def describe_step(step: SessionStep) -> str:
    return STEP_DESCRIPTIONS[step]


def step_progress(step: SessionStep) -> int:
    """Rough completion percentage for progress indicators."""
    if step in (SessionStep.ERROR, SessionStep.IDLE):
        return 0
    if step == SessionStep.COMPLETE:
        return 100
    if step in (SessionStep.GENERATING_QUESTION, SessionStep.WAITING_FOR_ANSWER):
        return 20
    # Remaining steps share 40..100 evenly
    index = _FINALIZE_STEPS.index(step)
    return 40 + round(index * 60 / (len(_FINALIZE_STEPS) - 1))


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def random_suffix(length: int = 6) -> str:
    return "".join(random.choices(_BASE36, k=length))


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def make_session_id() -> str:
    return f"sess_{_to_base36(int(time.time() * 1000))}_{random_suffix()}"


def make_stream_id() -> str:
    """Timestamp used for streamed assistant messages.

    Carries a random tail so two messages produced within the same
    clock tick still sort and compare as distinct.
    """
    return f"{utcnow_iso()}-{random_suffix()}"


@dataclass(frozen=True)
class ConversationMessage:
    role: MessageRole
    content: str
    timestamp: str = field(default_factory=utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMessage:
        return cls(
            role=MessageRole(data["role"]),
            content=data.get("content", ""),
            timestamp=data.get("timestamp", ""),
        )


@dataclass(frozen=True)
class NameSuggestion:
    name: str
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "reasoning": self.reasoning}


@dataclass
class ProjectVision:
    one_line_pitch: str
    description: str
    primary_audience: str
    problem_solved: str
    success_criteria: str
    secondary_audience: str | None = None


@dataclass
class ProjectConstraints:
    known: list[str] = field(default_factory=list)
    assumptions: list[str] = field(default_factory=list)
    risks: list[str] = field(default_factory=list)
    anti_goals: list[str] = field(default_factory=list)


@dataclass
class ProjectExecution:
    suggested_first_move: str | None = None
    tech_stack: str | None = None


PLACEHOLDER = "To be defined"


@dataclass
class ExtractedProjectData:
    """Structured project vision pulled out of a planning conversation."""
    vision: ProjectVision
    constraints: ProjectConstraints = field(default_factory=ProjectConstraints)
    execution: ProjectExecution = field(default_factory=ProjectExecution)

    @classmethod
    def fallback(cls, one_liner: str) -> ExtractedProjectData:
        """Placeholder data used when AI extraction fails."""
        return cls(
            vision=ProjectVision(
                one_line_pitch=one_liner,
                description=one_liner,
                primary_audience=PLACEHOLDER,
                problem_solved=PLACEHOLDER,
                success_criteria=PLACEHOLDER,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        vision: dict[str, Any] = {
            "one_line_pitch": self.vision.one_line_pitch,
            "description": self.vision.description,
            "primary_audience": self.vision.primary_audience,
            "problem_solved": self.vision.problem_solved,
            "success_criteria": self.vision.success_criteria,
        }
        if self.vision.secondary_audience:
            vision["secondary_audience"] = self.vision.secondary_audience
        execution = {
            k: v for k, v in (
                ("suggested_first_move", self.execution.suggested_first_move),
                ("tech_stack", self.execution.tech_stack),
            ) if v
        }
        return {
            "vision": vision,
            "constraints": {
                "known": list(self.constraints.known),
                "assumptions": list(self.constraints.assumptions),
                "risks": list(self.constraints.risks),
                "anti_goals": list(self.constraints.anti_goals),
            },
            "execution": execution,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractedProjectData:
        """Build from snake_case or camelCase keys (AI output uses the latter)."""
        def pick(source: dict, snake: str, camel: str, default: Any = None) -> Any:
            if snake in source:
                return source[snake]
            return source.get(camel, default)

        vision = data.get("vision") or {}
        constraints = data.get("constraints") or {}
        execution = data.get("execution") or {}
        return cls(
            vision=ProjectVision(
                one_line_pitch=pick(vision, "one_line_pitch", "oneLinePitch", ""),
                description=vision.get("description", ""),
                primary_audience=pick(vision, "primary_audience", "primaryAudience", PLACEHOLDER),
                problem_solved=pick(vision, "problem_solved", "problemSolved", PLACEHOLDER),
                success_criteria=pick(vision, "success_criteria", "successCriteria", PLACEHOLDER),
                secondary_audience=pick(vision, "secondary_audience", "secondaryAudience"),
            ),
            constraints=ProjectConstraints(
                known=list(constraints.get("known") or []),
                assumptions=list(constraints.get("assumptions") or []),
                risks=list(constraints.get("risks") or []),
                anti_goals=list(pick(constraints, "anti_goals", "antiGoals", []) or []),
            ),
            execution=ProjectExecution(
                suggested_first_move=pick(execution, "suggested_first_move", "suggestedFirstMove"),
                tech_stack=pick(execution, "tech_stack", "techStack"),
            ),
        )


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of one planning conversation.

    Owned by SessionRegistry. Changes produce a new snapshot via
    ``dataclasses.replace``; nothing mutates a published instance.
    """
    id: str
    type: SessionType
    step: SessionStep = SessionStep.IDLE
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)
    planning_level: str = "medium"
    project_name: str = ""
    one_liner: str = ""
    messages: tuple[ConversationMessage, ...] = ()
    covered_topics: frozenset[str] = frozenset()
    project_path: str | None = None
    project_snapshot: str | None = None
    name_suggestions: tuple[NameSuggestion, ...] = ()
    selected_name: str | None = None
    extracted_data: ExtractedProjectData | None = None
    scaffolded_path: str | None = None
    error: str | None = None
    error_details: str | None = None

    @property
    def effective_project_name(self) -> str:
        return self.project_name.strip() or "Untitled Project"

    @property
    def effective_one_liner(self) -> str:
        return self.one_liner.strip() or "Not provided yet"

    def with_changes(self, **changes: Any) -> SessionState:
        # id and created_at are fixed for the lifetime of a session
        changes.pop("id", None)
        changes.pop("created_at", None)
        changes["updated_at"] = utcnow_iso()
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "step": self.step.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "planning_level": self.planning_level,
            "project_name": self.project_name,
            "one_liner": self.one_liner,
            "messages": [m.to_dict() for m in self.messages],
            "covered_topics": sorted(self.covered_topics),
            "project_path": self.project_path,
            "project_snapshot": self.project_snapshot,
            "name_suggestions": [s.to_dict() for s in self.name_suggestions],
            "selected_name": self.selected_name,
            "extracted_data": (
                self.extracted_data.to_dict() if self.extracted_data else None
            ),
            "scaffolded_path": self.scaffolded_path,
            "error": self.error,
            "error_details": self.error_details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionState:
        extracted = data.get("extracted_data")
        return cls(
            id=data["id"],
            type=SessionType(data["type"]),
            step=SessionStep(data.get("step", SessionStep.IDLE.value)),
            created_at=data.get("created_at") or utcnow_iso(),
            updated_at=data.get("updated_at") or utcnow_iso(),
            planning_level=data.get("planning_level", "medium"),
            project_name=data.get("project_name", ""),
            one_liner=data.get("one_liner", ""),
            messages=tuple(
                ConversationMessage.from_dict(m) for m in data.get("messages", [])
            ),
            covered_topics=frozenset(data.get("covered_topics", [])),
            project_path=data.get("project_path"),
            project_snapshot=data.get("project_snapshot"),
            name_suggestions=tuple(
                NameSuggestion(s["name"], s.get("reasoning", ""))
                for s in data.get("name_suggestions", [])
            ),
            selected_name=data.get("selected_name"),
            extracted_data=(
                ExtractedProjectData.from_dict(extracted) if extracted else None
            ),
            scaffolded_path=data.get("scaffolded_path"),
            error=data.get("error"),
            error_details=data.get("error_details"),
        )


def can_transition_to_naming(state: SessionState) -> bool:
    return state.step == SessionStep.WAITING_FOR_ANSWER and len(state.messages) >= 2


def is_ready_to_scaffold(state: SessionState) -> bool:
    return (
        state.step == SessionStep.READY_TO_SCAFFOLD
        and state.extracted_data is not None
        and bool(state.selected_name)
    )


def is_complete(state: SessionState) -> bool:
    return state.step == SessionStep.COMPLETE


def has_error(state: SessionState) -> bool:
    return state.step == SessionStep.ERROR


@dataclass
class OperationResult:
    """Outcome of a session engine operation. Operations never raise."""
    success: bool
    data: Any = None
    error: str | None = None
    debug_details: str | None = None

    @classmethod
    def ok(cls, data: Any = None, debug_details: str | None = None) -> OperationResult:
        return cls(success=True, data=data, debug_details=debug_details)

    @classmethod
    def fail(cls, error: str | None, debug_details: str | None = None) -> OperationResult:
        return cls(success=False, error=error, debug_details=debug_details)
