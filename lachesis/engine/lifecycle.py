"""Session step state machine.

Defines valid transitions and enforces them. Invalid transitions
raise InvalidTransitionError rather than silently proceeding.

State Diagram:

    IDLE ──> GENERATING_QUESTION <──> WAITING_FOR_ANSWER
                                          │
                                          └──> GENERATING_NAMES ──> NAMING_PROJECT
                                                                        │
              EXTRACTING_DATA <─────────────────────────────────────────┘
                    │
                    └──> READY_TO_SCAFFOLD ──> SCAFFOLDING ──> COMPLETE

    Any state ──> ERROR  (fatal; left only via restart(), which resumes at
                          READY_TO_SCAFFOLD or IDLE)

GENERATING_NAMES may fall back to the step that preceded it when
name generation fails, since that failure is recoverable.
"""
from __future__ import annotations

import logging
from typing import Any

from .errors import InvalidTransitionError
from .models import SessionState, SessionStep

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[SessionStep, set[SessionStep]] = {
    SessionStep.IDLE: {
        SessionStep.GENERATING_QUESTION,
        SessionStep.GENERATING_NAMES,
        SessionStep.ERROR,
    },
    SessionStep.GENERATING_QUESTION: {
        SessionStep.WAITING_FOR_ANSWER,
        SessionStep.ERROR,
    },
    SessionStep.WAITING_FOR_ANSWER: {
        SessionStep.GENERATING_QUESTION,
        SessionStep.GENERATING_NAMES,
        SessionStep.EXTRACTING_DATA,
        SessionStep.ERROR,
    },
    SessionStep.GENERATING_NAMES: {
        SessionStep.NAMING_PROJECT,
        SessionStep.EXTRACTING_DATA,
        SessionStep.IDLE,  # rollback after failed naming
        SessionStep.WAITING_FOR_ANSWER,  # rollback after failed naming
        SessionStep.ERROR,
    },
    SessionStep.NAMING_PROJECT: {
        SessionStep.EXTRACTING_DATA,
        SessionStep.ERROR,
    },
    SessionStep.EXTRACTING_DATA: {
        SessionStep.READY_TO_SCAFFOLD,
        SessionStep.ERROR,
    },
    SessionStep.READY_TO_SCAFFOLD: {
        SessionStep.SCAFFOLDING,
        SessionStep.ERROR,
    },
    SessionStep.SCAFFOLDING: {
        SessionStep.COMPLETE,
        SessionStep.ERROR,
    },
    SessionStep.COMPLETE: {
        SessionStep.ERROR,
    },
    SessionStep.ERROR: set(),
}


def allowed_targets(current: SessionStep) -> set[SessionStep]:
    allowed = set(VALID_TRANSITIONS.get(current, set()))
    if current != SessionStep.ERROR:
        allowed.add(current)
    return allowed


def validate_transition(current: SessionStep, target: SessionStep) -> None:
    """Validate a step transition. Raises InvalidTransitionError if invalid."""
    allowed = allowed_targets(current)
    if target not in allowed:
        raise InvalidTransitionError(
            current.value,
            target.value,
            sorted(s.value for s in VALID_TRANSITIONS.get(current, set())),
        )


def transition(
    state: SessionState, target: SessionStep, **changes: Any
) -> SessionState:
    """Return a new snapshot moved to *target* with *changes* applied.

    Pure: the input snapshot is left untouched.
    """
    validate_transition(state.step, target)
    if target != SessionStep.ERROR:
        changes.setdefault("error", None)
        changes.setdefault("error_details", None)
    return state.with_changes(step=target, **changes)


def fail(state: SessionState, error: str, details: str | None = None) -> SessionState:
    """Move *state* into ERROR, or refresh the message if it is already there."""
    if state.step == SessionStep.ERROR:
        return state.with_changes(error=error, error_details=details)
    return transition(
        state, SessionStep.ERROR, error=error, error_details=details,
    )


def restart(state: SessionState) -> SessionState:
    """External restart out of ERROR. Keeps the conversation so far.

    A session that already holds extracted data and a selected name
    resumes at READY_TO_SCAFFOLD so scaffolding can be retried; any
    other session starts again from IDLE.
    """
    resume = (
        SessionStep.READY_TO_SCAFFOLD
        if state.extracted_data is not None and state.selected_name
        else SessionStep.IDLE
    )
    if state.step != SessionStep.ERROR:
        raise InvalidTransitionError(
            state.step.value, resume.value,
            sorted(s.value for s in VALID_TRANSITIONS.get(state.step, set())),
        )
    logger.info("Restarting session %s from error into %s", state.id, resume.value)
    return state.with_changes(
        step=resume, error=None, error_details=None,
    )
