"""Exception hierarchy for the session engine and change engine.

Specific exceptions for each failure mode. Engine operations convert
these into failed OperationResults at their boundary; library helpers
(patching, file access) let them propagate.
"""
from __future__ import annotations


class LachesisError(Exception):
    """Base exception for all Lachesis errors."""


class SessionNotFoundError(LachesisError):
    """Operation referenced a session id the registry does not hold."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class InvalidTransitionError(LachesisError):
    """Requested step change is not allowed from the current step."""
    def __init__(self, current: str, target: str, allowed: list[str]):
        self.current = current
        self.target = target
        self.allowed = allowed
        allowed_str = ", ".join(allowed) or "none (terminal)"
        super().__init__(
            f"Invalid step transition: {current} -> {target}. "
            f"Allowed from {current}: {allowed_str}"
        )


class PreconditionError(LachesisError):
    """Operation attempted before its required inputs exist."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class AICollaboratorError(LachesisError):
    """The AI collaborator failed or returned an unusable response."""
    def __init__(self, reason: str, debug_details: str | None = None):
        self.reason = reason
        self.debug_details = debug_details
        super().__init__(reason)


class WorkflowParseError(LachesisError):
    """An AI workflow response could not be parsed."""
    def __init__(self, workflow: str, reason: str):
        self.workflow = workflow
        self.reason = reason
        super().__init__(f"Cannot parse {workflow} response: {reason}")


class PatchApplicationError(LachesisError):
    """A change candidate could not be applied to its target document."""
    def __init__(self, file_name: str, candidate: str, reason: str):
        self.file_name = file_name
        self.candidate = candidate
        self.reason = reason
        super().__init__(
            f"Cannot apply {candidate} to {file_name}: {reason}"
        )


class DocumentNotFoundError(LachesisError):
    """A project document the workflow needs does not exist."""
    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(f"Document not found: {file_name}")


class ConfigError(LachesisError):
    """Configuration file or environment value is invalid."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)
