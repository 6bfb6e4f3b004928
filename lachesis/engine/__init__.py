"""Lachesis session engine: the planning-conversation state machine and
the stores it runs on."""
from .models import (
    ConversationMessage,
    ExtractedProjectData,
    MessageRole,
    NameSuggestion,
    OperationResult,
    SessionState,
    SessionStep,
    SessionType,
)
from .config import AIConfig, LachesisConfig
from .conversation_store import ActiveProject, ConversationStore, NewProjectDraft, StoredConversationState
from .registry import SessionRegistry
from .errors import (
    AICollaboratorError,
    ConfigError,
    DocumentNotFoundError,
    InvalidTransitionError,
    LachesisError,
    PatchApplicationError,
    PreconditionError,
    SessionNotFoundError,
    WorkflowParseError,
)

__all__ = [
    # Core engine (lazy import to avoid circular deps)
    "SessionEngine",
    # Models
    "ConversationMessage",
    "ExtractedProjectData",
    "MessageRole",
    "NameSuggestion",
    "OperationResult",
    "SessionState",
    "SessionStep",
    "SessionType",
    # Config
    "AIConfig",
    "LachesisConfig",
    "load_yaml_config",
    # Stores
    "ActiveProject",
    "ConversationStore",
    "NewProjectDraft",
    "SessionRegistry",
    "StoredConversationState",
    # Errors
    "AICollaboratorError",
    "ConfigError",
    "DocumentNotFoundError",
    "InvalidTransitionError",
    "LachesisError",
    "PatchApplicationError",
    "PreconditionError",
    "SessionNotFoundError",
    "WorkflowParseError",
]


def __getattr__(name: str):
    if name == "SessionEngine":
        from .session_engine import SessionEngine
        return SessionEngine
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
