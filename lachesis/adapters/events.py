"""Event types emitted by the session engine.

Each event describes one observable change to a session. Events are
ephemeral: the engine publishes them on the EventBus and never stores
them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SessionEvent:
    """Base event from the session engine."""
    event_type: str = ""
    session_id: str = ""


@dataclass
class SessionCreated(SessionEvent):
    event_type: str = "session_created"
    session_type: str = ""


@dataclass
class StepChanged(SessionEvent):
    event_type: str = "step_changed"
    step: str = ""
    previous_step: str = ""


@dataclass
class MessageAdded(SessionEvent):
    event_type: str = "message_added"
    role: str = ""
    content: str = ""
    timestamp: str = ""


@dataclass
class AIStreaming(SessionEvent):
    event_type: str = "ai_streaming"
    partial: str = ""


@dataclass
class AIComplete(SessionEvent):
    event_type: str = "ai_complete"
    content: str = ""


@dataclass
class TopicsUpdated(SessionEvent):
    event_type: str = "topics_updated"
    topics: list[str] = field(default_factory=list)


@dataclass
class NamesGenerated(SessionEvent):
    event_type: str = "names_generated"
    suggestions: list[dict[str, str]] = field(default_factory=list)


@dataclass
class NameSelected(SessionEvent):
    event_type: str = "name_selected"
    name: str = ""


@dataclass
class ExtractionComplete(SessionEvent):
    event_type: str = "extraction_complete"
    data: dict[str, Any] = field(default_factory=dict)
    used_fallback: bool = False


@dataclass
class ScaffoldComplete(SessionEvent):
    event_type: str = "scaffold_complete"
    project_path: str = ""


@dataclass
class SessionError(SessionEvent):
    event_type: str = "error"
    error: str = ""
    details: str | None = None


_EVENT_MAP: dict[str, type[SessionEvent]] = {
    "session_created": SessionCreated,
    "step_changed": StepChanged,
    "message_added": MessageAdded,
    "ai_streaming": AIStreaming,
    "ai_complete": AIComplete,
    "topics_updated": TopicsUpdated,
    "names_generated": NamesGenerated,
    "name_selected": NameSelected,
    "extraction_complete": ExtractionComplete,
    "scaffold_complete": ScaffoldComplete,
    "error": SessionError,
}


def event_to_dict(event: SessionEvent) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    # "event" rather than "event_type" on the wire
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d


def dict_to_event(data: dict[str, Any]) -> SessionEvent:
    """Convert a plain dict back into the matching event dataclass."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, SessionEvent)
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    if "event" in data and "event_type" not in filtered:
        filtered["event_type"] = data["event"]
    return cls(**filtered)
