"""In-memory session registry.

Holds the current SessionState snapshot per session id. Updates
replace the stored snapshot wholesale, so readers only ever see a
complete state. Last writer wins; callers serialise their own calls
per session.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .errors import SessionNotFoundError
from .models import SessionState, SessionType, make_session_id

logger = logging.getLogger(__name__)

MAX_SESSIONS = 50


class SessionRegistry:
    """Bounded map of session id -> SessionState.

    Construct one per process (or per test); there is no module-level
    instance.
    """

    def __init__(self, max_sessions: int = MAX_SESSIONS) -> None:
        self._sessions: dict[str, SessionState] = {}
        self._max_sessions = max_sessions

    def create(
        self,
        session_type: SessionType,
        *,
        project_name: str = "",
        one_liner: str = "",
        planning_level: str = "medium",
        project_path: str | None = None,
        project_snapshot: str | None = None,
    ) -> SessionState:
        state = SessionState(
            id=make_session_id(),
            type=session_type,
            planning_level=planning_level,
            project_name=project_name,
            one_liner=one_liner,
            project_path=project_path,
            project_snapshot=project_snapshot,
        )
        self._sessions[state.id] = state
        self._evict()
        logger.info("Created session %s type=%s", state.id, session_type.value)
        return state

    def get(self, session_id: str) -> SessionState | None:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    def update(self, session_id: str, **changes: Any) -> SessionState:
        """Apply *changes* and store the resulting snapshot.

        ``id`` and ``created_at`` cannot be changed; ``updated_at`` is
        refreshed on every call.
        """
        state = self.require(session_id)
        updated = state.with_changes(**changes)
        self._sessions[session_id] = updated
        return updated

    def put(self, state: SessionState) -> SessionState:
        """Store a snapshot produced elsewhere (e.g. by lifecycle.transition)."""
        if state.id not in self._sessions:
            raise SessionNotFoundError(state.id)
        self._sessions[state.id] = state
        return state

    def load(self, states: Iterable[SessionState]) -> None:
        """Bulk-restore snapshots, e.g. from a state file."""
        for state in states:
            self._sessions[state.id] = state
        self._evict()

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def list(self) -> list[SessionState]:
        """All sessions, most recently updated first."""
        return sorted(
            self._sessions.values(), key=lambda s: s.updated_at, reverse=True,
        )

    def clear(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _evict(self) -> None:
        overflow = len(self._sessions) - self._max_sessions
        if overflow <= 0:
            return
        oldest = sorted(self._sessions.values(), key=lambda s: s.updated_at)
        for state in oldest[:overflow]:
            del self._sessions[state.id]
            logger.info("Evicted session %s (registry full)", state.id)
