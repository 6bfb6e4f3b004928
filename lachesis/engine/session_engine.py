"""Session engine: drives one planning conversation through its steps.

The engine owns no state of its own. Snapshots live in the
SessionRegistry, observers listen on the EventBus, and the AI and
scaffolding work is delegated to collaborators. Every public
operation returns an OperationResult; none of them raise.

Failure policy:
- question / agentic streaming and scaffolding failures are fatal and
  move the session to ``error``
- name suggestion failures roll back to the previous step
- extraction failures fall back to placeholder data
"""
from __future__ import annotations

import functools
import logging
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from lachesis.adapters.ai_client import (
    AgenticRequest,
    AgenticResult,
    AIClient,
    ConversationContext,
    ExtractionResult,
    NameExtractionResult,
    NameSuggestionsResult,
    PartialCallback,
    QuestionResult,
    ToolCallCallback,
    ToolResultCallback,
)
from lachesis.adapters.event_bus import EventBus
from lachesis.adapters.events import (
    AIComplete,
    AIStreaming,
    ExtractionComplete,
    MessageAdded,
    NamesGenerated,
    NameSelected,
    ScaffoldComplete,
    SessionCreated,
    SessionError,
    SessionEvent,
    StepChanged,
    TopicsUpdated,
)
from lachesis.adapters.scaffolder import MarkdownScaffolder, Scaffolder, ScaffoldRequest

from . import lifecycle
from .config import AGENTIC_TOOLS, AIConfig
from .conversation_store import ConversationStore, NewProjectDraft, StoredConversationState
from .errors import InvalidTransitionError, PreconditionError, SessionNotFoundError
from .models import (
    ConversationMessage,
    ExtractedProjectData,
    MessageRole,
    OperationResult,
    SessionState,
    SessionStep,
    SessionType,
    make_stream_id,
    utcnow_iso,
)
from .prompts import build_existing_project_prompt, build_system_prompt
from .registry import SessionRegistry
from .topics import contains_transition_phrase, detect_topics

logger = logging.getLogger(__name__)

# Upper bound on tool invocations in one agentic response
MAX_AGENTIC_TOOL_CALLS = 10

_UNSAFE_FOLDER_CHARS = re.compile(r'[\\/:*?"<>|]')
_WHITESPACE = re.compile(r"\s+")


def create_folder_name(name: str) -> str:
    """Filesystem-safe directory name for a project."""
    cleaned = _UNSAFE_FOLDER_CHARS.sub("", name.strip())
    return _WHITESPACE.sub(" ", cleaned).strip()


def _operation(func):
    """Turn not-found, bad-transition and precondition errors into failed results."""
    @functools.wraps(func)
    async def wrapper(self: SessionEngine, session_id: str, *args: Any, **kwargs: Any) -> OperationResult:
        try:
            return await func(self, session_id, *args, **kwargs)
        except SessionNotFoundError as exc:
            return OperationResult.fail(str(exc))
        except (InvalidTransitionError, PreconditionError) as exc:
            logger.warning("%s rejected for %s: %s", func.__name__, session_id, exc)
            return OperationResult.fail(str(exc))
    return wrapper


class SessionEngine:
    """FSM driver for planning sessions."""

    def __init__(
        self,
        ai: AIClient,
        *,
        registry: SessionRegistry | None = None,
        event_bus: EventBus | None = None,
        scaffolder: Scaffolder | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._ai = ai
        self.registry = registry if registry is not None else SessionRegistry()
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self._scaffolder = scaffolder if scaffolder is not None else MarkdownScaffolder()
        self._now = now

    # ── Session bookkeeping ──

    def create_session(
        self,
        session_type: SessionType,
        *,
        project_name: str = "",
        one_liner: str = "",
        planning_level: str = "medium",
        project_path: str | None = None,
        project_snapshot: str | None = None,
    ) -> SessionState:
        state = self.registry.create(
            session_type,
            project_name=project_name,
            one_liner=one_liner,
            planning_level=planning_level,
            project_path=project_path,
            project_snapshot=project_snapshot,
        )
        self._publish(SessionCreated(session_id=state.id, session_type=session_type.value))
        return state

    def get_session(self, session_id: str) -> SessionState | None:
        return self.registry.get(session_id)

    def list_sessions(self) -> list[SessionState]:
        return self.registry.list()

    def delete_session(self, session_id: str) -> bool:
        return self.registry.delete(session_id)

    def restart(self, session_id: str) -> OperationResult:
        """Leave the ``error`` step. The conversation so far is kept."""
        try:
            state = self.registry.require(session_id)
            restarted = self.registry.put(lifecycle.restart(state))
        except (SessionNotFoundError, InvalidTransitionError) as exc:
            return OperationResult.fail(str(exc))
        self._publish(StepChanged(
            session_id=session_id, step=restarted.step.value, previous_step=state.step.value,
        ))
        return OperationResult.ok(restarted)

    # ── Internal helpers ──

    def _publish(self, event: SessionEvent) -> None:
        self.event_bus.publish(event)

    def _transition(self, session_id: str, target: SessionStep, **changes: Any) -> SessionState:
        state = self.registry.require(session_id)
        updated = self.registry.put(lifecycle.transition(state, target, **changes))
        if state.step != target:
            logger.info("Session %s: %s -> %s", session_id, state.step.value, target.value)
            self._publish(StepChanged(
                session_id=session_id, step=target.value, previous_step=state.step.value,
            ))
        return updated

    def _add_message(self, session_id: str, message: ConversationMessage) -> SessionState:
        state = self.registry.require(session_id)
        updated = self.registry.update(session_id, messages=state.messages + (message,))
        self._publish(MessageAdded(
            session_id=session_id,
            role=message.role.value,
            content=message.content,
            timestamp=message.timestamp,
        ))
        return updated

    def _set_error(self, session_id: str, error: str, details: str | None = None) -> None:
        state = self.registry.require(session_id)
        self.registry.put(lifecycle.fail(state, error, details))
        if state.step != SessionStep.ERROR:
            self._publish(StepChanged(
                session_id=session_id,
                step=SessionStep.ERROR.value,
                previous_step=state.step.value,
            ))
        logger.error("Session %s failed: %s", session_id, error)
        self._publish(SessionError(session_id=session_id, error=error, details=details))

    def _context(self, state: SessionState, *, project_name: str | None = None) -> ConversationContext:
        return ConversationContext(
            planning_level=state.planning_level or "medium",
            project_name=project_name or state.effective_project_name,
            one_liner=state.effective_one_liner,
            messages=list(state.messages),
            covered_topics=sorted(state.covered_topics),
        )

    def _streaming_callback(
        self, session_id: str, on_partial: PartialCallback | None
    ) -> PartialCallback:
        def _on_partial(partial: str) -> None:
            self._publish(AIStreaming(session_id=session_id, partial=partial))
            if on_partial is not None:
                on_partial(partial)
        return _on_partial

    # ── Conversation ──

    @_operation
    async def stream_question(
        self,
        session_id: str,
        config: AIConfig,
        on_partial: PartialCallback | None = None,
    ) -> OperationResult:
        """Ask the AI for the next interviewer question and record it."""
        state = self.registry.require(session_id)
        logger.info(
            "Session %s: streaming next question (messages=%d topics=%s)",
            session_id, len(state.messages), sorted(state.covered_topics),
        )
        self._transition(session_id, SessionStep.GENERATING_QUESTION)

        system_prompt = build_system_prompt(
            project_name=state.effective_project_name,
            one_liner=state.effective_one_liner,
            planning_level=state.planning_level or "medium",
            covered_topics=state.covered_topics,
            current_hour=self._now().hour,
            is_first_message=not state.messages,
        )
        stream_id = make_stream_id()
        try:
            result = await self._ai.stream_next_question(
                self._context(state),
                system_prompt,
                config,
                self._streaming_callback(session_id, on_partial),
            )
        except Exception as exc:
            logger.exception("stream_next_question raised for %s", session_id)
            result = QuestionResult(success=False, error=str(exc), debug_details=repr(exc))

        if not result.success or result.content is None:
            error = result.error or "Failed to generate question"
            self._set_error(session_id, error, result.debug_details)
            return OperationResult.fail(result.error or error, result.debug_details)

        content = result.content
        self._add_message(
            session_id,
            ConversationMessage(role=MessageRole.ASSISTANT, content=content, timestamp=stream_id),
        )
        self._publish(AIComplete(session_id=session_id, content=content))

        if contains_transition_phrase(content):
            # The caller decides what to do once the interviewer is done
            logger.info("Session %s: transition phrase detected", session_id)
        else:
            current = self.registry.require(session_id)
            topics = detect_topics(content, current.covered_topics)
            if len(topics) > len(current.covered_topics):
                self.registry.update(session_id, covered_topics=topics)
                self._publish(TopicsUpdated(session_id=session_id, topics=sorted(topics)))

        self._transition(session_id, SessionStep.WAITING_FOR_ANSWER)
        return OperationResult.ok(content)

    @_operation
    async def stream_agentic_response(
        self,
        session_id: str,
        config: AIConfig,
        *,
        project_path: str,
        on_partial: PartialCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ) -> OperationResult:
        """Tool-using variant of stream_question for existing projects."""
        state = self.registry.require(session_id)
        logger.info(
            "Session %s: streaming agentic response in %s (messages=%d)",
            session_id, project_path, len(state.messages),
        )
        self._transition(session_id, SessionStep.GENERATING_QUESTION)

        tools = list(config.allowed_tools or AGENTIC_TOOLS)
        system_prompt = build_existing_project_prompt(
            project_name=state.effective_project_name,
            project_path=project_path,
            snapshot_summary=state.project_snapshot or "",
            tools=tools,
            current_hour=self._now().hour,
            is_first_message=not state.messages,
        )
        cap = MAX_AGENTIC_TOOL_CALLS
        if 0 < config.max_tool_calls < cap:
            cap = config.max_tool_calls

        def _tool_call(name: str, args: Any) -> None:
            logger.info("Session %s: tool call %s", session_id, name)
            if on_tool_call is not None:
                on_tool_call(name, args)

        def _tool_result(name: str, result: Any) -> None:
            logger.info("Session %s: tool result %s", session_id, name)
            if on_tool_result is not None:
                on_tool_result(name, result)

        stream_id = make_stream_id()
        request = AgenticRequest(
            system_prompt=system_prompt,
            messages=list(state.messages),
            project_path=project_path,
            max_tool_calls=cap,
            on_tool_call=_tool_call,
            on_tool_result=_tool_result,
            on_text_update=self._streaming_callback(session_id, on_partial),
        )
        try:
            result = await self._ai.stream_agentic_conversation(config, request)
        except Exception as exc:
            logger.exception("stream_agentic_conversation raised for %s", session_id)
            result = AgenticResult(success=False, error=str(exc), debug_details=repr(exc))

        if not result.success or not result.response:
            error = result.error or "Failed to generate response"
            self._set_error(session_id, error, result.debug_details)
            return OperationResult.fail(result.error or error, result.debug_details)

        response = result.response
        logger.info(
            "Session %s: agentic response complete (%d chars, %d tool calls)",
            session_id, len(response), len(result.tool_calls),
        )
        self._add_message(
            session_id,
            ConversationMessage(role=MessageRole.ASSISTANT, content=response, timestamp=stream_id),
        )
        self._publish(AIComplete(session_id=session_id, content=response))
        if contains_transition_phrase(response):
            logger.info("Session %s: transition phrase detected in agentic response", session_id)

        self._transition(session_id, SessionStep.WAITING_FOR_ANSWER)
        return OperationResult.ok(response)

    @_operation
    async def process_user_message(
        self,
        session_id: str,
        text: str,
        config: AIConfig,
        *,
        agentic_enabled: bool = False,
        project_path: str | None = None,
        on_partial: PartialCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ) -> OperationResult:
        """Record the user's reply and produce the next AI message."""
        state = self.registry.require(session_id)
        lifecycle.validate_transition(state.step, SessionStep.GENERATING_QUESTION)
        logger.info("Session %s: user message (%d chars)", session_id, len(text))
        self._add_message(
            session_id,
            ConversationMessage(role=MessageRole.USER, content=text, timestamp=utcnow_iso()),
        )
        if agentic_enabled and project_path:
            return await self.stream_agentic_response(
                session_id,
                config,
                project_path=project_path,
                on_partial=on_partial,
                on_tool_call=on_tool_call,
                on_tool_result=on_tool_result,
            )
        return await self.stream_question(session_id, config, on_partial)

    # ── Naming ──

    @_operation
    async def generate_name_suggestions(
        self, session_id: str, config: AIConfig
    ) -> OperationResult:
        """Ask for project names. Failure is recoverable and leaves the step as it was."""
        state = self.registry.require(session_id)
        previous_step = state.step
        self._transition(session_id, SessionStep.GENERATING_NAMES)

        try:
            result = await self._ai.generate_project_name_suggestions(self._context(state), config)
        except Exception as exc:
            logger.exception("generate_project_name_suggestions raised for %s", session_id)
            result = NameSuggestionsResult(success=False, error=str(exc))

        if result.success and result.suggestions:
            suggestions = tuple(result.suggestions)
            self.registry.update(session_id, name_suggestions=suggestions)
            self._publish(NamesGenerated(
                session_id=session_id, suggestions=[s.to_dict() for s in suggestions],
            ))
            self._transition(session_id, SessionStep.NAMING_PROJECT)
            logger.info("Session %s: %d name suggestions", session_id, len(suggestions))
            return OperationResult.ok(list(suggestions))

        logger.warning("Session %s: name generation failed: %s", session_id, result.error)
        self._transition(session_id, previous_step)
        return OperationResult.fail(result.error or "No name suggestions returned")

    @_operation
    async def select_project_name(
        self,
        session_id: str,
        name: str,
        config: AIConfig,
        *,
        is_custom_input: bool = False,
    ) -> OperationResult:
        """Store the chosen name, cleaning up free-text input via the AI."""
        self.registry.require(session_id)
        final_name = name
        if is_custom_input:
            try:
                result = await self._ai.extract_project_name(name, config)
            except Exception as exc:
                logger.exception("extract_project_name raised for %s", session_id)
                result = NameExtractionResult(success=False, error=str(exc))
            if result.success and result.name:
                final_name = result.name
                logger.info("Session %s: extracted name %r from %r", session_id, final_name, name)
            else:
                logger.warning(
                    "Session %s: name extraction failed (%s), using raw input",
                    session_id, result.error,
                )

        # The log keeps what the user actually typed
        self._add_message(
            session_id,
            ConversationMessage(role=MessageRole.USER, content=name, timestamp=utcnow_iso()),
        )
        self.registry.update(session_id, selected_name=final_name)
        self._publish(NameSelected(session_id=session_id, name=final_name))
        return OperationResult.ok(final_name)

    # ── Extraction and scaffolding ──

    @_operation
    async def extract_project_data(
        self, session_id: str, config: AIConfig
    ) -> OperationResult:
        """Extract structured data. Never blocks: falls back to placeholders."""
        state = self.registry.require(session_id)
        self._transition(session_id, SessionStep.EXTRACTING_DATA)

        project_name = state.selected_name or state.effective_project_name
        try:
            result = await self._ai.extract_project_data(
                self._context(state, project_name=project_name), config,
            )
        except Exception as exc:
            logger.exception("extract_project_data raised for %s", session_id)
            result = ExtractionResult(success=False, error=str(exc), debug_details=repr(exc))

        if result.success and result.data is not None:
            data = result.data
            used_fallback = False
            logger.info("Session %s: project data extracted", session_id)
        else:
            logger.warning(
                "Session %s: extraction failed (%s), using fallback", session_id, result.error,
            )
            data = ExtractedProjectData.fallback(state.effective_one_liner)
            used_fallback = True

        self.registry.update(session_id, extracted_data=data)
        self._publish(ExtractionComplete(
            session_id=session_id, data=data.to_dict(), used_fallback=used_fallback,
        ))
        self._transition(session_id, SessionStep.READY_TO_SCAFFOLD)
        return OperationResult.ok(
            data,
            debug_details=f"Extraction fell back to placeholders: {result.error}" if used_fallback else None,
        )

    @_operation
    async def scaffold_session_project(
        self, session_id: str, vault_path: str
    ) -> OperationResult:
        """Hand the extracted data to the scaffolder and record the result."""
        state = self.registry.require(session_id)
        if state.extracted_data is None:
            raise PreconditionError("No extracted data available. Run extraction first.")
        if not state.selected_name:
            raise PreconditionError("No project name selected.")

        logger.info(
            "Session %s: scaffolding %r into %s", session_id, state.selected_name, vault_path,
        )
        self._transition(session_id, SessionStep.SCAFFOLDING)

        slug = create_folder_name(state.selected_name)
        try:
            result = await self._scaffolder.scaffold_project(
                vault_path,
                slug,
                ScaffoldRequest(
                    project_name=state.selected_name,
                    project_slug=slug,
                    one_liner=state.one_liner,
                    extracted=state.extracted_data,
                ),
            )
        except Exception as exc:
            logger.exception("Scaffolding raised for %s", session_id)
            message = str(exc) or "Unknown scaffolding error"
            self._set_error(session_id, message, repr(exc))
            return OperationResult.fail(message, repr(exc))

        if not result.success or not result.project_path:
            error = result.error or "Scaffolding failed"
            self._set_error(session_id, error)
            return OperationResult.fail(error)

        self.registry.update(session_id, scaffolded_path=result.project_path)
        self._publish(ScaffoldComplete(session_id=session_id, project_path=result.project_path))
        self._transition(session_id, SessionStep.COMPLETE)
        return OperationResult.ok(result.project_path)

    @_operation
    async def finalize_session(
        self,
        session_id: str,
        name: str,
        vault_path: str,
        config: AIConfig,
        *,
        is_custom_input: bool = False,
    ) -> OperationResult:
        """Select name, extract data, scaffold. Stops at the first failure."""
        named = await self.select_project_name(
            session_id, name, config, is_custom_input=is_custom_input,
        )
        if not named.success:
            return OperationResult.fail(named.error, named.debug_details)

        extracted = await self.extract_project_data(session_id, config)
        if not extracted.success or extracted.data is None:
            return OperationResult.fail(extracted.error or "Extraction failed", extracted.debug_details)

        scaffolded = await self.scaffold_session_project(session_id, vault_path)
        if not scaffolded.success or not scaffolded.data:
            return OperationResult.fail(scaffolded.error or "Scaffolding failed", scaffolded.debug_details)

        return OperationResult.ok({
            "project_path": scaffolded.data,
            "extracted_data": extracted.data,
        })

    # ── Conversation store bridge ──

    def save_conversation(self, session_id: str, store: ConversationStore) -> OperationResult:
        """Snapshot a session's conversation into *store*.

        Existing-project sessions are keyed by project path; new-project
        sessions go to the single draft slot.
        """
        state = self.registry.get(session_id)
        if state is None:
            return OperationResult.fail(f"Session not found: {session_id}")
        stored = StoredConversationState(
            messages=list(state.messages),
            covered_topics=sorted(state.covered_topics),
            step=state.step,
        )
        if state.type == SessionType.EXISTING_PROJECT:
            if not state.project_path:
                return OperationResult.fail("Existing-project session has no project path.")
            store.save_conversation_state(state.project_path, stored)
        else:
            store.save_new_project_in_progress(NewProjectDraft(
                conversation=stored,
                planning_level=state.planning_level,
                project_name=state.project_name,
                one_liner=state.one_liner,
            ))
        return OperationResult.ok(stored)

    def resume_session(
        self,
        store: ConversationStore,
        *,
        project_path: str | None = None,
        project_name: str = "",
        project_snapshot: str | None = None,
    ) -> SessionState | None:
        """Recreate a session from *store*, or return None if nothing is stored.

        With *project_path* the per-project entry is used, otherwise the
        new-project draft.
        """
        if project_path is not None:
            stored = store.get_conversation_state(project_path)
            if stored is None:
                return None
            state = self.create_session(
                SessionType.EXISTING_PROJECT,
                project_name=project_name,
                project_path=project_path,
                project_snapshot=project_snapshot,
            )
        else:
            draft = store.get_new_project_in_progress()
            if draft is None:
                return None
            stored = draft.conversation
            state = self.create_session(
                SessionType.NEW_PROJECT,
                project_name=draft.project_name,
                one_liner=draft.one_liner,
                planning_level=draft.planning_level,
            )

        # A resumed conversation waits for the user; it never resumes mid-stream
        step = SessionStep.WAITING_FOR_ANSWER if stored.messages else SessionStep.IDLE
        return self.registry.update(
            state.id,
            messages=tuple(stored.messages),
            covered_topics=frozenset(stored.covered_topics),
            step=step,
        )
