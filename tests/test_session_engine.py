"""Session engine tests with a scripted AI collaborator."""

from __future__ import annotations

from datetime import datetime

import pytest

from lachesis.adapters.ai_client import (
    AgenticRequest,
    AgenticResult,
    AIClient,
    ConversationContext,
    ExtractionResult,
    NameExtractionResult,
    NameSuggestionsResult,
    QuestionResult,
)
from lachesis.adapters.event_bus import EventBus
from lachesis.adapters.scaffolder import ScaffoldRequest, Scaffolder, ScaffoldResult
from lachesis.engine.config import AIConfig
from lachesis.engine.conversation_store import ConversationStore
from lachesis.engine.models import (
    ExtractedProjectData,
    MessageRole,
    NameSuggestion,
    ProjectVision,
    SessionStep,
    SessionType,
)
from lachesis.engine.registry import SessionRegistry
from lachesis.engine.session_engine import SessionEngine, create_folder_name


class ScriptedAI(AIClient):
    """AIClient returning canned results and recording what it was asked."""

    def __init__(self) -> None:
        self.questions: list[QuestionResult] = []
        self.agentic: list[AgenticResult] = []
        self.names = NameSuggestionsResult(
            success=True, suggestions=[NameSuggestion("Trailhead", "short"), NameSuggestion("Cairn")],
        )
        self.extraction = ExtractionResult(success=True, data=_project_data())
        self.extracted_name = NameExtractionResult(success=True, name="Trail Mapper")
        self.contexts: list[ConversationContext] = []
        self.agentic_requests: list[AgenticRequest] = []

    async def stream_next_question(self, context, system_prompt, config, on_partial=None):
        self.contexts.append(context)
        result = self.questions.pop(0)
        if on_partial is not None and result.content:
            half = len(result.content) // 2
            on_partial(result.content[:half])
            on_partial(result.content)
        return result

    async def stream_agentic_conversation(self, config, request):
        self.agentic_requests.append(request)
        return self.agentic.pop(0)

    async def extract_project_data(self, context, config):
        return self.extraction

    async def generate_project_name_suggestions(self, context, config):
        return self.names

    async def extract_project_name(self, raw_text, config):
        return self.extracted_name


class RecordingScaffolder(Scaffolder):
    def __init__(self, result: ScaffoldResult | None = None) -> None:
        self.requests: list[tuple[str, str, ScaffoldRequest]] = []
        self.result = result or ScaffoldResult(success=True, project_path="/vault/Trail Mapper")

    async def scaffold_project(self, root_path, slug, project):
        self.requests.append((root_path, slug, project))
        return self.result


def _project_data() -> ExtractedProjectData:
    return ExtractedProjectData(
        vision=ProjectVision(
            one_line_pitch="Offline trail maps",
            description="Maps that work without signal",
            primary_audience="Hikers",
            problem_solved="No signal on the trail",
            success_criteria="A full hike navigated offline",
        ),
    )


@pytest.fixture
def ai() -> ScriptedAI:
    return ScriptedAI()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def scaffolder() -> RecordingScaffolder:
    return RecordingScaffolder()


@pytest.fixture
def engine(ai, bus, scaffolder) -> SessionEngine:
    return SessionEngine(
        ai,
        registry=SessionRegistry(),
        event_bus=bus,
        scaffolder=scaffolder,
        now=lambda: datetime(2026, 3, 1, 9, 0),
    )


CONFIG = AIConfig()


# ── Questions ──

@pytest.mark.asyncio
async def test_question_records_topics_and_waits_for_answer(engine, ai):
    ai.questions.append(QuestionResult(success=True, content="Target users: who will use this day to day?"))
    state = engine.create_session(SessionType.NEW_PROJECT, project_name="Trails")

    result = await engine.stream_question(state.id, CONFIG)

    assert result.success
    session = engine.get_session(state.id)
    assert session.step == SessionStep.WAITING_FOR_ANSWER
    assert "target_users" in session.covered_topics
    assert session.messages[-1].role == MessageRole.ASSISTANT


@pytest.mark.asyncio
async def test_transition_phrase_skips_topic_detection(engine, ai):
    ai.questions.append(QuestionResult(success=True, content="Very well, sir. Let us proceed."))
    state = engine.create_session(SessionType.NEW_PROJECT)

    result = await engine.stream_question(state.id, CONFIG)

    assert result.success
    session = engine.get_session(state.id)
    assert session.covered_topics == frozenset()
    assert session.step == SessionStep.WAITING_FOR_ANSWER


@pytest.mark.asyncio
async def test_question_failure_moves_session_to_error(engine, ai):
    ai.questions.append(QuestionResult(success=False, error="rate limited", debug_details="429"))
    state = engine.create_session(SessionType.NEW_PROJECT)

    result = await engine.stream_question(state.id, CONFIG)

    assert not result.success
    assert result.error == "rate limited"
    session = engine.get_session(state.id)
    assert session.step == SessionStep.ERROR
    assert session.error == "rate limited"
    assert session.error_details == "429"


@pytest.mark.asyncio
async def test_restart_leaves_error_and_keeps_messages(engine, ai):
    ai.questions.extend([
        QuestionResult(success=True, content="What are you building?"),
        QuestionResult(success=False, error="boom"),
    ])
    state = engine.create_session(SessionType.NEW_PROJECT)
    await engine.stream_question(state.id, CONFIG)
    await engine.process_user_message(state.id, "A trail map", CONFIG)
    assert engine.get_session(state.id).step == SessionStep.ERROR

    restarted = engine.restart(state.id)

    assert restarted.success
    session = engine.get_session(state.id)
    assert session.step == SessionStep.IDLE
    assert session.error is None
    assert len(session.messages) == 2


@pytest.mark.asyncio
async def test_user_message_rejected_in_error_leaves_session_unchanged(engine, ai):
    ai.questions.append(QuestionResult(success=False, error="boom"))
    state = engine.create_session(SessionType.NEW_PROJECT)
    await engine.stream_question(state.id, CONFIG)
    before = engine.get_session(state.id)

    result = await engine.process_user_message(state.id, "hello", CONFIG)

    assert not result.success
    after = engine.get_session(state.id)
    assert after.step == SessionStep.ERROR
    assert after.messages == before.messages
    assert len(ai.contexts) == 1


@pytest.mark.asyncio
async def test_user_message_rejected_while_naming(engine, ai):
    ai.questions.append(QuestionResult(success=True, content="What are you building?"))
    state = engine.create_session(SessionType.NEW_PROJECT)
    await engine.stream_question(state.id, CONFIG)
    await engine.generate_name_suggestions(state.id, CONFIG)

    result = await engine.process_user_message(state.id, "one more thing", CONFIG)

    assert not result.success
    session = engine.get_session(state.id)
    assert session.step == SessionStep.NAMING_PROJECT
    assert [m.content for m in session.messages] == ["What are you building?"]


def test_restart_outside_error_fails(engine):
    state = engine.create_session(SessionType.NEW_PROJECT)
    assert not engine.restart(state.id).success
    assert not engine.restart("sess_missing").success


@pytest.mark.asyncio
async def test_partial_text_reaches_callback_and_bus(engine, ai, bus):
    ai.questions.append(QuestionResult(success=True, content="What problem does this solve?"))
    state = engine.create_session(SessionType.NEW_PROJECT)
    partials: list[str] = []
    streamed: list[str] = []
    bus.subscribe(lambda e: streamed.append(e.partial) if e.event_type == "ai_streaming" else None)

    await engine.stream_question(state.id, CONFIG, partials.append)

    assert partials[-1] == "What problem does this solve?"
    assert streamed == partials


@pytest.mark.asyncio
async def test_unknown_session_fails_without_raising(engine):
    result = await engine.stream_question("sess_missing", CONFIG)
    assert not result.success
    assert "sess_missing" in result.error


@pytest.mark.asyncio
async def test_user_message_is_recorded_before_next_question(engine, ai):
    ai.questions.extend([
        QuestionResult(success=True, content="What are you building?"),
        QuestionResult(success=True, content="Who is the audience?"),
    ])
    state = engine.create_session(SessionType.NEW_PROJECT)
    await engine.stream_question(state.id, CONFIG)

    await engine.process_user_message(state.id, "Offline trail maps", CONFIG)

    roles = [m.role for m in engine.get_session(state.id).messages]
    assert roles == [MessageRole.ASSISTANT, MessageRole.USER, MessageRole.ASSISTANT]
    assert ai.contexts[-1].messages[-1].content == "Offline trail maps"


@pytest.mark.asyncio
async def test_agentic_turn_used_for_existing_projects(engine, ai):
    ai.agentic.append(AgenticResult(success=True, response="Your roadmap has no milestones yet."))
    state = engine.create_session(
        SessionType.EXISTING_PROJECT, project_path="/vault/Trails", project_snapshot="Tasks.md: 3 open",
    )

    result = await engine.process_user_message(
        state.id, "What next?", CONFIG, agentic_enabled=True, project_path="/vault/Trails",
    )

    assert result.success
    request = ai.agentic_requests[0]
    assert request.project_path == "/vault/Trails"
    assert request.max_tool_calls == CONFIG.max_tool_calls
    assert engine.get_session(state.id).step == SessionStep.WAITING_FOR_ANSWER


# ── Naming ──

@pytest.mark.asyncio
async def test_name_failure_rolls_back_step(engine, ai):
    ai.questions.append(QuestionResult(success=True, content="What are you building?"))
    ai.names = NameSuggestionsResult(success=False, error="timeout")
    state = engine.create_session(SessionType.NEW_PROJECT)
    await engine.stream_question(state.id, CONFIG)

    result = await engine.generate_name_suggestions(state.id, CONFIG)

    assert not result.success
    assert result.error == "timeout"
    assert engine.get_session(state.id).step == SessionStep.WAITING_FOR_ANSWER


@pytest.mark.asyncio
async def test_name_suggestions_move_to_naming(engine, ai):
    ai.questions.append(QuestionResult(success=True, content="What are you building?"))
    state = engine.create_session(SessionType.NEW_PROJECT)
    await engine.stream_question(state.id, CONFIG)

    result = await engine.generate_name_suggestions(state.id, CONFIG)

    assert result.success
    assert [s.name for s in result.data] == ["Trailhead", "Cairn"]
    session = engine.get_session(state.id)
    assert session.step == SessionStep.NAMING_PROJECT
    assert len(session.name_suggestions) == 2


@pytest.mark.asyncio
async def test_custom_name_is_extracted_but_raw_text_is_logged(engine):
    state = engine.create_session(SessionType.NEW_PROJECT)

    result = await engine.select_project_name(
        state.id, "let's call it trail mapper", CONFIG, is_custom_input=True,
    )

    assert result.data == "Trail Mapper"
    session = engine.get_session(state.id)
    assert session.selected_name == "Trail Mapper"
    assert session.messages[-1].content == "let's call it trail mapper"


# ── Extraction and scaffolding ──

@pytest.mark.asyncio
async def test_scaffold_requires_extracted_data(engine, scaffolder):
    state = engine.create_session(SessionType.NEW_PROJECT)

    result = await engine.scaffold_session_project(state.id, "/vault")

    assert not result.success
    assert "extract" in result.error.lower()
    assert engine.get_session(state.id).step == SessionStep.IDLE
    assert scaffolder.requests == []


@pytest.mark.asyncio
async def test_scaffold_requires_selected_name(engine, scaffolder):
    state = engine.create_session(SessionType.NEW_PROJECT)
    engine.registry.update(state.id, extracted_data=_project_data())

    result = await engine.scaffold_session_project(state.id, "/vault")

    assert not result.success
    assert result.error == "No project name selected."
    assert engine.get_session(state.id).step == SessionStep.IDLE
    assert scaffolder.requests == []


@pytest.mark.asyncio
async def test_extraction_failure_falls_back_to_placeholders(engine, ai):
    ai.questions.append(QuestionResult(success=True, content="What are you building?"))
    ai.extraction = ExtractionResult(success=False, error="bad json")
    state = engine.create_session(SessionType.NEW_PROJECT, one_liner="Offline trail maps")
    await engine.stream_question(state.id, CONFIG)

    result = await engine.extract_project_data(state.id, CONFIG)

    assert result.success
    assert result.data.vision.one_line_pitch == "Offline trail maps"
    assert "bad json" in result.debug_details
    assert engine.get_session(state.id).step == SessionStep.READY_TO_SCAFFOLD


@pytest.mark.asyncio
async def test_finalize_runs_name_extract_and_scaffold(engine, ai, scaffolder, bus):
    ai.questions.append(QuestionResult(success=True, content="What are you building?"))
    steps: list[str] = []
    bus.subscribe(lambda e: steps.append(e.step) if e.event_type == "step_changed" else None)
    state = engine.create_session(SessionType.NEW_PROJECT, one_liner="Offline trail maps")
    await engine.stream_question(state.id, CONFIG)
    await engine.generate_name_suggestions(state.id, CONFIG)

    result = await engine.finalize_session(state.id, "Trail: Mapper", "/vault", CONFIG)

    assert result.success
    assert result.data["project_path"] == "/vault/Trail Mapper"
    assert scaffolder.requests[0][1] == "Trail Mapper"
    session = engine.get_session(state.id)
    assert session.step == SessionStep.COMPLETE
    assert session.scaffolded_path == "/vault/Trail Mapper"
    assert steps[-1] == "complete"


@pytest.mark.asyncio
async def test_scaffold_failure_is_fatal(engine, ai, scaffolder):
    scaffolder.result = ScaffoldResult(success=False, error="Project directory already exists")
    ai.questions.append(QuestionResult(success=True, content="What are you building?"))
    state = engine.create_session(SessionType.NEW_PROJECT)
    await engine.stream_question(state.id, CONFIG)

    result = await engine.finalize_session(state.id, "Trails", "/vault", CONFIG)

    assert not result.success
    assert "already exists" in result.error
    assert engine.get_session(state.id).step == SessionStep.ERROR


@pytest.mark.asyncio
async def test_restart_after_scaffold_failure_allows_retry(engine, ai, scaffolder):
    scaffolder.result = ScaffoldResult(success=False, error="Disk full")
    ai.questions.append(QuestionResult(success=True, content="What are you building?"))
    state = engine.create_session(SessionType.NEW_PROJECT)
    await engine.stream_question(state.id, CONFIG)
    await engine.finalize_session(state.id, "Trails", "/vault", CONFIG)

    restarted = engine.restart(state.id)

    assert restarted.data.step == SessionStep.READY_TO_SCAFFOLD
    scaffolder.result = ScaffoldResult(success=True, project_path="/vault/Trails")
    result = await engine.scaffold_session_project(state.id, "/vault")
    assert result.success
    assert engine.get_session(state.id).step == SessionStep.COMPLETE
    assert len(scaffolder.requests) == 2


def test_create_folder_name_strips_unsafe_characters():
    assert create_folder_name('  My: "Project"/Plan  ') == "My ProjectPlan"
    assert create_folder_name("Trail   Mapper") == "Trail Mapper"


# ── Conversation store bridge ──

@pytest.mark.asyncio
async def test_save_and_resume_new_project_draft(engine, ai):
    ai.questions.append(QuestionResult(success=True, content="Who is the audience?"))
    store = ConversationStore()
    state = engine.create_session(SessionType.NEW_PROJECT, project_name="Trails", planning_level="heavy")
    await engine.stream_question(state.id, CONFIG)

    assert engine.save_conversation(state.id, store).success
    resumed = engine.resume_session(store)

    assert resumed.id != state.id
    assert resumed.project_name == "Trails"
    assert resumed.planning_level == "heavy"
    assert resumed.step == SessionStep.WAITING_FOR_ANSWER
    assert "target_users" in resumed.covered_topics
    assert not store.has_conversation_state("Trails")


def test_resume_returns_none_when_nothing_stored(engine):
    store = ConversationStore()
    assert engine.resume_session(store) is None
    assert engine.resume_session(store, project_path="/vault/Trails") is None


def test_existing_project_conversation_keyed_by_path(engine):
    store = ConversationStore()
    state = engine.create_session(SessionType.EXISTING_PROJECT, project_path="/vault/Trails")

    engine.save_conversation(state.id, store)

    assert store.has_conversation_state("/vault/Trails")
    assert not store.has_new_project_in_progress()
    resumed = engine.resume_session(store, project_path="/vault/Trails")
    assert resumed.type == SessionType.EXISTING_PROJECT
    assert resumed.step == SessionStep.IDLE
