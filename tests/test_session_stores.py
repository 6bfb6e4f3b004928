"""Registry, conversation store, lifecycle and event bus."""

from __future__ import annotations

import pytest

from lachesis.adapters.event_bus import EventBus
from lachesis.adapters.events import SessionCreated, StepChanged
from lachesis.engine import lifecycle
from lachesis.engine.conversation_store import (
    ConversationStore,
    NewProjectDraft,
    StoredConversationState,
)
from lachesis.engine.errors import InvalidTransitionError, SessionNotFoundError
from lachesis.engine.models import (
    ConversationMessage,
    ExtractedProjectData,
    MessageRole,
    SessionState,
    SessionStep,
    SessionType,
    step_progress,
)
from lachesis.engine.registry import SessionRegistry


# ── Registry ──

def test_registry_create_update_delete():
    registry = SessionRegistry()
    state = registry.create(SessionType.NEW_PROJECT, project_name="Trails")

    assert state.id.startswith("sess_")
    assert registry.get(state.id) is state

    updated = registry.update(state.id, one_liner="Offline trail maps", id="sess_other")
    assert updated.id == state.id
    assert updated.created_at == state.created_at
    assert updated.one_liner == "Offline trail maps"
    assert state.one_liner == ""

    assert registry.delete(state.id)
    assert not registry.delete(state.id)
    assert registry.get(state.id) is None


def test_registry_require_raises_for_unknown_id():
    registry = SessionRegistry()
    with pytest.raises(SessionNotFoundError):
        registry.require("sess_missing")
    with pytest.raises(SessionNotFoundError):
        registry.update("sess_missing", project_name="x")


def test_registries_are_isolated():
    first = SessionRegistry()
    second = SessionRegistry()
    state = first.create(SessionType.NEW_PROJECT)
    assert state.id in first
    assert state.id not in second


def test_registry_evicts_oldest_beyond_bound():
    registry = SessionRegistry(max_sessions=2)
    old = SessionState(id="sess_old", type=SessionType.NEW_PROJECT, updated_at="2026-01-01T00:00:00")
    mid = SessionState(id="sess_mid", type=SessionType.NEW_PROJECT, updated_at="2026-02-01T00:00:00")
    new = SessionState(id="sess_new", type=SessionType.NEW_PROJECT, updated_at="2026-03-01T00:00:00")

    registry.load([old, mid, new])

    assert len(registry) == 2
    assert "sess_old" not in registry
    assert [s.id for s in registry.list()] == ["sess_new", "sess_mid"]


def test_session_state_round_trips_through_dict():
    state = SessionState(
        id="sess_1",
        type=SessionType.EXISTING_PROJECT,
        step=SessionStep.WAITING_FOR_ANSWER,
        messages=(ConversationMessage(MessageRole.ASSISTANT, "Who is it for?", "t1"),),
        covered_topics=frozenset({"target_users"}),
        project_path="/vault/Trails",
    )
    assert SessionState.from_dict(state.to_dict()) == state


# ── Conversation store ──

def test_conversation_store_keys_paths_exactly():
    store = ConversationStore()
    store.save_conversation_state("/a/b", StoredConversationState(covered_topics=["constraints"]))

    assert store.has_conversation_state("/a/b")
    assert not store.has_conversation_state("/a/b/")
    assert store.get_conversation_state("/a/b/") is None


def test_conversation_store_copies_values():
    store = ConversationStore()
    stored = StoredConversationState(covered_topics=["constraints"])
    store.save_conversation_state("/a", stored)

    stored.covered_topics.append("scope_and_antigoals")
    fetched = store.get_conversation_state("/a")
    fetched.covered_topics.append("value_proposition")

    assert store.get_conversation_state("/a").covered_topics == ["constraints"]


def test_conversation_store_namespaces_are_independent():
    store = ConversationStore()
    store.save_conversation_state("/a", StoredConversationState())
    store.save_new_project_in_progress(
        NewProjectDraft(conversation=StoredConversationState(), project_name="Trails"),
    )
    store.set_active_project("Trails", "/a")

    store.clear_new_project_in_progress()
    assert store.has_conversation_state("/a")
    assert store.get_active_project().name == "Trails"

    store.clear_active_project()
    assert store.has_conversation_state("/a")
    assert store.get_active_project() is None

    store.clear_conversation_state("/a")
    assert not store.has_conversation_state("/a")


def test_conversation_store_clear_all():
    store = ConversationStore()
    store.save_conversation_state("/a", StoredConversationState())
    store.save_new_project_in_progress(NewProjectDraft(conversation=StoredConversationState()))
    store.set_active_project("Trails", "/a")

    store.clear_all()

    assert not store.has_conversation_state("/a")
    assert not store.has_new_project_in_progress()
    assert store.get_active_project() is None


# ── Lifecycle ──

def _state(step: SessionStep) -> SessionState:
    return SessionState(id="sess_1", type=SessionType.NEW_PROJECT, step=step)


def test_transition_returns_new_snapshot():
    state = _state(SessionStep.IDLE)
    moved = lifecycle.transition(state, SessionStep.GENERATING_QUESTION)
    assert moved.step == SessionStep.GENERATING_QUESTION
    assert state.step == SessionStep.IDLE


def test_invalid_transition_raises():
    with pytest.raises(InvalidTransitionError) as exc_info:
        lifecycle.transition(_state(SessionStep.IDLE), SessionStep.SCAFFOLDING)
    assert exc_info.value.current == "idle"
    assert exc_info.value.target == "scaffolding"


def test_reentering_current_step_is_allowed():
    state = _state(SessionStep.WAITING_FOR_ANSWER)
    assert lifecycle.transition(state, SessionStep.WAITING_FOR_ANSWER).step == SessionStep.WAITING_FOR_ANSWER


def test_error_is_left_only_by_restart():
    failed = lifecycle.fail(_state(SessionStep.SCAFFOLDING), "disk full", "ENOSPC")
    assert failed.step == SessionStep.ERROR
    assert failed.error == "disk full"

    with pytest.raises(InvalidTransitionError):
        lifecycle.transition(failed, SessionStep.IDLE)
    with pytest.raises(InvalidTransitionError):
        lifecycle.restart(_state(SessionStep.IDLE))

    restarted = lifecycle.restart(failed)
    assert restarted.step == SessionStep.IDLE
    assert restarted.error is None


def test_restart_resumes_scaffolding_when_name_and_data_exist():
    state = _state(SessionStep.SCAFFOLDING).with_changes(
        selected_name="Trails", extracted_data=ExtractedProjectData.fallback("Offline trail maps"),
    )
    restarted = lifecycle.restart(lifecycle.fail(state, "disk full"))
    assert restarted.step == SessionStep.READY_TO_SCAFFOLD
    assert lifecycle.transition(restarted, SessionStep.SCAFFOLDING).step == SessionStep.SCAFFOLDING


def test_fail_in_error_refreshes_message():
    failed = lifecycle.fail(_state(SessionStep.IDLE), "first")
    again = lifecycle.fail(failed, "second")
    assert again.step == SessionStep.ERROR
    assert again.error == "second"


def test_every_step_can_fail():
    for step in SessionStep:
        if step != SessionStep.ERROR:
            assert SessionStep.ERROR in lifecycle.allowed_targets(step)


def test_step_progress():
    assert step_progress(SessionStep.IDLE) == 0
    assert step_progress(SessionStep.WAITING_FOR_ANSWER) == 20
    assert step_progress(SessionStep.GENERATING_NAMES) == 40
    assert step_progress(SessionStep.COMPLETE) == 100


# ── Event bus ──

def test_event_bus_fans_out_in_subscription_order():
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(lambda e: seen.append(f"a:{e.event_type}"))
    bus.subscribe(lambda e: seen.append(f"b:{e.event_type}"))

    bus.publish(SessionCreated(session_id="sess_1", session_type="new_project"))

    assert seen == ["a:session_created", "b:session_created"]


def test_event_bus_isolates_subscriber_failures():
    bus = EventBus()
    seen: list[str] = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(broken)
    bus.subscribe(lambda e: seen.append(e.step))

    bus.publish(StepChanged(session_id="sess_1", step="idle", previous_step="error"))

    assert seen == ["idle"]


def test_event_bus_unsubscribe():
    bus = EventBus()
    seen: list[str] = []
    unsubscribe = bus.subscribe(lambda e: seen.append(e.event_type))

    unsubscribe()
    unsubscribe()
    bus.publish(SessionCreated(session_id="sess_1"))

    assert seen == []
    assert bus.subscriber_count == 0
