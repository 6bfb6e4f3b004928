"""Claude collaborator stream handling against a scripted SDK query."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from lachesis.adapters.ai_client import (
    AgenticRequest,
    ClaudeAIClient,
    ToolCallRecord,
    format_capped_response,
)
from lachesis.engine.config import AIConfig
from lachesis.engine.models import ConversationMessage, MessageRole

claude_agent_sdk = pytest.importorskip("claude_agent_sdk")


def _tool_use(index: int) -> SimpleNamespace:
    block = SimpleNamespace(id=f"tool-{index}", name="Read", input={"file_path": f"Note{index}.md"})
    return SimpleNamespace(content=[block])


def _text(text: str) -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(text=text)])


@pytest.fixture
def scripted_stream(monkeypatch):
    messages: list[SimpleNamespace] = []

    async def fake_query(*, prompt, options):
        for message in messages:
            yield message

    monkeypatch.setattr(claude_agent_sdk, "query", fake_query)
    monkeypatch.setattr(claude_agent_sdk, "ClaudeAgentOptions", lambda **kwargs: kwargs)
    return messages


def _request(cap: int, **callbacks) -> AgenticRequest:
    return AgenticRequest(
        system_prompt="You help plan Trails.",
        messages=[ConversationMessage(MessageRole.USER, "What should I do next?", "2026-03-01T09:00:00")],
        project_path="/vault/Trails",
        max_tool_calls=cap,
        **callbacks,
    )


# ── Tool call cap ──


@pytest.mark.asyncio
async def test_exceeding_tool_cap_returns_capped_notice(scripted_stream):
    scripted_stream.extend([_tool_use(i) for i in range(3)] + [_text("Never reached")])
    updates: list[str] = []

    result = await ClaudeAIClient().stream_agentic_conversation(
        AIConfig(), _request(2, on_text_update=updates.append),
    )

    assert result.success
    assert result.error is None
    assert result.response.startswith("I reached the limit of 2 tool calls")
    assert "- Read Note0.md" in result.response
    assert "Never reached" not in result.response
    assert len(result.tool_calls) == 3
    assert updates == [result.response]


@pytest.mark.asyncio
async def test_reaching_tool_cap_exactly_still_answers(scripted_stream):
    scripted_stream.extend([_tool_use(0), _tool_use(1), _text("Roadmap has no milestones yet.")])
    seen: list[str] = []

    result = await ClaudeAIClient().stream_agentic_conversation(
        AIConfig(), _request(2, on_tool_call=lambda name, args: seen.append(args["file_path"])),
    )

    assert result.success
    assert result.response == "Roadmap has no milestones yet."
    assert seen == ["Note0.md", "Note1.md"]


@pytest.mark.asyncio
async def test_empty_stream_without_cap_is_a_failure(scripted_stream):
    scripted_stream.append(_tool_use(0))

    result = await ClaudeAIClient().stream_agentic_conversation(AIConfig(), _request(5))

    assert not result.success
    assert result.error == "Empty response from model"
    assert len(result.tool_calls) == 1


def test_capped_notice_lists_each_call_target():
    calls = [
        ToolCallRecord("Read", {"file_path": "Tasks.md"}),
        ToolCallRecord("Grep", {"pattern": "VS1"}),
        ToolCallRecord("Glob", None),
    ]

    lines = format_capped_response(calls, 10).split("\n")

    assert lines[0].startswith("I reached the limit of 10 tool calls")
    assert lines[1:4] == ["- Read Tasks.md", "- Grep VS1", "- Glob"]
    assert lines[-1] == "Ask me to continue and I will pick up from there."
