"""AI collaborator interface and the Claude Agent SDK implementation.

The session engine only talks to ``AIClient``. Every method is async,
may fail, and reports failure through its result object rather than
by raising. Retries are the implementation's concern.
"""
from __future__ import annotations

import abc
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from lachesis.engine.config import AIConfig
from lachesis.engine.models import (
    ConversationMessage,
    ExtractedProjectData,
    MessageRole,
    NameSuggestion,
)
from lachesis.shared.json_extract import extract_json

logger = logging.getLogger(__name__)

PartialCallback = Callable[[str], None]
ToolCallCallback = Callable[[str, Any], None]
ToolResultCallback = Callable[[str, Any], None]


@dataclass
class ConversationContext:
    """What the AI needs to know about a planning conversation."""
    planning_level: str
    project_name: str
    one_liner: str
    messages: Sequence[ConversationMessage] = ()
    covered_topics: Sequence[str] = ()


@dataclass
class ToolCallRecord:
    name: str
    arguments: Any = None
    result: Any = None
    is_error: bool = False


@dataclass
class QuestionResult:
    success: bool
    content: str | None = None
    error: str | None = None
    debug_details: str | None = None


@dataclass
class AgenticResult:
    success: bool
    response: str | None = None
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    error: str | None = None
    debug_details: str | None = None


@dataclass
class ExtractionResult:
    success: bool
    data: ExtractedProjectData | None = None
    error: str | None = None
    debug_details: str | None = None


@dataclass
class NameSuggestionsResult:
    success: bool
    suggestions: list[NameSuggestion] = field(default_factory=list)
    error: str | None = None


@dataclass
class NameExtractionResult:
    success: bool
    name: str | None = None
    error: str | None = None


@dataclass
class AgenticRequest:
    system_prompt: str
    messages: Sequence[ConversationMessage]
    project_path: str
    max_tool_calls: int = 10
    on_tool_call: ToolCallCallback | None = None
    on_tool_result: ToolResultCallback | None = None
    on_text_update: PartialCallback | None = None


class AIClient(abc.ABC):
    """Abstract AI collaborator."""

    @abc.abstractmethod
    async def stream_next_question(
        self,
        context: ConversationContext,
        system_prompt: str,
        config: AIConfig,
        on_partial: PartialCallback | None = None,
    ) -> QuestionResult:
        """Stream the next interviewer message."""

    @abc.abstractmethod
    async def stream_agentic_conversation(
        self, config: AIConfig, request: AgenticRequest
    ) -> AgenticResult:
        """Run one tool-using turn against an existing project."""

    @abc.abstractmethod
    async def extract_project_data(
        self, context: ConversationContext, config: AIConfig
    ) -> ExtractionResult:
        """Pull structured project data out of the conversation."""

    @abc.abstractmethod
    async def generate_project_name_suggestions(
        self, context: ConversationContext, config: AIConfig
    ) -> NameSuggestionsResult:
        """Suggest project names, most preferred first."""

    @abc.abstractmethod
    async def extract_project_name(
        self, raw_text: str, config: AIConfig
    ) -> NameExtractionResult:
        """Pull a clean project name out of free-form user text."""


def format_transcript(messages: Sequence[ConversationMessage]) -> str:
    lines = []
    for message in messages:
        speaker = "User" if message.role == MessageRole.USER else "Lachesis"
        lines.append(f"{speaker}: {message.content}")
    return "\n\n".join(lines)


def format_capped_response(tool_calls: Sequence[ToolCallRecord], cap: int) -> str:
    """Stand-in reply when the tool call cap ends a turn before any text."""
    lines = [f"I reached the limit of {cap} tool calls before I could answer. So far I used:"]
    for call in tool_calls:
        args = call.arguments if isinstance(call.arguments, dict) else {}
        target = args.get("file_path") or args.get("pattern") or args.get("path") or ""
        lines.append(f"- {call.name} {target}".rstrip())
    lines.append("Ask me to continue and I will pick up from there.")
    return "\n".join(lines)


def _context_block(context: ConversationContext) -> str:
    topics = ", ".join(context.covered_topics) or "none"
    return (
        f"Project name: {context.project_name}\n"
        f"One-liner: {context.one_liner}\n"
        f"Planning level: {context.planning_level}\n"
        f"Covered topics: {topics}\n\n"
        f"Conversation:\n{format_transcript(context.messages) or '(empty)'}"
    )


_EXTRACTION_PROMPT = """Read the planning conversation below and return ONLY a JSON object:
{{
  "vision": {{"oneLinePitch": "", "description": "", "primaryAudience": "",
             "secondaryAudience": "", "problemSolved": "", "successCriteria": ""}},
  "constraints": {{"known": [], "assumptions": [], "risks": [], "antiGoals": []}},
  "execution": {{"suggestedFirstMove": "", "techStack": ""}}
}}
Use "To be defined" for anything the conversation does not answer.

{context}
"""

_NAMES_PROMPT = """Suggest 3 to 5 short, memorable project names for the project below.
Return ONLY a JSON array of objects: [{{"name": "...", "reasoning": "..."}}],
best suggestion first.

{context}
"""

_NAME_EXTRACT_PROMPT = """The user was asked to name their project and replied:

{raw}

Reply with ONLY the project name they chose, no quotes or punctuation.
"""


class ClaudeAIClient(AIClient):
    """AIClient backed by claude_agent_sdk.query().

    Auth follows the SDK defaults (OAuth or ANTHROPIC_API_KEY).
    """

    async def _run(
        self,
        prompt: str,
        *,
        system_prompt: str,
        config: AIConfig,
        tools: list[str] | None = None,
        cwd: str | None = None,
        max_tool_calls: int = 0,
        on_text: PartialCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ) -> tuple[str, list[ToolCallRecord]]:
        # Import SDK lazily so the engine and its tests load without it
        from claude_agent_sdk import ClaudeAgentOptions, query

        options = ClaudeAgentOptions(
            system_prompt=system_prompt,
            allowed_tools=tools or [],
            permission_mode=config.permission_mode if tools else "plan",
            cwd=cwd or config.cwd or ".",
            model=config.model,
            include_partial_messages=True,
        )

        text = ""
        result_text: str | None = None
        tool_calls: list[ToolCallRecord] = []
        pending: dict[str, ToolCallRecord] = {}
        turn_streamed = False
        capped = False

        async for message in query(prompt=prompt, options=options):
            event = getattr(message, "event", None)
            if isinstance(event, dict):
                delta = event.get("delta") or {}
                if delta.get("type") == "text_delta":
                    if not turn_streamed and text:
                        text += "\n\n"
                    turn_streamed = True
                    text += delta.get("text", "")
                    if on_text is not None:
                        on_text(text)
                continue

            content = getattr(message, "content", None)
            if isinstance(content, list):
                for block in content:
                    if hasattr(block, "thinking"):
                        continue
                    if hasattr(block, "text"):
                        if not turn_streamed:
                            text = f"{text}\n\n{block.text}" if text else block.text
                            if on_text is not None:
                                on_text(text)
                    elif hasattr(block, "name") and hasattr(block, "input"):
                        record = ToolCallRecord(name=block.name, arguments=block.input)
                        tool_calls.append(record)
                        pending[str(getattr(block, "id", ""))] = record
                        logger.info("Tool call %s (%d so far)", block.name, len(tool_calls))
                        if on_tool_call is not None:
                            on_tool_call(block.name, block.input)
                    elif hasattr(block, "tool_use_id"):
                        record = pending.pop(str(block.tool_use_id), None)
                        name = record.name if record else ""
                        result = getattr(block, "content", None)
                        if record is not None:
                            record.result = result
                            record.is_error = bool(getattr(block, "is_error", False))
                        if on_tool_result is not None:
                            on_tool_result(name, result)
                turn_streamed = False

            if hasattr(message, "result"):
                if getattr(message, "is_error", False):
                    raise RuntimeError(message.result or "Claude returned an error result")
                result_text = message.result

            if max_tool_calls and len(tool_calls) > max_tool_calls:
                logger.warning(
                    "Tool call cap exceeded (%d); stopping the response", max_tool_calls,
                )
                capped = True
                break

        response = result_text if result_text else text
        if capped and not response.strip():
            response = format_capped_response(tool_calls, max_tool_calls)
            if on_text is not None:
                on_text(response)
        return response, tool_calls

    async def stream_next_question(
        self,
        context: ConversationContext,
        system_prompt: str,
        config: AIConfig,
        on_partial: PartialCallback | None = None,
    ) -> QuestionResult:
        prompt = (
            _context_block(context)
            + "\n\nWrite your next message to the user."
        )
        try:
            content, _ = await self._run(
                prompt, system_prompt=system_prompt, config=config, on_text=on_partial,
            )
        except Exception as exc:
            logger.error("stream_next_question failed: %s", exc, exc_info=True)
            return QuestionResult(
                success=False, error=str(exc) or type(exc).__name__,
                debug_details=repr(exc),
            )
        if not content.strip():
            return QuestionResult(success=False, error="Empty response from model")
        return QuestionResult(success=True, content=content)

    async def stream_agentic_conversation(
        self, config: AIConfig, request: AgenticRequest
    ) -> AgenticResult:
        prompt = (
            f"Conversation so far:\n{format_transcript(request.messages)}\n\n"
            "Respond to the user's latest message."
        )
        try:
            response, tool_calls = await self._run(
                prompt,
                system_prompt=request.system_prompt,
                config=config,
                tools=list(config.allowed_tools),
                cwd=request.project_path,
                max_tool_calls=request.max_tool_calls,
                on_text=request.on_text_update,
                on_tool_call=request.on_tool_call,
                on_tool_result=request.on_tool_result,
            )
        except Exception as exc:
            logger.error("stream_agentic_conversation failed: %s", exc, exc_info=True)
            return AgenticResult(
                success=False, error=str(exc) or type(exc).__name__,
                debug_details=repr(exc),
            )
        if not response.strip():
            return AgenticResult(
                success=False, tool_calls=tool_calls, error="Empty response from model",
            )
        return AgenticResult(success=True, response=response, tool_calls=tool_calls)

    async def extract_project_data(
        self, context: ConversationContext, config: AIConfig
    ) -> ExtractionResult:
        prompt = _EXTRACTION_PROMPT.format(context=_context_block(context))
        try:
            raw, _ = await self._run(
                prompt, system_prompt="You extract structured data.", config=config,
            )
        except Exception as exc:
            logger.error("extract_project_data failed: %s", exc, exc_info=True)
            return ExtractionResult(success=False, error=str(exc), debug_details=repr(exc))

        parsed = extract_json(raw)
        if not isinstance(parsed, dict) or "vision" not in parsed:
            return ExtractionResult(
                success=False,
                error="Model did not return project data",
                debug_details=raw[:500],
            )
        try:
            return ExtractionResult(success=True, data=ExtractedProjectData.from_dict(parsed))
        except (TypeError, AttributeError) as exc:
            return ExtractionResult(success=False, error=str(exc), debug_details=raw[:500])

    async def generate_project_name_suggestions(
        self, context: ConversationContext, config: AIConfig
    ) -> NameSuggestionsResult:
        prompt = _NAMES_PROMPT.format(context=_context_block(context))
        try:
            raw, _ = await self._run(
                prompt, system_prompt="You name software projects.", config=config,
            )
        except Exception as exc:
            logger.error("generate_project_name_suggestions failed: %s", exc, exc_info=True)
            return NameSuggestionsResult(success=False, error=str(exc))

        parsed = extract_json(raw)
        if isinstance(parsed, dict):
            parsed = parsed.get("suggestions")
        if not isinstance(parsed, list):
            return NameSuggestionsResult(success=False, error="Model did not return a name list")
        suggestions = [
            NameSuggestion(name=str(item["name"]).strip(), reasoning=str(item.get("reasoning", "")))
            for item in parsed
            if isinstance(item, dict) and str(item.get("name", "")).strip()
        ]
        if not suggestions:
            return NameSuggestionsResult(success=False, error="Model returned no names")
        return NameSuggestionsResult(success=True, suggestions=suggestions)

    async def extract_project_name(
        self, raw_text: str, config: AIConfig
    ) -> NameExtractionResult:
        try:
            raw, _ = await self._run(
                _NAME_EXTRACT_PROMPT.format(raw=raw_text),
                system_prompt="You extract project names.",
                config=config,
            )
        except Exception as exc:
            logger.error("extract_project_name failed: %s", exc, exc_info=True)
            return NameExtractionResult(success=False, error=str(exc))
        name = raw.strip().strip("\"'`").strip()
        if not name or "\n" in name:
            return NameExtractionResult(
                success=False, error=f"Unusable name response: {json.dumps(raw[:80])}",
            )
        return NameExtractionResult(success=True, name=name)
