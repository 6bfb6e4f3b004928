"""Enrich-tasks workflow: attach why/considerations/acceptance blocks
to existing tasks as blockquotes directly under the task line.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Mapping

from lachesis.shared.sections import ANY_TASK
from lachesis.shared.workflows.common import PARSE_ERRORS, load_object, pick, string_list, to_int

logger = logging.getLogger(__name__)

TASK_TEXT = re.compile(r"^\s*-\s*\[[ xX]\]\s*(.+?)(?:\s*\[\[|<!--|$)")


@dataclass(frozen=True)
class TaskEnrichmentContent:
    why: str
    considerations: tuple[str, ...] = ()
    acceptance: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    prompt: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> TaskEnrichmentContent:
        return cls(
            why=str(data.get("why") or ""),
            considerations=tuple(string_list(data.get("considerations"))),
            acceptance=tuple(string_list(data.get("acceptance"))),
            constraints=tuple(string_list(data.get("constraints"))),
            prompt=str(data.get("prompt") or ""),
        )


@dataclass(frozen=True)
class TaskEnrichment:
    id: str
    original_task: str
    task_text: str
    enrichment: TaskEnrichmentContent
    confidence_score: float
    slice_link: str | None = None
    source_comment: str | None = None
    confidence_note: str | None = None
    selected: bool = True


@dataclass(frozen=True)
class EnrichTasksSummary:
    tasks_analyzed: int
    tasks_enriched: int
    tasks_skipped: int
    skip_reasons: list[str] = field(default_factory=list)


def contains_enrich_tasks_response(text: str) -> bool:
    return (
        '"enrichments"' in text
        and '"originalTask"' in text
        and '"confidenceScore"' in text
        and '"why"' in text
    )


def parse_enrich_tasks_response(text: str) -> list[TaskEnrichment]:
    payload = load_object(text)
    if payload is None or not isinstance(payload.get("enrichments"), list):
        logger.warning("Enrich tasks response missing enrichments array")
        return []
    try:
        return [
            TaskEnrichment(
                id=f"enrich-{index}",
                original_task=str(pick(item, "originalTask", "original_task", default="")),
                task_text=str(pick(item, "taskText", "task_text", default="")),
                enrichment=TaskEnrichmentContent.from_dict(item["enrichment"]),
                confidence_score=float(pick(item, "confidenceScore", "confidence_score", default=0)),
                slice_link=pick(item, "sliceLink", "slice_link") or None,
                source_comment=pick(item, "sourceComment", "source_comment") or None,
                confidence_note=pick(item, "confidenceNote", "confidence_note") or None,
            )
            for index, item in enumerate(payload["enrichments"])
        ]
    except PARSE_ERRORS as exc:
        logger.warning("Failed to parse enrich tasks response: %s", exc)
        return []


def extract_enrich_tasks_summary(text: str) -> EnrichTasksSummary | None:
    payload = load_object(text)
    if payload is None:
        return None
    summary = payload.get("summary")
    if isinstance(summary, dict):
        return EnrichTasksSummary(
            tasks_analyzed=to_int(summary.get("tasksAnalyzed")),
            tasks_enriched=to_int(summary.get("tasksEnriched")),
            tasks_skipped=to_int(summary.get("tasksSkipped")),
            skip_reasons=string_list(summary.get("skipReasons")),
        )
    enrichments = payload.get("enrichments")
    if isinstance(enrichments, list):
        return EnrichTasksSummary(len(enrichments), len(enrichments), 0)
    return None


def confidence_label(score: float) -> str:
    if score >= 0.7:
        return "High"
    if score >= 0.4:
        return "Medium"
    return "Low"


def normalize_task_text(text: str) -> str:
    text = re.sub(r"\s+", " ", text.lower())
    return re.sub(r"[.,!?]+$", "", text).strip()


def _has_blockquote_below(lines: list[str], index: int) -> bool:
    for line in lines[index + 1:]:
        stripped = line.strip()
        if not stripped:
            continue
        return stripped.startswith(">")
    return False


def detect_existing_enrichments(content: str) -> set[str]:
    """Text of every task already followed by a blockquote."""
    lines = content.split("\n")
    enriched = set()
    for index, line in enumerate(lines):
        if not ANY_TASK.match(line):
            continue
        if _has_blockquote_below(lines, index):
            found = TASK_TEXT.match(line)
            if found:
                enriched.add(found.group(1).strip())
    return enriched


def format_enrichment_block(enrichment: TaskEnrichmentContent) -> str:
    lines = [f"> **Why:** {enrichment.why}"]
    if enrichment.considerations:
        lines.append("> **Considerations:**")
        lines.extend(f"> - {item}" for item in enrichment.considerations)
    if enrichment.acceptance:
        lines.append("> **Acceptance:**")
        lines.extend(f"> - {item}" for item in enrichment.acceptance)
    if enrichment.constraints:
        lines.append(f"> **Constraints:** {'; '.join(enrichment.constraints)}")
    if enrichment.prompt:
        lines += [">", "> <details><summary><strong>Execution Prompt</strong></summary>", ">"]
        lines.extend(f"> {line}" for line in enrichment.prompt.split("\n"))
        lines += [">", "> </details>"]
    return "\n".join(lines)


def with_selections(
    enrichments: list[TaskEnrichment], selections: Mapping[str, bool] | None,
) -> list[TaskEnrichment]:
    if not selections:
        return list(enrichments)
    return [
        replace(e, selected=bool(selections[e.id])) if e.id in selections else e
        for e in enrichments
    ]


def apply_enrichments(content: str, enrichments: list[TaskEnrichment]) -> str:
    """Insert the block of every selected enrichment below its task.

    Tasks are matched on normalized text. A task that already has a
    blockquote under it is left alone, so re-applying is a no-op.
    """
    selected = {
        normalize_task_text(e.task_text): e for e in enrichments if e.selected
    }
    if not selected:
        return content

    lines = content.split("\n")
    result = []
    for index, line in enumerate(lines):
        result.append(line)
        if not ANY_TASK.match(line):
            continue
        found = TASK_TEXT.match(line)
        if not found:
            continue
        enrichment = selected.get(normalize_task_text(found.group(1).strip()))
        if enrichment is None or _has_blockquote_below(lines, index):
            continue
        result += ["", format_enrichment_block(enrichment.enrichment), ""]
    return "\n".join(result)
