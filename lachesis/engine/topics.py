"""Planning topic coverage and transition phrase detection."""
from __future__ import annotations

from collections.abc import Iterable

TRANSITION_PHRASE = "very well, sir. let us proceed"

TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "elevator_pitch": (
        "what are you building", "what is this", "describe",
        "one sentence", "elevator",
    ),
    "problem_statement": (
        "problem", "pain", "hurts", "solve", "why build", "consequence",
    ),
    "target_users": (
        "who will", "who is", "target", "audience", "users", "customer",
        "context",
    ),
    "value_proposition": (
        "benefit", "value", "alternative", "different", "why this",
    ),
    "scope_and_antigoals": (
        "scope", "in scope", "out of scope", "anti-goal", "avoid",
        "shouldn't", "not become",
    ),
    "constraints": (
        "constraint", "limitation", "budget", "time", "deadline",
        "tech stack", "money",
    ),
}

ALL_TOPICS: tuple[str, ...] = tuple(TOPIC_KEYWORDS)


def detect_topics(text: str, covered: Iterable[str] = ()) -> frozenset[str]:
    """Return *covered* plus any topic whose keyword appears in *text*.

    Coverage only grows: topics already in *covered* are always kept.
    """
    lowered = text.lower()
    found = set(covered)
    for topic, keywords in TOPIC_KEYWORDS.items():
        if topic in found:
            continue
        if any(keyword in lowered for keyword in keywords):
            found.add(topic)
    return frozenset(found)


def uncovered_topics(covered: Iterable[str]) -> list[str]:
    covered_set = set(covered)
    return [t for t in ALL_TOPICS if t not in covered_set]


def contains_transition_phrase(text: str) -> bool:
    return TRANSITION_PHRASE in text.lower()
