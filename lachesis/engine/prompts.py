"""System prompt builders for planning conversations.

Two flavours: the new-project interviewer, which walks the user through
the planning topics and signals readiness with the transition phrase,
and the existing-project assistant, which can read and edit project
files through tools.
"""
from __future__ import annotations

from collections.abc import Iterable

from .topics import TRANSITION_PHRASE, uncovered_topics

PROJECT_FILES = (
    "Overview.md", "Roadmap.md", "Tasks.md", "Log.md", "Ideas.md", "Archive.md",
)

_TOPIC_LABELS = {
    "elevator_pitch": "Elevator pitch: what is being built, in one or two sentences",
    "problem_statement": "Problem: what hurts today and why it is worth solving",
    "target_users": "Users: who this is for and the context they work in",
    "value_proposition": "Value: why this beats the alternatives",
    "scope_and_antigoals": "Scope: what is in, what is out, what it must not become",
    "constraints": "Constraints: time, budget, tech stack, hard limits",
}

_PLANNING_GUIDANCE = {
    "light": (
        "The user has only a spark of an idea. Keep questions short and "
        "concrete. Cover the essentials and move on quickly."
    ),
    "medium": (
        "The user has some notes. Confirm what they know, dig into the gaps, "
        "and avoid repeating what they have already said."
    ),
    "heavy": (
        "The user has a well-defined plan. Challenge assumptions, look for "
        "risks and missing constraints, and be precise."
    ),
}

VOICE = """VOICE & CADENCE:
- Polished, calm, formal. Address the user as "sir".
- One clear idea per line. Dry, understated wit is welcome.
- Plain language. Avoid: transform, journey, vision, empower, leverage, synergy."""


def time_greeting(hour: int) -> str:
    if hour < 12:
        return "Good morning"
    if hour < 17:
        return "Good afternoon"
    return "Good evening"


def build_system_prompt(
    *,
    project_name: str,
    one_liner: str,
    planning_level: str,
    covered_topics: Iterable[str],
    current_hour: int,
    is_first_message: bool,
) -> str:
    """Interviewer prompt for a new-project planning conversation."""
    greeting = time_greeting(current_hour)
    remaining = uncovered_topics(covered_topics)
    if remaining:
        topic_lines = "\n".join(f"- {_TOPIC_LABELS[t]}" for t in remaining)
        topics_section = f"TOPICS STILL TO COVER:\n{topic_lines}"
    else:
        topics_section = (
            "All planning topics are covered. Wrap up now: summarise in two "
            f'lines and end with exactly "{TRANSITION_PHRASE.capitalize()}."'
        )

    if is_first_message:
        opening = (
            f'OPENING: Start with "{greeting}, sir." then ask the first '
            "question. Do not summarise what you are about to do."
        )
    else:
        opening = "CONTINUATION: Do not greet again. Ask the next question."

    guidance = _PLANNING_GUIDANCE.get(planning_level, _PLANNING_GUIDANCE["medium"])

    return f"""You are Lachesis, a project planning coach interviewing someone about a new project.

PROJECT SO FAR:
- Working name: {project_name}
- One-liner: {one_liner}
- Planning level: {planning_level}

{guidance}

{VOICE}

{opening}

RULES:
- Ask exactly one question per message.
- Never invent answers on the user's behalf.
- When you have enough to write the project files, say exactly
  "{TRANSITION_PHRASE.capitalize()}." and nothing after it.

{topics_section}
"""


def build_existing_project_prompt(
    *,
    project_name: str,
    project_path: str,
    snapshot_summary: str,
    tools: Iterable[str],
    current_hour: int,
    is_first_message: bool,
) -> str:
    """Agentic prompt for working on a project that already exists on disk."""
    greeting = time_greeting(current_hour)
    if is_first_message:
        opening = (
            f'OPENING: Start with "{greeting}." and the project name, give a '
            "one or two line status based on the snapshot, then ask what "
            "to work on today."
        )
    else:
        opening = "CONTINUATION: Do not greet again. Continue naturally."

    files = ", ".join(PROJECT_FILES)
    return f"""You are Lachesis, a project coach helping someone continue work on an existing project.

PROJECT: {project_name}
LOCATION: {project_path}
FILES: {files}

PROJECT SNAPSHOT:
{snapshot_summary or 'No snapshot available.'}

TOOLS: {', '.join(tools)}. Read a file before editing it. Keep edits small.

{VOICE}

{opening}

DOCUMENT FORMAT:
- Tasks.md uses checkboxes: "- [ ] Task [[Roadmap#VS1 — Slice Name]]"
- Sections in Tasks.md: ## Now, ## Next, ## Later, ## Done
- Roadmap.md holds milestones (### M1 — Name) and slices (#### VS1 — Name)
- Archive.md collects finished work under ## Completed Work
"""
