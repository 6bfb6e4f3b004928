"""Roadmap.md structure: milestones (``### M1 — Title``) and vertical
slices (``#### VS1 — Name``), plus the optional ``## Current Focus``
section that names the milestone being worked on.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

MILESTONE_HEADER = re.compile(r"^###\s*(M\d+)\s*[—–-]\s*(.+)$")
SLICE_HEADER = re.compile(r"^#{4,5}\s*(VS\d+)\s*[—–-]\s*(.+)$")
STATUS_LINE = re.compile(r"^\*\*Status:\*\*\s*(planned|active|done|blocked|cut)", re.IGNORECASE)
CURRENT_FOCUS_HEADER = re.compile(r"^##\s*Current\s*Focus\s*$", re.IGNORECASE)
FOCUS_MILESTONE = re.compile(r"^\*\*Milestone:\*\*\s*(M\d+)\s*[—–-]?\s*(.*)$", re.IGNORECASE)
ANY_HEADING = re.compile(r"^#{1,5}\s")
H2 = re.compile(r"^##\s+")

# How far below a milestone heading to look for its status line
_STATUS_LOOKAHEAD = 5


class MilestoneStatus(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    DONE = "done"
    BLOCKED = "blocked"
    CUT = "cut"


@dataclass
class Milestone:
    id: str
    title: str
    status: MilestoneStatus = MilestoneStatus.PLANNED
    line_number: int = 0


@dataclass
class Slice:
    id: str
    name: str
    milestone_id: str
    line_number: int = 0


@dataclass
class RoadmapStructure:
    milestones: list[Milestone] = field(default_factory=list)
    slices: list[Slice] = field(default_factory=list)
    current_focus_milestone_id: str | None = None

    def milestone(self, milestone_id: str) -> Milestone | None:
        return next((m for m in self.milestones if m.id == milestone_id), None)

    def slices_for(self, milestone_id: str) -> list[Slice]:
        return [s for s in self.slices if s.milestone_id == milestone_id]

    @property
    def highest_slice_number(self) -> int:
        return max((int(s.id[2:]) for s in self.slices), default=0)


def parse_roadmap(content: str) -> RoadmapStructure:
    lines = content.split("\n")
    result = RoadmapStructure()
    current_milestone: str | None = None
    in_focus = False

    for index, raw in enumerate(lines):
        line = raw.strip()

        if CURRENT_FOCUS_HEADER.match(line):
            in_focus = True
            continue
        if in_focus:
            if H2.match(line):
                in_focus = False
            focus = FOCUS_MILESTONE.match(line)
            if focus:
                result.current_focus_milestone_id = focus.group(1)

        milestone = MILESTONE_HEADER.match(line)
        if milestone:
            current_milestone = milestone.group(1)
            status = MilestoneStatus.PLANNED
            for ahead in lines[index + 1:index + 1 + _STATUS_LOOKAHEAD]:
                ahead = ahead.strip()
                if ANY_HEADING.match(ahead):
                    break
                found = STATUS_LINE.match(ahead)
                if found:
                    status = MilestoneStatus(found.group(1).lower())
                    break
            result.milestones.append(Milestone(
                id=current_milestone,
                title=milestone.group(2).strip(),
                status=status,
                line_number=index,
            ))
            continue

        slice_match = SLICE_HEADER.match(line)
        if slice_match and current_milestone:
            result.slices.append(Slice(
                id=slice_match.group(1),
                name=slice_match.group(2).strip(),
                milestone_id=current_milestone,
                line_number=index,
            ))

    return result


def find_current_milestone(roadmap: RoadmapStructure) -> Milestone | None:
    """The focused milestone, else the first active one."""
    if roadmap.current_focus_milestone_id:
        focused = roadmap.milestone(roadmap.current_focus_milestone_id)
        if focused:
            return focused
    return next((m for m in roadmap.milestones if m.status == MilestoneStatus.ACTIVE), None)


def find_active_slice(roadmap: RoadmapStructure) -> Slice | None:
    current = find_current_milestone(roadmap)
    if current is None:
        return None
    slices = roadmap.slices_for(current.id)
    return slices[0] if slices else None
