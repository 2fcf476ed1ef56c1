"""Phase gate: story status, per-phase checklists and transition preconditions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from taskloop.config import TASKS_FILE
from taskloop.io_utils import read_text
from taskloop.stories import Story
from taskloop.tasks.io import load_task_document
from taskloop.tasks.model import TaskStatus

RESEARCH_NOTES = "research-notes.md"
DESIGN_DOC = "design.md"
REVIEW_DOC = "review.md"

ARTIFACTS = (RESEARCH_NOTES, DESIGN_DOC, TASKS_FILE)

_LATE_PHASES = ("implement", "validate", "deploy")


# ── artifact helpers ─────────────────────────────────────────────


def file_matches(path: Path, pattern: str, flags: int = re.IGNORECASE) -> bool:
    """True if *path* exists and some line matches *pattern*."""
    if not path.is_file():
        return False
    rx = re.compile(pattern, flags)
    try:
        return any(rx.search(line) for line in read_text(path).splitlines())
    except (OSError, UnicodeDecodeError):
        return False


def no_unresolved(path: Path) -> bool:
    """A missing file has no unresolved contradictions."""
    return not file_matches(path, r"UNRESOLVED")


def task_counts(path: Path) -> tuple[int, int]:
    """``(complete, remaining)`` for the task list at *path*; zeros when missing."""
    if not path.is_file():
        return 0, 0
    counts = load_task_document(path).counts()
    return counts[TaskStatus.COMPLETE], counts[TaskStatus.INCOMPLETE] + counts[TaskStatus.IN_PROGRESS]


# ── status display ───────────────────────────────────────────────


class Mark(str, Enum):
    OK = "ok"
    MISSING = "missing"
    NOTE = "note"
    INFO = "info"


@dataclass
class Line:
    mark: Mark
    text: str


def artifact_lines(story: Story) -> list[Line]:
    """Present artifacts, then those the current phase should already have produced."""
    phase = story.state.current_phase
    lines = [Line(Mark.OK, name) for name in ARTIFACTS if story.artifact(name).is_file()]

    expected: list[str] = []
    if phase != "understand":
        expected.append(RESEARCH_NOTES)
    if phase in _LATE_PHASES:
        expected += [DESIGN_DOC, TASKS_FILE]
    lines += [
        Line(Mark.MISSING, f"{name} (missing)")
        for name in expected
        if not story.artifact(name).is_file()
    ]
    return lines


def _exists(story: Story, name: str, present: str, absent: str) -> Line:
    if story.artifact(name).is_file():
        return Line(Mark.OK, present)
    return Line(Mark.MISSING, absent)


def phase_checklist(story: Story) -> list[Line]:
    """What completing the current phase involves, with the checks that can be automated."""
    match story.state.current_phase:
        case "understand":
            return [
                Line(Mark.NOTE, "Requirements should be documented"),
                Line(Mark.NOTE, "Ambiguities should be resolved"),
                Line(Mark.NOTE, "Assumptions should be listed"),
            ]
        case "research":
            return [_exists(story, RESEARCH_NOTES, "Research notes exist", "Research notes not found")]
        case "scope":
            return [
                Line(Mark.NOTE, "In-scope items should be defined"),
                Line(Mark.NOTE, "Out-of-scope items should be listed"),
                Line(Mark.NOTE, "Minimal viable implementation identified"),
            ]
        case "design":
            return [_exists(story, DESIGN_DOC, "Design document exists", "Design document not found")]
        case "decompose":
            return [_exists(story, TASKS_FILE, "Task breakdown exists", "Task breakdown not found")]
        case "implement":
            line = _exists(story, TASKS_FILE, "Task breakdown exists", "Task breakdown not found")
            if line.mark == Mark.MISSING:
                return [line]
            complete, remaining = task_counts(story.artifact(TASKS_FILE))
            return [
                line,
                Line(Mark.INFO, f"Tasks complete: {complete}"),
                Line(Mark.INFO, f"Tasks remaining: {remaining}"),
            ]
        case "validate":
            return [
                Line(Mark.NOTE, "Ensure code review is complete"),
                Line(Mark.NOTE, "Ensure all tests pass"),
                Line(Mark.NOTE, "Verify acceptance criteria"),
            ]
        case "deploy":
            return [
                Line(Mark.NOTE, "Ensure deployment is successful"),
                Line(Mark.NOTE, "Ensure monitoring is in place"),
                Line(Mark.NOTE, "Notify stakeholders"),
            ]
    return []


# ── preconditions ────────────────────────────────────────────────


@dataclass
class Precondition:
    description: str
    met: bool


def _tasks_done(story: Story) -> bool:
    path = story.artifact(TASKS_FILE)
    if not path.is_file():
        return False
    _, remaining = task_counts(path)
    return remaining == 0


def _rules(story: Story) -> dict[str, list[tuple[str, Callable[[], bool]]]]:
    notes = story.artifact(RESEARCH_NOTES)
    design = story.artifact(DESIGN_DOC)
    tasks = story.artifact(TASKS_FILE)
    return {
        "research": [
            ("Requirements documented in understand phase", lambda: True),
        ],
        "scope": [
            ("Research notes exist", notes.is_file),
            ("No unresolved contradictions", lambda: no_unresolved(notes)),
            ("Ontology check completed", lambda: file_matches(notes, r"Ontology Check", 0)),
        ],
        "design": [
            ("Research notes exist", notes.is_file),
            ("Scope defined", lambda: True),
            ("No unresolved contradictions", lambda: no_unresolved(notes)),
        ],
        "decompose": [
            ("Design document exists", design.is_file),
            ("Test architecture defined", lambda: file_matches(design, r"test.*architecture|e2e.*test")),
        ],
        "implement": [
            ("Design document exists", design.is_file),
            ("Task breakdown exists", tasks.is_file),
            ("Tasks have test references", lambda: file_matches(tasks, r"test:")),
            ("No unresolved contradictions", lambda: no_unresolved(notes)),
        ],
        "validate": [
            ("Task breakdown exists", tasks.is_file),
            ("Implementation tasks complete", lambda: _tasks_done(story)),
        ],
        "deploy": [
            ("Validation phase complete", lambda: "validate" in story.state.completed_phases),
        ],
    }


def check_preconditions(story: Story, target: str = "") -> list[Precondition]:
    """Evaluate the preconditions for entering *target* (default: the current phase).

    Phases without rules have no preconditions.
    """
    target = target or story.state.current_phase
    return [
        Precondition(description, check())
        for description, check in _rules(story).get(target, [])
    ]
