"""Task and TaskDocument data models shared by the parser, picker and store."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

TASK_ID_RE = re.compile(r"[0-9]+\.[0-9]+")


class TaskStatus(str, Enum):
    INCOMPLETE = "incomplete"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    BLOCKED = "blocked"

    @property
    def marker(self) -> str:
        """Checkbox character used in ``- [c] **Task X.Y**`` lines."""
        return _MARKERS[self]

    @property
    def label(self) -> str:
        """Human form used in ``**Status**:`` lines and messages."""
        return self.value.replace("_", " ")

    @classmethod
    def from_marker(cls, char: str) -> TaskStatus:
        for status, marker in _MARKERS.items():
            if marker == char:
                return status
        raise ValueError(f"Unknown status marker: {char!r}")

    @classmethod
    def parse(cls, raw: str) -> TaskStatus:
        """Parse a status name, marker character, or legacy alias."""
        if raw in _ALIASES:
            return _ALIASES[raw]
        key = raw.strip().lower().replace(" ", "_").replace("-", "_")
        if key in _ALIASES:
            return _ALIASES[key]
        raise ValueError(
            f"Unknown status '{raw}'. Valid: complete, in_progress, incomplete, blocked"
        )


_MARKERS: dict[TaskStatus, str] = {
    TaskStatus.INCOMPLETE: " ",
    TaskStatus.IN_PROGRESS: "~",
    TaskStatus.COMPLETE: "x",
    TaskStatus.BLOCKED: "!",
}

_ALIASES: dict[str, TaskStatus] = {
    "complete": TaskStatus.COMPLETE,
    "done": TaskStatus.COMPLETE,
    "x": TaskStatus.COMPLETE,
    "in_progress": TaskStatus.IN_PROGRESS,
    "progress": TaskStatus.IN_PROGRESS,
    "~": TaskStatus.IN_PROGRESS,
    "incomplete": TaskStatus.INCOMPLETE,
    "todo": TaskStatus.INCOMPLETE,
    " ": TaskStatus.INCOMPLETE,
    "blocked": TaskStatus.BLOCKED,
    "!": TaskStatus.BLOCKED,
}


class TaskStyle(str, Enum):
    HEADING = "heading"
    CHECKBOX = "checkbox"


@dataclass
class Task:
    id: str
    title: str = ""
    status: TaskStatus = TaskStatus.INCOMPLETE
    description: str = ""
    files: str = ""
    criteria: str = ""
    dependencies: str = ""
    style: TaskStyle = TaskStyle.CHECKBOX
    line: int = 0
    status_line: int | None = None

    def dependency_ids(self) -> list[str]:
        """Task ids referenced by the dependency field ("none" or empty means no deps)."""
        deps = self.dependencies.strip()
        if not deps or deps.lower() == "none":
            return []
        return TASK_ID_RE.findall(deps)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "description": self.description,
            "files": self.files,
            "criteria": self.criteria,
            "dependencies": self.dependencies,
        }


@dataclass
class TaskDocument:
    tasks: list[Task] = field(default_factory=list)

    def get_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def with_status(self, status: TaskStatus) -> list[Task]:
        return [t for t in self.tasks if t.status == status]

    def completed_ids(self) -> set[str]:
        return {t.id for t in self.with_status(TaskStatus.COMPLETE)}

    def in_progress(self) -> list[Task]:
        return self.with_status(TaskStatus.IN_PROGRESS)

    def remaining(self) -> list[Task]:
        return [
            t for t in self.tasks
            if t.status in (TaskStatus.INCOMPLETE, TaskStatus.IN_PROGRESS)
        ]

    def counts(self) -> dict[TaskStatus, int]:
        """Number of tasks per status; every status is present."""
        counts = dict.fromkeys(TaskStatus, 0)
        for t in self.tasks:
            counts[t.status] += 1
        return counts
