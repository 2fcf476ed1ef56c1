"""Line-oriented parser for markdown task lists.

Two task markup conventions are recognised, each handled by its own
front-end that produces the same :class:`~taskloop.tasks.model.Task`:

* heading style::

    #### Task 1.1: Create user model
    **Status**: in progress
    **Description**: Set up the User model
    **Files**:
    - `src/models/user.ts`
    **Done when**:
    - [ ] Model has id, email fields
    **Dependencies**: none

* checkbox style::

    - [~] **Task 1.1**: Create user model
      - **Depends on**: Task 1.0

Parsing is best-effort: lines that match neither convention are ignored and a
document with no recognisable tasks yields an empty list.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from taskloop.tasks.model import Task, TaskDocument, TaskStatus, TaskStyle

_LABEL_RE = re.compile(
    r"^\s*(?:-\s*)?\*\*(?P<label>Description|Files|Done when|Completion Criteria|"
    r"Dependencies|Depends on|Tests|Notes|Status)\*\*:\s*(?P<value>.*)$",
    re.IGNORECASE,
)
_STATUS_LINE_RE = re.compile(r"^(\s*(?:-\s*)?\*\*Status\*\*:[ \t]*)(.*?)(\r?\n)?$", re.IGNORECASE)
_BLOCK_END_RE = re.compile(r"^(---|###\s.*)$")
_FILE_ENTRY_RE = re.compile(r"^\s*(?:-\s*)?`([^`]*)`")
_CRITERION_RE = re.compile(r"^\s*-\s*\[")

_SECTIONS = {
    "description": "description",
    "files": "files",
    "done when": "criteria",
    "completion criteria": "criteria",
    "dependencies": "dependencies",
    "depends on": "dependencies",
    "tests": "other",
    "notes": "other",
    "status": "status",
}


class TaskFormat:
    """One markup convention: how a task header looks and how its status is rewritten."""

    style: TaskStyle
    header_re: re.Pattern[str]

    def match_header(self, line: str, index: int) -> Task | None:
        raise NotImplementedError

    def apply_status(self, lines: list[str], task: Task, status: TaskStatus) -> list[str]:
        """Return a copy of *lines* (with line endings) with *task* set to *status*."""
        raise NotImplementedError


class HeadingFormat(TaskFormat):
    style = TaskStyle.HEADING
    header_re = re.compile(r"^####\s+Task\s+([0-9]+\.[0-9]+):\s*(.+)$")

    def match_header(self, line: str, index: int) -> Task | None:
        m = self.header_re.match(line)
        if not m:
            return None
        return Task(id=m.group(1), title=m.group(2).strip(), style=self.style, line=index)

    def apply_status(self, lines: list[str], task: Task, status: TaskStatus) -> list[str]:
        out = list(lines)
        if task.status_line is not None:
            m = _STATUS_LINE_RE.match(out[task.status_line])
            if m:
                out[task.status_line] = f"{m.group(1)}{status.label}{m.group(3) or ''}"
                return out

        header = out[task.line]
        newline = "\r\n" if header.endswith("\r\n") else "\n"
        if task.line == len(out) - 1 and not header.endswith("\n"):
            out[task.line] = header + newline
            out.insert(task.line + 1, f"**Status**: {status.label}")
        else:
            out.insert(task.line + 1, f"**Status**: {status.label}{newline}")
        return out


class CheckboxFormat(TaskFormat):
    style = TaskStyle.CHECKBOX
    header_re = re.compile(r"^-\s*\[([ x~!])\]\s*\*\*Task\s+([0-9]+\.[0-9]+)\*\*:\s*(.+)$")
    _marker_re = re.compile(r"^(-\s*\[)[ x~!](\])")

    def match_header(self, line: str, index: int) -> Task | None:
        m = self.header_re.match(line)
        if not m:
            return None
        return Task(
            id=m.group(2),
            title=m.group(3).strip(),
            status=TaskStatus.from_marker(m.group(1)),
            style=self.style,
            line=index,
        )

    def apply_status(self, lines: list[str], task: Task, status: TaskStatus) -> list[str]:
        out = list(lines)
        out[task.line] = self._marker_re.sub(
            lambda m: f"{m.group(1)}{status.marker}{m.group(2)}", out[task.line], count=1
        )
        return out


FORMATS: tuple[TaskFormat, ...] = (HeadingFormat(), CheckboxFormat())
FORMATS_BY_STYLE: dict[TaskStyle, TaskFormat] = {f.style: f for f in FORMATS}


@dataclass
class _TaskBuilder:
    task: Task
    section: str = ""
    description: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    criteria: list[str] = field(default_factory=list)

    def label(self, name: str, value: str, index: int) -> None:
        self.section = _SECTIONS[name.lower()]
        value = value.strip()
        match self.section:
            case "description":
                self.description = [value] if value else []
            case "files":
                self.files = [value] if value else []
            case "criteria":
                self.criteria = [value] if value else []
            case "dependencies":
                self.task.dependencies = value
            case "status":
                self.task.status_line = index
                if self.task.style == TaskStyle.HEADING:
                    try:
                        self.task.status = TaskStatus.parse(value)
                    except ValueError:
                        pass

    def body(self, line: str) -> None:
        match self.section:
            case "description":
                if line.strip():
                    self.description.append(line.strip())
            case "files":
                m = _FILE_ENTRY_RE.match(line)
                if m:
                    self.files.append(m.group(1))
            case "criteria":
                if _CRITERION_RE.match(line):
                    self.criteria.append(line.strip())

    def build(self) -> Task:
        self.task.description = "\n".join(self.description)
        self.task.files = ", ".join(self.files)
        self.task.criteria = "\n".join(self.criteria)
        return self.task


def split_lines(text: str) -> list[str]:
    r"""Split *text* on ``\n`` only, keeping line endings.

    Other characters ``str.splitlines`` treats as breaks (form feed, U+2028,
    ...) stay inside their line, so line indices agree between parsing and
    rewriting.
    """
    lines = text.split("\n")
    out = [line + "\n" for line in lines[:-1]]
    if lines[-1]:
        out.append(lines[-1])
    return out


def _match_header(line: str, index: int) -> Task | None:
    for fmt in FORMATS:
        task = fmt.match_header(line, index)
        if task is not None:
            return task
    return None


def parse_tasks(text: str) -> TaskDocument:
    """Parse *text* into a :class:`TaskDocument`. Never raises on malformed input."""
    doc = TaskDocument()
    current: _TaskBuilder | None = None

    for index, raw in enumerate(split_lines(text)):
        line = raw.rstrip("\r\n")
        header = _match_header(line, index)
        if header is not None:
            if current is not None:
                doc.tasks.append(current.build())
            current = _TaskBuilder(task=header)
            continue

        if current is None:
            continue

        m = _LABEL_RE.match(line)
        if m:
            current.label(m.group("label"), m.group("value"), index)
            continue

        if _BLOCK_END_RE.match(line):
            doc.tasks.append(current.build())
            current = None
            continue

        current.body(line)

    if current is not None:
        doc.tasks.append(current.build())
    return doc
