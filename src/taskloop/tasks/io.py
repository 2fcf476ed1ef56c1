"""Load tasks.md and persist status changes atomically."""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from taskloop import log
from taskloop.errors import DecodeFailureError, DocumentNotFoundError, TaskNotFoundError, WriteFailureError
from taskloop.io_utils import read_text_exact, write_text_atomic
from taskloop.tasks.model import TaskDocument, TaskStatus
from taskloop.tasks.parser import FORMATS_BY_STYLE, parse_tasks, split_lines

_PROGRESS_TABLE_RE = re.compile(r"^\| Phase", re.MULTILINE)


@dataclass
class Progress:
    complete: int
    total: int

    @property
    def percent(self) -> int:
        return self.complete * 100 // self.total if self.total else 0

    def __str__(self) -> str:
        return f"{self.complete}/{self.total} tasks complete ({self.percent}%)"


@dataclass
class StatusChange:
    task_id: str
    old: TaskStatus
    new: TaskStatus
    changed: bool
    progress: Progress | None = None


class TaskStore:
    """The task list as a single-writer flat-file store.

    Every mutation re-reads the file, rewrites only the targeted status marker
    and replaces the file atomically. A ``.bak`` copy of the previous content
    is kept for the duration of the write and restored if the write fails.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    def read(self, errors: str = "strict") -> str:
        if not self.path.is_file():
            raise DocumentNotFoundError(self.path)
        try:
            return read_text_exact(self.path, errors=errors)
        except UnicodeDecodeError as e:
            raise DecodeFailureError(self.path, e.reason) from e

    def load(self) -> TaskDocument:
        """Parse the task list. Undecodable bytes read as U+FFFD; only writes insist on UTF-8."""
        return parse_tasks(self.read(errors="replace"))

    def set_status(self, task_id: str, status: TaskStatus) -> StatusChange:
        text = self.read()
        doc = parse_tasks(text)
        task = doc.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id, self.path)

        old = task.status
        if old != status:
            lines = split_lines(text)
            updated = "".join(FORMATS_BY_STYLE[task.style].apply_status(lines, task, status))
            self._save(text, updated)
            log.debug(f"Task {task_id}: {old.value} -> {status.value}")
            doc = parse_tasks(updated)
            text = updated

        return StatusChange(
            task_id=task_id,
            old=old,
            new=status,
            changed=old != status,
            progress=_progress(text, doc),
        )

    def _save(self, original: str, updated: str) -> None:
        backup = self.backup_path
        try:
            shutil.copy2(self.path, backup)
            write_text_atomic(self.path, updated)
        except OSError as e:
            if self._restore(original):
                backup.unlink(missing_ok=True)
            else:
                log.error(f"Could not restore {self.path}; previous content kept in {backup}")
            raise WriteFailureError(f"Failed to write {self.path}: {e}") from e
        backup.unlink(missing_ok=True)

    def _restore(self, original: str) -> bool:
        try:
            if self.path.is_file() and read_text_exact(self.path) == original:
                return True
            write_text_atomic(self.path, original)
        except OSError:
            return False
        return True


def _progress(text: str, doc: TaskDocument) -> Progress | None:
    """Counts for the derived progress table, when the document carries one."""
    if not _PROGRESS_TABLE_RE.search(text):
        return None
    return Progress(complete=doc.counts()[TaskStatus.COMPLETE], total=len(doc.tasks))


def load_task_document(path: Path | str) -> TaskDocument:
    return TaskStore(path).load()


def mark_task_status_in_file(path: Path | str, task_id: str, status: TaskStatus) -> StatusChange:
    """Set *task_id* to *status* in the markdown file at *path*."""
    return TaskStore(path).set_status(task_id, status)
