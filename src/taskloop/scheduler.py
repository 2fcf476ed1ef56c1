"""Task picker: resume the in-progress task, else the first ready task in document order."""

from __future__ import annotations

from taskloop import log
from taskloop.tasks.model import Task, TaskDocument, TaskStatus


class Scheduler:
    """Read-only view over a :class:`TaskDocument` that answers "what next?".

    Usage::

        sched = Scheduler(doc)
        task = sched.next_task()        # in-progress first, then first ready task
        sched.count_remaining()         # incomplete + in-progress
        sched.explain_block("1.3")      # why a task is not eligible
    """

    def __init__(self, doc: TaskDocument) -> None:
        self._doc = doc
        self._completed = doc.completed_ids()

    # ── state queries ────────────────────────────────────────────

    def count_remaining(self) -> int:
        return len(self._doc.remaining())

    def list_all(self) -> list[Task]:
        return list(self._doc.tasks)

    # ── dependency checks ────────────────────────────────────────

    def deps_satisfied(self, task: Task) -> bool:
        # A dependency is satisfied by a `complete` marker, however it got there.
        return all(dep in self._completed for dep in task.dependency_ids())

    def get_ready(self) -> list[Task]:
        """Incomplete tasks whose dependencies are all complete, in document order."""
        return [
            t for t in self._doc.with_status(TaskStatus.INCOMPLETE)
            if self.deps_satisfied(t)
        ]

    # ── picking ──────────────────────────────────────────────────

    def next_task(self) -> Task | None:
        in_progress = self._doc.in_progress()
        if in_progress:
            log.debug(f"Resuming in-progress task {in_progress[0].id}")
            return in_progress[0]

        ready = self.get_ready()
        if ready:
            return ready[0]

        for t in self._doc.with_status(TaskStatus.INCOMPLETE):
            log.debug(f"Task {t.id} not ready: {self.explain_block(t.id)}")
        return None

    # ── diagnostics ──────────────────────────────────────────────

    def explain_block(self, task_id: str) -> str:
        """Human-readable explanation of why *task_id* cannot be picked."""
        task = self._doc.get_task(task_id)
        if task is None:
            return "unknown task"
        if task.status != TaskStatus.INCOMPLETE:
            return f"status is {task.status.value}"

        blocked: list[str] = []
        for dep in task.dependency_ids():
            if dep in self._completed:
                continue
            dep_task = self._doc.get_task(dep)
            state = dep_task.status.value if dep_task else "missing"
            blocked.append(f"{dep} ({state})")
        if blocked:
            return f"depends on: {' '.join(blocked)}"
        return ""
