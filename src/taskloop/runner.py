"""Runner: fetch → execute → validate → update, one task per iteration."""

from __future__ import annotations

import shlex
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from rich.markup import escape

from taskloop import log
from taskloop.config import Config
from taskloop.engines.base import EngineBase
from taskloop.errors import NotFoundError, SubprocessFailureError, WriteFailureError
from taskloop.scheduler import Scheduler
from taskloop.tasks.io import TaskStore
from taskloop.tasks.model import Task, TaskStatus
from taskloop.validation import ValidationRunner

STORY_CONTEXT_FILES = ("design.md", "research-notes.md")


class LoopState(str, Enum):
    IDLE = "idle"
    FETCHING_TASK = "fetching_task"
    EXECUTING = "executing"
    VALIDATING = "validating"
    DONE = "done"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass
class LoopSummary:
    iterations: int = 0
    completed: int = 0
    failed: int = 0
    remaining: int = 0
    state: LoopState = LoopState.IDLE
    processed_ids: list[str] = field(default_factory=list)
    interrupted: bool = False
    total_input_tokens: int = 0
    total_output_tokens: int = 0

    @property
    def drained(self) -> bool:
        return self.remaining == 0 and not self.interrupted


def _build_task_prompt(task: Task, context_files: list[Path]) -> str:
    context = "\n".join(f"- {path}" for path in context_files) or "- (none)"
    return f"""# Autonomous Implementation Task

You are executing a single task from an implementation plan. Focus ONLY on this task.

## Current Task: {task.id} - {task.title}

**Description:**
{task.description or "(none)"}

**Files to modify:**
{task.files or "(not specified)"}

**Completion Criteria:**
{task.criteria or "(not specified)"}

## Instructions

1. Implement ONLY what this task requires - no more, no less
2. Write tests FIRST if the task involves new functionality (TDD)
3. Ensure all existing tests still pass
4. When complete, the task criteria above should all be satisfied

## Context Files

{context}

CRITICAL RULES:
- Do NOT edit task status markers in the task list; the loop updates them.
- Do NOT move on to other tasks.

Focus exclusively on: **{task.title}**"""


def collect_context_files(
    tasks_file: Path,
    story_dir: Path | None,
    extra: list[str],
) -> list[Path]:
    """Task list, story design/research notes when present, then existing extras."""
    files = [tasks_file]
    if story_dir is not None:
        files += [story_dir / name for name in STORY_CONTEXT_FILES if (story_dir / name).is_file()]
    for name in extra:
        path = Path(name)
        if path.is_file():
            files.append(path)
        else:
            log.debug(f"Context file not found, skipping: {name}")
    return files


class Runner:
    """Drives the task queue one task at a time until it drains or the cap is hit.

    All progress is persisted in the task file between steps, so a stopped
    run resumes from the in-progress task on the next invocation.
    """

    def __init__(
        self,
        cfg: Config,
        tasks_file: Path,
        engine: EngineBase,
        *,
        story_dir: Path | None = None,
        validator: ValidationRunner | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cfg = cfg
        self.tasks_file = Path(tasks_file)
        self.store = TaskStore(self.tasks_file)
        self.engine = engine
        self.story_dir = story_dir
        self.validator = validator or ValidationRunner(cfg)
        self._sleep = sleep
        self.state = LoopState.IDLE
        self.summary = LoopSummary()

    def run(self) -> LoopSummary:
        """Run iterations until the queue is exhausted. Returns the summary."""
        cap = self.cfg.max_iterations
        summary = self.summary
        self._set_state(LoopState.IDLE)

        try:
            while cap <= 0 or summary.iterations < cap:
                if self._iteration() == LoopState.DONE:
                    break
                if self.cfg.iteration_delay > 0:
                    self._sleep(self.cfg.iteration_delay)
        except KeyboardInterrupt:
            summary.interrupted = True
            log.warn("Interrupted. Task status on disk is left as is; re-run to resume.")

        summary.remaining = Scheduler(self.store.load()).count_remaining()
        if summary.interrupted:
            self._set_state(LoopState.FAILED)
        elif self.state != LoopState.DONE and summary.remaining > 0:
            log.warn(f"Reached max iterations ({cap})")
            self._set_state(LoopState.EXHAUSTED)
        else:
            self._set_state(LoopState.DONE)
        summary.state = self.state
        return summary

    def _set_state(self, state: LoopState) -> None:
        log.debug(f"Loop: {self.state.value} -> {state.value}")
        self.state = state

    def _iteration(self) -> LoopState:
        summary = self.summary
        summary.iterations += 1
        cap = self.cfg.max_iterations
        log.console.print("")
        log.rule(f"Loop iteration {summary.iterations}" + (f" of {cap}" if cap > 0 else ""))

        self._set_state(LoopState.FETCHING_TASK)
        sched = Scheduler(self.store.load())
        task = sched.next_task()
        if task is None:
            remaining = sched.count_remaining()
            if remaining:
                log.warn(f"No eligible task: {remaining} remaining, blocked by dependencies or status")
            else:
                log.success("All tasks completed!")
            self._set_state(LoopState.DONE)
            return self.state

        log.task(f"Task {task.id}: {escape(task.title)}")
        if not self._mark(task.id, TaskStatus.IN_PROGRESS):
            return self._fail()
        if task.id not in summary.processed_ids:
            summary.processed_ids.append(task.id)

        context_files = collect_context_files(self.tasks_file, self.story_dir, self.cfg.context_files)
        prompt = _build_task_prompt(task, context_files)

        if self.cfg.dry_run:
            cmd = self.engine.build_cmd("...", context_files)
            log.info("\\[DRY RUN] Would execute:")
            log.console.print(shlex.join(cmd), markup=False)
            return self._complete(task)

        self._set_state(LoopState.EXECUTING)
        try:
            self._execute(prompt, context_files, self._log_file(task))
        except SubprocessFailureError as e:
            log.error(f"Task execution failed: {e}")
            log.warn(f"Task {task.id} remains in progress; it will be resumed next iteration")
            return self._fail()
        log.success("Task execution completed")

        self._set_state(LoopState.VALIDATING)
        if self.cfg.skip_validation:
            log.warn("Validation skipped (SKIP_VALIDATION=1)")
            return self._complete(task)

        log.info("Running validation...")
        report = self.validator.run()
        if not report.passed:
            log.error("Validation failed - task remains in progress")
            log.warn("Fix the issues and re-run the loop")
            summary.failed += 1
            self._set_state(LoopState.FETCHING_TASK)
            return self.state

        log.success("Validation passed")
        return self._complete(task)

    def _log_file(self, task: Task) -> Path | None:
        """Per-task agent transcript under ``log_dir``; relative dirs resolve against the project root."""
        if not self.cfg.log_dir:
            return None
        return self.cfg.root / self.cfg.log_dir / f"task-{task.id}.log"

    def _execute(self, prompt: str, context_files: list[Path], log_file: Path | None = None) -> None:
        log.info(f"Spawning fresh {self.engine.name} context...")
        result = self.engine.run_sync(
            prompt, context_files=context_files, cwd=self.cfg.root, log_file=log_file
        )
        self.summary.total_input_tokens += result.input_tokens
        self.summary.total_output_tokens += result.output_tokens
        if not result.ok:
            raise SubprocessFailureError(result.error or f"exit code {result.return_code}", result.return_code)
        outcome = result.text.strip()
        if outcome:
            log.info(f"Agent result: {escape(outcome.splitlines()[0][:120])}")
            log.debug(escape(outcome))

    def _mark(self, task_id: str, status: TaskStatus) -> bool:
        try:
            change = self.store.set_status(task_id, status)
        except (NotFoundError, WriteFailureError) as e:
            log.error(str(e))
            return False
        log.info(f"Task {task_id} marked as {status.label}")
        if change.progress is not None:
            log.info(f"Progress: {change.progress}")
        return True

    def _complete(self, task: Task) -> LoopState:
        if not self._mark(task.id, TaskStatus.COMPLETE):
            return self._fail()
        self.summary.completed += 1
        log.console.print(f"  [green]✓[/green] {escape(task.title[:45])} ({task.id})")
        self._set_state(LoopState.FETCHING_TASK)
        return self.state

    def _fail(self) -> LoopState:
        self.summary.failed += 1
        self._set_state(LoopState.FAILED)
        return self.state
