"""Tests for taskloop.runner: the fetch / execute / validate / update loop."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskloop.config import Config
from taskloop.detectors.base import CheckKind
from taskloop.engines.base import EngineBase, EngineResult
from taskloop.errors import DecodeFailureError, DocumentNotFoundError
from taskloop.io_utils import read_text, write_text
from taskloop.runner import LoopState, Runner, _build_task_prompt, collect_context_files
from taskloop.tasks.model import Task
from taskloop.validation import CheckResult, CheckStatus, ValidationReport, ValidationRunner

from conftest import CHECKBOX_TASKS


# ── Fakes ───────────────────────────────────────────────────────────


class _FakeEngine(EngineBase):
    """Records every invocation instead of spawning an agent."""

    name = "fake"

    def __init__(self, results: list[EngineResult] | None = None, on_run=None) -> None:
        super().__init__("fake-agent")
        self.results = list(results or [])
        self.on_run = on_run
        self.prompts: list[str] = []
        self.context_files: list[list[Path]] = []
        self.log_files: list[Path | None] = []

    def build_cmd(self, prompt: str, context_files: list[Path] | None = None) -> list[str]:
        return ["fake-agent", *[str(p) for p in context_files or []], prompt]

    def parse_output(self, raw: str) -> EngineResult:
        return EngineResult(text=raw)

    def run_sync(self, prompt: str, *, context_files=None, cwd=None, log_file=None) -> EngineResult:
        self.prompts.append(prompt)
        self.log_files.append(log_file)
        self.context_files.append(list(context_files or []))
        if self.on_run is not None:
            self.on_run(prompt)
        if self.results:
            return self.results.pop(0)
        return EngineResult(text="done", input_tokens=3, output_tokens=2)


class _FakeValidator(ValidationRunner):
    def __init__(self, cfg: Config, outcomes: list[bool] | None = None) -> None:
        super().__init__(cfg)
        self.outcomes = list(outcomes or [])
        self.calls = 0

    def run(self, quick=None, kinds=()) -> ValidationReport:
        self.calls += 1
        passed = self.outcomes.pop(0) if self.outcomes else True
        status = CheckStatus.PASS if passed else CheckStatus.FAIL
        return ValidationReport(checks=[CheckResult(CheckKind.TEST, status, command="fake")])


def _cfg(tmp_path: Path, **overrides) -> Config:
    overrides.setdefault("iteration_delay", 0)
    return Config(project_root=str(tmp_path), **overrides)


def _runner(cfg: Config, tasks_file: Path, engine: EngineBase, **kwargs) -> Runner:
    kwargs.setdefault("validator", _FakeValidator(cfg))
    kwargs.setdefault("sleep", lambda _s: None)
    return Runner(cfg, tasks_file, engine, **kwargs)


# ═══════════════════════════════════════════════════════════════════
#  Happy path
# ═══════════════════════════════════════════════════════════════════


class TestDrain:
    def test_drains_queue_in_dependency_order(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        engine = _FakeEngine()

        summary = _runner(_cfg(tmp_path), path, engine).run()

        assert summary.processed_ids == ["1.1", "1.2", "1.3"]
        assert summary.completed == 3
        assert summary.failed == 0
        assert summary.remaining == 0
        assert summary.iterations == 4
        assert summary.state == LoopState.DONE
        assert summary.drained
        assert read_text(path).count("- [x] **Task") == 3
        assert summary.total_input_tokens == 9
        assert summary.total_output_tokens == 6

    def test_task_marked_in_progress_before_agent_runs(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        snapshots: list[str] = []
        engine = _FakeEngine(on_run=lambda _p: snapshots.append(read_text(path)))

        _runner(_cfg(tmp_path, max_iterations=1), path, engine).run()

        assert "- [~] **Task 1.1**" in snapshots[0]
        assert "- [x] **Task 1.1**" in read_text(path)

    def test_resumes_in_progress_task_first(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(
            "- [ ] **Task 1.1**: First\n"
            "- [~] **Task 1.2**: Interrupted earlier\n"
        )
        summary = _runner(_cfg(tmp_path), path, _FakeEngine()).run()
        assert summary.processed_ids == ["1.2", "1.1"]

    def test_prompt_describes_the_task(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        engine = _FakeEngine()

        _runner(_cfg(tmp_path, max_iterations=1), path, engine).run()

        assert "## Current Task: 1.1 - Create user model" in engine.prompts[0]
        assert "Set up the User model" in engine.prompts[0]
        assert "Focus exclusively on: **Create user model**" in engine.prompts[0]

    def test_sleeps_between_iterations(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        naps: list[float] = []
        cfg = _cfg(tmp_path, iteration_delay=0.25)

        _runner(cfg, path, _FakeEngine(), sleep=naps.append).run()

        assert naps == [0.25, 0.25, 0.25]


# ═══════════════════════════════════════════════════════════════════
#  Iteration cap
# ═══════════════════════════════════════════════════════════════════


class TestIterationCap:
    def test_cap_leaves_remaining_tasks_untouched(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)

        summary = _runner(_cfg(tmp_path, max_iterations=2), path, _FakeEngine()).run()

        assert summary.processed_ids == ["1.1", "1.2"]
        assert summary.iterations == 2
        assert summary.state == LoopState.EXHAUSTED
        assert summary.remaining == 1
        assert not summary.drained
        assert "- [ ] **Task 1.3**: Expose user endpoints" in read_text(path)

    def test_cap_reached_exactly_as_queue_drains(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        summary = _runner(_cfg(tmp_path, max_iterations=3), path, _FakeEngine()).run()
        assert summary.state == LoopState.DONE
        assert summary.drained

    def test_zero_means_unlimited(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        summary = _runner(_cfg(tmp_path, max_iterations=0), path, _FakeEngine()).run()
        assert summary.completed == 3
        assert summary.drained


# ═══════════════════════════════════════════════════════════════════
#  Failures
# ═══════════════════════════════════════════════════════════════════


class TestFailures:
    def test_agent_failure_leaves_task_in_progress(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        failures = [EngineResult(error="agent crashed", return_code=1)] * 2
        cfg = _cfg(tmp_path, max_iterations=2)
        validator = _FakeValidator(cfg)

        summary = _runner(cfg, path, _FakeEngine(failures), validator=validator).run()

        assert "- [~] **Task 1.1**" in read_text(path)
        assert summary.failed == 2
        assert summary.completed == 0
        assert summary.processed_ids == ["1.1"]
        assert summary.state == LoopState.EXHAUSTED
        assert validator.calls == 0

    def test_failed_task_is_retried_next_iteration(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        engine = _FakeEngine([EngineResult(error="flaky", return_code=1)])

        summary = _runner(_cfg(tmp_path), path, engine).run()

        assert summary.failed == 1
        assert summary.completed == 3
        assert summary.drained
        assert engine.prompts[0] == engine.prompts[1]

    def test_validation_failure_leaves_task_in_progress(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        cfg = _cfg(tmp_path, max_iterations=1)
        validator = _FakeValidator(cfg, outcomes=[False])

        summary = _runner(cfg, path, _FakeEngine(), validator=validator).run()

        assert "- [~] **Task 1.1**" in read_text(path)
        assert summary.failed == 1
        assert summary.state == LoopState.EXHAUSTED
        assert validator.calls == 1

    def test_blocked_dependencies_end_the_loop(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(
            "- [!] **Task 1.1**: Blocked on credentials\n"
            "- [ ] **Task 1.2**: Needs 1.1\n"
            "  - **Depends on**: Task 1.1\n"
        )
        engine = _FakeEngine()

        summary = _runner(_cfg(tmp_path), path, engine).run()

        assert engine.prompts == []
        assert summary.iterations == 1
        assert summary.remaining == 1
        assert summary.state == LoopState.DONE
        assert not summary.drained

    def test_interrupt_keeps_persisted_status(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)

        def _interrupt(_prompt: str) -> None:
            raise KeyboardInterrupt

        summary = _runner(_cfg(tmp_path), path, _FakeEngine(on_run=_interrupt)).run()

        assert summary.interrupted
        assert summary.state == LoopState.FAILED
        assert not summary.drained
        assert "- [~] **Task 1.1**" in read_text(path)

    def test_task_file_removed_mid_run(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        engine = _FakeEngine(on_run=lambda _p: path.unlink())
        cfg = _cfg(tmp_path, max_iterations=1)

        with pytest.raises(DocumentNotFoundError):
            _runner(cfg, path, engine).run()

    def test_non_utf8_task_file_stops_before_the_agent(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.md"
        original = b"- [ ] **Task 1.1**: caf\xe9 model\n"
        path.write_bytes(original)
        engine = _FakeEngine()
        cfg = _cfg(tmp_path, max_iterations=1)

        with pytest.raises(DecodeFailureError):
            _runner(cfg, path, engine).run()

        assert engine.prompts == []
        assert path.read_bytes() == original


# ═══════════════════════════════════════════════════════════════════
#  Modes
# ═══════════════════════════════════════════════════════════════════


class TestModes:
    def test_skip_validation(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        cfg = _cfg(tmp_path, skip_validation=True)
        validator = _FakeValidator(cfg, outcomes=[False, False, False])

        summary = _runner(cfg, path, _FakeEngine(), validator=validator).run()

        assert validator.calls == 0
        assert summary.completed == 3

    def test_dry_run_prints_command_and_completes(
        self, tmp_path: Path, write_tasks, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        cfg = _cfg(tmp_path, dry_run=True)
        engine = _FakeEngine()
        validator = _FakeValidator(cfg)

        summary = _runner(cfg, path, engine, validator=validator).run()

        assert engine.prompts == []
        assert validator.calls == 0
        assert summary.completed == 3
        out = capsys.readouterr().out
        assert "[DRY RUN] Would execute:" in out
        assert "fake-agent" in out


# ═══════════════════════════════════════════════════════════════════
#  Context and prompt helpers
# ═══════════════════════════════════════════════════════════════════


class TestContext:
    def test_collect_context_files(self, tmp_path: Path) -> None:
        story = tmp_path / "story"
        story.mkdir()
        tasks = story / "tasks.md"
        write_text(tasks, "")
        write_text(story / "design.md", "")
        extra = tmp_path / "README.md"
        write_text(extra, "")

        files = collect_context_files(tasks, story, [str(extra), str(tmp_path / "missing.md")])

        assert files == [tasks, story / "design.md", extra]

    def test_story_context_reaches_engine(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        write_text(tmp_path / "research-notes.md", "notes")
        engine = _FakeEngine()

        _runner(_cfg(tmp_path, max_iterations=1), path, engine, story_dir=tmp_path).run()

        assert engine.context_files[0] == [path, tmp_path / "research-notes.md"]

    def test_agent_log_per_task(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        engine = _FakeEngine()

        _runner(_cfg(tmp_path, max_iterations=2, log_dir="logs"), path, engine).run()

        assert engine.log_files == [tmp_path / "logs" / "task-1.1.log", tmp_path / "logs" / "task-1.2.log"]

    def test_no_agent_log_by_default(self, tmp_path: Path, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        engine = _FakeEngine()
        _runner(_cfg(tmp_path, max_iterations=1), path, engine).run()
        assert engine.log_files == [None]

    def test_prompt_placeholders_for_empty_fields(self) -> None:
        prompt = _build_task_prompt(Task(id="2.1", title="Bare"), [])
        assert "(not specified)" in prompt
        assert "- (none)" in prompt
