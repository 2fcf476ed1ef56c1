"""taskloop CLI: pick tasks, update their status, validate, and run the agent loop.

Installed as the ``taskloop`` console_script.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, NoReturn

import click
from rich.markup import escape

from taskloop import __version__
from taskloop import log
from taskloop.config import (
    DEFAULT_MAX_ITERATIONS,
    STORIES_DIR,
    TASKS_FILE,
    WORKFLOW_STATE_FILE,
    Config,
    parse_context_files,
)
from taskloop.engines.registry import ENGINE_NAMES
from taskloop.errors import NotFoundError, TaskloopError
from taskloop.tasks.model import TaskStatus

if TYPE_CHECKING:
    from taskloop.runner import LoopSummary
    from taskloop.stories import Story

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

_VALIDATION_OPTIONS = (
    click.option("--test-cmd", envvar="TEST_CMD", default="", help="Test command (overrides detection)"),
    click.option("--lint-cmd", envvar="LINT_CMD", default="", help="Lint command (overrides detection)"),
    click.option("--typecheck-cmd", envvar="TYPECHECK_CMD", default="", help="Type check command (overrides detection)"),
    click.option("--skip-tests", envvar="SKIP_TESTS", is_flag=True, help="Disable the test check"),
    click.option("--skip-lint", envvar="SKIP_LINT", is_flag=True, help="Disable the lint check"),
    click.option("--skip-types", envvar="SKIP_TYPES", is_flag=True, help="Disable the type check"),
)


def validation_options(f: Callable[..., Any]) -> Callable[..., Any]:
    for option in reversed(_VALIDATION_OPTIONS):
        f = option(f)
    return f


def stories_dir_option(f: Callable[..., Any]) -> Callable[..., Any]:
    return click.option(
        "--stories-dir",
        default=STORIES_DIR,
        show_default=True,
        help="Directory holding one folder per story",
    )(f)


def _fail(msg: str, code: int = 1) -> NoReturn:
    log.error(msg)
    sys.exit(code)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="taskloop")
def main(verbose: bool) -> None:
    """taskloop: drive an AI coding agent through a markdown task list.

    \b
    EXAMPLES:
      taskloop next docs/stories/auth/tasks.md       # Next eligible task as JSON
      taskloop mark docs/stories/auth/tasks.md 1.2   # Mark task 1.2 complete
      taskloop validate --quick                      # Type check + lint only
      taskloop loop auth                             # Run the loop for a story
      DRY_RUN=1 taskloop loop                        # Preview the most recent story
    """
    log.set_verbose(verbose)


# ── Subcommand: next ─────────────────────────────────────────────


@main.command("next")
@click.argument("tasks_file", metavar="TASKS_FILE", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--count", is_flag=True, help="Print the number of remaining tasks")
@click.option("--all", "show_all", is_flag=True, help="Print every task as a JSON array")
def next_cmd(tasks_file: Path, count: bool, show_all: bool) -> None:
    """Print the next task to work on as JSON (an empty line when none is eligible).

    An in-progress task is always returned first so interrupted work resumes.
    """
    from taskloop.scheduler import Scheduler
    from taskloop.tasks.io import load_task_document

    if count and show_all:
        raise click.UsageError("--count and --all are mutually exclusive.")

    try:
        doc = load_task_document(tasks_file)
    except NotFoundError as e:
        _fail(str(e))

    sched = Scheduler(doc)
    if count:
        click.echo(str(sched.count_remaining()))
    elif show_all:
        click.echo(json.dumps([t.to_dict() for t in sched.list_all()], indent=2))
    else:
        task = sched.next_task()
        click.echo(json.dumps(task.to_dict()) if task else "")


# ── Subcommand: mark ─────────────────────────────────────────────


@main.command("mark")
@click.argument("tasks_file", metavar="TASKS_FILE", type=click.Path(dir_okay=False, path_type=Path))
@click.argument("task_id")
@click.argument("status", default="complete")
def mark(tasks_file: Path, task_id: str, status: str) -> None:
    """Set the status of TASK_ID (complete, in_progress, incomplete, blocked).

    Only the task's status marker changes; the rest of the file is left
    byte-for-byte as it was.
    """
    from taskloop.tasks.io import mark_task_status_in_file

    try:
        new_status = TaskStatus.parse(status)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="STATUS") from e

    try:
        change = mark_task_status_in_file(tasks_file, task_id, new_status)
    except TaskloopError as e:
        _fail(str(e))

    log.console.print(f"Task {escape(task_id)} marked as {new_status.label}")
    if change.progress is not None:
        log.console.print(f"Progress: {change.progress}")


# ── Subcommand: validate ─────────────────────────────────────────


@main.command("validate")
@click.option("--quick", is_flag=True, help="Skip tests; run type check and lint only")
@click.option(
    "--root",
    type=click.Path(file_okay=False, exists=True, path_type=Path),
    default=None,
    help="Project root (default: current directory)",
)
@validation_options
def validate(quick: bool, root: Path | None, **checks: Any) -> None:
    """Run type check, lint and tests for the project. Exit 1 if any fails.

    Commands are detected from the project's manifests (package.json,
    pyproject.toml, go.mod, Cargo.toml, Makefile) unless overridden.
    """
    from taskloop.validation import ValidationRunner

    cfg = Config(project_root=str(root) if root else "", quick=quick, **checks)
    report = ValidationRunner(cfg).run()
    if not report.passed:
        sys.exit(1)


# ── Subcommand: loop ─────────────────────────────────────────────


@main.command("loop")
@click.argument("slug", required=False, default="")
@click.option(
    "--tasks-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Run against this task list instead of a story's tasks.md",
)
@stories_dir_option
@click.option("--engine", envvar="TASKLOOP_ENGINE", type=click.Choice(ENGINE_NAMES), default="opencode", show_default=True, help="Agent CLI to drive")
@click.option("--model", envvar="TASKLOOP_MODEL", default="", help="Model override passed to the agent")
@click.option("--opencode-bin", envvar="OPENCODE_BIN", default="opencode", show_default=True, help="Path to the OpenCode CLI")
@click.option("--claude-bin", envvar="CLAUDE_BIN", default="claude", show_default=True, help="Path to the Claude CLI")
@click.option("--max-iterations", envvar="MAX_ITERATIONS", type=int, default=DEFAULT_MAX_ITERATIONS, show_default=True, help="Stop after N iterations (0=unlimited)")
@click.option("--dry-run", envvar="DRY_RUN", is_flag=True, help="Print agent commands instead of running them")
@click.option("--skip-validation", envvar="SKIP_VALIDATION", is_flag=True, help="Complete tasks without running validation")
@click.option("--context-files", envvar="CONTEXT_FILES", default="", help="Extra context files (space-separated)")
@click.option("--delay", type=float, default=1.0, show_default=True, help="Seconds to pause between iterations")
@click.option("--quick", is_flag=True, help="Skip tests in per-task validation")
@click.option("--notify", is_flag=True, help="Desktop notification when the loop ends")
@click.option("--log-dir", envvar="TASKLOOP_LOG_DIR", default="", help="Write each task's agent output to <dir>/task-<id>.log")
@validation_options
def loop(
    slug: str,
    tasks_file: Path | None,
    stories_dir: str,
    engine: str,
    model: str,
    opencode_bin: str,
    claude_bin: str,
    max_iterations: int,
    dry_run: bool,
    skip_validation: bool,
    context_files: str,
    delay: float,
    quick: bool,
    notify: bool,
    log_dir: str,
    **checks: Any,
) -> None:
    """Run the agent over the task list, one task per iteration.

    Each iteration picks the next task, marks it in progress, runs the
    agent in a fresh process, validates, and marks it complete. Progress
    lives in the task file, so re-running resumes where the last run stopped.

    \b
    EXAMPLES:
      taskloop loop                              # Most recent story
      taskloop loop add-authentication           # Specific story
      taskloop loop --tasks-file tasks.md        # Any task list
      MAX_ITERATIONS=10 taskloop loop            # Limit to 10 iterations
      SKIP_VALIDATION=1 taskloop loop            # No tests between tasks
    """
    from taskloop.engines.registry import get_engine
    from taskloop.notify import notify_loop_end
    from taskloop.runner import Runner

    cfg = Config(
        ai_engine=engine,
        agent_bin=opencode_bin if engine == "opencode" else claude_bin,
        model=model,
        max_iterations=max_iterations,
        dry_run=dry_run,
        skip_validation=skip_validation,
        context_files=parse_context_files(context_files),
        iteration_delay=delay,
        quick=quick,
        stories_dir=stories_dir,
        notify=notify,
        log_dir=log_dir,
        **checks,
    )

    story_dir, tasks_path = _resolve_loop_target(cfg, slug, tasks_file)

    agent = get_engine(cfg.ai_engine, binary=cfg.agent_bin, model=cfg.model)
    if not cfg.dry_run:
        err = agent.check_available()
        if err:
            _fail(err)

    _show_banner(cfg, tasks_path)

    runner = Runner(cfg, tasks_path, agent, story_dir=story_dir)
    try:
        summary = runner.run()
    except TaskloopError as e:
        _fail(str(e))

    _show_summary(summary)

    if cfg.notify:
        notify_loop_end(summary)
    if not summary.drained:
        sys.exit(1)


def _resolve_loop_target(cfg: Config, slug: str, tasks_file: Path | None) -> tuple[Path | None, Path]:
    """Return ``(story_dir, tasks_file)`` for the loop, exiting on a missing or unready story."""
    from taskloop.stories import find_story_dir, load_workflow_state

    if tasks_file is not None:
        if not tasks_file.is_file():
            _fail(f"Tasks file not found: {tasks_file}")
        story_dir = tasks_file.parent
        has_state = (story_dir / WORKFLOW_STATE_FILE).is_file()
        return (story_dir if has_state else None), tasks_file

    story_dir = find_story_dir(slug, cfg.root / cfg.stories_dir)
    if story_dir is None:
        _fail("No story found. Create a story under docs/stories/ or pass --tasks-file.")

    state_file = story_dir / WORKFLOW_STATE_FILE
    if not state_file.is_file():
        _fail(f"Workflow state not found: {state_file}")

    tasks_path = story_dir / TASKS_FILE
    if not tasks_path.is_file():
        log.error(f"Tasks file not found: {tasks_path}")
        log.info("Complete the decompose phase to generate tasks.")
        sys.exit(1)

    state = load_workflow_state(story_dir)
    if state.current_phase != "implement":
        log.error(f"Current phase is '{state.current_phase}', not 'implement'")
        log.info("The autonomous loop runs during the implement phase.")
        sys.exit(1)

    log.info(f"Starting autonomous loop for: {escape(state.story)}")
    log.info(f"Story directory: {story_dir}")
    return story_dir, tasks_path


def _show_banner(cfg: Config, tasks_file: Path) -> None:
    engine_display = {
        "opencode": "[cyan]OpenCode[/cyan]",
        "claude": "[magenta]Claude Code[/magenta]",
    }.get(cfg.ai_engine, cfg.ai_engine)

    log.console.print("[bold]============================================[/bold]")
    log.console.print("[bold]taskloop[/bold] - Running until the task list is drained")
    log.console.print(f"Engine: {engine_display} ({escape(cfg.agent_bin)})")
    log.console.print(f"Tasks: [cyan]{tasks_file}[/cyan]")

    parts: list[str] = []
    if cfg.dry_run:
        parts.append("dry-run")
    if cfg.skip_validation:
        parts.append("no-validation")
    elif cfg.quick:
        parts.append("quick")
    if cfg.model:
        parts.append(f"model:{cfg.model}")
    parts.append(f"max:{cfg.max_iterations}" if cfg.max_iterations > 0 else "max:unlimited")
    log.console.print(f"Mode: [yellow]{escape(' '.join(parts))}[/yellow]")

    log.console.print("[bold]============================================[/bold]")


def _show_summary(summary: LoopSummary) -> None:
    log.console.print("")
    log.rule("Loop Summary")
    log.console.print(f"  Iterations: {summary.iterations}")
    log.console.print(f"  Completed:  {summary.completed}")
    log.console.print(f"  Failed:     {summary.failed}")
    if summary.total_input_tokens or summary.total_output_tokens:
        log.console.print(f"  Tokens:     {summary.total_input_tokens} in / {summary.total_output_tokens} out")

    if summary.drained:
        log.success("All tasks completed! Ready for validation phase.")
        log.info("Run 'taskloop phase preconditions' with target 'validate' to proceed.")
    elif summary.interrupted:
        log.warn(f"Stopped early; {summary.remaining} tasks remaining")
    else:
        log.warn(f"{summary.remaining} tasks remaining")


# ── Subcommand group: phase ──────────────────────────────────────

_MARKS = {
    "ok": "[green]✓[/green]",
    "missing": "[red]✗[/red]",
    "note": "[yellow]•[/yellow]",
    "info": "[blue]ℹ[/blue]",
}


@main.group("phase", invoke_without_command=True)
@click.pass_context
def phase(ctx: click.Context) -> None:
    """Inspect story workflow phases (default action: check)."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(phase_check)


def _load_story_or_notice(slug: str, stories_dir: str) -> Story | None:
    from taskloop.stories import load_story

    story = load_story(slug, stories_dir)
    if story is None:
        log.console.print("[yellow]No active workflow found[/yellow]")
        log.console.print(f"Start a workflow by creating {stories_dir}/<slug>/{WORKFLOW_STATE_FILE}")
    return story


@phase.command("check")
@click.argument("slug", required=False, default="")
@stories_dir_option
def phase_check(slug: str, stories_dir: str) -> None:
    """Show the story's status and which artifacts exist."""
    from taskloop.phases import artifact_lines

    story = _load_story_or_notice(slug, stories_dir)
    if story is None:
        return

    state = story.state
    log.console.print("[blue]Engineering Process Status[/blue]")
    log.console.print("==========================")
    log.console.print(f"Story:     [green]{escape(state.story)}[/green]")
    log.console.print(f"Slug:      {escape(state.slug)}")
    log.console.print(f"Directory: {story.path}")
    log.console.print(f"Phase:     [yellow]{escape(state.current_phase)}[/yellow]")
    log.console.print(f"Completed: {escape(', '.join(state.completed_phases))}")
    log.console.print(f"Started:   {escape(state.started_at)}")
    log.console.print("")
    log.console.print("[blue]Artifacts:[/blue]")
    for line in artifact_lines(story):
        log.console.print(f"  {_MARKS[line.mark.value]} {line.text}")


@phase.command("list")
@stories_dir_option
def phase_list(stories_dir: str) -> None:
    """List every story with its current phase."""
    from taskloop.stories import list_stories

    log.console.print("[blue]Engineering Process Stories[/blue]")
    log.console.print("===========================")
    stories = list_stories(stories_dir)
    if not stories:
        log.console.print("  No stories found")
        return
    for story in stories:
        log.console.print(
            f"  [green]{escape(story.slug)}[/green]: {escape(story.state.story)} "
            f"(phase: [yellow]{escape(story.state.current_phase)}[/yellow])"
        )


@phase.command("validate")
@click.argument("slug", required=False, default="")
@stories_dir_option
def phase_validate(slug: str, stories_dir: str) -> None:
    """Print the completion checklist for the current phase."""
    from taskloop.phases import phase_checklist

    story = _load_story_or_notice(slug, stories_dir)
    if story is None:
        return

    current = story.state.current_phase
    log.console.print(f"[blue]Validating phase:[/blue] [yellow]{escape(current)}[/yellow] (story: {escape(story.state.slug)})")
    log.console.print("")
    if current == "complete":
        log.console.print("[green]Workflow is complete![/green]")
        return
    lines = phase_checklist(story)
    if lines:
        log.console.print(f"{current.capitalize()} phase checks:")
    for line in lines:
        log.console.print(f"  {_MARKS[line.mark.value]} {line.text}")


@phase.command("preconditions")
@click.argument("slug", required=False, default="")
@click.argument("target", required=False, default="")
@stories_dir_option
def phase_preconditions(slug: str, target: str, stories_dir: str) -> None:
    """Check the preconditions for entering TARGET (default: the current phase).

    Exit 1 when any precondition is unmet.
    """
    from taskloop.phases import check_preconditions

    story = _load_story_or_notice(slug, stories_dir)
    if story is None:
        return

    target = target or story.state.current_phase
    log.console.print(f"[blue]Checking preconditions for phase:[/blue] [yellow]{escape(target)}[/yellow]")
    log.console.print("")

    results = check_preconditions(story, target)
    if results:
        log.console.print(f"{target.capitalize()} phase preconditions:")
    for pre in results:
        mark = _MARKS["ok"] if pre.met else _MARKS["missing"]
        log.console.print(f"  {mark} {pre.description}")

    log.console.print("")
    if all(pre.met for pre in results):
        log.console.print(f"[green]All preconditions met for {escape(target)} phase[/green]")
        return
    log.console.print("[red]Some preconditions not met. Address issues before proceeding.[/red]")
    sys.exit(1)


# ── Subcommand: criteria ─────────────────────────────────────────


@main.command("criteria")
@click.argument("phase_name", metavar="[PHASE]", required=False, default="")
@click.argument("slug", required=False, default="")
@stories_dir_option
@validation_options
def criteria(phase_name: str, slug: str, stories_dir: str, **checks: Any) -> None:
    """Evaluate a phase's completion criteria and print the result as JSON.

    \b
    Exit codes:
      0  all criteria pass (AUTO_ADVANCE)
      1  a blocking criterion failed (BLOCK)
      2  only minor criteria failed (WARN_AND_ADVANCE)
    """
    from taskloop.criteria import NO_WORKFLOW, CriteriaChecker
    from taskloop.stories import load_story

    story = load_story(slug, stories_dir)
    if story is None:
        click.echo(json.dumps(NO_WORKFLOW))
        return

    cfg = Config(stories_dir=stories_dir, **checks)
    result = CriteriaChecker(story, cfg).evaluate(phase_name)
    click.echo(json.dumps(result.to_dict(), indent=2))
    sys.exit(result.exit_code)
