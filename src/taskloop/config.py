"""Configuration defaults, env vars, and runtime options for taskloop."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


STORIES_DIR = "docs/stories"
WORKFLOW_STATE_FILE = "workflow-state.json"
TASKS_FILE = "tasks.md"

DEFAULT_MAX_ITERATIONS = 50


@dataclass
class Config:
    """Runtime options; the CLI fills them from flags and environment variables."""

    # Agent
    ai_engine: str = "opencode"
    agent_bin: str = ""
    model: str = ""

    # Validation
    test_cmd: str = ""
    lint_cmd: str = ""
    typecheck_cmd: str = ""
    skip_tests: bool = False
    skip_lint: bool = False
    skip_types: bool = False
    quick: bool = False

    # Loop
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    dry_run: bool = False
    skip_validation: bool = False
    context_files: list[str] = field(default_factory=list)
    iteration_delay: float = 1.0
    log_dir: str = ""

    # Paths
    project_root: str = ""
    stories_dir: str = STORIES_DIR

    # Misc
    notify: bool = False
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.agent_bin:
            self.agent_bin = self.ai_engine
        if not self.project_root:
            self.project_root = str(Path.cwd())
        if self.max_iterations < 0:
            self.max_iterations = 0

    @property
    def root(self) -> Path:
        return Path(self.project_root)


def parse_context_files(raw: str) -> list[str]:
    """Split the space-separated ``CONTEXT_FILES`` value."""
    return [item for item in raw.split() if item]
