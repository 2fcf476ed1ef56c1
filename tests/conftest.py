"""Shared fixtures for taskloop tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use taskloop.io_utils read_text/write_text for consistent UTF-8 I/O.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from taskloop.io_utils import write_text
from taskloop.stories import Story, load_story

CHECKBOX_TASKS = """\
# Tasks: User accounts

## Phase 1

- [ ] **Task 1.1**: Create user model
  - **Description**: Set up the User model
  - **Depends on**: none
- [ ] **Task 1.2**: Add user repository
  - **Depends on**: Task 1.1
- [ ] **Task 1.3**: Expose user endpoints
  - **Depends on**: Task 1.2
"""

HEADING_TASKS = """\
# Implementation Tasks

### Phase 1: Foundation

#### Task 1.1: Create user model
**Description**: Set up the User model
with email validation
**Files**:
- `src/models/user.ts`
- `src/models/index.ts`
**Done when**:
- [ ] Model has id, email fields
- [ ] Unit tests pass
**Dependencies**: none

---

#### Task 1.2: Add user repository
**Status**: in progress
**Description**: Persist users
**Dependencies**: Task 1.1
"""


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo for testing."""
    subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.name", "Test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "user.email", "test@test"], cwd=tmp_path, capture_output=True
    )
    write_text(tmp_path / "README.md", "# Test")
    subprocess.run(["git", "add", "README.md"], cwd=tmp_path, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial"], cwd=tmp_path, capture_output=True
    )
    return tmp_path


@pytest.fixture
def write_tasks(tmp_path: Path):
    """Factory fixture: write a task list to ``tmp_path/tasks.md`` and return its path."""

    def _write(text: str = CHECKBOX_TASKS, name: str = "tasks.md") -> Path:
        path = tmp_path / name
        write_text(path, text)
        return path

    return _write


@pytest.fixture
def stories_dir(tmp_path: Path) -> Path:
    path = tmp_path / "docs" / "stories"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def make_story(stories_dir: Path):
    """Factory fixture: create a story folder with a workflow state and artifacts."""

    def _make(
        slug: str = "user-accounts",
        phase: str = "implement",
        completed: list[str] | None = None,
        artifacts: dict[str, str] | None = None,
        scope: object = None,
    ) -> Story:
        story_dir = stories_dir / slug
        story_dir.mkdir(parents=True, exist_ok=True)
        state: dict[str, object] = {
            "story": f"Story {slug}",
            "slug": slug,
            "currentPhase": phase,
            "completedPhases": completed or [],
            "startedAt": "2026-01-05T10:00:00Z",
        }
        if scope is not None:
            state["scope"] = scope
        write_text(story_dir / "workflow-state.json", json.dumps(state))
        for name, content in (artifacts or {}).items():
            write_text(story_dir / name, content)
        story = load_story(slug, stories_dir)
        assert story is not None
        return story

    return _make


@pytest.fixture
def cli_runner():
    """Click CliRunner for invoking the CLI in-process."""
    from click.testing import CliRunner
    return CliRunner()
