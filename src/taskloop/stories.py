"""Story directories: locate them and read their workflow-state.json."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from taskloop import log
from taskloop.config import STORIES_DIR, WORKFLOW_STATE_FILE
from taskloop.io_utils import read_text

PHASES: tuple[str, ...] = (
    "understand",
    "research",
    "scope",
    "design",
    "decompose",
    "implement",
    "validate",
    "deploy",
)


def next_phase(phase: str) -> str:
    """Phase that follows *phase*; ``complete`` after deploy or for unknown phases."""
    if phase in PHASES:
        idx = PHASES.index(phase)
        if idx + 1 < len(PHASES):
            return PHASES[idx + 1]
    return "complete"


@dataclass
class WorkflowState:
    story: str = "unknown"
    slug: str = "unknown"
    current_phase: str = "unknown"
    completed_phases: list[str] = field(default_factory=list)
    started_at: str = "unknown"
    scope: object = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> WorkflowState:
        completed = data.get("completedPhases") or []
        return cls(
            story=str(data.get("story") or "unknown"),
            slug=str(data.get("slug") or "unknown"),
            current_phase=str(data.get("currentPhase") or "unknown"),
            completed_phases=[str(p) for p in completed] if isinstance(completed, list) else [],
            started_at=str(data.get("startedAt") or "unknown"),
            scope=data.get("scope"),
        )


@dataclass
class Story:
    path: Path
    state: WorkflowState

    @property
    def slug(self) -> str:
        return self.path.name

    @property
    def state_file(self) -> Path:
        return self.path / WORKFLOW_STATE_FILE

    def artifact(self, name: str) -> Path:
        return self.path / name


def load_workflow_state(story_dir: Path) -> WorkflowState:
    """Read ``workflow-state.json``; unreadable files degrade to ``unknown`` fields."""
    state_file = story_dir / WORKFLOW_STATE_FILE
    try:
        data = json.loads(read_text(state_file))
    except (OSError, json.JSONDecodeError) as e:
        log.debug(f"Could not read {state_file}: {e}")
        return WorkflowState(slug=story_dir.name)
    if not isinstance(data, dict):
        return WorkflowState(slug=story_dir.name)
    return WorkflowState.from_dict(data)


def _state_files(stories_dir: Path) -> list[Path]:
    if not stories_dir.is_dir():
        return []
    return [p for p in stories_dir.rglob(WORKFLOW_STATE_FILE) if p.is_file()]


def find_story_dir(slug: str = "", stories_dir: Path | str = STORIES_DIR) -> Path | None:
    """Return ``<stories_dir>/<slug>``, or the story whose state file changed most recently."""
    base = Path(stories_dir)
    if slug:
        candidate = base / slug
        return candidate if candidate.is_dir() else None

    state_files = _state_files(base)
    if not state_files:
        return None
    latest = max(state_files, key=lambda p: p.stat().st_mtime)
    return latest.parent


def load_story(slug: str = "", stories_dir: Path | str = STORIES_DIR) -> Story | None:
    """The active story, or ``None`` when there is no directory with a state file."""
    story_dir = find_story_dir(slug, stories_dir)
    if story_dir is None or not (story_dir / WORKFLOW_STATE_FILE).is_file():
        return None
    return Story(path=story_dir, state=load_workflow_state(story_dir))


def list_stories(stories_dir: Path | str = STORIES_DIR) -> list[Story]:
    """Stories with a workflow state file directly under *stories_dir*, sorted by slug."""
    base = Path(stories_dir)
    if not base.is_dir():
        return []
    stories = [
        Story(path=p.parent, state=load_workflow_state(p.parent))
        for p in base.glob(f"*/{WORKFLOW_STATE_FILE}")
        if p.is_file()
    ]
    return sorted(stories, key=lambda s: s.slug)
