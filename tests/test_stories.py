"""Tests for taskloop.stories: locating story folders and reading workflow state."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from taskloop.io_utils import write_text
from taskloop.stories import (
    PHASES,
    find_story_dir,
    list_stories,
    load_story,
    load_workflow_state,
    next_phase,
)


class TestNextPhase:
    @pytest.mark.parametrize(
        "phase, expected",
        [
            ("understand", "research"),
            ("decompose", "implement"),
            ("implement", "validate"),
            ("deploy", "complete"),
            ("complete", "complete"),
            ("bogus", "complete"),
        ],
    )
    def test_order(self, phase: str, expected: str) -> None:
        assert next_phase(phase) == expected

    def test_phase_order_is_fixed(self) -> None:
        assert PHASES[0] == "understand"
        assert PHASES[-1] == "deploy"
        assert len(PHASES) == 8


class TestFindStoryDir:
    def test_by_slug(self, stories_dir: Path, make_story) -> None:
        make_story("alpha")
        assert find_story_dir("alpha", stories_dir) == stories_dir / "alpha"

    def test_unknown_slug(self, stories_dir: Path, make_story) -> None:
        make_story("alpha")
        assert find_story_dir("beta", stories_dir) is None

    def test_latest_state_file_wins(self, stories_dir: Path, make_story) -> None:
        old = make_story("old")
        new = make_story("new")
        os.utime(old.state_file, (1_000_000, 1_000_000))
        os.utime(new.state_file, (2_000_000, 2_000_000))
        assert find_story_dir("", stories_dir) == new.path

        os.utime(old.state_file, (3_000_000, 3_000_000))
        assert find_story_dir("", stories_dir) == old.path

    def test_missing_stories_dir(self, tmp_path: Path) -> None:
        assert find_story_dir("", tmp_path / "nope") is None


class TestLoadStory:
    def test_reads_state(self, stories_dir: Path, make_story) -> None:
        make_story("alpha", phase="design", completed=["understand", "research", "scope"])

        story = load_story("alpha", stories_dir)

        assert story is not None
        assert story.slug == "alpha"
        assert story.state.current_phase == "design"
        assert story.state.completed_phases == ["understand", "research", "scope"]
        assert story.state.started_at == "2026-01-05T10:00:00Z"
        assert story.artifact("design.md") == stories_dir / "alpha" / "design.md"

    def test_directory_without_state_file(self, stories_dir: Path) -> None:
        (stories_dir / "draft").mkdir()
        assert load_story("draft", stories_dir) is None

    def test_no_stories(self, stories_dir: Path) -> None:
        assert load_story("", stories_dir) is None

    def test_corrupt_state_degrades_to_unknown(self, stories_dir: Path) -> None:
        story_dir = stories_dir / "broken"
        story_dir.mkdir()
        write_text(story_dir / "workflow-state.json", "{not json")

        state = load_workflow_state(story_dir)

        assert state.current_phase == "unknown"
        assert state.slug == "broken"
        assert state.completed_phases == []

    def test_non_object_state(self, stories_dir: Path) -> None:
        story_dir = stories_dir / "listy"
        story_dir.mkdir()
        write_text(story_dir / "workflow-state.json", "[1, 2]")
        assert load_workflow_state(story_dir).current_phase == "unknown"


class TestListStories:
    def test_sorted_by_slug(self, stories_dir: Path, make_story) -> None:
        make_story("zeta", phase="validate")
        make_story("alpha", phase="research")
        (stories_dir / "no-state").mkdir()

        stories = list_stories(stories_dir)

        assert [s.slug for s in stories] == ["alpha", "zeta"]
        assert [s.state.current_phase for s in stories] == ["research", "validate"]

    def test_missing_dir(self, tmp_path: Path) -> None:
        assert list_stories(tmp_path / "missing") == []
