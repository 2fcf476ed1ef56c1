"""Tests for taskloop.tasks.io: targeted, atomic status updates."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from taskloop.errors import DecodeFailureError, DocumentNotFoundError, TaskNotFoundError, WriteFailureError
from taskloop.io_utils import read_text
from taskloop.tasks.io import Progress, TaskStore, mark_task_status_in_file
from taskloop.tasks.model import TaskStatus

from conftest import CHECKBOX_TASKS, HEADING_TASKS


# ── Checkbox style ──────────────────────────────────────────────────


class TestCheckboxUpdates:
    def test_only_the_marker_changes(self, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        change = mark_task_status_in_file(path, "1.2", TaskStatus.COMPLETE)

        assert change.changed
        assert change.old == TaskStatus.INCOMPLETE
        assert change.new == TaskStatus.COMPLETE
        assert read_text(path) == CHECKBOX_TASKS.replace("- [ ] **Task 1.2**", "- [x] **Task 1.2**")

    @pytest.mark.parametrize(
        ("status", "marker"),
        [
            (TaskStatus.IN_PROGRESS, "~"),
            (TaskStatus.BLOCKED, "!"),
            (TaskStatus.COMPLETE, "x"),
        ],
    )
    def test_every_status_has_a_marker(self, write_tasks, status: TaskStatus, marker: str) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        mark_task_status_in_file(path, "1.1", status)
        assert f"- [{marker}] **Task 1.1**: Create user model" in read_text(path)

    def test_reset_to_incomplete(self, write_tasks) -> None:
        path = write_tasks("- [x] **Task 1.1**: Done already\n")
        mark_task_status_in_file(path, "1.1", TaskStatus.INCOMPLETE)
        assert read_text(path) == "- [ ] **Task 1.1**: Done already\n"

    def test_crlf_preserved(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.md"
        path.write_bytes(b"# Tasks\r\n- [ ] **Task 1.1**: A\r\n- [ ] **Task 1.2**: B\r\n")

        mark_task_status_in_file(path, "1.2", TaskStatus.COMPLETE)

        assert path.read_bytes() == b"# Tasks\r\n- [ ] **Task 1.1**: A\r\n- [x] **Task 1.2**: B\r\n"

    def test_missing_trailing_newline_preserved(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.md"
        path.write_bytes(b"- [ ] **Task 1.1**: A")

        mark_task_status_in_file(path, "1.1", TaskStatus.COMPLETE)

        assert path.read_bytes() == b"- [x] **Task 1.1**: A"


# ── Heading style ───────────────────────────────────────────────────


class TestHeadingUpdates:
    def test_inserts_status_line_after_heading(self, write_tasks) -> None:
        path = write_tasks(HEADING_TASKS)
        mark_task_status_in_file(path, "1.1", TaskStatus.IN_PROGRESS)

        expected = HEADING_TASKS.replace(
            "#### Task 1.1: Create user model\n",
            "#### Task 1.1: Create user model\n**Status**: in progress\n",
        )
        assert read_text(path) == expected

    def test_rewrites_existing_status_line(self, write_tasks) -> None:
        path = write_tasks(HEADING_TASKS)
        mark_task_status_in_file(path, "1.2", TaskStatus.COMPLETE)

        text = read_text(path)
        assert text == HEADING_TASKS.replace("**Status**: in progress", "**Status**: complete")
        assert text.count("**Status**:") == 1

    def test_inserted_status_is_read_back(self, write_tasks) -> None:
        path = write_tasks(HEADING_TASKS)
        store = TaskStore(path)
        store.set_status("1.1", TaskStatus.COMPLETE)
        assert store.load().get_task("1.1").status == TaskStatus.COMPLETE

    def test_heading_without_trailing_newline(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.md"
        path.write_bytes(b"#### Task 1.1: A")

        mark_task_status_in_file(path, "1.1", TaskStatus.COMPLETE)

        assert path.read_bytes() == b"#### Task 1.1: A\n**Status**: complete"

    def test_insert_matches_crlf(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.md"
        path.write_bytes(b"#### Task 1.1: A\r\n**Description**: d\r\n")

        mark_task_status_in_file(path, "1.1", TaskStatus.BLOCKED)

        assert path.read_bytes() == b"#### Task 1.1: A\r\n**Status**: blocked\r\n**Description**: d\r\n"

    @pytest.mark.parametrize("brk", ["\u2028", "\x0c", "\x85", "\x1e"])
    def test_unicode_line_break_inside_heading(self, tmp_path: Path, brk: str) -> None:
        path = tmp_path / "tasks.md"
        text = f"#### Task 1.1: A{brk}note\n**Description**: d\n"
        path.write_bytes(text.encode("utf-8"))
        store = TaskStore(path)

        store.set_status("1.1", TaskStatus.IN_PROGRESS)

        assert read_text(path) == f"#### Task 1.1: A{brk}note\n**Status**: in progress\n**Description**: d\n"
        task = store.load().get_task("1.1")
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.description == "d"


# ── Idempotence, failures and atomicity ─────────────────────────────


class TestStoreGuarantees:
    def test_same_status_is_a_no_op(self, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        mark_task_status_in_file(path, "1.1", TaskStatus.COMPLETE)
        once = path.read_bytes()

        with patch("taskloop.tasks.io.write_text_atomic") as write:
            change = mark_task_status_in_file(path, "1.1", TaskStatus.COMPLETE)

        write.assert_not_called()
        assert not change.changed
        assert path.read_bytes() == once

    def test_implicit_heading_status_no_op_does_not_insert(self, write_tasks) -> None:
        path = write_tasks(HEADING_TASKS)
        change = mark_task_status_in_file(path, "1.1", TaskStatus.INCOMPLETE)
        assert not change.changed
        assert read_text(path) == HEADING_TASKS

    def test_unknown_task_leaves_file_untouched(self, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        before = path.read_bytes()

        with pytest.raises(TaskNotFoundError, match="Task 9.9 not found"):
            mark_task_status_in_file(path, "9.9", TaskStatus.COMPLETE)

        assert path.read_bytes() == before
        assert not TaskStore(path).backup_path.exists()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(DocumentNotFoundError, match="Tasks file not found"):
            mark_task_status_in_file(tmp_path / "nope.md", "1.1", TaskStatus.COMPLETE)

    def test_non_utf8_file_loads_leniently(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.md"
        path.write_bytes(b"- [ ] **Task 1.1**: caf\xe9 model\n- [x] **Task 1.2**: Done\n")

        doc = TaskStore(path).load()

        assert [t.id for t in doc.tasks] == ["1.1", "1.2"]
        assert doc.tasks[0].title == "caf\ufffd model"

    def test_non_utf8_file_is_never_rewritten(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.md"
        before = b"- [ ] **Task 1.1**: caf\xe9 model\n"
        path.write_bytes(before)
        store = TaskStore(path)

        with pytest.raises(DecodeFailureError, match="not valid UTF-8"):
            store.set_status("1.1", TaskStatus.COMPLETE)

        assert path.read_bytes() == before
        assert not store.backup_path.exists()

    def test_backup_removed_after_success(self, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        store = TaskStore(path)
        store.set_status("1.1", TaskStatus.COMPLETE)
        assert not store.backup_path.exists()
        assert sorted(p.name for p in path.parent.iterdir()) == ["tasks.md"]

    def test_write_failure_restores_content(self, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        store = TaskStore(path)

        with patch("taskloop.tasks.io.write_text_atomic", side_effect=OSError("disk full")):
            with pytest.raises(WriteFailureError, match="disk full"):
                store.set_status("1.1", TaskStatus.COMPLETE)

        assert read_text(path) == CHECKBOX_TASKS
        assert not store.backup_path.exists()

    def test_sequential_updates_compose(self, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        store = TaskStore(path)
        store.set_status("1.1", TaskStatus.IN_PROGRESS)
        store.set_status("1.1", TaskStatus.COMPLETE)
        store.set_status("1.2", TaskStatus.IN_PROGRESS)

        doc = store.load()
        assert [t.status for t in doc.tasks] == [
            TaskStatus.COMPLETE,
            TaskStatus.IN_PROGRESS,
            TaskStatus.INCOMPLETE,
        ]


# ── Progress table ──────────────────────────────────────────────────


class TestProgress:
    def test_progress_reported_when_table_present(self, write_tasks) -> None:
        text = CHECKBOX_TASKS + "\n## Progress\n\n| Phase | Tasks | Status |\n|---|---|---|\n| 1 | 3 | open |\n"
        path = write_tasks(text)

        change = mark_task_status_in_file(path, "1.1", TaskStatus.COMPLETE)

        assert change.progress == Progress(complete=1, total=3)
        assert str(change.progress) == "1/3 tasks complete (33%)"
        assert "| 1 | 3 | open |" in read_text(path)

    def test_no_progress_without_table(self, write_tasks) -> None:
        path = write_tasks(CHECKBOX_TASKS)
        assert mark_task_status_in_file(path, "1.1", TaskStatus.COMPLETE).progress is None

    def test_percent_of_empty_document(self) -> None:
        assert Progress(0, 0).percent == 0
