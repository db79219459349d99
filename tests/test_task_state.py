"""Unit tests for the task document store."""

from __future__ import annotations

from pathlib import Path

import pytest

from ralph_loop.task_state import TaskStateStore, is_complete, parse_completion, parse_front_matter


class TestParseCompletion:
    def test_counts_done_and_total(self):
        doc = "## Success Criteria\n1. [x] one\n2. [ ] two\n3. [ ] three\n"
        progress = parse_completion(doc)
        assert (progress.done, progress.total) == (1, 3)
        assert progress.remaining == 2
        assert progress.has_task is True

    def test_accepts_bullets_and_uppercase_marker(self):
        doc = "- [X] a\n* [x] b\n+ [ ] c\n  - [ ] nested\n"
        progress = parse_completion(doc)
        assert (progress.done, progress.total) == (2, 4)

    def test_unbulleted_pending_line_keeps_task_open(self):
        doc = "# Task\n## Success Criteria\n- [x] First\n[ ] Second (no bullet)\n"
        progress = parse_completion(doc)
        assert (progress.done, progress.total) == (1, 2)
        assert progress.complete is False

    def test_ignores_markers_outside_list_items(self):
        doc = "Mark items with `[ ]` and `[x]`.\n- [ ] real\n"
        progress = parse_completion(doc)
        assert (progress.done, progress.total) == (0, 1)

    def test_missing_document_is_no_task(self):
        progress = parse_completion(None)
        assert (progress.done, progress.total) == (0, 0)
        assert progress.has_task is False
        assert progress.complete is False

    def test_document_without_criteria(self):
        progress = parse_completion("# Task\n\nJust prose.\n")
        assert (progress.done, progress.total) == (0, 0)
        assert progress.has_task is True
        assert progress.complete is False


class TestIsComplete:
    @pytest.mark.parametrize("done", [0, 1, 5])
    def test_zero_total_is_never_complete(self, done):
        assert is_complete(done, 0) is False

    @pytest.mark.parametrize(
        ("done", "total", "expected"),
        [(2, 2, True), (1, 3, False), (0, 1, False), (7, 7, True)],
    )
    def test_complete_iff_all_done(self, done, total, expected):
        assert is_complete(done, total) is expected


def test_front_matter_is_parsed_as_yaml():
    doc = '---\ntask: Build it\ntest_command: "npm test"\n---\n# Task\n- [ ] a\n'
    assert parse_front_matter(doc) == {"task": "Build it", "test_command": "npm test"}


def test_front_matter_absent_or_broken_returns_empty():
    assert parse_front_matter("# Task\n") == {}
    assert parse_front_matter("---\n: [unbalanced\n---\n") == {}
    assert parse_front_matter(None) == {}


class TestTaskStateStore:
    def test_reads_progress_from_workspace(self, workspace: Path, write_task):
        write_task(1, 2)
        store = TaskStateStore(workspace)
        assert store.exists()
        progress = store.read_progress()
        assert (progress.done, progress.total) == (1, 3)
        assert store.is_complete() is False

    def test_all_done_is_complete(self, workspace: Path, write_task):
        write_task(2, 0)
        assert TaskStateStore(workspace).is_complete() is True

    def test_absent_document_fails_softly(self, workspace: Path):
        store = TaskStateStore(workspace)
        assert store.exists() is False
        assert store.read_progress().has_task is False
        assert store.summary() == ""
        assert store.front_matter() == {}

    def test_legacy_encoding_is_decoded(self, workspace: Path):
        (workspace / "RALPH_TASK.md").write_bytes("- [x] caf\xe9\n- [ ] na\xefve\n".encode("cp1252"))
        progress = TaskStateStore(workspace).read_progress()
        assert (progress.done, progress.total) == (1, 2)

    def test_summary_truncates_to_line_count(self, workspace: Path, write_task):
        write_task(0, 40)
        summary = TaskStateStore(workspace).summary(lines=5)
        assert len(summary.splitlines()) == 5
        assert summary.startswith("---")
