"""Tests for the .ralph scaffolding and the persisted iteration counter."""

from __future__ import annotations

from pathlib import Path

import pytest

from ralph_loop.state_dir import IterationCounter, StatePaths, ensure_state_dir


def test_ensure_state_dir_creates_seed_files(workspace: Path) -> None:
    paths = ensure_state_dir(workspace)

    assert paths.root == workspace.resolve() / ".ralph"
    assert "# Progress Log" in paths.progress.read_text(encoding="utf-8")
    assert "## Learned Signs" in paths.guardrails.read_text(encoding="utf-8")
    assert "# Error Log" in paths.errors.read_text(encoding="utf-8")
    assert "# Activity Log" in paths.activity.read_text(encoding="utf-8")
    assert not paths.iteration.exists()


def test_ensure_state_dir_never_overwrites(workspace: Path) -> None:
    paths = ensure_state_dir(workspace)
    paths.guardrails.write_text("custom signs\n", encoding="utf-8")

    ensure_state_dir(workspace)

    assert paths.guardrails.read_text(encoding="utf-8") == "custom signs\n"


class TestIterationCounter:
    def test_absent_file_reads_zero(self, workspace: Path) -> None:
        counter = IterationCounter(StatePaths.for_workspace(workspace).iteration)
        assert counter.get() == 0

    def test_increment_persists_across_instances(self, workspace: Path) -> None:
        path = StatePaths.for_workspace(workspace).iteration
        first = IterationCounter(path)
        assert first.increment() == 1
        assert first.increment() == 2

        assert IterationCounter(path).get() == 2
        assert path.read_text(encoding="utf-8").strip() == "2"

    def test_garbage_content_reads_zero(self, workspace: Path) -> None:
        path = StatePaths.for_workspace(workspace).iteration
        path.parent.mkdir(parents=True)
        path.write_text("not a number", encoding="utf-8")
        assert IterationCounter(path).get() == 0

    def test_refuses_to_go_backwards(self, workspace: Path) -> None:
        counter = IterationCounter(StatePaths.for_workspace(workspace).iteration)
        counter.set(5)
        with pytest.raises(ValueError, match="cannot go backwards"):
            counter.set(4)
        assert counter.get() == 5
