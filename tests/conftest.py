"""Shared pytest configuration: markers, ordering and workspace fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: filesystem/subprocess integration tests")
    config.addinivalue_line("markers", "slow: tests that wait on real process timeouts")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first, integration tests second, slow tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("slow"):
            return (2, item.nodeid)
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


def task_document(done: int, pending: int, *, front_matter: bool = True) -> str:
    lines: list[str] = []
    if front_matter:
        lines += ["---", "task: Build the thing", 'test_command: "pytest -q"', "---"]
    lines += ["# Task", "", "## Success Criteria", ""]
    n = 0
    for _ in range(done):
        n += 1
        lines.append(f"{n}. [x] Criterion {n}")
    for _ in range(pending):
        n += 1
        lines.append(f"{n}. [ ] Criterion {n}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    repo = tmp_path / "project"
    repo.mkdir()
    return repo


@pytest.fixture
def write_task(workspace: Path):
    def _write(done: int, pending: int) -> Path:
        path = workspace / "RALPH_TASK.md"
        path.write_text(task_document(done, pending), encoding="utf-8")
        return path

    return _write
