"""Read-only view of the ``RALPH_TASK.md`` checklist.

The agent is the only writer of the task document; the supervisor merely
observes it between iterations to decide whether the run is finished.
Criteria are markdown checklist items::

    - [ ] pending criterion
    - [x] finished criterion
    1. [ ] numbered criteria work too
    [ ] so do bare checkboxes at the start of a line
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from ralph_loop.file_io import read_text_resilient
from ralph_loop.schemas import TaskProgress

logger = logging.getLogger(__name__)

TASK_FILENAME = "RALPH_TASK.md"

_CRITERION_RE = re.compile(r"^\s*(?:(?:[-*+]|\d+[.)])\s+)?\[(?P<mark>[ xX])\]")
_FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\r?\n(?P<body>.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


def parse_completion(document: str | None) -> TaskProgress:
    """Count done vs. total criteria in *document*.

    ``None`` (absent or unreadable document) yields ``(0, 0)`` with
    ``has_task=False`` instead of raising.
    """
    if document is None:
        return TaskProgress()
    done = 0
    total = 0
    for line in document.splitlines():
        match = _CRITERION_RE.match(line)
        if match is None:
            continue
        total += 1
        if match.group("mark") in {"x", "X"}:
            done += 1
    return TaskProgress(done=done, total=total, has_task=True)


def is_complete(done: int, total: int) -> bool:
    """Return True only when at least one criterion exists and all are done."""
    return total > 0 and done == total


def parse_front_matter(document: str | None) -> dict[str, Any]:
    """Return the YAML front-matter mapping (``task``, ``test_command``...)."""
    if not document:
        return {}
    match = _FRONT_MATTER_RE.match(document)
    if match is None:
        return {}
    try:
        parsed = yaml.safe_load(match.group("body"))
    except yaml.YAMLError as exc:
        logger.warning("Could not parse task front matter: %s", exc)
        return {}
    return parsed if isinstance(parsed, dict) else {}


class TaskStateStore:
    """Observes the task document inside a workspace."""

    def __init__(self, workspace: str | Path, *, filename: str = TASK_FILENAME) -> None:
        self.workspace = Path(workspace).resolve()
        self.path = self.workspace / filename

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> str | None:
        if not self.exists():
            return None
        return read_text_resilient(self.path)

    def read_progress(self) -> TaskProgress:
        progress = parse_completion(self.read())
        logger.debug(
            "Task progress: %d/%d (has_task=%s)", progress.done, progress.total, progress.has_task
        )
        return progress

    def is_complete(self) -> bool:
        progress = self.read_progress()
        return is_complete(progress.done, progress.total)

    def front_matter(self) -> dict[str, Any]:
        return parse_front_matter(self.read())

    def summary(self, lines: int = 30) -> str:
        """Return the first *lines* lines of the document for display."""
        text = self.read()
        if text is None:
            return ""
        return "\n".join(text.splitlines()[: max(0, lines)])
