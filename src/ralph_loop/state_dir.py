"""Layout of the ``.ralph`` state directory and the persisted iteration counter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ralph_loop.file_io import atomic_write_text, read_text_resilient
from ralph_loop.runner_common import coerce_int

logger = logging.getLogger(__name__)

STATE_DIRNAME = ".ralph"

_PROGRESS_TEMPLATE = """\
# Progress Log

> Updated by the agent after significant work.

---

## Session History

"""

_GUARDRAILS_TEMPLATE = """\
# Ralph Guardrails (Signs)

> Lessons learned from past failures. READ THESE BEFORE ACTING.

## Core Signs

### Sign: Read Before Writing
- **Trigger**: Before modifying any file
- **Instruction**: Always read the existing file first
- **Added after**: Core principle

### Sign: Test After Changes
- **Trigger**: After any code change
- **Instruction**: Run tests to verify nothing broke
- **Added after**: Core principle

### Sign: Commit Checkpoints
- **Trigger**: Before risky changes
- **Instruction**: Commit current working state first
- **Added after**: Core principle

---

## Learned Signs

"""

_ERRORS_TEMPLATE = """\
# Error Log

> Failures detected by the stream monitor. Use to update guardrails.

"""

_ACTIVITY_TEMPLATE = """\
# Activity Log

> Real-time tool call logging from the stream monitor.

"""


@dataclass(frozen=True, slots=True)
class StatePaths:
    """Resolved paths of every file under ``<workspace>/.ralph``."""

    workspace: Path

    @property
    def root(self) -> Path:
        return self.workspace / STATE_DIRNAME

    @property
    def progress(self) -> Path:
        return self.root / "progress.md"

    @property
    def sessions(self) -> Path:
        return self.root / "sessions.jsonl"

    @property
    def guardrails(self) -> Path:
        return self.root / "guardrails.md"

    @property
    def errors(self) -> Path:
        return self.root / "errors.log"

    @property
    def activity(self) -> Path:
        return self.root / "activity.log"

    @property
    def iteration(self) -> Path:
        return self.root / ".iteration"

    @classmethod
    def for_workspace(cls, workspace: str | Path) -> StatePaths:
        return cls(Path(workspace).resolve())


def ensure_state_dir(workspace: str | Path) -> StatePaths:
    """Create ``.ralph`` and seed its files; existing files are left untouched."""
    paths = StatePaths.for_workspace(workspace)
    paths.root.mkdir(parents=True, exist_ok=True)
    seeds = (
        (paths.progress, _PROGRESS_TEMPLATE),
        (paths.guardrails, _GUARDRAILS_TEMPLATE),
        (paths.errors, _ERRORS_TEMPLATE),
        (paths.activity, _ACTIVITY_TEMPLATE),
    )
    for path, template in seeds:
        if not path.exists():
            path.write_text(template, encoding="utf-8")
            logger.debug("Created %s", path)
    return paths


class IterationCounter:
    """Single integer persisted as the sole content of ``.ralph/.iteration``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def get(self) -> int:
        if not self.path.exists():
            return 0
        text = read_text_resilient(self.path)
        return max(0, coerce_int((text or "").strip()))

    def set(self, value: int) -> None:
        current = self.get()
        if value < current:
            raise ValueError(f"iteration counter cannot go backwards ({current} -> {value})")
        atomic_write_text(self.path, f"{value}\n")

    def increment(self) -> int:
        value = self.get() + 1
        self.set(value)
        return value
