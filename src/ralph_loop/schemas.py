"""Pydantic models for structured data throughout the supervisor."""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Monitor signals
# ---------------------------------------------------------------------------

class Signal(str, Enum):
    """Control tokens emitted by the stream monitor."""

    WARN = "WARN"
    ROTATE = "ROTATE"
    GUTTER = "GUTTER"


# ---------------------------------------------------------------------------
# Task document
# ---------------------------------------------------------------------------

class TaskProgress(BaseModel):
    """Criterion counts observed in the task document."""

    done: int = 0
    total: int = 0
    has_task: bool = False

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.done)

    @property
    def complete(self) -> bool:
        return self.total > 0 and self.done == self.total


# ---------------------------------------------------------------------------
# Session log
# ---------------------------------------------------------------------------

class SessionEvent(str, Enum):
    """Kinds of supervisor-level entries written to the session log."""

    SESSION_STARTED = "session_started"
    SESSION_ENDED_COMPLETE = "session_ended_complete"
    SESSION_ENDED_ROTATED = "session_ended_rotated"
    SESSION_ENDED_GUTTER = "session_ended_gutter"
    SESSION_ENDED_NATURAL = "session_ended_natural"
    LOOP_ENDED_MAX_ITERATIONS = "loop_ended_max_iterations"


class SessionRecord(BaseModel):
    """One append-only session log entry."""

    timestamp: str = Field(default_factory=lambda: dt.datetime.now().astimezone().isoformat())
    iteration: int
    event: SessionEvent
    detail: str = ""


# ---------------------------------------------------------------------------
# Iterations / loop outcome
# ---------------------------------------------------------------------------

class IterationOutcome(str, Enum):
    """How a single iteration ended."""

    COMPLETE = "complete"
    ROTATE = "rotate"
    GUTTER = "gutter"
    NATURAL = "natural"


class IterationRecord(BaseModel):
    """What the controller observed during one iteration."""

    iteration: int
    outcome: IterationOutcome = IterationOutcome.NATURAL
    signals: list[Signal] = Field(default_factory=list)
    exit_code: int = -1
    terminated: bool = False
    resume_token: str | None = None
    progress: TaskProgress = Field(default_factory=TaskProgress)
    duration_seconds: float = 0.0


class LoopStatus(str, Enum):
    """Terminal status of a supervised run."""

    COMPLETE = "complete"
    ALREADY_COMPLETE = "already_complete"
    GUTTER = "gutter"
    MAX_ITERATIONS = "max_iterations"

    @property
    def succeeded(self) -> bool:
        return self in (LoopStatus.COMPLETE, LoopStatus.ALREADY_COMPLETE)


class LoopResult(BaseModel):
    """Final result of :meth:`IterationController.run`."""

    status: LoopStatus
    iterations_run: int = 0
    last_iteration: int = 0
    progress: TaskProgress = Field(default_factory=TaskProgress)
    iterations: list[IterationRecord] = Field(default_factory=list)
    started_at: str = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc).isoformat())
    finished_at: str | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.status.succeeded else 1
