"""Append-only session log written by the supervisor.

Every supervisor-level event lands twice: as a markdown entry in
``.ralph/progress.md`` (the same file the agent reads at the start of each
iteration) and as one JSON line in ``.ralph/sessions.jsonl``. Writes are
best-effort: a failing disk is reported through :mod:`logging` and never
interrupts supervision.
"""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path

from pydantic import ValidationError

from ralph_loop.file_io import append_text
from ralph_loop.schemas import SessionEvent, SessionRecord
from ralph_loop.state_dir import StatePaths

logger = logging.getLogger(__name__)

_EVENT_HEADLINES: dict[SessionEvent, str] = {
    SessionEvent.SESSION_STARTED: "**Session {iteration} started**",
    SessionEvent.SESSION_ENDED_COMPLETE: "**Session {iteration} ended** - TASK COMPLETE",
    SessionEvent.SESSION_ENDED_ROTATED: (
        "**Session {iteration} ended** - Context rotation (token limit reached)"
    ),
    SessionEvent.SESSION_ENDED_GUTTER: "**Session {iteration} ended** - GUTTER (agent stuck)",
    SessionEvent.SESSION_ENDED_NATURAL: "**Session {iteration} ended** - Agent finished naturally",
    SessionEvent.LOOP_ENDED_MAX_ITERATIONS: "**Loop ended** - Max iterations reached",
}


def _clock() -> str:
    return dt.datetime.now().strftime("%H:%M:%S")


def append_trail(path: Path, message: str) -> None:
    """Append a ``[HH:MM:SS] message`` line to an activity or error trail."""
    try:
        append_text(path, f"[{_clock()}] {message}\n")
    except OSError as exc:
        logger.warning("Could not append to %s: %s", path.name, exc)


class SessionLog:
    """Single-writer session log for one workspace."""

    def __init__(self, paths: StatePaths) -> None:
        self.paths = paths

    @property
    def markdown_path(self) -> Path:
        return self.paths.progress

    @property
    def jsonl_path(self) -> Path:
        return self.paths.sessions

    def append(
        self,
        iteration: int,
        event: SessionEvent,
        detail: str = "",
    ) -> SessionRecord:
        """Record *event* for *iteration*; returns the record even if the write failed."""
        record = SessionRecord(iteration=iteration, event=event, detail=(detail or "").strip())
        try:
            append_text(self.markdown_path, self._format_markdown(record))
            append_text(self.jsonl_path, record.model_dump_json() + "\n")
        except OSError as exc:
            logger.warning("Could not append session log entry (%s): %s", event.value, exc)
        return record

    def records(self) -> list[SessionRecord]:
        """Read back every valid JSONL record, oldest first."""
        try:
            lines = self.jsonl_path.read_text(encoding="utf-8").splitlines()
        except OSError:
            return []
        out: list[SessionRecord] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                out.append(SessionRecord.model_validate_json(line))
            except ValidationError:
                logger.debug("Skipping malformed session record: %s", line[:200])
        return out

    def append_activity(self, message: str) -> None:
        append_trail(self.paths.activity, message)

    def append_error(self, message: str) -> None:
        append_trail(self.paths.errors, message)

    @staticmethod
    def _format_markdown(record: SessionRecord) -> str:
        stamp = dt.datetime.fromisoformat(record.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        headline = _EVENT_HEADLINES[record.event].format(iteration=record.iteration)
        body = f"{headline} ({record.detail})" if record.detail else headline
        return f"\n### {stamp}\n{body}\n"
