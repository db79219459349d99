"""Unit tests for schemas module."""

from __future__ import annotations

import json

from ralph_loop.schemas import (
    IterationOutcome,
    IterationRecord,
    LoopResult,
    LoopStatus,
    SessionEvent,
    SessionRecord,
    Signal,
    TaskProgress,
)


class TestTaskProgress:
    def test_defaults(self):
        p = TaskProgress()
        assert p.done == 0
        assert p.total == 0
        assert p.has_task is False
        assert p.complete is False

    def test_zero_criteria_is_never_complete(self):
        assert TaskProgress(done=0, total=0, has_task=True).complete is False

    def test_remaining(self):
        p = TaskProgress(done=1, total=3, has_task=True)
        assert p.remaining == 2
        assert p.complete is False
        assert TaskProgress(done=3, total=3, has_task=True).complete is True


class TestIterationRecord:
    def test_defaults(self):
        r = IterationRecord(iteration=4)
        assert r.outcome == IterationOutcome.NATURAL
        assert r.signals == []
        assert r.exit_code == -1
        assert r.terminated is False
        assert r.resume_token is None

    def test_serialization_roundtrip(self):
        r = IterationRecord(
            iteration=2,
            outcome=IterationOutcome.ROTATE,
            signals=[Signal.WARN, Signal.ROTATE],
            exit_code=-15,
            terminated=True,
        )
        data = json.loads(r.model_dump_json())
        assert data["signals"] == ["WARN", "ROTATE"]
        r2 = IterationRecord.model_validate(data)
        assert r2.outcome == IterationOutcome.ROTATE
        assert r2.signals == [Signal.WARN, Signal.ROTATE]


class TestSessionRecord:
    def test_timestamp_is_local_and_offset_aware(self):
        rec = SessionRecord(iteration=1, event=SessionEvent.SESSION_STARTED)
        assert rec.timestamp[10] == "T"
        assert "+" in rec.timestamp[19:] or "-" in rec.timestamp[19:]

    def test_event_values_are_stable(self):
        assert {e.value for e in SessionEvent} == {
            "session_started",
            "session_ended_complete",
            "session_ended_rotated",
            "session_ended_gutter",
            "session_ended_natural",
            "loop_ended_max_iterations",
        }


class TestLoopResult:
    def test_exit_code_by_status(self):
        assert LoopResult(status=LoopStatus.COMPLETE).exit_code == 0
        assert LoopResult(status=LoopStatus.ALREADY_COMPLETE).exit_code == 0
        assert LoopResult(status=LoopStatus.GUTTER).exit_code == 1
        assert LoopResult(status=LoopStatus.MAX_ITERATIONS).exit_code == 1

    def test_started_at_is_set(self):
        result = LoopResult(status=LoopStatus.COMPLETE)
        assert result.started_at
        assert result.finished_at is None
        assert result.iterations == []
