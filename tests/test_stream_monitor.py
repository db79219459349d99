"""Unit tests for the bundled stream monitor."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from ralph_loop.schemas import Signal
from ralph_loop.stream_monitor import StreamMonitor, extract_usage_tokens, run_monitor


def _monitor(**kwargs) -> tuple[StreamMonitor, list[str], list[str]]:
    activity: list[str] = []
    errors: list[str] = []
    params = {"warn_threshold": 700, "rotate_threshold": 800, "gutter_repeat_limit": 3}
    params.update(kwargs)
    monitor = StreamMonitor(on_activity=activity.append, on_error=errors.append, **params)
    return monitor, activity, errors


def _assistant(text: str) -> str:
    return json.dumps(
        {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}
    )


def _shell_failure(command: str, code: int = 1) -> str:
    return json.dumps(
        {
            "type": "tool_call",
            "subtype": "completed",
            "tool_call": {
                "shellToolCall": {
                    "args": {"command": command},
                    "result": {"success": {"exitCode": code, "stderr": "boom"}},
                }
            },
        }
    )


class TestTokenThresholds:
    def test_warn_then_rotate_each_once(self):
        monitor, _, _ = _monitor()
        emitted: list[Signal] = []
        for _ in range(100):
            emitted.extend(monitor.feed("x" * 40))
        assert emitted == [Signal.WARN, Signal.ROTATE]
        assert monitor.tokens >= 800

    def test_reported_usage_raises_estimate(self):
        monitor, _, _ = _monitor()
        line = json.dumps({"type": "result", "subtype": "success", "usage": {"input_tokens": 900}})
        assert monitor.feed(line) == [Signal.ROTATE]
        assert monitor.reported_tokens == 900

    def test_health_progress_is_reported(self):
        monitor, activity, _ = _monitor()
        monitor.feed("y" * 400)
        assert any(msg.startswith("TOKENS ~100 / 800") for msg in activity)


class TestGutterDetection:
    def test_agent_gutter_tag(self):
        monitor, activity, _ = _monitor(warn_threshold=10_000, rotate_threshold=20_000)
        assert monitor.feed(_assistant("I keep failing. RALPH_GUTTER")) == [Signal.GUTTER]
        assert "Agent reported it is stuck" in activity

    def test_repeated_failure_triggers_gutter_once(self):
        monitor, _, errors = _monitor(warn_threshold=10_000, rotate_threshold=20_000)
        signals: list[Signal] = []
        for i in range(5):
            # Differing numbers in the message still count as the same failure.
            signals.extend(monitor.feed(_shell_failure(f"pytest tests/test_{i}.py")))
        assert signals == [Signal.GUTTER]
        assert len([e for e in errors if e.startswith("GUTTER")]) == 1

    def test_distinct_failures_do_not_gutter(self):
        monitor, _, errors = _monitor(warn_threshold=10_000, rotate_threshold=20_000)
        for command in ("npm test", "npm run lint", "make build"):
            assert monitor.feed(_shell_failure(command)) == []
        assert len(errors) == 3


class TestEventClassification:
    def test_tool_call_activity(self):
        monitor, activity, errors = _monitor(warn_threshold=10_000, rotate_threshold=20_000)
        started = {
            "type": "tool_call",
            "subtype": "started",
            "tool_call": {"readToolCall": {"args": {"path": "src/app.py"}}},
        }
        monitor.feed(json.dumps(started))
        assert "TOOL read src/app.py" in activity
        assert errors == []

    def test_error_event_is_recorded(self):
        monitor, _, errors = _monitor(warn_threshold=10_000, rotate_threshold=20_000)
        monitor.feed(json.dumps({"type": "error", "error": {"message": "rate limited"}}))
        assert errors == ["rate limited"]

    def test_session_id_is_captured(self):
        monitor, activity, _ = _monitor(warn_threshold=10_000, rotate_threshold=20_000)
        monitor.feed(json.dumps({"type": "system", "subtype": "init", "session_id": "abc"}))
        assert monitor.session_id == "abc"
        assert "SESSION abc" in activity

    def test_non_json_lines_are_counted(self):
        monitor, _, _ = _monitor()
        monitor.feed("plain text output")
        assert monitor.estimated_tokens == len("plain text output") // 4


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"usage": {"total_tokens": 42}}, 42),
        ({"message": {"usage": {"input_tokens": 5, "output_tokens": 7}}}, 12),
        ({"result": {"usage": {"cache_read_input_tokens": 3}}}, 3),
        ({"type": "assistant"}, 0),
    ],
)
def test_extract_usage_tokens(payload, expected):
    assert extract_usage_tokens(payload) == expected


def test_run_monitor_writes_signal_tokens():
    monitor, _, _ = _monitor(warn_threshold=5, rotate_threshold=10)
    stdin = io.StringIO("a" * 24 + "\n" + "b" * 40 + "\n")
    stdout = io.StringIO()
    assert run_monitor(stdin, stdout, monitor) == 0
    assert stdout.getvalue() == "WARN\nROTATE\n"


def test_main_writes_errors_to_state_dir(monkeypatch, workspace: Path, capsys):
    from ralph_loop import stream_monitor

    monkeypatch.setenv("RALPH_WARN_THRESHOLD", "10000")
    monkeypatch.setenv("RALPH_ROTATE_THRESHOLD", "20000")
    monkeypatch.setattr("sys.stdin", io.StringIO(_shell_failure("npm test") + "\n"))

    assert stream_monitor.main([str(workspace)]) == 0

    errors = (workspace / ".ralph" / "errors.log").read_text(encoding="utf-8")
    assert "shell npm test: exit code 1: boom" in errors
    assert "ERROR shell npm test" in capsys.readouterr().out
