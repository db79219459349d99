"""Default monitor process: turns agent stream-json into control signals.

Run as ``python -m ralph_loop.stream_monitor WORKSPACE`` with the agent's
output on stdin. Each stdout line is either a bare signal token (``WARN``,
``ROTATE``, ``GUTTER``) or a human-readable activity line; the supervisor
routes the former to the controller and the latter to ``.ralph/activity.log``.
Failures are appended to ``.ralph/errors.log`` directly.

Token usage is estimated at four characters per token over everything the
agent streams, raised to the agent's own usage report whenever one appears.
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from collections import Counter
from collections.abc import Callable
from contextlib import suppress
from typing import Any, TextIO

from ralph_loop.config import LoopConfig
from ralph_loop.prompts import COMPLETE_TAG, GUTTER_TAG
from ralph_loop.runner_common import coerce_int
from ralph_loop.schemas import Signal
from ralph_loop.session_log import SessionLog
from ralph_loop.state_dir import StatePaths

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
_WHITESPACE_RE = re.compile(r"\s+")
_DIGITS_RE = re.compile(r"\d+")


def _normalize_failure(text: str) -> str:
    """Collapse whitespace and numbers so repeated failures compare equal."""
    collapsed = _WHITESPACE_RE.sub(" ", (text or "").strip().lower())
    return _DIGITS_RE.sub("#", collapsed)[:240]


def extract_usage_tokens(data: dict[str, Any]) -> int:
    """Return the total tokens reported in an event's usage block, if any."""
    candidates: list[Any] = [data.get("usage")]
    message = data.get("message")
    if isinstance(message, dict):
        candidates.append(message.get("usage"))
    result = data.get("result")
    if isinstance(result, dict):
        candidates.append(result.get("usage"))

    for usage in candidates:
        if not isinstance(usage, dict):
            continue
        total = max(0, coerce_int(usage.get("total_tokens", 0)))
        if total > 0:
            return total
        parts = (
            "input_tokens",
            "output_tokens",
            "cache_read_input_tokens",
            "cache_creation_input_tokens",
        )
        summed = sum(max(0, coerce_int(usage.get(key, 0))) for key in parts)
        if summed > 0:
            return summed
    return 0


def _assistant_text(data: dict[str, Any]) -> str:
    message = data.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    texts = [
        str(block.get("text", ""))
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n".join(texts).strip()


def _describe_tool_args(args: Any) -> str:
    if not isinstance(args, dict):
        return ""
    for key in ("path", "file_path", "command", "pattern", "url"):
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()[:120]
    return ""


def _tool_call_parts(data: dict[str, Any]) -> tuple[str, str, dict[str, Any]]:
    """Return ``(tool_name, detail, result)`` for a ``tool_call`` event.

    Tool calls arrive as ``{"tool_call": {"shellToolCall": {"args": ..., "result": ...}}}``.
    """
    call = data.get("tool_call")
    if not isinstance(call, dict) or not call:
        return "tool", "", {}
    name, body = next(iter(call.items()))
    if not isinstance(body, dict):
        return str(name), "", {}
    result = body.get("result")
    short = str(name).removesuffix("ToolCall") or str(name)
    return short, _describe_tool_args(body.get("args")), result if isinstance(result, dict) else {}


def _tool_failure(result: dict[str, Any]) -> str | None:
    """Extract a failure message from a completed tool call result."""
    for key in ("failure", "error", "rejected"):
        value = result.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict):
            for inner in ("message", "stderr", "error", "reason"):
                text = value.get(inner)
                if isinstance(text, str) and text.strip():
                    return text.strip()
            return json.dumps(value)[:300]
    success = result.get("success")
    if isinstance(success, dict):
        exit_code = success.get("exitCode", success.get("exit_code"))
        if exit_code is not None and coerce_int(exit_code) != 0:
            stderr = success.get("stderr")
            detail = stderr.strip() if isinstance(stderr, str) and stderr.strip() else ""
            return f"exit code {coerce_int(exit_code)}" + (f": {detail[:200]}" if detail else "")
    return None


class StreamMonitor:
    """Stateful classifier for one agent run.

    :meth:`feed` takes one raw output line and returns the signals it
    triggers. ``WARN``, ``ROTATE`` and ``GUTTER`` are each emitted at most once.
    """

    def __init__(
        self,
        *,
        warn_threshold: int,
        rotate_threshold: int,
        gutter_repeat_limit: int = 3,
        on_activity: Callable[[str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self.warn_threshold = warn_threshold
        self.rotate_threshold = rotate_threshold
        self.gutter_repeat_limit = max(1, gutter_repeat_limit)
        self.on_activity = on_activity or (lambda _msg: None)
        self.on_error = on_error or (lambda _msg: None)
        self.estimated_tokens = 0
        self.reported_tokens = 0
        self.session_id: str | None = None
        self._failures: Counter[str] = Counter()
        self._emitted: set[Signal] = set()
        self._last_health_bucket = 0

    @property
    def tokens(self) -> int:
        return max(self.estimated_tokens, self.reported_tokens)

    def feed(self, line: str) -> list[Signal]:
        text = line.rstrip("\r\n")
        if not text:
            return []
        self.estimated_tokens += max(1, len(text) // CHARS_PER_TOKEN)

        signals: list[Signal] = []
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            signals.extend(self._handle_event(data))
        else:
            self._scan_text(text, signals)

        self._report_health()
        if self.tokens >= self.rotate_threshold:
            self._emit(Signal.ROTATE, signals)
        elif self.tokens >= self.warn_threshold:
            self._emit(Signal.WARN, signals)
        return signals

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _handle_event(self, data: dict[str, Any]) -> list[Signal]:
        signals: list[Signal] = []
        etype = str(data.get("type") or "").strip().lower()
        self.reported_tokens = max(self.reported_tokens, extract_usage_tokens(data))

        session_id = data.get("session_id")
        if isinstance(session_id, str) and session_id and session_id != self.session_id:
            self.session_id = session_id
            self.on_activity(f"SESSION {session_id}")

        if etype == "assistant":
            self._scan_text(_assistant_text(data), signals)
        elif etype == "tool_call":
            self._handle_tool_call(data, signals)
        elif etype == "result":
            subtype = str(data.get("subtype") or "")
            is_error = bool(data.get("is_error")) or subtype.startswith("error")
            if is_error:
                self._record_failure(f"result: {subtype or 'error'}", signals)
            duration = coerce_int(data.get("duration_ms", 0))
            self.on_activity(
                f"RESULT {subtype or 'done'} ({duration} ms, ~{self.tokens} tokens)"
            )
        elif etype == "error" or "error" in data:
            error = data.get("error") or data.get("message") or "unknown error"
            if isinstance(error, dict):
                error = error.get("message") or json.dumps(error)[:300]
            self._record_failure(str(error), signals)
        return signals

    def _handle_tool_call(self, data: dict[str, Any], signals: list[Signal]) -> None:
        name, detail, result = _tool_call_parts(data)
        subtype = str(data.get("subtype") or "").lower()
        if subtype == "started":
            self.on_activity(f"TOOL {name} {detail}".rstrip())
            return
        failure = _tool_failure(result)
        if failure is not None:
            self._record_failure(f"{name} {detail}: {failure}", signals)
        elif subtype == "completed":
            self.on_activity(f"DONE {name} {detail}".rstrip())

    def _scan_text(self, text: str, signals: list[Signal]) -> None:
        if not text:
            return
        if GUTTER_TAG in text:
            self.on_activity("Agent reported it is stuck")
            self._emit(Signal.GUTTER, signals)
        if COMPLETE_TAG in text:
            self.on_activity("Agent reported completion")

    def _record_failure(self, message: str, signals: list[Signal]) -> None:
        self.on_error(message)
        self.on_activity(f"ERROR {message[:200]}")
        key = _normalize_failure(message)
        self._failures[key] += 1
        if self._failures[key] == self.gutter_repeat_limit:
            self.on_error(
                f"GUTTER: same failure repeated {self._failures[key]} times: {message[:200]}"
            )
            self._emit(Signal.GUTTER, signals)

    def _emit(self, signal: Signal, signals: list[Signal]) -> None:
        if signal in self._emitted:
            return
        self._emitted.add(signal)
        signals.append(signal)

    def _report_health(self) -> None:
        bucket = min(10, self.tokens * 10 // max(1, self.rotate_threshold))
        if bucket > self._last_health_bucket:
            self._last_health_bucket = bucket
            self.on_activity(
                f"TOKENS ~{self.tokens} / {self.rotate_threshold} ({bucket * 10}%)"
            )


def run_monitor(
    stdin: TextIO,
    stdout: TextIO,
    monitor: StreamMonitor,
) -> int:
    """Pump *stdin* through *monitor*, writing tokens and activity to *stdout*."""
    for line in stdin:
        for signal in monitor.feed(line):
            stdout.write(signal.value + "\n")
            stdout.flush()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ralph-stream-monitor",
        description="Classify agent stream-json output into WARN/ROTATE/GUTTER signals.",
    )
    parser.add_argument("workspace", nargs="?", default=".", help="Agent workspace directory.")
    args = parser.parse_args(argv)

    config = LoopConfig.from_env()
    paths = StatePaths.for_workspace(args.workspace)
    trails = SessionLog(paths)
    out = sys.stdout
    with suppress(AttributeError, ValueError):
        sys.stdin.reconfigure(encoding="utf-8", errors="replace")  # type: ignore[union-attr]

    def _activity(message: str) -> None:
        out.write(message + "\n")
        out.flush()

    monitor = StreamMonitor(
        warn_threshold=config.warn_threshold,
        rotate_threshold=config.rotate_threshold,
        gutter_repeat_limit=config.gutter_repeat_limit,
        on_activity=_activity,
        on_error=trails.append_error,
    )
    try:
        return run_monitor(sys.stdin, out, monitor)
    except BrokenPipeError:
        return 0
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
