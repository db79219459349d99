"""Shared helpers for spawning and stopping agent pipeline processes."""

from __future__ import annotations

import logging
import math
import os
import shutil
import subprocess
from contextlib import suppress
from typing import Any

logger = logging.getLogger(__name__)
if os.name != "nt":  # pragma: no cover - platform-specific import
    import signal


def process_isolation_kwargs() -> dict[str, object]:
    """Return subprocess kwargs that put the child in its own process group.

    Terminating the group reaches grandchildren the agent spawns (shells,
    test runners) and keeps Ctrl+C aimed at the supervisor away from the child.
    """
    if os.name == "nt":
        new_pg = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
        no_win = int(getattr(subprocess, "CREATE_NO_WINDOW", 0))
        flags = new_pg | no_win
        return {"creationflags": flags} if flags else {}
    return {"start_new_session": True}


def resolve_binary(name: str) -> str:
    """Resolve a binary name to a full executable path when possible."""
    expanded = os.path.expandvars(os.path.expanduser(str(name or "").strip()))
    if len(expanded) >= 2 and expanded[0] == expanded[-1] and expanded[0] in {"'", '"'}:
        expanded = expanded[1:-1].strip()
    if not expanded:
        return ""
    resolved = shutil.which(expanded)
    if resolved:
        return resolved
    return expanded


def binary_available(name: str) -> bool:
    """Return True when *name* resolves to an executable on PATH or on disk."""
    resolved = resolve_binary(name)
    if not resolved:
        return False
    return shutil.which(resolved) is not None


def coerce_int(value: Any) -> int:
    """Best-effort integer coercion for loosely typed env/config values."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        return int(value)
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("_", "")
        if not cleaned:
            return 0
        try:
            return int(cleaned)
        except ValueError:
            try:
                return int(float(cleaned))
            except (TypeError, ValueError, OverflowError):
                return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


def terminate_process_with_fallback(
    proc: subprocess.Popen[Any],
    *,
    process_name: str,
    reason: str,
    terminate_timeout_seconds: float = 1.5,
) -> None:
    """Request graceful terminate first, then force-kill if still alive.

    Safe to call on a process that has already exited.
    """
    if proc.poll() is not None:
        return

    _terminate_process(proc)
    timeout = max(0.1, float(terminate_timeout_seconds))
    try:
        proc.wait(timeout=timeout)
        return
    except subprocess.TimeoutExpired:
        logger.warning(
            "%s did not exit after terminate during %s; forcing kill.",
            process_name,
            reason,
        )

    _kill_process(proc)
    try:
        proc.wait(timeout=5.0)
    except subprocess.TimeoutExpired:  # pragma: no cover - extreme edge case
        logger.warning("%s ignored kill during %s.", process_name, reason)


def _terminate_process(proc: subprocess.Popen[Any]) -> None:
    if os.name != "nt":
        _signal_process_group(proc, signal.SIGTERM)
    with suppress(OSError):
        proc.terminate()


def _kill_process(proc: subprocess.Popen[Any]) -> None:
    if os.name != "nt":
        _signal_process_group(proc, signal.SIGKILL)
    with suppress(OSError):
        proc.kill()


def _signal_process_group(proc: subprocess.Popen[Any], sig: int) -> None:
    """Best-effort signal delivery to the subprocess process group on POSIX."""
    if os.name == "nt":  # pragma: no cover - Windows-only runtime branch
        return
    pid = int(getattr(proc, "pid", 0) or 0)
    if pid <= 0:
        return
    with suppress(OSError):
        os.killpg(os.getpgid(pid), sig)
