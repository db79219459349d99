"""Preflight diagnostics run before the first iteration.

Every failing check here is fatal: the loop never starts and nothing is
written to the session log.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ralph_loop.config import LoopConfig
from ralph_loop.runner_common import binary_available
from ralph_loop.task_state import TaskStateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreflightCheck:
    """A single readiness check result."""

    key: str
    label: str
    status: str
    detail: str
    hint: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "key": self.key,
            "label": self.label,
            "status": self.status,
            "detail": self.detail,
            "hint": self.hint,
        }


@dataclass(frozen=True)
class PreflightReport:
    """Structured diagnostics output for a workspace."""

    workspace: str
    checks: list[PreflightCheck]

    @property
    def summary(self) -> dict[str, int]:
        counts = {"pass": 0, "fail": 0}
        for check in self.checks:
            if check.status in counts:
                counts[check.status] += 1
        return counts

    @property
    def ready(self) -> bool:
        return self.summary["fail"] == 0

    def failure_messages(self) -> list[str]:
        messages: list[str] = []
        for check in self.checks:
            if check.status != "fail":
                continue
            if check.hint:
                messages.append(f"{check.label}: {check.detail} ({check.hint})")
            else:
                messages.append(f"{check.label}: {check.detail}")
        return messages

    def to_dict(self) -> dict[str, object]:
        return {
            "workspace": self.workspace,
            "checks": [c.to_dict() for c in self.checks],
            "summary": self.summary,
            "ready": self.ready,
        }


def _git_subprocess_isolation_kwargs() -> dict[str, object]:
    if os.name != "nt":
        return {}
    no_win = int(getattr(subprocess, "CREATE_NO_WINDOW", 0))
    return {"creationflags": no_win} if no_win else {}


def is_git_work_tree(path: Path) -> bool:
    """Return True when *path* is inside a git repository."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--git-dir"],
            cwd=path,
            capture_output=True,
            text=True,
            timeout=15,
            **_git_subprocess_isolation_kwargs(),
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("git rev-parse failed in %s: %s", path, exc)
        return False
    return result.returncode == 0


def _check(key: str, label: str, ok: bool, detail: str, hint: str = "") -> PreflightCheck:
    return PreflightCheck(
        key=key,
        label=label,
        status="pass" if ok else "fail",
        detail=detail,
        hint="" if ok else hint,
    )


def build_preflight_report(config: LoopConfig, workspace: str | Path) -> PreflightReport:
    """Check the task document, the agent/monitor binaries and git."""
    root = Path(workspace).expanduser().resolve()
    checks: list[PreflightCheck] = []

    if not root.is_dir():
        checks.append(
            _check(
                "workspace",
                "Workspace",
                False,
                f"{root} is not a directory",
                "Pass an existing path.",
            )
        )
        return PreflightReport(workspace=str(root), checks=checks)

    store = TaskStateStore(root)
    checks.append(
        _check(
            "task_file",
            "Task document",
            store.exists(),
            str(store.path) if store.exists() else f"No {store.path.name} found in {root}",
            "Create it with a '## Success Criteria' checklist of '- [ ]' items.",
        )
    )

    agent_ok = binary_available(config.agent_binary)
    checks.append(
        _check(
            "agent_binary",
            "Agent CLI",
            agent_ok,
            f"{config.agent_binary} {'found' if agent_ok else 'not found on PATH'}",
            "Install it (curl https://cursor.com/install -fsS | bash) or set RALPH_AGENT_BINARY.",
        )
    )

    monitor_bin = config.monitor_command[0] if config.monitor_command else ""
    monitor_ok = bool(monitor_bin) and binary_available(monitor_bin)
    checks.append(
        _check(
            "monitor_binary",
            "Stream monitor",
            monitor_ok,
            f"{monitor_bin or '(empty)'} {'found' if monitor_ok else 'not found'}",
            "Fix RALPH_MONITOR_COMMAND or unset it to use the bundled monitor.",
        )
    )

    git_ok = is_git_work_tree(root)
    checks.append(
        _check(
            "git_repo",
            "Git repository",
            git_ok,
            "inside a git work tree" if git_ok else f"{root} is not a git repository",
            "Run 'git init' - commits carry state between rotations.",
        )
    )
    return PreflightReport(workspace=str(root), checks=checks)
