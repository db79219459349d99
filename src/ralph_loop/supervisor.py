"""Owns one iteration's subprocess pipeline: ``agent | monitor``.

The agent's combined stdout/stderr is wired straight into the monitor's
stdin. A reader thread splits the monitor's output into signal tokens
(forwarded to the iteration's :class:`SignalChannel`) and everything else
(appended to ``.ralph/activity.log``). The reader closes the channel when the
monitor's output ends, which is how the controller learns the pipeline is done.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ralph_loop.agent_cli import build_agent_command
from ralph_loop.config import LoopConfig
from ralph_loop.errors import PipelineStartError
from ralph_loop.runner_common import process_isolation_kwargs, terminate_process_with_fallback
from ralph_loop.session_log import append_trail
from ralph_loop.signal_channel import SignalChannel, parse_signal_token
from ralph_loop.state_dir import StatePaths

logger = logging.getLogger(__name__)

AgentCommandBuilder = Callable[[str, str | None], list[str]]

DEFAULT_MONITOR_GRACE_SECONDS = 5.0
"""How long the monitor may outlive the agent before it is stopped."""


@dataclass(slots=True)
class PipelineHandle:
    """Live processes and threads of one running pipeline."""

    agent: subprocess.Popen[bytes]
    monitor: subprocess.Popen[str]
    channel: SignalChannel
    reader: threading.Thread
    watcher: threading.Thread | None = None
    resume_token: str | None = None
    started_at: float = field(default_factory=time.monotonic)
    terminated: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def running(self) -> bool:
        return self.agent.poll() is None or self.monitor.poll() is None


class ProcessSupervisor:
    """Spawns, waits for and terminates ``agent | monitor`` pipelines.

    Parameters
    ----------
    workspace:
        Directory the agent works in (the repository root).
    build_agent_command:
        ``(prompt, resume_token) -> argv`` for the agent process.
    monitor_command:
        argv prefix for the monitor; the workspace path is appended.
    activity_path:
        File that receives non-signal monitor output. ``None`` discards it.
    env_overrides:
        Extra environment variables for both processes.
    """

    def __init__(
        self,
        workspace: str | Path,
        *,
        build_agent_command: AgentCommandBuilder,
        monitor_command: Sequence[str],
        activity_path: Path | None = None,
        env_overrides: Mapping[str, str] | None = None,
        monitor_grace_seconds: float = DEFAULT_MONITOR_GRACE_SECONDS,
        terminate_timeout_seconds: float = 1.5,
    ) -> None:
        self.workspace = Path(workspace).resolve()
        self.build_agent_command = build_agent_command
        self.monitor_command = list(monitor_command)
        if not self.monitor_command:
            raise ValueError("monitor_command must not be empty")
        self.activity_path = activity_path
        self.env_overrides = dict(env_overrides or {})
        self.monitor_grace_seconds = max(0.0, float(monitor_grace_seconds))
        self.terminate_timeout_seconds = terminate_timeout_seconds

    @classmethod
    def from_config(cls, config: LoopConfig, workspace: str | Path) -> ProcessSupervisor:
        """Supervisor for the configured agent CLI and monitor."""
        paths = StatePaths.for_workspace(workspace)
        return cls(
            paths.workspace,
            build_agent_command=lambda prompt, token: build_agent_command(config, prompt, token),
            monitor_command=config.monitor_command,
            activity_path=paths.activity,
            env_overrides={
                "RALPH_WARN_THRESHOLD": str(config.warn_threshold),
                "RALPH_ROTATE_THRESHOLD": str(config.rotate_threshold),
                "RALPH_GUTTER_REPEATS": str(config.gutter_repeat_limit),
            },
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        prompt: str,
        channel: SignalChannel,
        resume_token: str | None = None,
    ) -> PipelineHandle:
        """Launch the pipeline; signals go to *channel*.

        Raises :class:`PipelineStartError` when either process cannot start.
        """
        env = {**os.environ, **self.env_overrides}
        agent_cmd = self.build_agent_command(prompt, resume_token)
        monitor_cmd = [*self.monitor_command, str(self.workspace)]
        if resume_token:
            logger.info("Resuming agent session: %s", resume_token)

        try:
            agent = subprocess.Popen(
                agent_cmd,
                cwd=self.workspace,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=env,
                **process_isolation_kwargs(),
            )
        except OSError as exc:
            channel.close()
            raise PipelineStartError(f"Failed to start agent {agent_cmd[0]!r}: {exc}") from exc

        try:
            monitor = subprocess.Popen(
                monitor_cmd,
                cwd=self.workspace,
                stdin=agent.stdout,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
                **process_isolation_kwargs(),
            )
        except OSError as exc:
            terminate_process_with_fallback(agent, process_name="agent", reason="monitor failure")
            channel.close()
            raise PipelineStartError(f"Failed to start monitor {monitor_cmd[0]!r}: {exc}") from exc
        finally:
            # The monitor holds the only read end it needs; dropping ours lets
            # it see EOF once the agent exits.
            if agent.stdout is not None:
                agent.stdout.close()

        reader = threading.Thread(
            target=self._pump_monitor_output,
            args=(monitor, channel),
            name="ralph-monitor-reader",
            daemon=True,
        )
        handle = PipelineHandle(
            agent=agent,
            monitor=monitor,
            channel=channel,
            reader=reader,
            resume_token=resume_token,
        )
        handle.watcher = threading.Thread(
            target=self._watch_agent_exit,
            args=(handle,),
            name="ralph-pipeline-watch",
            daemon=True,
        )
        reader.start()
        handle.watcher.start()
        logger.debug("Pipeline started (agent pid=%s, monitor pid=%s)", agent.pid, monitor.pid)
        return handle

    def terminate(self, handle: PipelineHandle) -> None:
        """Force both processes down. Idempotent and safe after natural exit."""
        with handle.lock:
            first_call = not handle.terminated
            handle.terminated = True
        if first_call:
            logger.info("Terminating agent pipeline (agent pid=%s)", handle.agent.pid)
        for proc, name in ((handle.agent, "agent"), (handle.monitor, "monitor")):
            terminate_process_with_fallback(
                proc,
                process_name=name,
                reason="terminate request",
                terminate_timeout_seconds=self.terminate_timeout_seconds,
            )

    def wait(self, handle: PipelineHandle) -> int:
        """Block until the agent exits; also reaps the monitor and reader thread.

        Returns the agent's exit status (negative when killed by a signal).
        """
        exit_code = handle.agent.wait()
        if handle.watcher is not None:
            handle.watcher.join()
        try:
            handle.monitor.wait(timeout=self.monitor_grace_seconds + 5.0)
        except subprocess.TimeoutExpired:  # pragma: no cover - watcher already stops it
            terminate_process_with_fallback(
                handle.monitor, process_name="monitor", reason="wait cleanup"
            )
        handle.reader.join(timeout=5.0)
        if handle.reader.is_alive():  # pragma: no cover - reader blocked on a stuck pipe
            logger.warning("Monitor reader did not finish; closing signal channel")
        handle.channel.close()
        logger.debug(
            "Pipeline finished (agent exit=%s, %.1fs)",
            exit_code,
            time.monotonic() - handle.started_at,
        )
        return exit_code

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def _pump_monitor_output(self, monitor: subprocess.Popen[str], channel: SignalChannel) -> None:
        stream = monitor.stdout
        try:
            if stream is None:
                return
            for line in stream:
                signal = parse_signal_token(line)
                if signal is not None:
                    logger.debug("Monitor signal: %s", signal.value)
                    channel.put(signal)
                    continue
                text = line.rstrip("\r\n")
                if text:
                    self._tee_activity(text)
        except (OSError, ValueError) as exc:
            logger.debug("Monitor output stream closed: %s", exc)
        finally:
            channel.close()

    def _watch_agent_exit(self, handle: PipelineHandle) -> None:
        """Stop a monitor that lingers after the agent is gone.

        A grandchild of the agent can keep the pipe open after the agent
        itself exits, which would otherwise leave the controller waiting.
        """
        handle.agent.wait()
        try:
            handle.monitor.wait(timeout=self.monitor_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning(
                "Monitor still running %.1fs after agent exit; stopping it",
                self.monitor_grace_seconds,
            )
            terminate_process_with_fallback(
                handle.monitor, process_name="monitor", reason="agent exit"
            )

    def _tee_activity(self, text: str) -> None:
        if self.activity_path is not None:
            append_trail(self.activity_path, text)
