"""Iteration controller: the context-rotation state machine.

The :class:`IterationController` runs the agent pipeline once per iteration,
reacts to monitor signals while it runs, and decides from the task document
whether to stop, rotate, or try again::

    STARTING -> RUNNING -> {COMPLETE, ROTATING, GUTTERED, CONTINUING}
    ROTATING | CONTINUING -> STARTING
    COMPLETE | GUTTERED | cap reached -> TERMINAL

Only ``ROTATE`` interrupts a running agent. ``GUTTER`` is a heuristic and is
acted on at the iteration boundary; ``WARN`` is advisory.
"""

from __future__ import annotations

import contextlib
import datetime as dt
import logging
import sys
import time
from collections.abc import Callable, Iterator
from enum import Enum
from pathlib import Path

from ralph_loop.config import LoopConfig
from ralph_loop.errors import PreconditionError
from ralph_loop.prompts import build_iteration_prompt
from ralph_loop.schemas import (
    IterationOutcome,
    IterationRecord,
    LoopResult,
    LoopStatus,
    SessionEvent,
    Signal,
    TaskProgress,
)
from ralph_loop.session_log import SessionLog
from ralph_loop.signal_channel import SignalChannel
from ralph_loop.spinner import Spinner
from ralph_loop.state_dir import IterationCounter, StatePaths
from ralph_loop.supervisor import PipelineHandle, ProcessSupervisor
from ralph_loop.task_state import TaskStateStore

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    """Externally observable controller states."""

    STARTING = "starting"
    RUNNING = "running"
    COMPLETE = "complete"
    ROTATING = "rotating"
    GUTTERED = "guttered"
    CONTINUING = "continuing"
    TERMINAL = "terminal"


ResumePolicy = Callable[[IterationRecord], str | None]
TransitionObserver = Callable[[ControllerState, int], None]


def cold_restart_policy(record: IterationRecord) -> str | None:
    """Always start the next iteration without a resume token."""
    return None


class IterationController:
    """Drives iterations until the task is complete, stuck, or capped.

    Parameters
    ----------
    config:
        Frozen :class:`LoopConfig` for this run.
    workspace:
        Repository root holding ``RALPH_TASK.md`` and ``.ralph/``.
    supervisor:
        Pipeline owner; built from *config* when omitted.
    resume_policy:
        Picks the resume token for the iteration after a rotation.
        Defaults to :func:`cold_restart_policy`.
    on_transition:
        Called with every state change and the current iteration number.
    sleep:
        Used for the pause between iterations.
    """

    def __init__(
        self,
        config: LoopConfig,
        workspace: str | Path,
        *,
        supervisor: ProcessSupervisor | None = None,
        task_store: TaskStateStore | None = None,
        session_log: SessionLog | None = None,
        counter: IterationCounter | None = None,
        resume_policy: ResumePolicy | None = None,
        on_transition: TransitionObserver | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.paths = StatePaths.for_workspace(workspace)
        self.supervisor = supervisor or ProcessSupervisor.from_config(config, self.paths.workspace)
        self.task_store = task_store or TaskStateStore(self.paths.workspace)
        self.session_log = session_log or SessionLog(self.paths)
        self.counter = counter or IterationCounter(self.paths.iteration)
        self.resume_policy = resume_policy or cold_restart_policy
        self.on_transition = on_transition
        self._sleep = sleep
        self.state = ControllerState.STARTING
        self.resume_token: str | None = None

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def run(self) -> LoopResult:
        """Run iterations until a terminal state and return the result."""
        if not self.task_store.exists():
            raise PreconditionError([f"No task document found at {self.task_store.path}"])

        result = LoopResult(status=LoopStatus.ALREADY_COMPLETE)
        progress = self.task_store.read_progress()
        if progress.complete:
            logger.info("Task already complete (%d/%d criteria)", progress.done, progress.total)
            return self._finish(result, progress)

        logger.info(
            "Starting loop: %d/%d criteria done, max_iterations=%d, model=%s",
            progress.done,
            progress.total,
            self.config.max_iterations,
            self.config.model,
        )

        while result.iterations_run < self.config.max_iterations:
            self._transition(ControllerState.STARTING, result.last_iteration)
            iteration = self.counter.increment()
            record = self.run_iteration(iteration, resume_token=self.resume_token)
            result.iterations.append(record)
            result.iterations_run += 1
            result.last_iteration = iteration

            if record.outcome == IterationOutcome.COMPLETE:
                self._transition(ControllerState.COMPLETE, iteration)
                self.session_log.append(
                    iteration,
                    SessionEvent.SESSION_ENDED_COMPLETE,
                    f"{record.progress.done}/{record.progress.total} criteria",
                )
                logger.info("Task complete after %d iteration(s)", result.iterations_run)
                result.status = LoopStatus.COMPLETE
                return self._finish(result, record.progress)

            if record.outcome == IterationOutcome.GUTTER:
                self._transition(ControllerState.GUTTERED, iteration)
                self.session_log.append(
                    iteration,
                    SessionEvent.SESSION_ENDED_GUTTER,
                    f"{record.progress.remaining} criteria remaining",
                )
                logger.error("Gutter detected in iteration %d; stopping for operator review", iteration)
                result.status = LoopStatus.GUTTER
                return self._finish(result, record.progress)

            if record.outcome == IterationOutcome.ROTATE:
                self._transition(ControllerState.ROTATING, iteration)
                self.session_log.append(iteration, SessionEvent.SESSION_ENDED_ROTATED)
                self.resume_token = self.resume_policy(record)
                logger.info("Rotating to fresh context")
            else:
                self._transition(ControllerState.CONTINUING, iteration)
                self.session_log.append(
                    iteration,
                    SessionEvent.SESSION_ENDED_NATURAL,
                    f"{record.progress.remaining} criteria remaining",
                )
                self.resume_token = None
                logger.info(
                    "Agent finished but %d criteria remain; starting next iteration",
                    record.progress.remaining,
                )

            if result.iterations_run < self.config.max_iterations:
                self._sleep(self.config.iteration_pause_seconds)

        final_progress = self.task_store.read_progress()
        self.session_log.append(
            result.last_iteration,
            SessionEvent.LOOP_ENDED_MAX_ITERATIONS,
            f"{self.config.max_iterations} iterations, "
            f"{final_progress.remaining} criteria remaining",
        )
        logger.warning(
            "Max iterations (%d) reached with %d criteria remaining",
            self.config.max_iterations,
            final_progress.remaining,
        )
        result.status = LoopStatus.MAX_ITERATIONS
        return self._finish(result, final_progress)

    def run_iteration(self, iteration: int, *, resume_token: str | None = None) -> IterationRecord:
        """Run one pipeline to completion and classify how it ended."""
        self._transition(ControllerState.RUNNING, iteration)
        record = IterationRecord(iteration=iteration, resume_token=resume_token)
        self.session_log.append(
            iteration, SessionEvent.SESSION_STARTED, f"model: {self.config.model}"
        )
        logger.info("==== Ralph iteration %d ====", iteration)

        started = time.monotonic()
        prompt = build_iteration_prompt(iteration)
        recorded: Signal | None = None
        with SignalChannel(name=f"iteration-{iteration}") as channel:
            handle = self.supervisor.start(prompt, channel, resume_token=resume_token)
            try:
                with self._liveness():
                    recorded = self._consume_signals(channel, handle, record)
            except BaseException:
                self.supervisor.terminate(handle)
                raise
            finally:
                record.exit_code = self.supervisor.wait(handle)
                record.terminated = handle.terminated
        record.duration_seconds = time.monotonic() - started

        record.progress = self.task_store.read_progress()
        if record.progress.complete:
            record.outcome = IterationOutcome.COMPLETE
        elif recorded == Signal.ROTATE:
            record.outcome = IterationOutcome.ROTATE
        elif recorded == Signal.GUTTER:
            record.outcome = IterationOutcome.GUTTER
        else:
            record.outcome = IterationOutcome.NATURAL
        logger.info(
            "Iteration %d ended: %s (exit=%s, %d/%d criteria, %.1fs)",
            iteration,
            record.outcome.value,
            record.exit_code,
            record.progress.done,
            record.progress.total,
            record.duration_seconds,
        )
        return record

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _consume_signals(
        self,
        channel: SignalChannel,
        handle: PipelineHandle,
        record: IterationRecord,
    ) -> Signal | None:
        """Read signals until the channel closes or a ROTATE arrives."""
        recorded: Signal | None = None
        for signal in channel:
            record.signals.append(signal)
            if signal == Signal.WARN:
                logger.warning("Context warning - agent should wrap up soon")
            elif signal == Signal.GUTTER:
                logger.warning("Gutter detected - agent may be stuck; letting it try to recover")
                recorded = Signal.GUTTER
            elif signal == Signal.ROTATE:
                logger.warning("Context rotation triggered - stopping agent")
                self.supervisor.terminate(handle)
                return Signal.ROTATE
        return recorded

    @contextlib.contextmanager
    def _liveness(self) -> Iterator[None]:
        if not (self.config.spinner and sys.stderr.isatty()):
            yield
            return
        message = f"Agent working... (watch: tail -f {self.paths.activity})"
        with Spinner(message):
            yield

    def _transition(self, state: ControllerState, iteration: int) -> None:
        logger.debug("Controller %s -> %s (iteration %d)", self.state.value, state.value, iteration)
        self.state = state
        if self.on_transition is not None:
            self.on_transition(state, iteration)

    def _finish(self, result: LoopResult, progress: TaskProgress) -> LoopResult:
        self._transition(ControllerState.TERMINAL, result.last_iteration)
        result.progress = progress
        result.finished_at = dt.datetime.now(dt.timezone.utc).isoformat()
        return result
