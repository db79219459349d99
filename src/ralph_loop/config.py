"""Immutable run configuration resolved once at startup."""

from __future__ import annotations

import logging
import os
import shlex
import sys
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ralph_loop.runner_common import coerce_int

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "opus-4.5-thinking"
DEFAULT_AGENT_BINARY = "cursor-agent"
DEFAULT_MAX_ITERATIONS = 20
DEFAULT_WARN_THRESHOLD = 70_000
DEFAULT_ROTATE_THRESHOLD = 80_000
DEFAULT_ITERATION_PAUSE_SECONDS = 2.0
DEFAULT_GUTTER_REPEAT_LIMIT = 3

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _to_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    return default


def _positive_int(value: Any, default: int) -> int:
    parsed = coerce_int(value)
    return parsed if parsed > 0 else default


def _non_negative_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def default_monitor_command() -> list[str]:
    """The bundled stream monitor, run with the current interpreter."""
    return [sys.executable, "-m", "ralph_loop.stream_monitor"]


class LoopConfig(BaseModel):
    """Thresholds, model and limits for one supervised run.

    Built once (usually via :meth:`from_env`) and passed by reference into
    the controller; instances are frozen.
    """

    model_config = ConfigDict(frozen=True)

    model: str = DEFAULT_MODEL
    agent_binary: str = DEFAULT_AGENT_BINARY
    agent_args: tuple[str, ...] = ()
    monitor_command: tuple[str, ...] = Field(default_factory=lambda: tuple(default_monitor_command()))
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    warn_threshold: int = Field(default=DEFAULT_WARN_THRESHOLD, ge=1)
    rotate_threshold: int = Field(default=DEFAULT_ROTATE_THRESHOLD, ge=1)
    iteration_pause_seconds: float = Field(default=DEFAULT_ITERATION_PAUSE_SECONDS, ge=0)
    gutter_repeat_limit: int = Field(default=DEFAULT_GUTTER_REPEAT_LIMIT, ge=1)
    spinner: bool = True

    @model_validator(mode="after")
    def _warn_below_rotate(self) -> LoopConfig:
        if self.warn_threshold >= self.rotate_threshold:
            raise ValueError("warn_threshold must be lower than rotate_threshold")
        return self

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> LoopConfig:
        """Resolve configuration from ``RALPH_*`` variables.

        Unparseable values fall back to defaults; a warn threshold at or above
        the rotate threshold is pulled down to 7/8 of it. Keyword *overrides*
        (CLI flags) win over the environment when not ``None``.
        """
        env = os.environ if environ is None else environ

        rotate = _positive_int(env.get("RALPH_ROTATE_THRESHOLD"), DEFAULT_ROTATE_THRESHOLD)
        warn = _positive_int(env.get("RALPH_WARN_THRESHOLD"), DEFAULT_WARN_THRESHOLD)
        monitor_raw = (env.get("RALPH_MONITOR_COMMAND") or "").strip()
        agent_args_raw = (env.get("RALPH_AGENT_ARGS") or "").strip()
        values: dict[str, Any] = {
            "model": (env.get("RALPH_MODEL") or "").strip() or DEFAULT_MODEL,
            "agent_binary": (env.get("RALPH_AGENT_BINARY") or "").strip() or DEFAULT_AGENT_BINARY,
            "agent_args": tuple(shlex.split(agent_args_raw)) if agent_args_raw else (),
            "monitor_command": (
                tuple(shlex.split(monitor_raw)) if monitor_raw else tuple(default_monitor_command())
            ),
            "max_iterations": _positive_int(
                env.get("RALPH_MAX_ITERATIONS"), DEFAULT_MAX_ITERATIONS
            ),
            "warn_threshold": warn,
            "rotate_threshold": rotate,
            "iteration_pause_seconds": _non_negative_float(
                env.get("RALPH_ITERATION_PAUSE"), DEFAULT_ITERATION_PAUSE_SECONDS
            ),
            "gutter_repeat_limit": _positive_int(
                env.get("RALPH_GUTTER_REPEATS"), DEFAULT_GUTTER_REPEAT_LIMIT
            ),
            "spinner": _to_bool(env.get("RALPH_SPINNER"), True),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        if coerce_int(values["warn_threshold"]) >= coerce_int(values["rotate_threshold"]):
            adjusted = max(1, coerce_int(values["rotate_threshold"]) * 7 // 8)
            logger.warning(
                "Warn threshold %s is not below rotate threshold %s; using %s",
                values["warn_threshold"],
                values["rotate_threshold"],
                adjusted,
            )
            values["warn_threshold"] = adjusted
        return cls(**values)
