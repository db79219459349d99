"""Tests for environment-backed run configuration."""

from __future__ import annotations

import sys

import pytest
from pydantic import ValidationError

from ralph_loop.config import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MODEL,
    DEFAULT_ROTATE_THRESHOLD,
    DEFAULT_WARN_THRESHOLD,
    LoopConfig,
)


def test_defaults_from_empty_environment() -> None:
    config = LoopConfig.from_env({})
    assert config.model == DEFAULT_MODEL
    assert config.agent_binary == "cursor-agent"
    assert config.max_iterations == DEFAULT_MAX_ITERATIONS
    assert config.warn_threshold == DEFAULT_WARN_THRESHOLD
    assert config.rotate_threshold == DEFAULT_ROTATE_THRESHOLD
    assert config.iteration_pause_seconds == 2.0
    assert config.monitor_command == (sys.executable, "-m", "ralph_loop.stream_monitor")
    assert config.spinner is True
    assert config.agent_args == ()


def test_environment_values_are_parsed() -> None:
    config = LoopConfig.from_env(
        {
            "RALPH_MODEL": " sonnet-4 ",
            "RALPH_MAX_ITERATIONS": "5",
            "RALPH_WARN_THRESHOLD": "10_000",
            "RALPH_ROTATE_THRESHOLD": "12,000",
            "RALPH_ITERATION_PAUSE": "0",
            "RALPH_MONITOR_COMMAND": "my-monitor --strict",
            "RALPH_AGENT_ARGS": "--sandbox disabled --label 'two words'",
            "RALPH_SPINNER": "off",
            "RALPH_GUTTER_REPEATS": "4",
        }
    )
    assert config.model == "sonnet-4"
    assert config.max_iterations == 5
    assert config.warn_threshold == 10_000
    assert config.rotate_threshold == 12_000
    assert config.iteration_pause_seconds == 0.0
    assert config.monitor_command == ("my-monitor", "--strict")
    assert config.agent_args == ("--sandbox", "disabled", "--label", "two words")
    assert config.spinner is False
    assert config.gutter_repeat_limit == 4


def test_invalid_values_fall_back_to_defaults() -> None:
    config = LoopConfig.from_env(
        {
            "RALPH_MAX_ITERATIONS": "-3",
            "RALPH_ITERATION_PAUSE": "soon",
            "RALPH_SPINNER": "maybe",
        }
    )
    assert config.max_iterations == DEFAULT_MAX_ITERATIONS
    assert config.iteration_pause_seconds == 2.0
    assert config.spinner is True


def test_warn_threshold_is_pulled_below_rotate(caplog) -> None:
    config = LoopConfig.from_env({"RALPH_WARN_THRESHOLD": "90000", "RALPH_ROTATE_THRESHOLD": "80000"})
    assert config.warn_threshold == 70_000
    assert "not below rotate threshold" in caplog.text


def test_overrides_win_and_none_is_ignored() -> None:
    config = LoopConfig.from_env({"RALPH_MODEL": "env-model"}, model=None, max_iterations=3)
    assert config.model == "env-model"
    assert config.max_iterations == 3


def test_config_is_frozen() -> None:
    config = LoopConfig()
    with pytest.raises(ValidationError):
        config.max_iterations = 99  # type: ignore[misc]


def test_direct_construction_validates_thresholds() -> None:
    with pytest.raises(ValidationError, match="warn_threshold must be lower"):
        LoopConfig(warn_threshold=100, rotate_threshold=100)
