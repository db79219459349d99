"""Exception types raised by the supervisor."""

from __future__ import annotations


class RalphError(RuntimeError):
    """Base class for fatal supervisor errors."""


class PreconditionError(RalphError):
    """Raised when the workspace is not ready for a supervised run."""

    def __init__(self, failures: list[str]) -> None:
        self.failures = list(failures)
        super().__init__("; ".join(self.failures) or "preconditions not met")


class PipelineStartError(RalphError):
    """Raised when the agent or monitor process cannot be launched."""
