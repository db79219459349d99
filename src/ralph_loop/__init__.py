"""ralph-loop - supervise an autonomous coding agent across context rotations."""

from importlib.metadata import PackageNotFoundError, version

from ralph_loop.schemas import IterationOutcome, LoopResult, LoopStatus, Signal

__all__ = ["IterationOutcome", "LoopResult", "LoopStatus", "Signal"]

try:
    __version__ = version("ralph-loop")
except PackageNotFoundError:
    __version__ = "0.0.0"
