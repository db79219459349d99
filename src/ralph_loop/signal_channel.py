"""Per-iteration channel carrying monitor signals to the controller.

One producer (the supervisor's reader thread) and one consumer (the
controller). The queue is unbounded because signal volume is a handful of
tokens per iteration. Closing the channel wakes a blocked reader; signals
put after close are dropped so nothing can leak into a later iteration.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterator
from types import TracebackType

from ralph_loop.schemas import Signal

logger = logging.getLogger(__name__)

_CLOSED = object()


def parse_signal_token(line: str) -> Signal | None:
    """Map one line of monitor output to a :class:`Signal`, if it is one."""
    token = (line or "").strip().upper()
    if not token:
        return None
    try:
        return Signal(token)
    except ValueError:
        return None


class SignalChannel:
    """Ordered blocking single-consumer queue of :class:`Signal` values."""

    def __init__(self, name: str = "signals") -> None:
        self.name = name
        self._queue: queue.Queue[object] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, signal: Signal) -> bool:
        """Enqueue *signal*; returns False when the channel is already closed."""
        with self._lock:
            if self._closed:
                logger.debug("Dropping %s on closed channel %s", signal.value, self.name)
                return False
            self._queue.put(signal)
            return True

    def close(self) -> None:
        """Mark end-of-stream. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)

    def get(self, timeout: float | None = None) -> Signal | None:
        """Return the next signal, or ``None`` once closed and drained.

        With a *timeout*, ``queue.Empty`` is raised when nothing arrives in time.
        """
        if self._drained:
            return None
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            self._drained = True
            return None
        assert isinstance(item, Signal)
        return item

    def discard_pending(self) -> list[Signal]:
        """Close the channel and return whatever was never read."""
        self.close()
        leftovers: list[Signal] = []
        while not self._drained:
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._drained = True
            elif isinstance(item, Signal):
                leftovers.append(item)
        return leftovers

    def __iter__(self) -> Iterator[Signal]:
        while True:
            signal = self.get()
            if signal is None:
                return
            yield signal

    def __enter__(self) -> SignalChannel:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        leftovers = self.discard_pending()
        if leftovers:
            logger.debug(
                "Channel %s discarded %d unread signal(s): %s",
                self.name,
                len(leftovers),
                ", ".join(s.value for s in leftovers),
            )
