"""Liveness indicator shown while the agent works.

Purely cosmetic: it writes to stderr from a daemon thread and is never
consulted by the controller.
"""

from __future__ import annotations

import logging
import sys
import threading
from types import TracebackType
from typing import TextIO

logger = logging.getLogger(__name__)

_FRAMES = "|/-\\"


class Spinner:
    """Animated ``Agent working...`` line on a TTY."""

    def __init__(
        self,
        message: str,
        *,
        stream: TextIO | None = None,
        interval: float = 0.1,
    ) -> None:
        self.message = message
        self.stream = stream if stream is not None else sys.stderr
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._spin, name="ralph-spinner", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=1.0)
        self._thread = None
        self._write("\r\033[K")

    def _spin(self) -> None:
        frame = 0
        while not self._stop.wait(self.interval):
            self._write(f"\r  {self.message} {_FRAMES[frame % len(_FRAMES)]}")
            frame += 1

    def _write(self, text: str) -> None:
        try:
            self.stream.write(text)
            self.stream.flush()
        except (OSError, ValueError):
            logger.debug("Spinner output unavailable; stopping animation")
            self._stop.set()

    def __enter__(self) -> Spinner:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
