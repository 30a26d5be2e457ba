"""Frame-rate counting, thread-safe printing and time conversion."""

from __future__ import annotations

import threading
import time
from typing import Callable

_print_lock = threading.Lock()


class FPSCounter:
    """Counts processed frames and reports frames per second, refreshed once a second."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._frame_count = 0
        self._start = clock()
        self._current_fps = 0.0

    def increment_frame(self) -> None:
        """Record one processed frame."""
        with self._lock:
            self._frame_count += 1

    def current_fps(self) -> float:
        """Return the last measured rate, recomputing it once a full second has passed."""
        now = self._clock()
        with self._lock:
            elapsed = now - self._start
            if elapsed >= 1.0:
                self._current_fps = self._frame_count / elapsed
                self._frame_count = 0
                self._start = self._clock()
            return self._current_fps


def safe_print(message: str) -> None:
    """Print a line without interleaving with other threads."""
    with _print_lock:
        print(message, flush=True)


def timeval_to_us(seconds: int, microseconds: int) -> float:
    """Convert a seconds/microseconds pair to microseconds."""
    return seconds * 1_000_000.0 + microseconds