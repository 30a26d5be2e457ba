"""The capture → inference → tracking → drawing loop with timing statistics."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol, Sequence

import numpy as np
from PIL import Image

from npudetect.boxes import Detection
from npudetect.utils import FPSCounter, safe_print

logger = logging.getLogger(__name__)

REPORT_INTERVAL = 10
DRAIN_TIMEOUT = 1.0
DEFAULT_THREAD_NUM = 6


class _Model(Protocol):
    def submit_infer_task(self, frame: np.ndarray) -> Future: ...


class _Tracker(Protocol):
    def update(self, detections: Sequence[Detection], frame_size: tuple[int, int]) -> None: ...


class _Processor(Protocol):
    def process_and_draw(
        self, detections: Sequence[Detection], frame: Image.Image, tracker: object, fps_counter: FPSCounter
    ) -> Image.Image: ...


@dataclass
class PerformanceStats:
    """Per-stage timings accumulated between reports, plus global frame counts."""

    start_time: float = field(default_factory=time.monotonic)
    total_completed: int = 0
    last_completed: int = 0
    last_stat_time: float = field(init=False)
    read_ms: float = field(default=0.0, init=False)
    submit_ms: float = field(default=0.0, init=False)
    process_ms: float = field(default=0.0, init=False)
    show_ms: float = field(default=0.0, init=False)

    def __post_init__(self) -> None:
        self.last_stat_time = self.start_time

    def record(
        self,
        read_ms: float,
        submit_ms: float,
        process_ms: float = 0.0,
        show_ms: float = 0.0,
        completed: bool = False,
    ) -> None:
        """Add one loop iteration's timings; count it if a frame was fully processed."""
        self.read_ms += read_ms
        self.submit_ms += submit_ms
        self.process_ms += process_ms
        self.show_ms += show_ms
        if completed:
            self.total_completed += 1

    def report(self, total_read: int, now: float) -> str | None:
        """Return a report every tenth completed frame, resetting the window; else ``None``."""
        if (
            self.total_completed % REPORT_INTERVAL != 0
            or self.total_completed == self.last_completed
        ):
            return None
        elapsed = now - self.last_stat_time
        frames = self.total_completed - self.last_completed

        avg_read = self.read_ms / frames
        avg_submit = self.submit_ms / frames
        avg_process = self.process_ms / frames
        avg_show = self.show_ms / frames
        avg_total = avg_read + avg_submit + avg_process + avg_show
        recent_fps = frames / elapsed if elapsed > 0 else math.inf

        text = (
            f"[fps stats] read:{total_read} | completed:{self.total_completed} | "
            f"avg total: {avg_total:.2f}ms | recent FPS: {recent_fps:.1f}\n"
            f"[fps detail] read: {avg_read:.2f}ms | submit: {avg_submit:.2f}ms | "
            f"process: {avg_process:.2f}ms | show: {avg_show:.2f}ms"
        )

        self.read_ms = self.submit_ms = self.process_ms = self.show_ms = 0.0
        self.last_completed = self.total_completed
        self.last_stat_time = now
        return text


def _global_summary(stats: PerformanceStats, now: float) -> str:
    elapsed = now - stats.start_time
    rate = stats.total_completed / elapsed if elapsed > 0 else math.inf
    return (
        f"[fps global] completed: {stats.total_completed} | "
        f"elapsed: {elapsed:.2f}s | average FPS: {rate:.1f}"
    )


def _to_image(frame: np.ndarray) -> Image.Image:
    arr = np.asarray(frame)
    if arr.ndim == 3 and arr.shape[2] == 3:
        arr = arr[..., ::-1]
    return Image.fromarray(np.ascontiguousarray(arr).astype(np.uint8))


def _show(display: Callable[[Image.Image], object] | None, image: Image.Image) -> bool:
    if display is None:
        return False
    return bool(display(image))


def _elapsed_ms(start: float, end: float) -> float:
    return (end - start) * 1000.0


def run_pipeline(
    frames: Iterable[np.ndarray],
    model: _Model,
    tracker: _Tracker,
    processor: _Processor,
    fps: FPSCounter,
    thread_num: int = DEFAULT_THREAD_NUM,
    display: Callable[[Image.Image], object] | None = None,
    stats: PerformanceStats | None = None,
) -> PerformanceStats:
    """Run detection over BGR ``frames`` until they run out or ``display`` returns true.

    Results are consumed ``thread_num`` frames behind submission so the
    workers stay busy; frames shown before that are displayed unprocessed.
    """
    clock = time.monotonic
    if stats is None:
        stats = PerformanceStats(start_time=clock())

    pending: deque[Future] = deque()
    total_read = 0
    frame_idx = 0
    last_frame_end = clock()

    for frame in frames:
        total_read += 1
        read_ms = _elapsed_ms(last_frame_end, clock())

        submit_start = clock()
        pending.append(model.submit_infer_task(frame))
        submit_ms = _elapsed_ms(submit_start, clock())

        process_ms = show_ms = 0.0
        completed = False
        stop = False
        if frame_idx >= thread_num and pending:
            process_start = clock()
            future = pending.popleft()
            try:
                detections = future.result()
                height, width = np.asarray(frame).shape[:2]
                tracker.update(detections, (width, height))
                image = processor.process_and_draw(detections, _to_image(frame), tracker, fps)
                show_start = clock()
                stop = _show(display, image)
                fps.increment_frame()
                show_ms = _elapsed_ms(show_start, clock())
                completed = True
            except Exception as exc:
                logger.error("failed to process frame: %s", exc)
            process_ms = _elapsed_ms(process_start, clock())
        else:
            stop = _show(display, _to_image(frame))
        frame_idx += 1

        stats.record(read_ms, submit_ms, process_ms, show_ms, completed)
        report = stats.report(total_read, clock())
        if report is not None:
            safe_print(report)

        last_frame_end = clock()
        if stop:
            break

    safe_print("waiting for remaining inference tasks...")
    for future in pending:
        try:
            future.result(timeout=DRAIN_TIMEOUT)
            stats.total_completed += 1
        except FutureTimeout:
            logger.warning("inference task timed out, skipped")
        except Exception as exc:
            logger.error("remaining inference task failed: %s", exc)
    pending.clear()

    safe_print(_global_summary(stats, clock()))
    return stats