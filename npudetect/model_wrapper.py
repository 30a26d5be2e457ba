"""A detector that runs inference on a pool of worker threads."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Protocol, Sequence

import numpy as np

from npudetect.boxes import Detection

logger = logging.getLogger(__name__)

DEFAULT_THREAD_NUM = 6


class InferenceEngine(Protocol):
    """One model context: turns an RGB frame into detections."""

    def infer(self, rgb_frame: np.ndarray) -> Sequence[Detection]: ...


class Yolov8Model:
    """Holds one inference engine per worker and hands submitted frames out round-robin."""

    def __init__(self) -> None:
        self._engines: list[InferenceEngine] = []
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._next_index = 0

    def __enter__(self) -> "Yolov8Model":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    @property
    def initialized(self) -> bool:
        return self._executor is not None and bool(self._engines)

    @property
    def executor(self) -> ThreadPoolExecutor | None:
        """The worker pool, shared with other stages such as drawing."""
        return self._executor

    def init(
        self,
        engine_factory: Callable[[], InferenceEngine],
        thread_num: int = DEFAULT_THREAD_NUM,
    ) -> None:
        """Start ``thread_num`` workers and create one engine for each."""
        if thread_num <= 0:
            raise ValueError("thread_num must be positive")
        if self._executor is not None:
            self.release()

        self._executor = ThreadPoolExecutor(
            max_workers=thread_num, thread_name_prefix="infer"
        )
        index = 0
        try:
            for index in range(thread_num):
                self._engines.append(engine_factory())
        except Exception as exc:
            self.release()
            raise RuntimeError(
                f"failed to init model context (thread {index})"
            ) from exc
        self._next_index = 0
        logger.info("model initialized, thread num: %d", thread_num)

    def submit_infer_task(self, frame: np.ndarray) -> Future:
        """Queue a BGR frame for inference; the future yields its detections."""
        if not self.initialized:
            raise RuntimeError("model not initialized, cannot submit task")
        assert self._executor is not None
        snapshot = np.array(frame, copy=True)
        return self._executor.submit(self._infer, snapshot)

    def release(self) -> None:
        """Stop the workers and release every engine."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        for engine in self._engines:
            close = getattr(engine, "release", None)
            if callable(close):
                close()
        self._engines.clear()
        logger.info("model released")

    def _next_engine(self) -> InferenceEngine:
        with self._lock:
            engine = self._engines[self._next_index % len(self._engines)]
            self._next_index += 1
            return engine

    def _infer(self, frame: np.ndarray) -> list[Detection]:
        engine = self._next_engine()
        if frame.ndim == 3 and frame.shape[2] == 3:
            rgb = np.ascontiguousarray(frame[..., ::-1])
        else:
            rgb = frame
        try:
            return list(engine.infer(rgb))
        except Exception as exc:
            logger.error("infer failed: %s", exc)
            return []