"""Adapter between detector output and a multi-object tracker backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, NamedTuple, Protocol, Sequence

import numpy as np

from npudetect.boxes import Detection

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.25
MIN_BOX_SIDE = 20
DEFAULT_TRACK_WIDTH = 50
DEFAULT_TRACK_HEIGHT = 100
DEFAULT_TRACK_CONFIDENCE = 0.9


class Rect(NamedTuple):
    """A rectangle given by its top-left corner and size."""

    x: int
    y: int
    width: int
    height: int


@dataclass
class TrackResult:
    """One tracked object in a form ready for drawing."""

    track_id: int
    bbox: Rect
    cls_id: int
    confidence: float


class TrackLike(Protocol):
    """What the wrapper reads from a backend track."""

    id: int
    cls_id: int
    state: Any


class TrackerBackend(Protocol):
    """A tracker that consumes ``[cx, cy, w, h]`` vectors and keeps tracks."""

    @property
    def tracks(self) -> Sequence[TrackLike]: ...

    def update(
        self,
        detections: list[np.ndarray],
        cls_ids: list[int],
        region: tuple[int, int, int, int],
    ) -> None: ...


class TrackerWrapper:
    """Filters detections, feeds them to a tracker backend and reports its tracks."""

    def __init__(self, backend_factory: Callable[[], TrackerBackend]) -> None:
        self._backend_factory = backend_factory
        self._backend: TrackerBackend | None = None
        self.max_age = 30
        self.min_hits = 3
        self.iou_threshold = 0.3

    @property
    def initialized(self) -> bool:
        return self._backend is not None

    def init(self, max_age: int = 30, min_hits: int = 3, iou_threshold: float = 0.3) -> None:
        """Create a fresh backend and store the tracking parameters."""
        self.max_age = max_age
        self.min_hits = min_hits
        self.iou_threshold = iou_threshold
        self._backend = None
        self._backend = self._backend_factory()
        logger.info(
            "tracker initialized (max_age: %d, min_hits: %d, iou_threshold: %.2f)",
            max_age,
            min_hits,
            iou_threshold,
        )

    def _require_backend(self) -> TrackerBackend:
        if self._backend is None:
            raise RuntimeError("tracker used before init()")
        return self._backend

    def update(self, detections: Sequence[Detection], frame_size: tuple[int, int]) -> None:
        """Feed one frame's detections to the backend; ``frame_size`` is ``(width, height)``."""
        backend = self._require_backend()
        vectors, cls_ids, _ = self.convert_detections(detections, frame_size)
        width, height = frame_size
        backend.update(vectors, cls_ids, (0, 0, width, height))
        logger.debug(
            "tracker updated with %d valid detections (total input: %d)",
            len(vectors),
            len(detections),
        )

    def track_results(self) -> list[TrackResult]:
        """Return every backend track whose state holds at least a centre point."""
        backend = self._require_backend()
        results: list[TrackResult] = []
        for track in backend.tracks:
            state = np.asarray(track.state, dtype=np.float64).ravel()
            if state.size < 2:
                logger.warning("invalid track state size: %d", state.size)
                continue
            center_x = int(state[0])
            center_y = int(state[1])
            bbox = Rect(
                center_x - DEFAULT_TRACK_WIDTH // 2,
                center_y - DEFAULT_TRACK_HEIGHT // 2,
                DEFAULT_TRACK_WIDTH,
                DEFAULT_TRACK_HEIGHT,
            )
            results.append(
                TrackResult(
                    track_id=track.id,
                    bbox=bbox,
                    cls_id=track.cls_id,
                    confidence=DEFAULT_TRACK_CONFIDENCE,
                )
            )
        logger.debug("got %d track results", len(results))
        return results

    def convert_detections(
        self, detections: Sequence[Detection], frame_size: tuple[int, int]
    ) -> tuple[list[np.ndarray], list[int], list[float]]:
        """Turn valid detections into ``[cx, cy, w, h]`` vectors with class ids and confidences."""
        vectors: list[np.ndarray] = []
        cls_ids: list[int] = []
        confidences: list[float] = []
        for det in detections:
            if not self.is_valid_detection(det, frame_size) or det.prop < MIN_CONFIDENCE:
                continue
            box = det.box
            center_x, center_y = box.center
            vectors.append(
                np.array([center_x, center_y, box.width, box.height], dtype=np.float64)
            )
            cls_ids.append(det.cls_id)
            confidences.append(det.prop)
        return vectors, cls_ids, confidences

    def is_valid_detection(self, det: Detection, frame_size: tuple[int, int]) -> bool:
        """A box must lie inside the frame and be at least 20 pixels on each side."""
        width, height = frame_size
        box = det.box
        if box.left < 0 or box.top < 0 or box.right > width or box.bottom > height:
            return False
        return box.width >= MIN_BOX_SIDE and box.height >= MIN_BOX_SIDE