"""Matching detections to tracks and drawing them onto frames."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future
from typing import Protocol, Sequence

from PIL import Image, ImageDraw

from npudetect.boxes import Detection
from npudetect.tracking_adapter import TrackResult
from npudetect.utils import FPSCounter, safe_print

logger = logging.getLogger(__name__)

OUTPUT_SIZE = (1280, 720)
MATCH_DISTANCE = 30
NUM_COCO_CLASSES = 80

BOX_COLOR = (0, 0, 255)
LABEL_COLOR = (255, 0, 0)
FPS_COLOR = (0, 40, 90)
TRACKED_COLOR = (0, 255, 0)

SKELETON = (
    16, 14, 14, 12, 17, 15, 15, 13, 12, 13, 6, 12, 7, 13, 6, 7, 6, 8,
    7, 9, 8, 10, 9, 11, 2, 3, 1, 2, 1, 3, 2, 4, 3, 5, 4, 6, 5, 7,
)

COCO_CLASS_NAMES = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck", "boat",
    "traffic light", "fire hydrant", "stop sign", "parking meter", "bench", "bird", "cat",
    "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra", "giraffe", "backpack",
    "umbrella", "handbag", "tie", "suitcase", "frisbee", "skis", "snowboard", "sports ball",
    "kite", "baseball bat", "baseball glove", "skateboard", "surfboard", "tennis racket",
    "bottle", "wine glass", "cup", "fork", "knife", "spoon", "bowl", "banana", "apple",
    "sandwich", "orange", "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair",
    "couch", "potted plant", "bed", "dining table", "toilet", "tv", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink", "refrigerator",
    "book", "clock", "vase", "scissors", "teddy bear", "hair drier", "toothbrush",
)


class TrackSource(Protocol):
    def track_results(self) -> list[TrackResult]: ...


def _half(value: int) -> int:
    """Integer halving that truncates toward zero."""
    return int(value / 2)


def _class_name(cls_id: int) -> str:
    if not 0 <= cls_id < NUM_COCO_CLASSES:
        raise ValueError(f"class id {cls_id} outside 0..{NUM_COCO_CLASSES - 1}")
    return COCO_CLASS_NAMES[cls_id]


def format_detection_label(det: Detection, track_id: int) -> str:
    """Text drawn above a detection: optional track id, class name and percentage."""
    name = _class_name(det.cls_id)
    percent = det.prop * 100
    if track_id != -1:
        return f"ID:{track_id} {name} {percent:.1f}%"
    return f"{name} {percent:.1f}%"


class ResultProcessor:
    """Draws detections, track ids and frame statistics."""

    def __init__(self) -> None:
        self._executor: Executor | None = None
        self._draw_lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._executor is not None

    def init(self, executor: Executor) -> None:
        """Use ``executor`` to draw detections in parallel."""
        if executor is None:
            raise ValueError("executor must not be None")
        self._executor = executor
        logger.info("result processor initialized")

    def process_and_draw(
        self,
        detections: Sequence[Detection],
        frame: Image.Image,
        tracker: TrackSource,
        fps_counter: FPSCounter,
    ) -> Image.Image:
        """Draw onto ``frame`` and return it resized to the fixed output size."""
        if self._executor is None:
            raise RuntimeError("result processor used before init()")
        if frame.width == 0 or frame.height == 0:
            raise ValueError("frame is empty")

        tracks = tracker.track_results()
        mapping = self.build_detection_track_map(detections, tracks)

        draw = ImageDraw.Draw(frame)
        futures: list[Future] = []
        for i, det in enumerate(detections):
            if not 0 <= det.cls_id < NUM_COCO_CLASSES:
                continue
            futures.append(
                self._executor.submit(self.draw_single_detection, det, mapping.get(i, -1), draw)
            )
        for future in futures:
            try:
                future.result()
            except Exception as exc:  # a failed drawing must not stop the frame
                logger.error("draw task exception: %s", exc)

        current_fps = fps_counter.current_fps()
        with self._draw_lock:
            draw.text((10, 40), f"FPS: {current_fps:.2f}", fill=FPS_COLOR)
            draw.text((10, 90), f"Tracked: {len(tracks)}", fill=TRACKED_COLOR)

        return frame.resize(OUTPUT_SIZE, Image.Resampling.BICUBIC)

    def build_detection_track_map(
        self, detections: Sequence[Detection], tracks: Sequence[TrackResult]
    ) -> dict[int, int]:
        """Map detection indices to track ids by nearest centre within 30 pixels, same class."""
        mapping: dict[int, int] = {}
        for track in tracks:
            rect = track.bbox
            track_cx = rect.x + _half(rect.width)
            track_cy = rect.y + _half(rect.height)
            for i, det in enumerate(detections):
                if i in mapping or det.cls_id != track.cls_id:
                    continue
                det_cx = _half(det.box.left + det.box.right)
                det_cy = _half(det.box.top + det.box.bottom)
                if abs(track_cx - det_cx) + abs(track_cy - det_cy) < MATCH_DISTANCE:
                    mapping[i] = track.track_id
                    break
        return mapping

    def draw_single_detection(
        self, det: Detection, track_id: int, draw: ImageDraw.ImageDraw
    ) -> str:
        """Draw one detection's box and label; return the label text."""
        box = det.box
        x1, y1, x2, y2 = box.left, box.top, box.right, box.bottom
        label = format_detection_label(det, track_id)
        name = _class_name(det.cls_id)
        text_y = y1 - 20 if y1 - 20 > 0 else 20

        with self._draw_lock:
            draw.rectangle(
                [(min(x1, x2), min(y1, y2)), (max(x1, x2), max(y1, y2))],
                outline=BOX_COLOR,
                width=2,
            )
            draw.text((x1, text_y - 10), label, fill=LABEL_COLOR)

        prefix = f"ID:{track_id} " if track_id != -1 else ""
        safe_print(f"{prefix}{name} @ ({x1}, {y1}, {x2}, {y2}) Conf:{det.prop:.3f}")
        return label