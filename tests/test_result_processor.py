from concurrent.futures import ThreadPoolExecutor

import pytest
from PIL import Image, ImageDraw

from npudetect.boxes import Box, Detection
from npudetect.result_processor import (
    COCO_CLASS_NAMES,
    OUTPUT_SIZE,
    ResultProcessor,
    format_detection_label,
)
from npudetect.tracking_adapter import Rect, TrackResult
from npudetect.utils import FPSCounter


class FakeTracker:
    def __init__(self, tracks=()):
        self.tracks = list(tracks)

    def track_results(self):
        return list(self.tracks)


def det(left, top, right, bottom, prop=0.9, cls_id=0):
    return Detection(box=Box(left, top, right, bottom), prop=prop, cls_id=cls_id)


def track_at(track_id, cx, cy, cls_id=0):
    return TrackResult(track_id=track_id, bbox=Rect(cx - 25, cy - 50, 50, 100), cls_id=cls_id, confidence=0.9)


def test_format_label_without_track():
    assert format_detection_label(det(0, 0, 10, 10, prop=0.5), -1) == "person 50.0%"


def test_format_label_with_track():
    assert format_detection_label(det(0, 0, 10, 10, prop=0.5, cls_id=2), 3) == "ID:3 car 50.0%"


def test_format_label_rejects_unknown_class():
    with pytest.raises(ValueError):
        format_detection_label(det(0, 0, 10, 10, cls_id=80), -1)


def test_last_class_name_is_labelled():
    assert len(COCO_CLASS_NAMES) == 80
    label = format_detection_label(det(0, 0, 10, 10, prop=0.5, cls_id=79), -1)
    assert label == "toothbrush 50.0%"


def test_init_rejects_none():
    with pytest.raises(ValueError):
        ResultProcessor().init(None)


def test_process_before_init_raises():
    frame = Image.new("RGB", (64, 48))
    with pytest.raises(RuntimeError):
        ResultProcessor().process_and_draw([], frame, FakeTracker(), FPSCounter())


def test_map_matches_nearby_track_of_same_class():
    proc = ResultProcessor()
    detections = [det(100, 100, 200, 300)]
    cx, cy = detections[0].box.center
    mapping = proc.build_detection_track_map(detections, [track_at(5, cx + 3, cy - 3)])
    assert mapping == {0: 5}


def test_map_ignores_other_class_and_far_tracks():
    proc = ResultProcessor()
    detections = [det(100, 100, 200, 300, cls_id=0)]
    cx, cy = detections[0].box.center
    tracks = [track_at(1, cx, cy, cls_id=1), track_at(2, cx + 40, cy)]
    assert proc.build_detection_track_map(detections, tracks) == {}


def test_map_assigns_each_detection_once():
    proc = ResultProcessor()
    detections = [det(100, 100, 200, 300), det(102, 100, 202, 300)]
    cx, cy = detections[0].box.center
    mapping = proc.build_detection_track_map(detections, [track_at(1, cx, cy), track_at(2, cx, cy)])
    assert mapping == {0: 1, 1: 2}
    assert len(set(mapping.values())) == len(mapping)


def test_draw_single_detection_draws_box():
    proc = ResultProcessor()
    image = Image.new("RGB", (640, 480))
    draw = ImageDraw.Draw(image)
    d = det(300, 300, 500, 450, prop=0.75)
    label = proc.draw_single_detection(d, 4, draw)
    assert label == format_detection_label(d, 4)
    assert image.getpixel((400, 300)) == (0, 0, 255)
    assert image.getpixel((400, 400)) == (0, 0, 0)


def test_process_and_draw_resizes_and_skips_unknown_classes():
    proc = ResultProcessor()
    frame = Image.new("RGB", (640, 480))
    with ThreadPoolExecutor(max_workers=2) as pool:
        proc.init(pool)
        out = proc.process_and_draw(
            [det(300, 300, 500, 450, cls_id=80)], frame, FakeTracker(), FPSCounter()
        )
    assert out.size == OUTPUT_SIZE
    assert frame.getpixel((400, 300)) == (0, 0, 0)


def test_process_and_draw_draws_known_detections():
    proc = ResultProcessor()
    frame = Image.new("RGB", (640, 480))
    d = det(300, 300, 500, 450)
    cx, cy = d.box.center
    with ThreadPoolExecutor(max_workers=2) as pool:
        proc.init(pool)
        out = proc.process_and_draw([d], frame, FakeTracker([track_at(9, cx, cy)]), FPSCounter())
    assert out.size == OUTPUT_SIZE
    assert frame.getpixel((400, 300)) == (0, 0, 255)
    assert frame.getpixel((500, 400)) == (0, 0, 255)


def test_process_and_draw_rejects_empty_frame():
    proc = ResultProcessor()
    with ThreadPoolExecutor(max_workers=1) as pool:
        proc.init(pool)
        with pytest.raises(ValueError):
            proc.process_and_draw([], Image.new("RGB", (0, 0)), FakeTracker(), FPSCounter())