import numpy as np
import pytest

from npudetect.boxes import Box, Detection
from npudetect.tracking_adapter import Rect, TrackerWrapper, TrackResult


class FakeTrack:
    def __init__(self, track_id, cls_id, state):
        self.id = track_id
        self.cls_id = cls_id
        self.state = state


class FakeBackend:
    def __init__(self):
        self.calls = []
        self.tracks = []

    def update(self, detections, cls_ids, region):
        self.calls.append((detections, cls_ids, region))


def make_wrapper():
    backend = FakeBackend()
    wrapper = TrackerWrapper(lambda: backend)
    wrapper.init()
    return wrapper, backend


def det(left, top, right, bottom, prop=0.9, cls_id=0):
    return Detection(box=Box(left, top, right, bottom), prop=prop, cls_id=cls_id)


def test_init_stores_parameters():
    wrapper = TrackerWrapper(FakeBackend)
    wrapper.init(max_age=10, min_hits=2, iou_threshold=0.5)
    assert wrapper.initialized
    assert (wrapper.max_age, wrapper.min_hits, wrapper.iou_threshold) == (10, 2, 0.5)


def test_init_failure_propagates():
    def broken():
        raise RuntimeError("boom")

    wrapper = TrackerWrapper(broken)
    with pytest.raises(RuntimeError):
        wrapper.init()
    assert not wrapper.initialized


def test_update_before_init_raises():
    wrapper = TrackerWrapper(FakeBackend)
    with pytest.raises(RuntimeError):
        wrapper.update([], (640, 480))
    with pytest.raises(RuntimeError):
        wrapper.track_results()


@pytest.mark.parametrize(
    "d, expected",
    [
        (det(0, 0, 100, 100), True),
        (det(-1, 0, 100, 100), False),
        (det(0, -1, 100, 100), False),
        (det(0, 0, 641, 100), False),
        (det(0, 0, 100, 481), False),
        (det(0, 0, 19, 100), False),
        (det(0, 0, 100, 19), False),
        (det(0, 0, 20, 20), True),
        (det(620, 460, 640, 480), True),
    ],
)
def test_is_valid_detection(d, expected):
    wrapper, _ = make_wrapper()
    assert wrapper.is_valid_detection(d, (640, 480)) is expected


def test_convert_detections_filters_and_converts():
    wrapper, _ = make_wrapper()
    good = det(10, 20, 110, 220, prop=0.8, cls_id=0)
    low_conf = det(10, 20, 110, 220, prop=0.2)
    tiny = det(10, 20, 15, 25)
    vectors, cls_ids, confs = wrapper.convert_detections([good, low_conf, tiny], (640, 480))
    assert len(vectors) == 1
    assert cls_ids == [good.cls_id]
    assert confs == [good.prop]
    cx, cy = good.box.center
    np.testing.assert_array_equal(vectors[0], [cx, cy, good.box.width, good.box.height])


def test_convert_keeps_threshold_confidence():
    wrapper, _ = make_wrapper()
    vectors, _, confs = wrapper.convert_detections([det(0, 0, 50, 50, prop=0.25)], (640, 480))
    assert len(vectors) == 1
    assert confs == [0.25]


def test_update_passes_frame_region():
    wrapper, backend = make_wrapper()
    wrapper.update([det(0, 0, 50, 50, cls_id=0), det(-5, 0, 50, 50)], (640, 480))
    assert len(backend.calls) == 1
    vectors, cls_ids, region = backend.calls[0]
    assert region == (0, 0, 640, 480)
    assert len(vectors) == 1
    assert cls_ids == [0]


def test_track_results_builds_fixed_size_boxes():
    wrapper, backend = make_wrapper()
    backend.tracks = [FakeTrack(7, 0, np.array([125.0, 250.0]))]
    results = wrapper.track_results()
    assert len(results) == 1
    result = results[0]
    assert isinstance(result, TrackResult)
    assert result.track_id == 7
    assert result.cls_id == 0
    assert result.confidence == pytest.approx(0.9)
    assert (result.bbox.width, result.bbox.height) == (50, 100)
    assert result.bbox.x + result.bbox.width // 2 == 125
    assert result.bbox.y + result.bbox.height // 2 == 250


def test_track_results_truncates_state_and_skips_short():
    wrapper, backend = make_wrapper()
    backend.tracks = [
        FakeTrack(1, 0, [100.9, 200.9, 3.0]),
        FakeTrack(2, 0, [5.0]),
    ]
    results = wrapper.track_results()
    assert [r.track_id for r in results] == [1]
    assert results[0].bbox == Rect(100 - 25, 200 - 50, 50, 100)


def test_reinit_replaces_backend():
    backends = []

    def factory():
        backend = FakeBackend()
        backend.tracks = [FakeTrack(len(backends) + 1, 0, [100.0, 200.0])]
        backends.append(backend)
        return backend

    wrapper = TrackerWrapper(factory)
    wrapper.init()
    wrapper.init()
    wrapper.update([det(0, 0, 50, 50)], (640, 480))
    results = wrapper.track_results()
    assert [r.track_id for r in results] == [2]
    assert backends[0].calls == []
    assert len(backends[1].calls) == 1