# npudetect

Building blocks for a real-time YOLOv8 detection pipeline whose network
runs on a neural processing unit. The package decodes the raw
three-branch model outputs (int8, uint8, float32 or channel-last int8),
turns distribution focal loss logits into boxes, applies per-class
non-maximum suppression, maps boxes back through the letterbox, pairs
detections with tracks, draws results onto frames and keeps frame-rate
statistics.

## Installation

```
pip install .
```

The package depends on `numpy` and `pillow`. Install the `test` extra to
get `pytest`.

## Modules

- `npudetect.boxes`: the `Box`, `Detection` and `Letterbox` dataclasses;
  `calculate_overlap` (IoU with inclusive pixel extents), `nms`,
  `sort_descending`, `sigmoid`, `unsigmoid`, `quantize_i8`, `quantize_u8`,
  `dequantize` and `compute_dfl`. Defaults live here too: `BOX_THRESH`
  (0.25), `NMS_THRESH` (0.45) and `OBJ_NUMB_MAX_SIZE` (128 detections per
  frame).
- `npudetect.postprocess`: `TensorOutput` (a tensor with its zero point and
  scale), `Branch` (box, score and optional score-sum tensors of one head),
  `DecodeMode`, `LabelTable` (with `LabelTable.from_file` and
  `LabelTable.name`, which returns `"null"` for unknown ids),
  `read_label_file`, the decoders `process_i8`, `process_u8`,
  `process_fp32` and `process_i8_nhwc`, and `post_process`, which decodes
  all branches and returns detections by descending confidence.
- `npudetect.layout`: `TensorFormat`, `model_input_shape` (height, width
  and channel of a model input) and `nc1hwc2_to_nchw` (unpacks a native
  NC1HWC2 tensor into a `(batch, channel, h, w)` array).
- `npudetect.tracking_adapter`: `TrackerWrapper`, which filters detections
  (inside the frame, at least 20 pixels a side, confidence at least 0.25),
  converts them to `[cx, cy, w, h]` vectors for a tracker backend, and
  reports the backend's tracks as `TrackResult` records.
- `npudetect.result_processor`: `ResultProcessor`, which matches detections
  to tracks by centre distance, draws boxes and labels in parallel on a
  given executor, writes the FPS and track count, and returns the frame
  resized to 1280×720; and `format_detection_label`.
- `npudetect.model_wrapper`: `Yolov8Model`, a worker pool holding one
  inference engine per thread, served round-robin. `submit_infer_task`
  takes a BGR frame and returns a `concurrent.futures.Future` of
  detections; the engine receives the frame as RGB. It is also a context
  manager that calls `release` on exit.
- `npudetect.pipeline`: `run_pipeline`, the frame loop that keeps
  `thread_num` inferences in flight, tracks, draws and optionally shows
  each result, and `PerformanceStats`, which prints averaged stage timings
  every ten completed frames and a global summary at the end.
- `npudetect.utils`: `FPSCounter`, `safe_print` and `timeval_to_us`.

## Example

```python
import numpy as np

from npudetect.boxes import Box, Detection, calculate_overlap, dequantize
from npudetect.model_wrapper import Yolov8Model

iou = calculate_overlap(0, 0, 9, 9, 5, 5, 14, 14)
score = dequantize(-50, -128, 0.003921)


class FixedEngine:
    def infer(self, rgb_frame):
        return [Detection(box=Box(10, 10, 60, 110), prop=0.9, cls_id=0)]


with Yolov8Model() as model:
    model.init(FixedEngine, thread_num=2)
    future = model.submit_infer_task(np.zeros((480, 640, 3), dtype=np.uint8))
    print(future.result())
```

## What the package does not do

- It runs no neural network. `Yolov8Model.init` takes a factory for
  objects with an `infer(rgb_frame)` method; you supply that engine.
- It has no tracker of its own. `TrackerWrapper` needs a backend factory
  whose objects offer `update(detections, cls_ids, region)` and a `tracks`
  sequence.
- It opens no camera, video file or window. `run_pipeline` takes any
  iterable of BGR frames and an optional `display` callable that receives
  each `PIL.Image` and returns true to stop.
- It installs no command-line program.

## Tests

The test suite uses pytest and lives in `tests/`:

```
pytest
```