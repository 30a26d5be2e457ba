"""Decoding of three-branch detector output into scored, suppressed detections."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from itertools import islice
from os import PathLike
from typing import Callable, Iterable, Sequence, Union

import numpy as np

from npudetect.boxes import (
    BOX_THRESH,
    NMS_THRESH,
    OBJ_CLASS_NUM,
    OBJ_NUMB_MAX_SIZE,
    Box,
    Detection,
    Letterbox,
    compute_dfl,
    dequantize,
    nms,
    quantize_i8,
    quantize_u8,
    sort_descending,
)

Candidate = tuple[tuple[float, float, float, float], float, int]

_NULL_LABEL = "null"


class DecodeMode(Enum):
    """How a branch's tensors are stored."""

    INT8 = "int8"
    UINT8 = "uint8"
    FLOAT32 = "float32"
    INT8_NHWC = "int8_nhwc"


@dataclass
class TensorOutput:
    """One output tensor with its affine quantization parameters."""

    data: np.ndarray
    zp: int = 0
    scale: float = 1.0

    def __post_init__(self) -> None:
        self.data = np.asarray(self.data).ravel()


@dataclass
class Branch:
    """The box, score and optional score-sum tensors of one detection head."""

    box: TensorOutput
    score: TensorOutput
    grid_h: int
    grid_w: int
    score_sum: TensorOutput | None = None
    num_classes: int = OBJ_CLASS_NUM

    def __post_init__(self) -> None:
        if self.grid_h <= 0 or self.grid_w <= 0:
            raise ValueError("grid dimensions must be positive")
        if self.num_classes <= 0:
            raise ValueError("num_classes must be positive")
        cells = self.grid_len
        box_size = self.box.data.size
        if box_size == 0 or box_size % (4 * cells):
            raise ValueError(f"box tensor size {box_size} is not a multiple of 4 * {cells}")
        if self.score.data.size < self.num_classes * cells:
            raise ValueError("score tensor is smaller than num_classes * grid cells")
        if self.score_sum is not None and self.score_sum.data.size < cells:
            raise ValueError("score-sum tensor is smaller than the grid")

    @property
    def grid_len(self) -> int:
        return self.grid_h * self.grid_w

    @property
    def dfl_len(self) -> int:
        """Number of distribution bins per box side."""
        return self.box.data.size // (4 * self.grid_len)


@dataclass(frozen=True)
class LabelTable:
    """Class names indexed by class id."""

    labels: tuple[str, ...] = ()
    num_classes: int = OBJ_CLASS_NUM

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", tuple(self.labels)[: self.num_classes])

    @classmethod
    def from_file(
        cls, path: Union[str, PathLike], num_classes: int = OBJ_CLASS_NUM
    ) -> "LabelTable":
        """Load at most ``num_classes`` names, one per line."""
        return cls(tuple(read_label_file(path, num_classes)), num_classes)

    def name(self, cls_id: int) -> str:
        """Return the name of ``cls_id``, or ``"null"`` if it has none."""
        if cls_id < 0 or cls_id >= self.num_classes or cls_id >= len(self.labels):
            return _NULL_LABEL
        return self.labels[cls_id]


def read_label_file(path: Union[str, PathLike], max_lines: int) -> list[str]:
    """Read up to ``max_lines`` lines, split on ``\\n`` only, without the newline."""
    with open(path, "r", encoding="utf-8", newline="\n") as handle:
        return [line.removesuffix("\n") for line in islice(handle, max(max_lines, 0))]


def _wrap_byte(value: int, signed: bool) -> int:
    value &= 0xFF
    return value - 256 if signed and value >= 128 else value


def _as_values(data: np.ndarray, signed: bool) -> np.ndarray:
    arr = np.asarray(data)
    if arr.dtype.kind in "iu" and arr.dtype.itemsize == 1:
        arr = arr.view(np.int8 if signed else np.uint8)
    return arr.astype(np.float64)


def _planes(values: np.ndarray, channels: int, cells: int, nhwc: bool) -> np.ndarray:
    needed = channels * cells
    if values.size < needed:
        raise ValueError(f"tensor holds {values.size} values, need {needed}")
    if nhwc:
        return values[:needed].reshape(cells, channels).T
    return values[:needed].reshape(channels, cells)


def _decode(
    branch: Branch,
    scores: np.ndarray,
    box_values: np.ndarray,
    sums: np.ndarray | None,
    *,
    stride: int,
    dfl_len: int,
    score_thres: float,
    sum_thres: float,
    initial: float,
    to_prob: Callable[[float], float],
) -> list[Candidate]:
    eligible = (scores > score_thres) & (scores > initial)
    masked = np.where(eligible, scores, -np.inf)
    found = eligible.any(axis=0)
    best_cls = np.where(found, masked.argmax(axis=0), -1)
    best = np.where(found, masked.max(axis=0), initial)

    keep = best > score_thres
    if sums is not None:
        keep &= ~(sums < sum_thres)

    candidates: list[Candidate] = []
    for cell in np.flatnonzero(keep):
        i, j = divmod(int(cell), branch.grid_w)
        left, top, right, bottom = compute_dfl(box_values[:, cell], dfl_len)
        x1 = (-left + j + 0.5) * stride
        y1 = (-top + i + 0.5) * stride
        x2 = (right + j + 0.5) * stride
        y2 = (bottom + i + 0.5) * stride
        candidates.append(((x1, y1, x2 - x1, y2 - y1), to_prob(best[cell]), int(best_cls[cell])))
    return candidates


def _process_quantized(
    branch: Branch, stride: int, dfl_len: int, threshold: float, *, signed: bool, nhwc: bool
) -> list[Candidate]:
    quantize = quantize_i8 if signed else quantize_u8
    score_t, box_t, sum_t = branch.score, branch.box, branch.score_sum
    cells = branch.grid_len

    score_thres = quantize(threshold, score_t.zp, score_t.scale)
    sum_zp, sum_scale = (sum_t.zp, sum_t.scale) if sum_t is not None else (0, 1.0)
    sum_thres = quantize(threshold, sum_zp, sum_scale)

    scores = _planes(_as_values(score_t.data, signed), branch.num_classes, cells, nhwc)
    raw_boxes = _planes(_as_values(box_t.data, signed), 4 * dfl_len, cells, nhwc)
    box_values = (raw_boxes - float(box_t.zp)) * box_t.scale
    sums = _as_values(sum_t.data, signed)[:cells] if sum_t is not None else None

    return _decode(
        branch,
        scores,
        box_values,
        sums,
        stride=stride,
        dfl_len=dfl_len,
        score_thres=score_thres,
        sum_thres=sum_thres,
        initial=_wrap_byte(-score_t.zp, signed),
        to_prob=lambda v: dequantize(int(v), score_t.zp, score_t.scale),
    )


def process_i8(branch: Branch, stride: int, dfl_len: int, threshold: float) -> list[Candidate]:
    """Decode a signed 8-bit branch in channel-major layout."""
    return _process_quantized(branch, stride, dfl_len, threshold, signed=True, nhwc=False)


def process_u8(branch: Branch, stride: int, dfl_len: int, threshold: float) -> list[Candidate]:
    """Decode an unsigned 8-bit branch in channel-major layout."""
    return _process_quantized(branch, stride, dfl_len, threshold, signed=False, nhwc=False)


def process_i8_nhwc(
    branch: Branch, stride: int, dfl_len: int, threshold: float
) -> list[Candidate]:
    """Decode a signed 8-bit branch whose channels are innermost."""
    return _process_quantized(branch, stride, dfl_len, threshold, signed=True, nhwc=True)


def process_fp32(branch: Branch, stride: int, dfl_len: int, threshold: float) -> list[Candidate]:
    """Decode a floating-point branch in channel-major layout."""
    cells = branch.grid_len
    scores = _planes(np.asarray(branch.score.data, dtype=np.float64), branch.num_classes, cells, False)
    box_values = _planes(np.asarray(branch.box.data, dtype=np.float64), 4 * dfl_len, cells, False)
    sums = (
        np.asarray(branch.score_sum.data, dtype=np.float64)[:cells]
        if branch.score_sum is not None
        else None
    )
    return _decode(
        branch,
        scores,
        box_values,
        sums,
        stride=stride,
        dfl_len=dfl_len,
        score_thres=threshold,
        sum_thres=threshold,
        initial=0.0,
        to_prob=float,
    )


_DECODERS: dict[DecodeMode, Callable[[Branch, int, int, float], list[Candidate]]] = {
    DecodeMode.INT8: process_i8,
    DecodeMode.UINT8: process_u8,
    DecodeMode.FLOAT32: process_fp32,
    DecodeMode.INT8_NHWC: process_i8_nhwc,
}


def _clamp(value: float, low: int, high: int) -> int:
    return int(value if low < value < high else (high if value >= high else low))


def post_process(
    branches: Iterable[Branch],
    model_width: int,
    model_height: int,
    letterbox: Letterbox,
    conf_threshold: float = BOX_THRESH,
    nms_threshold: float = NMS_THRESH,
    mode: DecodeMode = DecodeMode.INT8,
) -> list[Detection]:
    """Decode all branches, apply per-class NMS and map boxes back to the source image.

    Detections come out by descending confidence, at most ``OBJ_NUMB_MAX_SIZE``.
    """
    branch_list: Sequence[Branch] = list(branches)
    if not branch_list:
        return []
    decode = _DECODERS[DecodeMode(mode)]
    dfl_len = branch_list[0].dfl_len

    candidates: list[Candidate] = []
    for branch in branch_list:
        stride = model_height // branch.grid_h
        candidates.extend(decode(branch, stride, dfl_len, conf_threshold))
    if not candidates:
        return []

    boxes = [c[0] for c in candidates]
    class_ids = [c[2] for c in candidates]
    sorted_probs, order = sort_descending([c[1] for c in candidates])
    for cls_id in sorted(set(class_ids)):
        order = nms(boxes, class_ids, order, cls_id, nms_threshold)

    results: list[Detection] = []
    for prob, n in zip(sorted_probs, order):
        if len(results) >= OBJ_NUMB_MAX_SIZE:
            break
        if n == -1:
            continue
        x, y, w, h = boxes[n]
        x1 = x - letterbox.x_pad
        y1 = y - letterbox.y_pad
        x2 = x1 + w
        y2 = y1 + h
        box = Box(
            left=int(_clamp(x1, 0, model_width) / letterbox.scale),
            top=int(_clamp(y1, 0, model_height) / letterbox.scale),
            right=int(_clamp(x2, 0, model_width) / letterbox.scale),
            bottom=int(_clamp(y2, 0, model_height) / letterbox.scale),
        )
        results.append(Detection(box=box, prop=prob, cls_id=class_ids[n]))
    return results