"""Detection records and the numeric helpers used to decode detector output."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

OBJ_NAME_MAX_SIZE = 64
OBJ_NUMB_MAX_SIZE = 128
OBJ_CLASS_NUM = 1
NMS_THRESH = 0.45
BOX_THRESH = 0.25


@dataclass
class Box:
    """An axis-aligned rectangle in pixel coordinates."""

    left: int = 0
    top: int = 0
    right: int = 0
    bottom: int = 0

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def center(self) -> tuple[int, int]:
        return (self.left + self.right) // 2, (self.top + self.bottom) // 2


@dataclass
class Detection:
    """One detected object: its box, confidence and class id."""

    box: Box = field(default_factory=Box)
    prop: float = 0.0
    cls_id: int = 0


@dataclass
class Letterbox:
    """Scale and padding applied when fitting an image into the model input."""

    scale: float = 1.0
    x_pad: int = 0
    y_pad: int = 0


def calculate_overlap(
    xmin0: float,
    ymin0: float,
    xmax0: float,
    ymax0: float,
    xmin1: float,
    ymin1: float,
    xmax1: float,
    ymax1: float,
) -> float:
    """Intersection over union of two boxes, using inclusive pixel extents."""
    w = max(0.0, min(xmax0, xmax1) - max(xmin0, xmin1) + 1.0)
    h = max(0.0, min(ymax0, ymax1) - max(ymin0, ymin1) + 1.0)
    inter = w * h
    union = (
        (xmax0 - xmin0 + 1.0) * (ymax0 - ymin0 + 1.0)
        + (xmax1 - xmin1 + 1.0) * (ymax1 - ymin1 + 1.0)
        - inter
    )
    return 0.0 if union <= 0.0 else inter / union


def nms(
    boxes: Sequence[Sequence[float]],
    class_ids: Sequence[int],
    order: Sequence[int],
    filter_id: int,
    threshold: float,
) -> list[int]:
    """Suppress overlapping boxes of one class.

    ``boxes`` holds ``(x, y, w, h)`` entries, ``order`` lists box indices by
    descending score with ``-1`` for entries already removed.  Returns a new
    order in which suppressed entries are replaced by ``-1``.
    """
    result = list(order)
    for i, n in enumerate(result):
        if n == -1 or class_ids[n] != filter_id:
            continue
        x0, y0, w0, h0 = boxes[n]
        for j in range(i + 1, len(result)):
            m = result[j]
            if m == -1 or class_ids[m] != filter_id:
                continue
            x1, y1, w1, h1 = boxes[m]
            iou = calculate_overlap(x0, y0, x0 + w0, y0 + h0, x1, y1, x1 + w1, y1 + h1)
            if iou > threshold:
                result[j] = -1
    return result


def sort_descending(scores: Sequence[float]) -> tuple[list[float], list[int]]:
    """Sort scores high to low, returning the sorted scores and their original indices.

    Ties are ordered exactly as the partitioning quicksort of the detector places them.
    """
    values = list(scores)
    indices = list(range(len(values)))
    pending = [(0, len(values) - 1)]
    while pending:
        left, right = pending.pop()
        if left >= right:
            continue
        key = values[left]
        key_index = indices[left]
        low, high = left, right
        while low < high:
            while low < high and values[high] <= key:
                high -= 1
            values[low] = values[high]
            indices[low] = indices[high]
            while low < high and values[low] >= key:
                low += 1
            values[high] = values[low]
            indices[high] = indices[low]
        values[low] = key
        indices[low] = key_index
        pending.append((left, low - 1))
        pending.append((low + 1, right))
    return values, indices


def sigmoid(x: float) -> float:
    """Logistic function."""
    return 1.0 / (1.0 + math.exp(-x))


def unsigmoid(y: float) -> float:
    """Inverse of :func:`sigmoid`."""
    return -math.log((1.0 / y) - 1.0)


def _clip(value: float, low: float, high: float) -> int:
    clipped = low if value <= low else (high if value >= high else value)
    return int(clipped)


def quantize_i8(value: float, zp: int, scale: float) -> int:
    """Affine-quantize a float to the signed 8-bit range."""
    return _clip(value / scale + zp, -128, 127)


def quantize_u8(value: float, zp: int, scale: float) -> int:
    """Affine-quantize a float to the unsigned 8-bit range."""
    return _clip(value / scale + zp, 0, 255)


def dequantize(value: int, zp: int, scale: float) -> float:
    """Map an affine-quantized value back to a float."""
    return (float(value) - float(zp)) * scale


def compute_dfl(tensor: Sequence[float], dfl_len: int) -> list[float]:
    """Decode distribution-focal-loss logits into four box distances.

    ``tensor`` holds ``4 * dfl_len`` logits; each group of ``dfl_len`` is
    turned into the expectation of its softmax over bin positions.
    """
    if dfl_len <= 0:
        raise ValueError("dfl_len must be positive")
    logits = np.asarray(tensor, dtype=np.float64)
    if logits.size != 4 * dfl_len:
        raise ValueError(f"expected {4 * dfl_len} values, got {logits.size}")
    logits = logits.reshape(4, dfl_len)
    weights = np.exp(logits - logits.max(axis=1, keepdims=True))
    weights /= weights.sum(axis=1, keepdims=True)
    bins = np.arange(dfl_len, dtype=np.float64)
    return [float(v) for v in weights @ bins]