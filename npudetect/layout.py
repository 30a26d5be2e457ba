"""Tensor layouts: model input geometry and native NC1HWC2 output unpacking."""

from __future__ import annotations

from enum import Enum
from typing import Sequence

import numpy as np


class TensorFormat(Enum):
    """Memory layout of a tensor."""

    NCHW = "NCHW"
    NHWC = "NHWC"
    NC1HWC2 = "NC1HWC2"
    UNDEFINED = "UNDEFINED"


def model_input_shape(
    fmt: TensorFormat | str,
    dims: Sequence[int],
    reversed_dims: bool = False,
) -> tuple[int, int, int]:
    """Return ``(height, width, channel)`` of a model input tensor.

    ``dims`` lists the input's four dimensions.  Some runtimes report them
    innermost first; pass ``reversed_dims=True`` for those.  Any format other
    than NCHW is read as NHWC.
    """
    fmt = TensorFormat(fmt)
    if len(dims) < 4:
        raise ValueError(f"expected 4 dimensions, got {len(dims)}")
    d = [int(v) for v in dims[:4]]
    if reversed_dims:
        d.reverse()
    if fmt is TensorFormat.NCHW:
        channel, height, width = d[1], d[2], d[3]
    else:
        height, width, channel = d[1], d[2], d[3]
    return height, width, channel


def nc1hwc2_to_nchw(
    src: np.ndarray | Sequence[int],
    dims: Sequence[int],
    channel: int,
    h: int,
    w: int,
) -> np.ndarray:
    """Unpack an NC1HWC2 tensor into an NCHW array of shape ``(batch, channel, h, w)``.

    ``dims`` are the native dimensions ``(batch, C1, H, W, C2)``; channel ``c``
    lives in plane ``c // C2`` at lane ``c % C2``.  The element type of ``src``
    is kept.
    """
    if len(dims) < 5:
        raise ValueError(f"expected 5 native dimensions, got {len(dims)}")
    if channel <= 0 or h <= 0 or w <= 0:
        raise ValueError("channel, h and w must be positive")
    batch, c1, src_h, src_w, c2 = (int(v) for v in dims[:5])
    if batch <= 0 or c1 <= 0 or c2 <= 0:
        raise ValueError("native dimensions must be positive")

    flat = np.asarray(src).ravel()
    hw_src = src_h * src_w
    hw_dst = h * w

    b = np.arange(batch).reshape(batch, 1, 1)
    c = np.arange(channel).reshape(1, channel, 1)
    hw = np.arange(hw_dst).reshape(1, 1, hw_dst)
    index = (
        b * (c1 * hw_src * c2)
        + (c // c2) * (hw_src * c2)
        + c2 * hw
        + (c % c2)
    )
    if index.max() >= flat.size:
        raise ValueError(
            f"source holds {flat.size} elements, layout needs {int(index.max()) + 1}"
        )
    return flat[index].reshape(batch, channel, h, w)