import numpy as np
import pytest

from npudetect.layout import TensorFormat, model_input_shape, nc1hwc2_to_nchw


def _pack(nchw: np.ndarray, c2: int) -> tuple[np.ndarray, list[int]]:
    batch, channel, h, w = nchw.shape
    c1 = -(-channel // c2)
    padded = np.zeros((batch, c1 * c2, h, w), dtype=nchw.dtype)
    padded[:, :channel] = nchw
    packed = padded.reshape(batch, c1, c2, h, w).transpose(0, 1, 3, 4, 2)
    return np.ascontiguousarray(packed), [batch, c1, h, w, c2]


def test_nchw_input_shape():
    assert model_input_shape(TensorFormat.NCHW, [1, 3, 640, 480]) == (640, 480, 3)


def test_nhwc_input_shape():
    assert model_input_shape(TensorFormat.NHWC, [1, 640, 480, 3]) == (640, 480, 3)


def test_format_given_as_string():
    assert model_input_shape("NCHW", [1, 3, 320, 256]) == model_input_shape(
        TensorFormat.NCHW, [1, 3, 320, 256]
    )


def test_reversed_dims_match_forward_dims():
    forward = [1, 3, 640, 480]
    assert model_input_shape(TensorFormat.NCHW, forward[::-1], reversed_dims=True) == (
        model_input_shape(TensorFormat.NCHW, forward)
    )
    nhwc = [1, 640, 480, 3]
    assert model_input_shape(TensorFormat.NHWC, nhwc[::-1], reversed_dims=True) == (
        model_input_shape(TensorFormat.NHWC, nhwc)
    )


def test_non_nchw_read_as_nhwc():
    dims = [1, 64, 32, 3]
    assert model_input_shape(TensorFormat.UNDEFINED, dims) == model_input_shape(
        TensorFormat.NHWC, dims
    )


def test_too_few_dims_rejected():
    with pytest.raises(ValueError):
        model_input_shape(TensorFormat.NCHW, [1, 3, 640])


def test_unknown_format_rejected():
    with pytest.raises(ValueError):
        model_input_shape("CHWN", [1, 3, 640, 640])


@pytest.mark.parametrize("channel,c2", [(16, 16), (5, 16), (20, 16), (3, 1)])
def test_round_trip(channel, c2):
    rng = np.random.default_rng(channel)
    nchw = rng.integers(-128, 128, size=(2, channel, 4, 3), dtype=np.int8)
    packed, dims = _pack(nchw, c2)
    out = nc1hwc2_to_nchw(packed, dims, channel, 4, 3)
    assert out.shape == nchw.shape
    assert np.array_equal(out, nchw)


def test_dtype_preserved():
    nchw = np.arange(2 * 3 * 2, dtype=np.int8).reshape(1, 2, 3, 2)
    packed, dims = _pack(nchw, 4)
    out = nc1hwc2_to_nchw(packed, dims, 2, 3, 2)
    assert out.dtype == np.int8
    assert np.array_equal(out, nchw)


def test_accepts_flat_list():
    nchw = np.arange(8, dtype=np.int64).reshape(1, 2, 2, 2)
    packed, dims = _pack(nchw, 2)
    out = nc1hwc2_to_nchw(packed.ravel().tolist(), dims, 2, 2, 2)
    assert out.tolist() == nchw.tolist()


def test_source_too_small_rejected():
    with pytest.raises(ValueError):
        nc1hwc2_to_nchw(np.zeros(10, dtype=np.int8), [1, 1, 4, 4, 16], 16, 4, 4)


def test_short_native_dims_rejected():
    with pytest.raises(ValueError):
        nc1hwc2_to_nchw(np.zeros(64, dtype=np.int8), [1, 1, 4, 4], 4, 4, 4)


def test_non_positive_channel_rejected():
    with pytest.raises(ValueError):
        nc1hwc2_to_nchw(np.zeros(64, dtype=np.int8), [1, 1, 4, 4, 4], 0, 4, 4)