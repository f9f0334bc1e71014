#!/usr/bin/env python3
"""Tests for dequantization and the per-session output scratch buffers."""

import numpy as np
import pytest

from conftest import make_classifier
from libretasks import load_model
from libretasks._quantize import dequantize_into
from libretasks.errors import InconsistentError
from libretasks.postprocess.output_buffer import OutputBuffer
from libretasks.tensor import ElementType, QuantizationParams, TensorSpec


def _spec(element_type, shape, quantization=None):
    return TensorSpec(index=0, element_type=element_type, shape=shape, quantization=quantization)


# ── Dequantization ───────────────────────────────────────────────────────────

class TestDequantize:

    def test_formula(self):
        out = np.empty(3, dtype=np.float32)
        dequantize_into(bytes([0, 128, 255]), 0.5, 128, out)
        np.testing.assert_allclose(out, [-64.0, 0.0, 63.5])

    def test_into_no_uint8_wraparound(self):
        raw = bytes([0, 1, 200, 255])
        out = np.empty(4, dtype=np.float32)
        result = dequantize_into(raw, 0.25, 100, out)
        assert result is out
        np.testing.assert_allclose(out, [-25.0, -24.75, 25.0, 38.75])

    def test_matches_affine_formula(self, rng):
        q = rng.integers(0, 256, size=64, dtype=np.uint8)
        out = np.empty(64, dtype=np.float32)
        dequantize_into(q.tobytes(), 0.0039, 7, out)
        expected = 0.0039 * (q.astype(np.float64) - 7)
        np.testing.assert_allclose(out, expected, rtol=1e-5, atol=1e-6)

    def test_negative_scale(self):
        out = np.empty(4, dtype=np.float32)
        dequantize_into(bytes([10, 200, 5, 0]), -0.1, 0, out)
        np.testing.assert_allclose(out, [-1.0, -20.0, -0.5, 0.0], rtol=1e-6)

    def test_negative_scale_from_model(self):
        model = make_classifier(scale=-0.1, labelled=False)
        with pytest.warns(UserWarning, match="negative quantization scale"):
            resource = load_model(model)
        q = resource.output_quantization(0)
        assert q.scale == pytest.approx(-0.1)
        buf = OutputBuffer(resource.output_spec(0))
        buf.raw[:] = bytes([10, 200, 5, 0])
        np.testing.assert_allclose(buf.values(), [-1.0, -20.0, -0.5, 0.0], rtol=1e-6)


# ── OutputBuffer ─────────────────────────────────────────────────────────────

class TestOutputBuffer:

    def test_sizes(self):
        buf = OutputBuffer(_spec(ElementType.F32, (1, 10, 4)))
        assert buf.size == 40
        assert buf.byte_size == 160
        assert len(buf.raw) == 160

    def test_f32_zero_copy(self):
        buf = OutputBuffer(_spec(ElementType.F32, (1, 3)))
        buf.raw[:] = np.array([1.5, -2.0, 3.25], dtype="<f4").tobytes()
        values = buf.values()
        np.testing.assert_array_equal(values, [1.5, -2.0, 3.25])
        buf.raw[:4] = np.array([9.0], dtype="<f4").tobytes()
        assert values[0] == 9.0

    def test_u8_dequantized(self):
        q = QuantizationParams(scale=0.1, zero_point=10)
        buf = OutputBuffer(_spec(ElementType.U8, (1, 3), q))
        buf.raw[:] = bytes([10, 20, 0])
        np.testing.assert_allclose(buf.values(), [0.0, 1.0, -1.0], atol=1e-6)

    def test_u8_without_quantization(self):
        with pytest.raises(InconsistentError, match="Missing tensor quantization"):
            OutputBuffer(_spec(ElementType.U8, (1, 3)))

    def test_f16_converted(self):
        buf = OutputBuffer(_spec(ElementType.F16, (2,)))
        buf.raw[:] = np.array([0.5, -4.0], dtype="<f2").tobytes()
        values = buf.values()
        assert values.dtype == np.float32
        np.testing.assert_array_equal(values, [0.5, -4.0])

    def test_i32_converted(self):
        buf = OutputBuffer(_spec(ElementType.I32, (3,)))
        buf.raw[:] = np.array([7, -1, 100000], dtype="<i4").tobytes()
        np.testing.assert_array_equal(buf.values(), [7.0, -1.0, 100000.0])

    def test_values_reuse_storage(self):
        q = QuantizationParams(scale=1.0, zero_point=0)
        buf = OutputBuffer(_spec(ElementType.U8, (4,), q))
        first = buf.values()
        buf.raw[:] = bytes([1, 2, 3, 4])
        second = buf.values()
        assert np.shares_memory(first, second)
        np.testing.assert_array_equal(second, [1, 2, 3, 4])

    def test_resize_grows_only(self):
        buf = OutputBuffer(_spec(ElementType.F32, (8,)))
        buf.resize(2)
        assert buf.size == 2
        assert len(buf.raw) == 8
        buf.resize(16)
        assert buf.size == 16
        assert len(buf.values()) == 16
