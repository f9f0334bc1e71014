"""Shared dequantization utilities.

Centralizes the affine dequantization formula used by every post-processor
so that quantized (uint8) and float outputs flow through the same code.
"""

import numpy as np


def dequantize_into(raw, scale, zero_point, out):
    """Dequantize raw uint8 bytes into the preallocated float32 array *out*.

    value = (q - zero_point) * scale

    Writes in place so that the per-inference hot path performs no
    allocation.  The scale is applied as given, sign included.

    Args:
        raw: bytes-like holding ``out.size`` uint8 values.
        scale: Quantization scale (float).
        zero_point: Quantization zero point (int).
        out: Contiguous float32 numpy array receiving the result.

    Returns:
        *out*.
    """
    q = np.frombuffer(raw, dtype=np.uint8, count=out.size).reshape(out.shape)
    np.copyto(out, q)
    np.subtract(out, np.float32(zero_point), out=out)
    np.multiply(out, np.float32(scale), out=out)
    return out
