"""Per-session output scratch: raw bytes plus a float32 view.

The inference engine writes an output tensor into :attr:`OutputBuffer.raw`;
:meth:`OutputBuffer.values` turns it into float32 without allocating.  One
buffer per output per session, reused for every inference call.
"""

import numpy as np

from .._quantize import dequantize_into
from ..errors import InconsistentError
from ..tensor import ElementType, TensorSpec


class OutputBuffer:
    """Scratch storage for one output tensor.

    Args:
        spec: The output tensor spec (type, shape, quantization).
        num_elements: Initial capacity in elements; defaults to the
            spec's element count.

    Raises:
        InconsistentError: if a uint8 output carries no quantization.
    """

    def __init__(self, spec: TensorSpec, num_elements=None):
        self.index = spec.index
        self.element_type = spec.element_type
        self.quantization = spec.quantization
        if self.element_type == ElementType.U8 and self.quantization is None:
            raise InconsistentError(
                f"Missing tensor quantization parameters for output `{spec.index}`"
            )
        self._raw = bytearray()
        self._floats = None
        self._size = 0
        self.resize(spec.num_elements if num_elements is None else num_elements)

    @property
    def size(self) -> int:
        """Number of elements currently held."""
        return self._size

    @property
    def byte_size(self) -> int:
        return self._size * self.element_type.width

    @property
    def raw(self) -> memoryview:
        """Writable byte view the engine fills (exactly :attr:`byte_size` bytes)."""
        return memoryview(self._raw)[:self.byte_size]

    def resize(self, num_elements: int):
        """Make room for *num_elements*; capacity only ever grows."""
        self._size = num_elements
        needed = num_elements * self.element_type.width
        if len(self._raw) >= needed and self._floats is not None:
            return
        self._raw = bytearray(needed)
        if self.element_type == ElementType.F32:
            # zero-copy: the float view *is* the raw buffer
            self._floats = np.frombuffer(self._raw, dtype="<f4")
        else:
            self._floats = np.zeros(num_elements, dtype=np.float32)

    def values(self) -> np.ndarray:
        """Decode the raw bytes and return the float32 view (writable)."""
        n = self._size
        out = self._floats[:n]
        if self.element_type == ElementType.F32:
            return out
        raw = memoryview(self._raw)[:self.byte_size]
        if self.element_type == ElementType.U8:
            q = self.quantization
            return dequantize_into(raw, q.scale, q.zero_point, out)
        np.copyto(out, np.frombuffer(raw, dtype=self.element_type.numpy_dtype, count=n),
                  casting="unsafe")
        return out
