"""Tensor descriptions shared by the parser, the model resource and sessions."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

__all__ = ["ElementType", "TensorSpec", "QuantizationParams", "tensor_byte_size"]


class ElementType(Enum):
    """Element types a model input/output tensor may carry."""

    F32 = "f32"
    U8 = "u8"
    I32 = "i32"
    F16 = "f16"

    @property
    def width(self) -> int:
        """Size in bytes of one element."""
        return _WIDTHS[self]

    @property
    def numpy_dtype(self):
        return _NUMPY_DTYPES[self]


_WIDTHS = {ElementType.F32: 4, ElementType.U8: 1, ElementType.I32: 4, ElementType.F16: 2}

_NUMPY_DTYPES = {
    ElementType.F32: np.dtype("<f4"),
    ElementType.U8: np.dtype(np.uint8),
    ElementType.I32: np.dtype("<i4"),
    ElementType.F16: np.dtype("<f2"),
}


def tensor_byte_size(element_type: ElementType, shape) -> int:
    """Byte size of a dense tensor: product of dims times element width."""
    size = element_type.width
    for dim in shape:
        size *= dim
    return size


@dataclass(frozen=True)
class QuantizationParams:
    """Per-tensor affine quantization: ``real = scale * (q - zero_point)``."""

    scale: float
    zero_point: int


@dataclass(frozen=True)
class TensorSpec:
    """Type and shape of one model input or output.

    ``index`` is the position in the subgraph's input (or output) list, not
    the index into the subgraph's tensor table.
    """

    index: int
    element_type: ElementType
    shape: Tuple[int, ...]
    name: str = ""
    quantization: Optional[QuantizationParams] = None

    @property
    def byte_size(self) -> int:
        return tensor_byte_size(self.element_type, self.shape)

    @property
    def num_elements(self) -> int:
        n = 1
        for dim in self.shape:
            n *= dim
        return n
