"""Minimal TFLite flatbuffer parser using only struct. No tensorflow, no flatbuffers library.

Reads the outer Model table of a ``*.tflite`` file: subgraph 0's input and
output tensors (type, shape, quantization) and the location of the embedded
metadata flatbuffer.  The metadata itself is a second, independently rooted
flatbuffer and is parsed separately by :mod:`libretasks.metadata_parser`.
"""

import struct
import warnings
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

from . import _flatbuf as fb
from ._constants import METADATA_NAME, TFLITE_MAGIC, TFLITE_MAGIC_OFFSET
from .errors import ParseError
from .tensor import ElementType, QuantizationParams, TensorSpec

__all__ = ["parse_model", "TFLiteModel", "TensorInfo", "TensorType"]


class TensorType(IntEnum):
    """TensorType enum as stored on the wire (tensorflow/lite/schema/schema.fbs)."""
    FLOAT32 = 0
    FLOAT16 = 1
    INT32 = 2
    UINT8 = 3
    INT64 = 4
    STRING = 5
    BOOL = 6
    INT16 = 7
    COMPLEX64 = 8
    INT8 = 9


_SUPPORTED_TYPES = {
    TensorType.FLOAT32: ElementType.F32,
    TensorType.FLOAT16: ElementType.F16,
    TensorType.INT32: ElementType.I32,
    TensorType.UINT8: ElementType.U8,
}


@dataclass
class TensorInfo:
    shape: List[int]
    dtype: int  # TFLite TensorType enum value
    name: str = ""
    buffer_index: int = 0  # index into Model.buffers
    quantization: Optional[QuantizationParams] = None


@dataclass
class TFLiteModel:
    """Parsed view of subgraph 0 plus the metadata buffer location."""
    version: int
    description: str
    subgraph_count: int
    tensors: List[TensorInfo]
    inputs: List[TensorSpec]
    outputs: List[TensorSpec]
    # (start, length) of the metadata flatbuffer inside the model bytes
    metadata_range: Optional[Tuple[int, int]] = None
    buffer_ranges: List[Optional[Tuple[int, int]]] = field(default_factory=list)

    @property
    def output_names(self) -> Dict[str, int]:
        return {t.name: t.index for t in self.outputs if t.name}


# ── TFLite schema navigation ────────────────────────────────────────────────
# Model:   0=version 1=operator_codes 2=subgraphs 3=description 4=buffers
#          5=metadata_buffer 6=metadata 7=signature_defs
# SubGraph: 0=tensors 1=inputs 2=outputs 3=operators 4=name
# Tensor:  0=shape 1=type 2=buffer 3=name 4=quantization
# QuantizationParameters: 0=min 1=max 2=scale 3=zero_point
# Buffer:  0=data 1=offset 2=size
# Metadata: 0=name 1=buffer

def _parse_quantization(buf, tensor, name):
    """Return QuantizationParams iff both scale and zero_point are non-empty.

    Only the first (scale, zero_point) pair is honored: per-tensor, not
    per-channel, quantization.
    """
    q = fb.table_field(buf, tensor, 4)
    if q is None:
        return None
    scales = fb.scalar_vector_field(buf, q, 2, "f32")
    zero_points = fb.scalar_vector_field(buf, q, 3, "i64")
    if not scales or not zero_points:
        return None
    scale = scales[0]
    if scale < 0:
        warnings.warn(
            f"Tensor {name!r} has negative quantization scale ({scale}); "
            f"it is used as stored"
        )
    return QuantizationParams(scale=scale, zero_point=int(zero_points[0]))


def _parse_tensor(buf, tensor):
    """Parse a TFLite Tensor table → TensorInfo."""
    name = fb.string_field(buf, tensor, 3, "")
    return TensorInfo(
        shape=fb.scalar_vector_field(buf, tensor, 0, "i32"),
        dtype=fb.scalar_field(buf, tensor, 1, "u8", 0),
        name=name,
        buffer_index=fb.scalar_field(buf, tensor, 2, "u32", 0),
        quantization=_parse_quantization(buf, tensor, name),
    )


def _element_type(dtype, name):
    try:
        return _SUPPORTED_TYPES[TensorType(dtype)]
    except (KeyError, ValueError):
        try:
            label = TensorType(dtype).name
        except ValueError:
            label = str(dtype)
        raise ParseError(f"Unsupported tensor type `{label}` for tensor {name!r}") from None


def _resolve_io(tensors, indices, kind):
    """Resolve subgraph input/output tensor indices into TensorSpecs."""
    specs = []
    for position, index in enumerate(indices):
        if index < 0 or index >= len(tensors):
            raise ParseError(
                f"Invalid tensor {kind}: index `{index}` out of range [0, {len(tensors)})"
            )
        t = tensors[index]
        specs.append(TensorSpec(
            index=position,
            element_type=_element_type(t.dtype, t.name),
            shape=tuple(t.shape),
            name=t.name,
            quantization=t.quantization,
        ))
    return specs


def _parse_buffers(buf, model):
    """Return the (start, length) data range of every Model.buffers entry."""
    ranges = []
    for b in fb.table_vector_field(buf, model, 4):
        data = fb.byte_vector_field(buf, b, 0)
        if data is not None and data[1] > 0:
            ranges.append(data)
            continue
        # Models >2GB keep buffer data outside the flatbuffer, addressed by
        # offset/size from the start of the file.
        offset = fb.scalar_field(buf, b, 1, "u64", 0)
        size = fb.scalar_field(buf, b, 2, "u64", 0)
        if offset > 1 and size > 0 and offset + size <= len(buf):
            ranges.append((offset, size))
        else:
            ranges.append(None)
    return ranges


def _find_metadata(buf, model, buffer_ranges):
    """Locate the TFLITE_METADATA buffer. Returns (start, length) or None."""
    for entry in fb.table_vector_field(buf, model, 6):
        if fb.string_field(buf, entry, 0) != METADATA_NAME:
            continue
        buf_index = fb.scalar_field(buf, entry, 1, "u32", 0)
        if buf_index < len(buffer_ranges) and buffer_ranges[buf_index] is not None:
            return buffer_ranges[buf_index]
        raise ParseError(f"Missing model buffer (index = `{buf_index}`)")
    return None


def parse_model(tflite_bytes) -> TFLiteModel:
    """Parse a TFLite model.

    Only subgraph 0 is read; models with several subgraphs are accepted
    with a warning.

    Raises:
        ParseError: if the bytes are not a TFLite flatbuffer, subgraph 0 is
            missing its tensors/inputs/outputs, a tensor index is out of
            range, or a tensor uses an unsupported element type.
    """
    buf = tflite_bytes if isinstance(tflite_bytes, (bytes, bytearray, memoryview)) else bytes(tflite_bytes)
    if len(buf) < 8 or bytes(buf[TFLITE_MAGIC_OFFSET:TFLITE_MAGIC_OFFSET + 4]) != TFLITE_MAGIC:
        raise ParseError(f"Not a TFLite model: head bytes {bytes(buf[:8])!r}")

    try:
        return _parse_model(buf)
    except (struct.error, IndexError, UnicodeDecodeError) as e:
        raise ParseError(f"Malformed TFLite flatbuffer: {e}") from e


def _parse_model(buf):
    model = fb.root_table(buf)

    subgraphs = fb.table_vector_field(buf, model, 2)
    if not subgraphs:
        raise ParseError("Model has no subgraph")
    if len(subgraphs) > 1:
        warnings.warn(
            f"Model has {len(subgraphs)} subgraphs; only subgraph 0 is used"
        )
    sg = subgraphs[0]

    if any(fb.field_offset(buf, sg[0], sg[1], i) is None for i in (0, 1, 2)):
        raise ParseError("Model must have inputs, outputs and tensors information")

    tensors = [_parse_tensor(buf, t) for t in fb.table_vector_field(buf, sg, 0)]
    graph_inputs = fb.scalar_vector_field(buf, sg, 1, "i32")
    graph_outputs = fb.scalar_vector_field(buf, sg, 2, "i32")

    buffer_ranges = _parse_buffers(buf, model)

    return TFLiteModel(
        version=fb.scalar_field(buf, model, 0, "u32", 0),
        description=fb.string_field(buf, model, 3, ""),
        subgraph_count=len(subgraphs),
        tensors=tensors,
        inputs=_resolve_io(tensors, graph_inputs, "input"),
        outputs=_resolve_io(tensors, graph_outputs, "output"),
        metadata_range=_find_metadata(buf, model, buffer_ranges),
        buffer_ranges=buffer_ranges,
    )
