"""TFLite FlatBuffer builder: constructs .tflite files, metadata and task bundles without TensorFlow.

Uses the `flatbuffers` library to fabricate models whose *interface* (tensors,
quantization, metadata, associated files) is fully specified, without any
operators.  That is all the model resource and the post-processors look at,
so these builders are what the test-suite and offline tooling feed them:

- ``build_model(inputs, outputs, metadata=...)`` — TFLite flatbuffer with an
  optional ``TFLITE_METADATA`` buffer
- ``build_metadata(inputs=..., outputs=...)`` — ``M001`` metadata flatbuffer
- ``populate_associated_files(model, files)`` — stored zip appended to a model
- ``build_bundle(entries)`` — task bundle (stored zip of models and files)

The FlatBuffer schema field indices and enum values are taken directly from
the TensorFlow Lite schema (schema.fbs v3) and the TFLite metadata schema
(metadata_schema.fbs).
"""

import io
import zipfile
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import flatbuffers

from ._constants import METADATA_MAGIC, METADATA_NAME, TFLITE_MAGIC
from .metadata_parser import AssociatedFileType, ColorSpace, ContentType
from .tflite_parser import TensorType

__all__ = [
    "TensorDef", "FileDef", "TensorMetadataDef",
    "build_model", "build_raw_model", "build_metadata",
    "populate_associated_files", "build_bundle", "label_file",
]

# ProcessUnitOptions union discriminators (metadata_schema.fbs)
_NORMALIZATION_OPTIONS = 1
_SCORE_THRESHOLDING_OPTIONS = 3

# Large-model buffers must start past the flatbuffer; 16-byte aligned like the converter.
_EXTERNAL_BUFFER_ALIGN = 16


# ── Interface descriptions ──────────────────────────────────────────────────

@dataclass
class TensorDef:
    """One model input or output tensor.

    ``scale`` set means the tensor carries (per-tensor) quantization.
    """
    name: str
    shape: Sequence[int]
    dtype: int = TensorType.FLOAT32
    scale: Optional[float] = None
    zero_point: int = 0


@dataclass
class FileDef:
    """An associated file reference inside metadata."""
    name: str
    type: int = AssociatedFileType.TENSOR_AXIS_LABELS
    locale: str = ""
    description: str = ""


@dataclass
class TensorMetadataDef:
    """Metadata for one input or output tensor.

    ``content`` selects the ContentProperties union member: ``"image"``,
    ``"bounding_box"``, ``"audio"``, ``"feature"`` or None.
    """
    name: str = ""
    description: str = ""
    content: Optional[str] = None
    color_space: int = ColorSpace.RGB
    bounding_box_index: Sequence[int] = ()
    sample_rate: int = 0
    channels: int = 0
    value_range: Optional[Sequence[int]] = None
    mean: Sequence[float] = ()
    std: Sequence[float] = ()
    score_threshold: Optional[float] = None
    stats_min: Sequence[float] = ()
    stats_max: Sequence[float] = ()
    associated_files: Sequence[FileDef] = field(default_factory=list)


# ── Low-level FlatBuffer helpers ────────────────────────────────────────────
#
# FlatBuffer construction is bottom-up: leaves first, root last.
# Vectors and strings must be created before the StartObject of their parent.

def _int32_vector(builder, values):
    builder.StartVector(4, len(values), 4)
    for v in reversed(values):
        builder.PrependInt32(int(v))
    return builder.EndVector()


def _uint32_vector(builder, values):
    builder.StartVector(4, len(values), 4)
    for v in reversed(values):
        builder.PrependUint32(int(v))
    return builder.EndVector()


def _float32_vector(builder, values):
    builder.StartVector(4, len(values), 4)
    for v in reversed(values):
        builder.PrependFloat32(float(v))
    return builder.EndVector()


def _int64_vector(builder, values):
    builder.StartVector(8, len(values), 8)
    for v in reversed(values):
        builder.PrependInt64(int(v))
    return builder.EndVector()


def _offset_vector(builder, offsets):
    builder.StartVector(4, len(offsets), 4)
    for off in reversed(offsets):
        builder.PrependUOffsetTRelative(off)
    return builder.EndVector()


# ── TFLite tables ───────────────────────────────────────────────────────────

def _build_buffer(builder, data=None, offset=None, size=None):
    """Build a TFLite Buffer table.

    *data* is stored inline; *offset*/*size* address data outside the
    flatbuffer (the >2GB model layout).
    """
    if data is not None:
        data_vec = builder.CreateByteVector(bytes(data))
    # Buffer table:
    #   field 0: data (vector of uint8)
    #   field 1: offset (uint64)
    #   field 2: size (uint64)
    builder.StartObject(3)
    if data is not None:
        builder.PrependUOffsetTRelativeSlot(0, data_vec, 0)
    if offset is not None:
        builder.PrependUint64Slot(1, offset, 0)
        builder.PrependUint64Slot(2, size, 0)
    return builder.EndObject()


def _build_quantization(builder, scales, zero_points):
    """Build a QuantizationParameters table (per-tensor when one scale)."""
    scales_vec = _float32_vector(builder, scales)
    zp_vec = _int64_vector(builder, zero_points)
    # QuantizationParameters table:
    #   field 0: min (vector of float) - unused
    #   field 1: max (vector of float) - unused
    #   field 2: scale (vector of float)
    #   field 3: zero_point (vector of int64)
    builder.StartObject(7)
    builder.PrependUOffsetTRelativeSlot(2, scales_vec, 0)
    builder.PrependUOffsetTRelativeSlot(3, zp_vec, 0)
    return builder.EndObject()


def _build_tensor(builder, name, shape, dtype, buffer_idx, quant_offset=None):
    """Build a TFLite Tensor table."""
    name_off = builder.CreateString(name)
    shape_vec = _int32_vector(builder, shape)
    # Tensor table:
    #   field 0: shape (vector of int32)
    #   field 1: type (TensorType, uint8)
    #   field 2: buffer (uint32 — index into Model.buffers)
    #   field 3: name (string)
    #   field 4: quantization (QuantizationParameters table)
    builder.StartObject(5)
    builder.PrependUOffsetTRelativeSlot(0, shape_vec, 0)
    builder.PrependUint8Slot(1, int(dtype), 0)
    builder.PrependUint32Slot(2, buffer_idx, 0)
    builder.PrependUOffsetTRelativeSlot(3, name_off, 0)
    if quant_offset is not None:
        builder.PrependUOffsetTRelativeSlot(4, quant_offset, 0)
    return builder.EndObject()


def _build_subgraph(builder, tensors, inputs, outputs, name="main"):
    """Build a SubGraph table with no operators."""
    name_off = builder.CreateString(name)
    tensors_vec = _offset_vector(builder, tensors)
    inputs_vec = _int32_vector(builder, inputs)
    outputs_vec = _int32_vector(builder, outputs)
    operators_vec = _offset_vector(builder, [])
    # SubGraph table:
    #   field 0: tensors
    #   field 1: inputs
    #   field 2: outputs
    #   field 3: operators
    #   field 4: name
    builder.StartObject(5)
    builder.PrependUOffsetTRelativeSlot(0, tensors_vec, 0)
    builder.PrependUOffsetTRelativeSlot(1, inputs_vec, 0)
    builder.PrependUOffsetTRelativeSlot(2, outputs_vec, 0)
    builder.PrependUOffsetTRelativeSlot(3, operators_vec, 0)
    builder.PrependUOffsetTRelativeSlot(4, name_off, 0)
    return builder.EndObject()


def _build_metadata_entry(builder, name, buffer_idx):
    name_off = builder.CreateString(name)
    # Metadata table: field 0: name (string), field 1: buffer (uint32)
    builder.StartObject(2)
    builder.PrependUOffsetTRelativeSlot(0, name_off, 0)
    builder.PrependUint32Slot(1, buffer_idx, 0)
    return builder.EndObject()


def _build_model(builder, subgraphs, buffers, metadata_entries=(),
                 description="", version=3):
    """Build the root Model table and finalize the builder.

    Returns the raw bytes of the completed FlatBuffer with ``TFL3`` identifier.
    """
    desc_off = builder.CreateString(description)
    opcodes_vec = _offset_vector(builder, [])
    subgraphs_vec = _offset_vector(builder, subgraphs)
    buffers_vec = _offset_vector(builder, buffers)
    metadata_vec = _offset_vector(builder, list(metadata_entries)) if metadata_entries else None

    # Model table:
    #   field 0: version (uint32)
    #   field 1: operator_codes
    #   field 2: subgraphs
    #   field 3: description (string)
    #   field 4: buffers
    #   field 5: metadata_buffer (deprecated)
    #   field 6: metadata
    builder.StartObject(7)
    builder.PrependUint32Slot(0, version, 0)
    builder.PrependUOffsetTRelativeSlot(1, opcodes_vec, 0)
    builder.PrependUOffsetTRelativeSlot(2, subgraphs_vec, 0)
    builder.PrependUOffsetTRelativeSlot(3, desc_off, 0)
    builder.PrependUOffsetTRelativeSlot(4, buffers_vec, 0)
    if metadata_vec is not None:
        builder.PrependUOffsetTRelativeSlot(6, metadata_vec, 0)
    model_off = builder.EndObject()

    builder.Finish(model_off, TFLITE_MAGIC)
    return bytes(builder.Output())


# ── Model builders ──────────────────────────────────────────────────────────

def build_raw_model(tensors: Sequence[TensorDef], input_indices: Sequence[int],
                    output_indices: Sequence[int], metadata: Optional[bytes] = None,
                    metadata_buffer_index: Optional[int] = None,
                    num_subgraphs: int = 1, external_offset: Optional[int] = None,
                    description: str = "libretasks model") -> bytes:
    """Build a TFLite model from an explicit tensor table.

    Unlike :func:`build_model` nothing is validated, so malformed models
    (out-of-range I/O indices, dangling metadata buffer references) can be
    produced on purpose.

    Args:
        tensors: Subgraph tensor table.
        input_indices: Subgraph input tensor indices.
        output_indices: Subgraph output tensor indices.
        metadata: Metadata flatbuffer bytes stored in a ``TFLITE_METADATA``
            buffer, or None for no metadata.
        metadata_buffer_index: Override the buffer index the metadata entry
            points at.
        num_subgraphs: Number of (identical) subgraphs to emit.
        external_offset: When set, the metadata buffer is addressed by
            offset/size instead of inline data; the caller appends the bytes.
    """
    builder = flatbuffers.Builder(1024 + (len(metadata) if metadata else 0))

    # Buf 0: empty (sentinel), Buf 1..N: one empty buffer per tensor,
    # Buf N+1: metadata
    buffers = [_build_buffer(builder, None)]
    for _ in tensors:
        buffers.append(_build_buffer(builder, None))

    metadata_entries = []
    if metadata is not None:
        meta_idx = len(buffers)
        if external_offset is None:
            buffers.append(_build_buffer(builder, metadata))
        else:
            buffers.append(_build_buffer(builder, None, offset=external_offset,
                                         size=len(metadata)))
        if metadata_buffer_index is not None:
            meta_idx = metadata_buffer_index
        metadata_entries.append(_build_metadata_entry(builder, METADATA_NAME, meta_idx))

    subgraphs = []
    for sg_idx in range(num_subgraphs):
        tensor_offs = []
        for i, t in enumerate(tensors):
            q = None
            if t.scale is not None:
                q = _build_quantization(builder, [t.scale], [t.zero_point])
            tensor_offs.append(_build_tensor(builder, t.name, list(t.shape), t.dtype, i + 1, q))
        subgraphs.append(_build_subgraph(builder, tensor_offs, list(input_indices),
                                         list(output_indices), name=f"subgraph_{sg_idx}"))

    return _build_model(builder, subgraphs, buffers, metadata_entries,
                        description=description)


def build_model(inputs: Sequence[TensorDef], outputs: Sequence[TensorDef],
                metadata: Optional[bytes] = None, external_metadata: bool = False,
                num_subgraphs: int = 1, description: str = "libretasks model") -> bytes:
    """Build a TFLite model with the given input and output tensors.

    Args:
        inputs: Input tensors, in subgraph input order.
        outputs: Output tensors, in subgraph output order.
        metadata: Optional metadata flatbuffer (see :func:`build_metadata`).
        external_metadata: Store the metadata after the flatbuffer, addressed
            by Buffer.offset/size, the way models over 2GB are laid out.
        num_subgraphs: Emit this many copies of the subgraph.

    Returns:
        The ``.tflite`` bytes.
    """
    tensors = list(inputs) + list(outputs)
    input_indices = list(range(len(inputs)))
    output_indices = list(range(len(inputs), len(tensors)))

    if not external_metadata or metadata is None:
        return build_raw_model(tensors, input_indices, output_indices, metadata,
                               num_subgraphs=num_subgraphs, description=description)

    # The u64 offset slot has a fixed width, so a placeholder pass gives the
    # final flatbuffer length.
    probe = build_raw_model(tensors, input_indices, output_indices, metadata,
                            num_subgraphs=num_subgraphs, external_offset=1 << 40,
                            description=description)
    offset = -(-len(probe) // _EXTERNAL_BUFFER_ALIGN) * _EXTERNAL_BUFFER_ALIGN
    model = build_raw_model(tensors, input_indices, output_indices, metadata,
                            num_subgraphs=num_subgraphs, external_offset=offset,
                            description=description)
    return model + b"\x00" * (offset - len(model)) + bytes(metadata)


# ── Metadata builder ────────────────────────────────────────────────────────

def _build_associated_files(builder, files):
    offs = []
    for f in files:
        name_off = builder.CreateString(f.name)
        desc_off = builder.CreateString(f.description) if f.description else None
        locale_off = builder.CreateString(f.locale) if f.locale else None
        # AssociatedFile: 0=name 1=description 2=type 3=locale 4=version
        builder.StartObject(5)
        builder.PrependUOffsetTRelativeSlot(0, name_off, 0)
        if desc_off is not None:
            builder.PrependUOffsetTRelativeSlot(1, desc_off, 0)
        builder.PrependUint8Slot(2, int(f.type), 0)
        if locale_off is not None:
            builder.PrependUOffsetTRelativeSlot(3, locale_off, 0)
        offs.append(builder.EndObject())
    return _offset_vector(builder, offs)


def _build_content(builder, meta):
    content_type = ContentType.NONE
    props = None
    if meta.content == "image":
        content_type = ContentType.IMAGE
        # ImageProperties: 0=color_space 1=default_size
        builder.StartObject(2)
        builder.PrependUint8Slot(0, int(meta.color_space), 0)
        props = builder.EndObject()
    elif meta.content == "bounding_box":
        content_type = ContentType.BOUNDING_BOX
        index_vec = _uint32_vector(builder, meta.bounding_box_index)
        # BoundingBoxProperties: 0=index 1=type 2=coordinate_type
        builder.StartObject(3)
        builder.PrependUOffsetTRelativeSlot(0, index_vec, 0)
        builder.PrependUint8Slot(1, 1, 0)  # BOUNDARIES
        builder.PrependUint8Slot(2, 0, 0)  # RATIO
        props = builder.EndObject()
    elif meta.content == "audio":
        content_type = ContentType.AUDIO
        # AudioProperties: 0=sample_rate 1=channels
        builder.StartObject(2)
        builder.PrependUint32Slot(0, meta.sample_rate, 0)
        builder.PrependUint32Slot(1, meta.channels, 0)
        props = builder.EndObject()
    elif meta.content == "feature":
        content_type = ContentType.FEATURE
        # FeatureProperties: no fields
        builder.StartObject(0)
        props = builder.EndObject()
    elif meta.content is not None:
        raise ValueError(f"Unknown content kind {meta.content!r}")

    range_off = None
    if meta.value_range is not None:
        # ValueRange: 0=min 1=max
        builder.StartObject(2)
        builder.PrependInt32Slot(0, int(meta.value_range[0]), 0)
        builder.PrependInt32Slot(1, int(meta.value_range[1]), 0)
        range_off = builder.EndObject()

    if props is None and range_off is None:
        return None
    # Content: 0=content_properties_type 1=content_properties 2=range
    builder.StartObject(3)
    if props is not None:
        builder.PrependUint8Slot(0, int(content_type), 0)
        builder.PrependUOffsetTRelativeSlot(1, props, 0)
    if range_off is not None:
        builder.PrependUOffsetTRelativeSlot(2, range_off, 0)
    return builder.EndObject()


def _build_process_units(builder, meta):
    units = []
    if meta.mean or meta.std:
        mean_vec = _float32_vector(builder, meta.mean)
        std_vec = _float32_vector(builder, meta.std)
        # NormalizationOptions: 0=mean 1=std
        builder.StartObject(2)
        builder.PrependUOffsetTRelativeSlot(0, mean_vec, 0)
        builder.PrependUOffsetTRelativeSlot(1, std_vec, 0)
        units.append((_NORMALIZATION_OPTIONS, builder.EndObject()))
    if meta.score_threshold is not None:
        # ScoreThresholdingOptions: 0=global_score_threshold
        builder.StartObject(1)
        builder.PrependFloat32Slot(0, float(meta.score_threshold), 0.0)
        units.append((_SCORE_THRESHOLDING_OPTIONS, builder.EndObject()))
    if not units:
        return None
    offs = []
    for unit_type, options in units:
        # ProcessUnit: 0=options_type 1=options
        builder.StartObject(2)
        builder.PrependUint8Slot(0, unit_type, 0)
        builder.PrependUOffsetTRelativeSlot(1, options, 0)
        offs.append(builder.EndObject())
    return _offset_vector(builder, offs)


def _build_stats(builder, meta):
    if not meta.stats_min and not meta.stats_max:
        return None
    max_vec = _float32_vector(builder, meta.stats_max)
    min_vec = _float32_vector(builder, meta.stats_min)
    # Stats: 0=max 1=min
    builder.StartObject(2)
    builder.PrependUOffsetTRelativeSlot(0, max_vec, 0)
    builder.PrependUOffsetTRelativeSlot(1, min_vec, 0)
    return builder.EndObject()


def _build_tensor_metadata(builder, meta):
    name_off = builder.CreateString(meta.name) if meta.name else None
    desc_off = builder.CreateString(meta.description) if meta.description else None
    content = _build_content(builder, meta)
    units = _build_process_units(builder, meta)
    stats = _build_stats(builder, meta)
    files = _build_associated_files(builder, meta.associated_files) if meta.associated_files else None
    # TensorMetadata: 0=name 1=description 2=dimension_names 3=content
    #                 4=process_units 5=stats 6=associated_files
    builder.StartObject(7)
    if name_off is not None:
        builder.PrependUOffsetTRelativeSlot(0, name_off, 0)
    if desc_off is not None:
        builder.PrependUOffsetTRelativeSlot(1, desc_off, 0)
    if content is not None:
        builder.PrependUOffsetTRelativeSlot(3, content, 0)
    if units is not None:
        builder.PrependUOffsetTRelativeSlot(4, units, 0)
    if stats is not None:
        builder.PrependUOffsetTRelativeSlot(5, stats, 0)
    if files is not None:
        builder.PrependUOffsetTRelativeSlot(6, files, 0)
    return builder.EndObject()


def build_metadata(inputs: Sequence[TensorMetadataDef] = (),
                   outputs: Sequence[TensorMetadataDef] = (),
                   name: str = "", description: str = "", version: str = "",
                   associated_files: Sequence[FileDef] = (),
                   subgraph_files: Sequence[FileDef] = (),
                   min_parser_version: str = "1.0.0") -> bytes:
    """Build a metadata flatbuffer (file identifier ``M001``).

    Returns:
        Bytes suitable for the ``metadata`` argument of :func:`build_model`.
    """
    builder = flatbuffers.Builder(1024)

    input_offs = [_build_tensor_metadata(builder, m) for m in inputs]
    output_offs = [_build_tensor_metadata(builder, m) for m in outputs]
    inputs_vec = _offset_vector(builder, input_offs)
    outputs_vec = _offset_vector(builder, output_offs)
    sg_files = _build_associated_files(builder, subgraph_files) if subgraph_files else None
    # SubGraphMetadata: 0=name 1=description 2=input_tensor_metadata
    #                   3=output_tensor_metadata 4=associated_files
    builder.StartObject(5)
    builder.PrependUOffsetTRelativeSlot(2, inputs_vec, 0)
    builder.PrependUOffsetTRelativeSlot(3, outputs_vec, 0)
    if sg_files is not None:
        builder.PrependUOffsetTRelativeSlot(4, sg_files, 0)
    subgraph = builder.EndObject()
    subgraphs_vec = _offset_vector(builder, [subgraph])

    name_off = builder.CreateString(name)
    desc_off = builder.CreateString(description)
    version_off = builder.CreateString(version)
    model_files = _build_associated_files(builder, associated_files) if associated_files else None
    parser_off = builder.CreateString(min_parser_version)
    # ModelMetadata: 0=name 1=description 2=version 3=subgraph_metadata
    #                4=author 5=license 6=associated_files 7=min_parser_version
    builder.StartObject(8)
    builder.PrependUOffsetTRelativeSlot(0, name_off, 0)
    builder.PrependUOffsetTRelativeSlot(1, desc_off, 0)
    builder.PrependUOffsetTRelativeSlot(2, version_off, 0)
    builder.PrependUOffsetTRelativeSlot(3, subgraphs_vec, 0)
    if model_files is not None:
        builder.PrependUOffsetTRelativeSlot(6, model_files, 0)
    builder.PrependUOffsetTRelativeSlot(7, parser_off, 0)
    root = builder.EndObject()

    builder.Finish(root, METADATA_MAGIC)
    return bytes(builder.Output())


# ── Zip containers ──────────────────────────────────────────────────────────

def _stored_zip(entries: Mapping[str, bytes], compress: Sequence[str] = ()) -> bytes:
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w") as zf:
        for name, data in entries.items():
            method = zipfile.ZIP_DEFLATED if name in compress else zipfile.ZIP_STORED
            zf.writestr(zipfile.ZipInfo(name), bytes(data), compress_type=method)
    return out.getvalue()


def populate_associated_files(model: bytes, files: Mapping[str, bytes]) -> bytes:
    """Append *files* to *model* as a stored zip archive.

    This is the layout of a metadata-populated model: the flatbuffer is
    unchanged and the associated files follow it.
    """
    return bytes(model) + _stored_zip(files)


def build_bundle(entries: Mapping[str, bytes], compress: Sequence[str] = ()) -> bytes:
    """Build a task bundle: a zip whose entries are stored, not deflated.

    Names listed in *compress* are deflated instead, which the bundle
    reader refuses to resolve.
    """
    return _stored_zip(entries, compress)


def label_file(labels: Sequence[str]) -> bytes:
    """Encode a list of labels as a newline-delimited UTF-8 label file."""
    return "".join(f"{label}\n" for label in labels).encode("utf-8")
