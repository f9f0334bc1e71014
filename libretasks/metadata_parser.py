"""TFLite model metadata parser using only struct.

The metadata is a flatbuffer of its own (file identifier ``M001``, schema
``metadata_schema.fbs``) stored as raw bytes in one of the model's buffer
slots.  It is parsed here as an independent root over its own byte range;
nothing in this module knows about the outer Model table.
"""

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

from . import _flatbuf as fb
from .errors import ParseError

__all__ = [
    "parse_metadata", "ModelMetadata", "SubGraphMetadata", "TensorMetadata",
    "AssociatedFile", "AssociatedFileType", "ContentType", "ColorSpace",
    "NormalizationOptions",
]


class AssociatedFileType(IntEnum):
    UNKNOWN = 0
    DESCRIPTIONS = 1
    TENSOR_AXIS_LABELS = 2
    TENSOR_VALUE_LABELS = 3
    TENSOR_AXIS_SCORE_CALIBRATION = 4
    VOCABULARY = 5
    SCANN_INDEX_FILE = 6


class ContentType(IntEnum):
    """ContentProperties union discriminator."""
    NONE = 0
    FEATURE = 1
    IMAGE = 2
    BOUNDING_BOX = 3
    AUDIO = 4


class ColorSpace(IntEnum):
    UNKNOWN = 0
    RGB = 1
    GRAYSCALE = 2


class BoundingBoxType(IntEnum):
    UNKNOWN = 0
    BOUNDARIES = 1
    UPPER_LEFT = 2
    CENTER = 3


# ProcessUnitOptions union discriminators
_NORMALIZATION_OPTIONS = 1
_SCORE_THRESHOLDING_OPTIONS = 3


@dataclass
class AssociatedFile:
    name: str
    type: int = AssociatedFileType.UNKNOWN
    description: str = ""
    locale: str = ""
    version: str = ""


@dataclass
class NormalizationOptions:
    mean: List[float] = field(default_factory=list)
    std: List[float] = field(default_factory=list)


@dataclass
class TensorMetadata:
    name: str = ""
    description: str = ""
    content_type: int = ContentType.NONE
    color_space: int = ColorSpace.UNKNOWN
    # BoundingBoxProperties.index, in {left, top, right, bottom} order
    bounding_box_index: List[int] = field(default_factory=list)
    bounding_box_type: int = BoundingBoxType.UNKNOWN
    coordinate_type: int = 0
    sample_rate: int = 0
    channels: int = 0
    value_range: Optional[tuple] = None
    normalization: Optional[NormalizationOptions] = None
    score_threshold: Optional[float] = None
    stats_min: List[float] = field(default_factory=list)
    stats_max: List[float] = field(default_factory=list)
    associated_files: List[AssociatedFile] = field(default_factory=list)


@dataclass
class SubGraphMetadata:
    name: str = ""
    description: str = ""
    inputs: List[TensorMetadata] = field(default_factory=list)
    outputs: List[TensorMetadata] = field(default_factory=list)
    associated_files: List[AssociatedFile] = field(default_factory=list)


@dataclass
class ModelMetadata:
    name: str = ""
    description: str = ""
    version: str = ""
    subgraphs: List[SubGraphMetadata] = field(default_factory=list)
    associated_files: List[AssociatedFile] = field(default_factory=list)
    min_parser_version: str = ""


# ── Metadata schema navigation ──────────────────────────────────────────────
# ModelMetadata:    0=name 1=description 2=version 3=subgraph_metadata
#                   4=author 5=license 6=associated_files 7=min_parser_version
# SubGraphMetadata: 0=name 1=description 2=input_tensor_metadata
#                   3=output_tensor_metadata 4=associated_files
# TensorMetadata:   0=name 1=description 2=dimension_names 3=content
#                   4=process_units 5=stats 6=associated_files
# Content:          0=content_properties_type 1=content_properties 2=range
# AssociatedFile:   0=name 1=description 2=type 3=locale 4=version
# Stats:            0=max 1=min

def _parse_associated_files(buf, table, idx):
    files = []
    for f in fb.table_vector_field(buf, table, idx):
        files.append(AssociatedFile(
            name=fb.string_field(buf, f, 0, ""),
            description=fb.string_field(buf, f, 1, ""),
            type=fb.scalar_field(buf, f, 2, "u8", AssociatedFileType.UNKNOWN),
            locale=fb.string_field(buf, f, 3, ""),
            version=fb.string_field(buf, f, 4, ""),
        ))
    return files


def _parse_content(buf, tensor, meta):
    content = fb.table_field(buf, tensor, 3)
    if content is None:
        return
    content_type, props = fb.union_field(buf, content, 0)
    meta.content_type = content_type
    if props is not None:
        if content_type == ContentType.IMAGE:
            meta.color_space = fb.scalar_field(buf, props, 0, "u8", ColorSpace.UNKNOWN)
        elif content_type == ContentType.BOUNDING_BOX:
            meta.bounding_box_index = fb.scalar_vector_field(buf, props, 0, "u32")
            meta.bounding_box_type = fb.scalar_field(buf, props, 1, "u8", 0)
            meta.coordinate_type = fb.scalar_field(buf, props, 2, "u8", 0)
        elif content_type == ContentType.AUDIO:
            meta.sample_rate = fb.scalar_field(buf, props, 0, "u32", 0)
            meta.channels = fb.scalar_field(buf, props, 1, "u32", 0)
    value_range = fb.table_field(buf, content, 2)
    if value_range is not None:
        meta.value_range = (
            fb.scalar_field(buf, value_range, 0, "i32", 0),
            fb.scalar_field(buf, value_range, 1, "i32", 0),
        )


def _parse_process_units(buf, tensor, meta):
    for unit in fb.table_vector_field(buf, tensor, 4):
        unit_type, options = fb.union_field(buf, unit, 0)
        if options is None:
            continue
        if unit_type == _NORMALIZATION_OPTIONS and meta.normalization is None:
            meta.normalization = NormalizationOptions(
                mean=fb.scalar_vector_field(buf, options, 0, "f32"),
                std=fb.scalar_vector_field(buf, options, 1, "f32"),
            )
        elif unit_type == _SCORE_THRESHOLDING_OPTIONS:
            meta.score_threshold = fb.scalar_field(buf, options, 0, "f32", 0.0)


def _parse_tensor_metadata(buf, tensor):
    meta = TensorMetadata(
        name=fb.string_field(buf, tensor, 0, ""),
        description=fb.string_field(buf, tensor, 1, ""),
    )
    _parse_content(buf, tensor, meta)
    _parse_process_units(buf, tensor, meta)
    stats = fb.table_field(buf, tensor, 5)
    if stats is not None:
        meta.stats_max = fb.scalar_vector_field(buf, stats, 0, "f32")
        meta.stats_min = fb.scalar_vector_field(buf, stats, 1, "f32")
    meta.associated_files = _parse_associated_files(buf, tensor, 6)
    return meta


def _parse_subgraph(buf, sg):
    return SubGraphMetadata(
        name=fb.string_field(buf, sg, 0, ""),
        description=fb.string_field(buf, sg, 1, ""),
        inputs=[_parse_tensor_metadata(buf, t) for t in fb.table_vector_field(buf, sg, 2)],
        outputs=[_parse_tensor_metadata(buf, t) for t in fb.table_vector_field(buf, sg, 3)],
        associated_files=_parse_associated_files(buf, sg, 4),
    )


def parse_metadata(metadata_bytes) -> ModelMetadata:
    """Parse a metadata flatbuffer (the content of the TFLITE_METADATA buffer).

    Raises:
        ParseError: if the flatbuffer is truncated or malformed.
    """
    buf = metadata_bytes
    try:
        root = fb.root_table(buf)
        return ModelMetadata(
            name=fb.string_field(buf, root, 0, ""),
            description=fb.string_field(buf, root, 1, ""),
            version=fb.string_field(buf, root, 2, ""),
            subgraphs=[_parse_subgraph(buf, sg) for sg in fb.table_vector_field(buf, root, 3)],
            associated_files=_parse_associated_files(buf, root, 6),
            min_parser_version=fb.string_field(buf, root, 7, ""),
        )
    except (struct.error, IndexError, UnicodeDecodeError) as e:
        raise ParseError(f"Malformed model metadata flatbuffer: {e}") from e
