"""Model resource: the read-only query surface over a parsed model.

``load_model()`` sniffs the container format, parses the model flatbuffer
and its metadata flatbuffer, wires up associated-file lookup, and returns a
:class:`ModelResource`.  The resource holds a reference to the backing
buffer, so every view it hands out (associated files, label bytes) stays
valid for as long as anything refers to it; callers never need to keep the
original buffer alive themselves.

A resource is immutable once built and may be shared by any number of
sessions, including across threads.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Optional, Sequence, Tuple

from ._constants import TFLITE_MAGIC, TFLITE_MAGIC_OFFSET, ZIP_LOCAL_HEADER_MAGIC
from .associated_files import AssociatedFileStore, LabelSet
from .container import open_archive, register_format, sniff_format, try_open_archive
from .errors import InconsistentError, ParseError
from .metadata_parser import (
    AssociatedFileType, ColorSpace, ContentType, ModelMetadata, TensorMetadata, parse_metadata,
)
from .tensor import ElementType, QuantizationParams, TensorSpec
from .tflite_parser import TFLiteModel, parse_model

__all__ = [
    "load_model", "load_model_file", "ModelResource", "Backend", "DataLayout", "BoxRole",
    "ImageTensorInfo", "AudioTensorInfo",
]

_IMAGE_INPUT_NAME = "image"
_AUDIO_INPUT_NAME = "audio"
_LABEL_FILE_TYPES = (AssociatedFileType.TENSOR_AXIS_LABELS, AssociatedFileType.TENSOR_VALUE_LABELS)


class Backend(Enum):
    TFLITE = "tflite"


class DataLayout(Enum):
    NHWC = "NHWC"
    NCHW = "NCHW"


class BoxRole(IntEnum):
    """Index of each box boundary in a bounding-box role array."""
    YMIN = 0
    XMIN = 1
    YMAX = 2
    XMAX = 3


@dataclass(frozen=True)
class ImageTensorInfo:
    """What an image encoder must produce for an image input tensor."""
    width: int
    height: int
    channels: int
    element_type: ElementType
    color_space: str = "RGB"
    normalization_mean: Tuple[float, ...] = ()
    normalization_std: Tuple[float, ...] = ()
    stats_min: Tuple[float, ...] = ()
    stats_max: Tuple[float, ...] = ()


@dataclass(frozen=True)
class AudioTensorInfo:
    """What an audio encoder must produce for an audio input tensor."""
    sample_rate: int
    channels: int
    num_samples: int
    element_type: ElementType


def _image_info(spec: TensorSpec, meta: TensorMetadata) -> Optional[ImageTensorInfo]:
    shape = spec.shape
    if len(shape) != 4 or shape[0] != 1 or shape[3] not in (1, 3):
        return None
    color_space = "GRAYSCALE" if meta.color_space == ColorSpace.GRAYSCALE else "RGB"
    mean, std = (), ()
    if meta.normalization is not None:
        mean = tuple(meta.normalization.mean)
        std = tuple(meta.normalization.std)
    return ImageTensorInfo(
        width=shape[2],
        height=shape[1],
        channels=shape[3],
        element_type=spec.element_type,
        color_space=color_space,
        normalization_mean=mean,
        normalization_std=std,
        stats_min=tuple(meta.stats_min),
        stats_max=tuple(meta.stats_max),
    )


def _audio_info(spec: TensorSpec, meta: TensorMetadata) -> Optional[AudioTensorInfo]:
    if meta.sample_rate <= 0:
        return None
    channels = max(meta.channels, 1)
    return AudioTensorInfo(
        sample_rate=meta.sample_rate,
        channels=channels,
        num_samples=spec.num_elements // channels,
        element_type=spec.element_type,
    )


class ModelResource:
    """Immutable description of a loaded model.

    Index-based getters return None when the index is out of range, so
    callers decide whether absence is an error for their task.
    """

    backend = Backend.TFLITE
    data_layout = DataLayout.NHWC

    def __init__(self, buf, model: TFLiteModel, metadata: Optional[ModelMetadata] = None,
                 files: Optional[AssociatedFileStore] = None, model_name: Optional[str] = None):
        self._buf = buf
        self._model = model
        self._metadata = metadata
        self._files = files if files is not None else AssociatedFileStore()
        self._model_name = model_name

        sg = metadata.subgraphs[0] if metadata is not None and metadata.subgraphs else None
        self._input_meta = list(sg.inputs) if sg is not None else []
        self._output_meta = list(sg.outputs) if sg is not None else []

        self._image_info: Dict[int, ImageTensorInfo] = {}
        self._audio_info: Dict[int, AudioTensorInfo] = {}
        for i, meta in enumerate(self._input_meta[:len(model.inputs)]):
            spec = model.inputs[i]
            if meta.name == _IMAGE_INPUT_NAME or meta.content_type == ContentType.IMAGE:
                info = _image_info(spec, meta)
                if info is not None:
                    self._image_info[i] = info
            elif meta.name == _AUDIO_INPUT_NAME or meta.content_type == ContentType.AUDIO:
                info = _audio_info(spec, meta)
                if info is not None:
                    self._audio_info[i] = info

        names = {}
        for i, meta in enumerate(self._output_meta[:len(model.outputs)]):
            if meta.name:
                names.setdefault(meta.name, i)
        if not names:
            names = model.output_names
        self._output_names: Dict[str, int] = names

    # ── Buffer and metadata ───────────────────────────────────────────────

    @property
    def buffer(self) -> memoryview:
        """The model flatbuffer bytes (for bundled models, the resolved entry only)."""
        return self._buf

    @property
    def model_name(self) -> Optional[str]:
        """Bundle entry the model was resolved from, if any."""
        return self._model_name

    @property
    def metadata(self) -> Optional[ModelMetadata]:
        return self._metadata

    # ── Tensor specs ──────────────────────────────────────────────────────

    @property
    def input_count(self) -> int:
        return len(self._model.inputs)

    @property
    def output_count(self) -> int:
        return len(self._model.outputs)

    def input_spec(self, index: int) -> Optional[TensorSpec]:
        if 0 <= index < len(self._model.inputs):
            return self._model.inputs[index]
        return None

    def output_spec(self, index: int) -> Optional[TensorSpec]:
        if 0 <= index < len(self._model.outputs):
            return self._model.outputs[index]
        return None

    def input_tensor_type(self, index: int) -> Optional[ElementType]:
        spec = self.input_spec(index)
        return spec.element_type if spec is not None else None

    def output_tensor_type(self, index: int) -> Optional[ElementType]:
        spec = self.output_spec(index)
        return spec.element_type if spec is not None else None

    def input_tensor_shape(self, index: int) -> Optional[Tuple[int, ...]]:
        spec = self.input_spec(index)
        return spec.shape if spec is not None else None

    def output_tensor_shape(self, index: int) -> Optional[Tuple[int, ...]]:
        spec = self.output_spec(index)
        return spec.shape if spec is not None else None

    def input_tensor_byte_size(self, index: int) -> Optional[int]:
        spec = self.input_spec(index)
        return spec.byte_size if spec is not None else None

    def output_tensor_byte_size(self, index: int) -> Optional[int]:
        spec = self.output_spec(index)
        return spec.byte_size if spec is not None else None

    def output_quantization(self, index: int) -> Optional[QuantizationParams]:
        spec = self.output_spec(index)
        return spec.quantization if spec is not None else None

    def output_name_to_index(self, name: str) -> Optional[int]:
        return self._output_names.get(name)

    @property
    def output_names(self) -> Dict[str, int]:
        return dict(self._output_names)

    # ── Media requirements ────────────────────────────────────────────────

    def image_info(self, input_index: int) -> Optional[ImageTensorInfo]:
        return self._image_info.get(input_index)

    def audio_info(self, input_index: int) -> Optional[AudioTensorInfo]:
        return self._audio_info.get(input_index)

    # ── Output metadata ───────────────────────────────────────────────────

    def output_metadata(self, index: int) -> Optional[TensorMetadata]:
        if 0 <= index < len(self._output_meta):
            return self._output_meta[index]
        return None

    def output_score_threshold(self, index: int) -> Optional[float]:
        """Score threshold declared in the output's metadata, if any."""
        meta = self.output_metadata(index)
        return meta.score_threshold if meta is not None else None

    def output_bounding_box_roles(self, index: int) -> Optional[Tuple[int, int, int, int]]:
        """Physical channel of each box boundary, indexed by :class:`BoxRole`.

        Metadata stores the boundary order as {left, top, right, bottom};
        anything but exactly four entries means the output declares none.
        """
        meta = self.output_metadata(index)
        if meta is None or len(meta.bounding_box_index) != 4:
            return None
        left, top, right, bottom = meta.bounding_box_index
        roles = [0, 0, 0, 0]
        roles[BoxRole.YMIN] = top
        roles[BoxRole.XMIN] = left
        roles[BoxRole.YMAX] = bottom
        roles[BoxRole.XMAX] = right
        return tuple(roles)

    # ── Associated files and labels ───────────────────────────────────────

    @property
    def associated_files(self) -> AssociatedFileStore:
        return self._files

    def associated_file(self, name: str) -> memoryview:
        return self._files.get(name)

    def has_output_labels(self, index: int) -> bool:
        meta = self.output_metadata(index)
        return meta is not None and any(f.type in _LABEL_FILE_TYPES for f in meta.associated_files)

    def output_label_files(self, index: int, locale: str = "") -> Tuple[memoryview, Optional[memoryview]]:
        """Return (labels, locale labels) bytes for output *index*.

        The first label file of the output is the category-name file; the
        file of the same type whose locale equals *locale* supplies display
        names.

        Raises:
            InconsistentError: if the output references no label file or the
                model has no associated files.
        """
        meta = self.output_metadata(index)
        files = meta.associated_files if meta is not None else []
        for file_type in _LABEL_FILE_TYPES:
            typed = [f for f in files if f.type == file_type]
            if not typed:
                continue
            labels = self._files.get(typed[0].name)
            labels_locale = None
            if locale:
                for f in typed:
                    if f.locale == locale:
                        labels_locale = self._files.get(f.name)
                        break
            return labels, labels_locale
        raise InconsistentError(f"Model output `{index}` has no label file")

    def output_labels(self, index: int, locale: str = "") -> LabelSet:
        labels, labels_locale = self.output_label_files(index, locale)
        return LabelSet.from_files(labels, labels_locale)

    def __repr__(self):
        return (f"ModelResource(backend={self.backend.value}, inputs={self.input_count}, "
                f"outputs={self.output_count}, model_name={self._model_name!r})")


# ── Loading ─────────────────────────────────────────────────────────────────

def _owned(buf) -> memoryview:
    """Return a read-only view that keeps its backing buffer alive."""
    if isinstance(buf, memoryview):
        return buf if buf.readonly else memoryview(bytes(buf))
    if isinstance(buf, bytes):
        return memoryview(buf)
    return memoryview(bytes(buf))


def _load_tflite(buf, model_names=(), parent_archive=None, model_name=None) -> ModelResource:
    view = _owned(buf)
    model = parse_model(view)
    metadata = None
    if model.metadata_range is not None:
        start, length = model.metadata_range
        metadata = parse_metadata(view[start:start + length])
    files = AssociatedFileStore([try_open_archive(view), parent_archive])
    return ModelResource(view, model, metadata, files, model_name=model_name)


def _load_bundle(buf, model_names=(), parent_archive=None, model_name=None) -> ModelResource:
    if parent_archive is not None:
        raise ParseError("Nested task bundles are not supported")
    view = _owned(buf)
    archive = open_archive(view)
    if not model_names:
        raise ParseError(
            f"Task bundle needs candidate model names (entries: {archive.names!r})"
        )
    name, data = archive.resolve(model_names)
    fmt = sniff_format(data)
    return fmt.loader(data, (), parent_archive=archive, model_name=name)


register_format("tflite", TFLITE_MAGIC_OFFSET, TFLITE_MAGIC, _load_tflite)
register_format("bundle", 0, ZIP_LOCAL_HEADER_MAGIC, _load_bundle)


def load_model(buf, model_names: Sequence[str] = ()) -> ModelResource:
    """Parse model bytes into a :class:`ModelResource`.

    Args:
        buf: Model bytes: a TFLite flatbuffer (optionally metadata-populated
            with appended associated files) or a task bundle.
        model_names: Ordered candidate entry names, tried in turn when *buf*
            is a bundle; ignored otherwise.

    Raises:
        ParseError: unrecognized magic, malformed flatbuffers or archive, or
            no candidate name present in a bundle.
    """
    fmt = sniff_format(buf)
    return fmt.loader(buf, tuple(model_names))


def load_model_file(path: str, model_names: Sequence[str] = ()) -> ModelResource:
    with open(path, "rb") as f:
        data = f.read()
    return load_model(data, model_names)
