"""Base classes for tasks and their sessions.

A task loads and checks the model once and is immutable afterwards, so it
can be shared between threads.  Each session owns an engine context and
every scratch buffer it needs; a session must only be used by one thread at
a time, and concurrent workers each create their own.
"""

from typing import Callable, Optional, Sequence

import numpy as np

from .engine import InferenceEngine
from .errors import ArgumentError, InconsistentError
from .model_resource import ModelResource, load_model
from .options import BaseTaskOptions
from .postprocess.output_buffer import OutputBuffer
from .tensor import TensorSpec


class TaskBase:
    """Shared model loading, model checks and engine management.

    Subclasses set ``_NUM_INPUTS`` / ``_NUM_OUTPUTS`` (None skips the check)
    and ``_DEFAULT_MODEL_NAMES``, the bundle entries tried when the caller
    names none.
    """

    _NUM_INPUTS: Optional[int] = 1
    _NUM_OUTPUTS: Optional[int] = 1
    _DEFAULT_MODEL_NAMES: Sequence[str] = ()

    def __init__(self, base_options: BaseTaskOptions,
                 engine_factory: Callable[[ModelResource], InferenceEngine]) -> None:
        if engine_factory is None:
            raise ArgumentError("An engine factory is required to run the model")
        buf = base_options.load_buffer()
        names = tuple(base_options.model_names) or tuple(self._DEFAULT_MODEL_NAMES)
        self._base_options = base_options
        self._resource = load_model(buf, names)
        self._engine_factory = engine_factory
        self._check_io_counts()

    # ── Model checks ──────────────────────────────────────────────────────

    def _check_io_counts(self) -> None:
        res = self._resource
        if self._NUM_INPUTS is not None and res.input_count != self._NUM_INPUTS:
            raise InconsistentError(
                f"Expect model input tensor count `{self._NUM_INPUTS}`, "
                f"but got `{res.input_count}`"
            )
        if self._NUM_OUTPUTS is not None and res.output_count != self._NUM_OUTPUTS:
            raise InconsistentError(
                f"Expect model output tensor count `{self._NUM_OUTPUTS}`, "
                f"but got `{res.output_count}`"
            )

    def _input_spec(self, index: int) -> TensorSpec:
        spec = self._resource.input_spec(index)
        if spec is None:
            raise InconsistentError(f"Model has no input tensor `{index}`")
        return spec

    def _output_spec(self, index: int) -> TensorSpec:
        spec = self._resource.output_spec(index)
        if spec is None:
            raise InconsistentError(f"Model has no output tensor `{index}`")
        return spec

    def _output_index(self, name: str) -> int:
        index = self._resource.output_name_to_index(name)
        if index is None:
            raise InconsistentError(f"Model has no output tensor named `{name}`")
        return index

    def _new_engine(self) -> InferenceEngine:
        return self._engine_factory(self._resource)

    # ── Common properties ─────────────────────────────────────────────────

    @property
    def model_resource(self) -> ModelResource:
        return self._resource

    @property
    def input_shape(self):
        """Input tensor shape from the model."""
        return self._input_spec(0).shape

    @property
    def base_options(self) -> BaseTaskOptions:
        return self._base_options


class TaskSession:
    """Per-worker execution state: engine context, input and output scratch."""

    def __init__(self, task: TaskBase) -> None:
        self._task = task
        self._engine = task._new_engine()
        self._input_spec = task._input_spec(0)

    def _input_bytes(self, data):
        """Accept raw tensor bytes or a numpy array of the input's dtype."""
        spec = self._input_spec
        if isinstance(data, np.ndarray):
            if data.dtype != spec.element_type.numpy_dtype:
                raise ArgumentError(
                    f"Input dtype {data.dtype} does not match model input "
                    f"{spec.element_type.value}"
                )
            data = np.ascontiguousarray(data).tobytes()
        if len(data) != spec.byte_size:
            raise ArgumentError(
                f"Input tensor is {len(data)} bytes, model expects {spec.byte_size} "
                f"({spec.element_type.value} {list(spec.shape)})"
            )
        return data

    def _run(self, data) -> None:
        spec = self._input_spec
        self._engine.set_input(0, spec.element_type, spec.shape, self._input_bytes(data))
        self._engine.compute()

    def _fetch(self, output_index: int, buffer: OutputBuffer) -> None:
        written = self._engine.get_output(output_index, buffer.raw)
        if written != buffer.byte_size:
            raise InconsistentError(
                f"Model output bytes size is `{buffer.byte_size}`, but got `{written}`"
            )
