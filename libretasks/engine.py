"""Inference engine interface.

libretasks does not execute models.  A task asks its *engine factory* for
one :class:`InferenceEngine` per session and drives it with raw tensor
bytes::

    engine.set_input(0, ElementType.U8, (1, 224, 224, 3), image_bytes)
    engine.compute()
    n = engine.get_output(0, out_view)   # must equal the output's byte size

:class:`CallableEngine` adapts any Python callable working on numpy arrays
(a TFLite interpreter wrapper, a hand-written model, a test stub).
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Sequence

import numpy as np

from .tensor import ElementType

__all__ = ["InferenceEngine", "CallableEngine"]


class InferenceEngine(ABC):
    """One execution context of a model.  Not required to be thread-safe."""

    @abstractmethod
    def set_input(self, index: int, element_type: ElementType, shape: Sequence[int],
                  data) -> None:
        """Bind the bytes of input tensor *index*."""

    @abstractmethod
    def compute(self) -> None:
        """Run the model on the bound inputs."""

    @abstractmethod
    def get_output(self, index: int, out: memoryview) -> int:
        """Copy output tensor *index* into *out*; return the output's byte size.

        When the returned size differs from ``len(out)`` the caller treats
        the model as inconsistent with its description.
        """


class CallableEngine(InferenceEngine):
    """Run a Python callable as the model.

    Args:
        fn: Called as ``fn(*inputs)`` with one numpy array per bound input
            (dtype and shape from :meth:`set_input`); returns an array or a
            sequence of arrays, one per model output.
    """

    def __init__(self, fn: Callable):
        self._fn = fn
        self._inputs: Dict[int, np.ndarray] = {}
        self._outputs: List[bytes] = []

    @classmethod
    def factory(cls, fn: Callable):
        """Return an engine factory creating a fresh engine around *fn*."""
        return lambda resource: cls(fn)

    def set_input(self, index, element_type, shape, data):
        array = np.frombuffer(bytes(data), dtype=element_type.numpy_dtype)
        self._inputs[index] = array.reshape(tuple(shape))

    def compute(self):
        inputs = [self._inputs[i] for i in sorted(self._inputs)]
        result = self._fn(*inputs)
        if isinstance(result, np.ndarray):
            result = [result]
        self._outputs = [np.ascontiguousarray(r).tobytes() for r in result]

    def get_output(self, index, out):
        if index >= len(self._outputs):
            raise IndexError(f"Output index {index} out of range ({len(self._outputs)} outputs)")
        data = self._outputs[index]
        n = min(len(data), len(out))
        out[:n] = data[:n]
        return len(data)
