"""Classifier — top-k categories from a single-head classification model.

Usage:
    classifier = Classifier(BaseTaskOptions(model_asset_path="model.tflite"),
                            ClassifierOptions(max_results=3),
                            engine_factory=my_engine_factory)
    session = classifier.new_session()
    result = session.classify(input_tensor_bytes)
"""

from typing import Optional

from ._base import TaskBase, TaskSession
from .options import BaseTaskOptions, ClassifierOptions
from .postprocess.categories_filter import CategoriesFilter
from .postprocess.classification import ClassificationHead, TensorsToClassification
from .postprocess.containers import ClassificationResult
from .postprocess.output_buffer import OutputBuffer

__all__ = ["Classifier", "ClassifierSession"]


class Classifier(TaskBase):
    """Classification task over a model with one input and one output.

    Category names come from the output's label file when the model has
    one; otherwise categories are reported by index only.
    """

    _NUM_INPUTS = 1
    _NUM_OUTPUTS = 1

    def __init__(self, base_options: BaseTaskOptions,
                 options: Optional[ClassifierOptions] = None, engine_factory=None):
        self._options = options if options is not None else ClassifierOptions()
        self._options.validate()
        super().__init__(base_options, engine_factory)
        self._output_spec(0)

    @property
    def options(self) -> ClassifierOptions:
        return self._options

    def new_session(self) -> "ClassifierSession":
        return ClassifierSession(self)

    def classify(self, data, timestamp_ms=None) -> ClassificationResult:
        """One-shot classification on a throwaway session."""
        return self.new_session().classify(data, timestamp_ms)


class ClassifierSession(TaskSession):
    """Reusable classification state; not thread-safe."""

    def __init__(self, task: Classifier):
        super().__init__(task)
        res = task.model_resource
        opts = task.options

        categories_filter = None
        if res.has_output_labels(0):
            labels = res.output_labels(0, opts.display_names_locale)
            categories_filter = CategoriesFilter.from_options(labels, opts)

        meta = res.output_metadata(0)
        head_name = meta.name if meta is not None and meta.name else None
        self._buffer = OutputBuffer(task._output_spec(0))
        self._postprocess = TensorsToClassification(
            [ClassificationHead(self._buffer, categories_filter, 0, head_name)],
            max_results=opts.max_results,
            score_threshold=opts.score_threshold,
        )

    def classify(self, data, timestamp_ms=None) -> ClassificationResult:
        """Classify one input tensor (raw bytes or a numpy array)."""
        self._run(data)
        self._fetch(0, self._buffer)
        return self._postprocess.result(timestamp_ms)
