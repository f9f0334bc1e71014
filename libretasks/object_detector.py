"""ObjectDetector — SSD-style detection models with in-graph post-processing.

The model has one image input and four outputs, found by name:

    location   [1, N, 4]  box corners, channel order from metadata
    category   [1, N]     class index per candidate
    score      [1, N]     score per candidate
    (count)    [1]        number of valid candidates, the unnamed output
"""

from typing import Optional

import numpy as np

from ._base import TaskBase, TaskSession
from .errors import InconsistentError
from .options import BaseTaskOptions, ClassifierOptions
from .postprocess.categories_filter import CategoriesFilter
from .postprocess.containers import DetectionResult
from .postprocess.detection_decoder import (
    DEFAULT_BOX_INDICES, DetectionOptions, TensorsToDetection,
)
from .postprocess.nms import NmsOptions, NonMaxSuppression
from .postprocess.output_buffer import OutputBuffer

__all__ = ["ObjectDetector", "ObjectDetectorSession"]

_LOCATION = "location"
_CATEGORY = "category"
_SCORE = "score"


class ObjectDetector(TaskBase):
    """Detection task; category selection is configured by ClassifierOptions."""

    _NUM_INPUTS = 1
    _NUM_OUTPUTS = 4

    def __init__(self, base_options: BaseTaskOptions,
                 options: Optional[ClassifierOptions] = None, engine_factory=None):
        self._options = options if options is not None else ClassifierOptions()
        self._options.validate()
        super().__init__(base_options, engine_factory)
        res = self._resource

        self.location_index = self._output_index(_LOCATION)
        self.category_index = self._output_index(_CATEGORY)
        self.score_index = self._output_index(_SCORE)
        claimed = {self.location_index, self.category_index, self.score_index}
        if len(claimed) != 3:
            raise InconsistentError(
                "Outputs `location`, `category` and `score` must be distinct tensors"
            )
        self.count_index = next(i for i in range(self._NUM_OUTPUTS) if i not in claimed)

        roles = res.output_bounding_box_roles(self.location_index)
        if roles is None:
            roles = DEFAULT_BOX_INDICES
        for r in roles:
            if r >= 4:
                raise InconsistentError(
                    f"BoundingBoxProperties must contain `0,1,2,3`, but got `{r}`"
                )
        self.box_indices = tuple(roles)

        location_spec = self._output_spec(self.location_index)
        self.max_boxes = location_spec.num_elements // 4

    @property
    def options(self) -> ClassifierOptions:
        return self._options

    def new_session(self) -> "ObjectDetectorSession":
        return ObjectDetectorSession(self)

    def detect(self, data, timestamp_ms=None) -> DetectionResult:
        """One-shot detection on a throwaway session."""
        return self.new_session().detect(data, timestamp_ms)


class ObjectDetectorSession(TaskSession):
    """Reusable detection state; not thread-safe."""

    def __init__(self, task: ObjectDetector):
        super().__init__(task)
        res = task.model_resource
        opts = task.options

        self._location = OutputBuffer(task._output_spec(task.location_index))
        self._category = OutputBuffer(task._output_spec(task.category_index))
        self._score = OutputBuffer(task._output_spec(task.score_index))
        self._count = OutputBuffer(task._output_spec(task.count_index))

        # Labelled models name and filter categories; unlabelled ones are
        # filtered by score alone.
        categories_filter = None
        if res.has_output_labels(task.category_index):
            labels = res.output_labels(task.category_index, opts.display_names_locale)
            categories_filter = CategoriesFilter.from_options(labels, opts)

        nms = NonMaxSuppression(NmsOptions(
            max_results=opts.max_results,
            min_score_threshold=opts.score_threshold,
        ))
        self._postprocess = TensorsToDetection(
            DetectionOptions(num_boxes=task.max_boxes, num_coords=4,
                             min_score_threshold=opts.score_threshold),
            box_indices=task.box_indices,
            categories_filter=categories_filter,
            nms=nms,
        )

    def detect(self, data, timestamp_ms=None) -> DetectionResult:
        """Detect objects in one input tensor (raw bytes or a numpy array)."""
        task = self._task
        self._run(data)
        self._fetch(task.location_index, self._location)
        self._fetch(task.category_index, self._category)
        self._fetch(task.score_index, self._score)
        self._fetch(task.count_index, self._count)

        count = self._count.values()
        num_boxes = int(np.rint(count[0])) if count.size and np.isfinite(count[0]) else 0
        num_boxes = max(0, min(num_boxes, task.max_boxes))
        return self._postprocess.result(
            self._location.values(), self._score.values(), self._category.values(),
            num_boxes=num_boxes, timestamp_ms=timestamp_ms,
        )
