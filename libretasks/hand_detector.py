"""HandDetector — palm detection with SSD anchors.

The palm model has one image input and two outputs: 18 regression values
per anchor (box center/size plus 7 keypoints) and one score logit per
anchor.  Anchors are generated once per detector and shared by its
sessions.
"""

from typing import Optional

from ._base import TaskBase, TaskSession
from .errors import InconsistentError
from .options import BaseTaskOptions, HandDetectorOptions
from .postprocess.containers import DetectionResult
from .postprocess.detection_decoder import BoxFormat, DetectionOptions, TensorsToDetection
from .postprocess.nms import NmsAlgorithm, NmsOptions, NonMaxSuppression, OverlapType
from .postprocess.output_buffer import OutputBuffer
from .postprocess.ssd_anchors import SsdAnchorsOptions, generate_anchors

__all__ = ["HandDetector", "HandDetectorSession"]

# ── Palm model constants ────────────────────────────────────────────────────

PALM_MIN_SCALE = 0.1484375
PALM_MAX_SCALE = 0.75
PALM_STRIDES = (8, 16, 16, 16)
PALM_NUM_COORDS = 18
PALM_NUM_KEYPOINTS = 7
PALM_KEYPOINT_OFFSET = 4
PALM_SCORE_CLIPPING = 100.0
PALM_NMS_THRESHOLD = 0.3

LOCATION_OUTPUT = 0
SCORE_OUTPUT = 1


class HandDetector(TaskBase):
    """Palm detector.

    Bundles (e.g. a hand landmarker ``.task`` file) are searched for
    ``hand_detector.tflite`` unless other names are configured.
    """

    _NUM_INPUTS = 1
    _NUM_OUTPUTS = 2
    _DEFAULT_MODEL_NAMES = ("hand_detector.tflite",)

    def __init__(self, base_options: BaseTaskOptions,
                 options: Optional[HandDetectorOptions] = None, engine_factory=None):
        self._options = options if options is not None else HandDetectorOptions()
        self._options.validate()
        super().__init__(base_options, engine_factory)

        width, height = self._input_size()
        self.anchors_options = SsdAnchorsOptions(
            input_width=width,
            input_height=height,
            min_scale=PALM_MIN_SCALE,
            max_scale=PALM_MAX_SCALE,
            num_layers=len(PALM_STRIDES),
            strides=PALM_STRIDES,
            aspect_ratios=(1.0,),
            anchor_offset_x=0.5,
            anchor_offset_y=0.5,
            fixed_anchor_size=True,
        )
        self.anchors = generate_anchors(self.anchors_options)
        self.anchors.setflags(write=False)

        location = self._output_spec(LOCATION_OUTPUT)
        self._output_spec(SCORE_OUTPUT)
        self.num_boxes = location.num_elements // PALM_NUM_COORDS

    def _input_size(self):
        info = self._resource.image_info(0)
        if info is not None:
            return info.width, info.height
        shape = self._input_spec(0).shape
        if len(shape) == 4 and shape[3] in (1, 3):
            return shape[2], shape[1]
        raise InconsistentError(
            f"Model input 0 is not an image tensor (shape {list(shape)})"
        )

    @property
    def options(self) -> HandDetectorOptions:
        return self._options

    @property
    def num_hands(self) -> int:
        return self._options.num_hands

    @property
    def min_detection_confidence(self) -> float:
        return self._options.min_detection_confidence

    def new_session(self) -> "HandDetectorSession":
        return HandDetectorSession(self)

    def detect(self, data, timestamp_ms=None) -> DetectionResult:
        """One-shot detection on a throwaway session."""
        return self.new_session().detect(data, timestamp_ms)


class HandDetectorSession(TaskSession):
    """Reusable palm detection state; not thread-safe."""

    def __init__(self, task: HandDetector):
        super().__init__(task)
        self._location = OutputBuffer(task._output_spec(LOCATION_OUTPUT))
        self._score = OutputBuffer(task._output_spec(SCORE_OUTPUT))

        nms = NonMaxSuppression(NmsOptions(
            overlap_type=OverlapType.INTERSECTION_OVER_UNION,
            algorithm=NmsAlgorithm.WEIGHTED,
            max_results=task.num_hands,
            min_suppression_threshold=PALM_NMS_THRESHOLD,
            min_score_threshold=task.min_detection_confidence,
        ))
        self._postprocess = TensorsToDetection(
            DetectionOptions(
                num_boxes=task.num_boxes,
                num_coords=PALM_NUM_COORDS,
                keypoint_coord_offset=PALM_KEYPOINT_OFFSET,
                num_keypoints=PALM_NUM_KEYPOINTS,
                num_values_per_keypoint=2,
                box_format=BoxFormat.XYWH,
                min_score_threshold=task.min_detection_confidence,
                sigmoid_score=True,
                score_clipping_thresh=PALM_SCORE_CLIPPING,
            ),
            anchors=task.anchors,
            nms=nms,
        )

    def detect(self, data, timestamp_ms=None) -> DetectionResult:
        """Detect palms in one input tensor (raw bytes or a numpy array)."""
        self._run(data)
        self._fetch(LOCATION_OUTPUT, self._location)
        self._fetch(SCORE_OUTPUT, self._score)
        return self._postprocess.result(
            self._location.values(), self._score.values(), timestamp_ms=timestamp_ms,
        )
