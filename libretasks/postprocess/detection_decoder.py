"""Detection decoding: raw location/score tensors to detections.

Two input layouts are handled:

- anchor-based models (palm detection): the location tensor holds
  anchor-relative box regressions which :func:`decode_boxes` turns into
  corners, and the score tensor holds one logit per (candidate, class);
- post-processed models (SSD with in-graph NMS): the location tensor already
  holds corners and separate tensors carry each candidate's class index and
  score.

Boxes that come out degenerate (left >= right, top >= bottom) or NaN are
dropped silently: near-zero-confidence anchors produce them routinely.
"""

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from ..errors import ArgumentError
from ..options import OptionsBase
from .categories_filter import CategoriesFilter
from .containers import Category, Detection, DetectionResult, Rect
from .nms import NonMaxSuppression

__all__ = [
    "BoxFormat", "DetectionOptions", "TensorsToDetection", "decode_boxes", "DEFAULT_BOX_INDICES",
]

# {ymin, xmin, ymax, xmax} channel positions when the model declares none
DEFAULT_BOX_INDICES = (0, 1, 2, 3)


class BoxFormat(Enum):
    """Raw box layout of anchor-based models."""
    YXHW = "yxhw"   # [y_center, x_center, height, width]
    XYWH = "xywh"   # [x_center, y_center, width, height]
    XYXY = "xyxy"   # [xmin, ymin, xmax, ymax] as offsets from the anchor center


@dataclass
class DetectionOptions(OptionsBase):
    """Layout of the raw detection tensors.

    Attributes:
        num_boxes: Number of candidates (anchors) the model emits.
        num_classes: Scores per candidate; the best class wins.
        num_coords: Values per candidate in the location tensor.
        box_coord_offset: Position of the 4 box values within a candidate.
        keypoint_coord_offset: Position of the first keypoint value.
        num_keypoints: Keypoints per candidate (reserved, not decoded).
        num_values_per_keypoint: Values per keypoint.
        box_format: Raw box layout for anchor-based decoding.
        min_score_threshold: Candidates scoring below are discarded.
        sigmoid_score: Apply the logistic function to raw scores.
        score_clipping_thresh: Clip raw scores to [-thresh, thresh] first.
    """
    num_boxes: int = 0
    num_classes: int = 1
    num_coords: int = 4
    box_coord_offset: int = 0
    keypoint_coord_offset: int = 4
    num_keypoints: int = 0
    num_values_per_keypoint: int = 2
    box_format: BoxFormat = BoxFormat.YXHW
    min_score_threshold: float = 0.0
    sigmoid_score: bool = False
    score_clipping_thresh: Optional[float] = None

    def __post_init__(self):
        if not isinstance(self.box_format, BoxFormat):
            try:
                self.box_format = BoxFormat(str(self.box_format).lower())
            except ValueError:
                raise ArgumentError(f"Unknown box format {self.box_format!r}") from None

    def validate(self):
        if self.num_classes < 1:
            raise ArgumentError(f"num_classes must be >= 1, got {self.num_classes}")
        if self.num_coords < self.box_coord_offset + 4:
            raise ArgumentError(
                f"num_coords ({self.num_coords}) too small for a box at offset "
                f"{self.box_coord_offset}"
            )
        keypoint_end = (self.keypoint_coord_offset
                        + self.num_keypoints * self.num_values_per_keypoint)
        if self.num_coords < keypoint_end:
            raise ArgumentError(
                f"num_coords ({self.num_coords}) too small for {self.num_keypoints} keypoints "
                f"at offset {self.keypoint_coord_offset}"
            )


def decode_boxes(raw: np.ndarray, anchors: np.ndarray, box_format: BoxFormat = BoxFormat.YXHW,
                 box_coord_offset: int = 0) -> np.ndarray:
    """Decode anchor-relative boxes in place.

    For each candidate row of *raw* the four box values at
    *box_coord_offset* are read according to *box_format*, the center is
    mapped with ``center / anchor_size + anchor_center``, and the row is
    overwritten with ``[ymin, xmin, ymax, xmax]``.

    Args:
        raw: ``(num_boxes, num_coords)`` float32 array (modified in place).
        anchors: ``(num_boxes, 4)`` array of ``[x_center, y_center, w, h]``.

    Returns:
        *raw*.
    """
    boxes = raw[:, box_coord_offset:box_coord_offset + 4]
    r0, r1, r2, r3 = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
    if box_format == BoxFormat.YXHW:
        y_center, x_center, h, w = r0, r1, r2, r3
    elif box_format == BoxFormat.XYWH:
        x_center, y_center, w, h = r0, r1, r2, r3
    else:
        x_center = (-r0 + r2) / 2.0
        y_center = (-r1 + r3) / 2.0
        w = r2 + r0
        h = r3 + r1

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        x_center = x_center / anchors[:, 2] + anchors[:, 0]
        y_center = y_center / anchors[:, 3] + anchors[:, 1]
        half_h = h / 2.0
        half_w = w / 2.0
        decoded = np.stack([y_center - half_h, x_center - half_w,
                            y_center + half_h, x_center + half_w], axis=1)
    boxes[:] = decoded
    return raw


def _valid_boxes(ymin, xmin, ymax, xmax):
    finite = ~(np.isnan(ymin) | np.isnan(xmin) | np.isnan(ymax) | np.isnan(xmax))
    with np.errstate(invalid="ignore"):
        return finite & (xmin < xmax) & (ymin < ymax)


class TensorsToDetection:
    """Turns one inference's raw detection tensors into a DetectionResult.

    Args:
        options: Tensor layout and score processing.
        box_indices: Channel of ymin, xmin, ymax, xmax within a candidate's
            box values.
        anchors: ``(N, 4)`` anchors; enables anchor-relative decoding.
        categories_filter: Names and filters categories; without it only
            ``options.min_score_threshold`` applies.
        nms: Suppression applied to the decoded detections (None: skip).
    """

    def __init__(self, options: DetectionOptions, box_indices: Sequence[int] = DEFAULT_BOX_INDICES,
                 anchors: Optional[np.ndarray] = None,
                 categories_filter: Optional[CategoriesFilter] = None,
                 nms: Optional[NonMaxSuppression] = None):
        options.validate()
        if len(box_indices) != 4 or any(not 0 <= i < 4 for i in box_indices):
            raise ArgumentError(f"box_indices needs 4 entries in 0..3, got {list(box_indices)}")
        self.options = options
        self.box_indices = tuple(int(i) for i in box_indices)
        self.anchors = anchors
        self.categories_filter = categories_filter
        self.nms = nms
        if anchors is not None and options.num_boxes and len(anchors) != options.num_boxes:
            warnings.warn(
                f"Generated {len(anchors)} anchors but the model emits "
                f"{options.num_boxes} boxes",
                RuntimeWarning,
                stacklevel=2,
            )

    # ── Scores ────────────────────────────────────────────────────────────

    def _scores(self, scores, num_boxes):
        """Return (class_index, score) arrays, one entry per candidate."""
        opts = self.options
        s = np.asarray(scores, dtype=np.float32)[:num_boxes * opts.num_classes]
        s = s.reshape(num_boxes, opts.num_classes)
        if opts.num_classes > 1:
            classes = np.argmax(s, axis=1)
            best = s[np.arange(num_boxes), classes]
        else:
            classes = np.zeros(num_boxes, dtype=np.int64)
            best = s[:, 0]
        if opts.score_clipping_thresh is not None:
            t = opts.score_clipping_thresh
            best = np.clip(best, -t, t)
        if opts.sigmoid_score:
            with np.errstate(over="ignore"):
                best = 1.0 / (1.0 + np.exp(-best))
        return classes, best

    def _category(self, class_index, score):
        if self.categories_filter is not None:
            return self.categories_filter.create_category(class_index, score)
        if score >= self.options.min_score_threshold:
            return Category(index=class_index, score=score)
        return None

    # ── Result ────────────────────────────────────────────────────────────

    def result(self, location, scores, categories=None, num_boxes: Optional[int] = None,
               timestamp_ms: Optional[int] = None) -> DetectionResult:
        """Decode, filter and suppress one inference's detections.

        Args:
            location: Flat float32 location values (decoded in place when
                anchors are set).
            scores: Flat float32 scores.
            categories: Flat per-candidate class indices, for models that
                emit them; None to take the best-scoring class.
            num_boxes: Candidates to read; defaults to ``options.num_boxes``.
        """
        opts = self.options
        n = opts.num_boxes if num_boxes is None else num_boxes
        n = min(n, len(location) // opts.num_coords)
        if self.anchors is not None:
            n = min(n, len(self.anchors))
        if categories is None:
            n = min(n, len(scores) // opts.num_classes)
        else:
            n = min(n, len(scores), len(categories))
        if n <= 0:
            return DetectionResult(detections=[], timestamp_ms=timestamp_ms)

        raw = np.asarray(location)[:n * opts.num_coords].reshape(n, opts.num_coords)
        if self.anchors is not None:
            decode_boxes(raw, self.anchors[:n], opts.box_format, opts.box_coord_offset)

        if categories is None:
            classes, best = self._scores(scores, n)
        else:
            classes = np.asarray(categories)[:n].astype(np.int64)
            best = np.asarray(scores, dtype=np.float32)[:n]

        off = opts.box_coord_offset
        ymin = raw[:, off + self.box_indices[0]]
        xmin = raw[:, off + self.box_indices[1]]
        ymax = raw[:, off + self.box_indices[2]]
        xmax = raw[:, off + self.box_indices[3]]
        valid = _valid_boxes(ymin, xmin, ymax, xmax)

        detections = []
        for i in np.flatnonzero(valid).tolist():
            category = self._category(int(classes[i]), float(best[i]))
            if category is None:
                continue
            box = Rect(float(xmin[i]), float(ymin[i]), float(xmax[i]), float(ymax[i]))
            detections.append(Detection(categories=[category], bounding_box=box))

        if self.nms is not None:
            detections = self.nms(detections)
        return DetectionResult(detections=detections, timestamp_ms=timestamp_ms)
