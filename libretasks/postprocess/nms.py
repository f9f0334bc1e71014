"""Non-max suppression over detections.

Greedy duplicate removal with three overlap metrics and two algorithms:

- ``DEFAULT``: keep the best-scoring box of each cluster, drop the others.
- ``WEIGHTED``: replace each cluster by the score-weighted average of its
  boxes, keeping the category of the best-scoring one.
"""

import copy
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..errors import ArgumentError
from ..options import OptionsBase
from .containers import Detection, Rect

__all__ = [
    "OverlapType", "NmsAlgorithm", "NmsOptions", "NonMaxSuppression", "overlap_similarity",
]


class OverlapType(Enum):
    JACCARD = "jaccard"
    MODIFIED_JACCARD = "modified_jaccard"
    INTERSECTION_OVER_UNION = "intersection_over_union"


class NmsAlgorithm(Enum):
    DEFAULT = "default"
    WEIGHTED = "weighted"


@dataclass
class NmsOptions(OptionsBase):
    """Non-max suppression settings.

    Attributes:
        overlap_type: Similarity metric between two boxes.
        algorithm: Suppress (DEFAULT) or average (WEIGHTED) overlapping boxes.
        max_results: Stop once this many boxes are kept (negative: no limit).
        min_suppression_threshold: A box is suppressed when its similarity
            with a kept box is strictly greater than this.
        min_score_threshold: If > 0, boxes scoring below it end the scan.
    """
    overlap_type: OverlapType = OverlapType.JACCARD
    algorithm: NmsAlgorithm = NmsAlgorithm.DEFAULT
    max_results: int = -1
    min_suppression_threshold: float = 1.0
    min_score_threshold: float = 0.0

    def __post_init__(self):
        # accept enum values as strings (dict/JSON configuration)
        if not isinstance(self.overlap_type, OverlapType):
            try:
                self.overlap_type = OverlapType(str(self.overlap_type).lower())
            except ValueError:
                raise ArgumentError(f"Unknown overlap type {self.overlap_type!r}") from None
        if not isinstance(self.algorithm, NmsAlgorithm):
            try:
                self.algorithm = NmsAlgorithm(str(self.algorithm).lower())
            except ValueError:
                raise ArgumentError(f"Unknown NMS algorithm {self.algorithm!r}") from None

    def validate(self):
        if self.max_results == 0:
            raise ArgumentError("The number of max results cannot be zero")


def overlap_similarity(rect1: Rect, rect2: Rect, overlap_type: OverlapType) -> float:
    """Intersection area over the metric's normalization (0 when disjoint)."""
    intersection = rect1.intersect(rect2)
    if intersection is None:
        return 0.0
    inter_area = intersection.area
    if overlap_type == OverlapType.JACCARD:
        normalization = rect1.union(rect2).area
    elif overlap_type == OverlapType.MODIFIED_JACCARD:
        normalization = rect2.area
    else:
        normalization = rect1.area + rect2.area - inter_area
    if normalization > 0.0:
        return inter_area / normalization
    return 0.0


class NonMaxSuppression:
    """Run non-max suppression with fixed options.

    Args:
        options: NMS settings; defaults to ``NmsOptions()``.
    """

    def __init__(self, options: Optional[NmsOptions] = None):
        self.options = options if options is not None else NmsOptions()
        self.options.validate()

    @property
    def _limit(self):
        n = self.options.max_results
        return n if n >= 0 else None

    def __call__(self, detections: List[Detection]) -> List[Detection]:
        """Return the surviving detections, by descending score.

        Detections without categories are dropped; the others are reduced to
        their best-scoring category.  The input list is not modified.
        """
        candidates = []
        for d in detections:
            if not d.categories:
                continue
            if len(d.categories) > 1:
                best = max(d.categories, key=lambda c: c.score)
                d = Detection([best], d.bounding_box, d.key_points)
            candidates.append(d)
        candidates.sort(key=lambda d: d.categories[0].score, reverse=True)

        if self.options.algorithm == NmsAlgorithm.WEIGHTED:
            return self._weighted(candidates)
        return self._default(candidates)

    def _below_score_threshold(self, score):
        threshold = self.options.min_score_threshold
        return threshold > 0.0 and score < threshold

    def _default(self, ordered):
        opts = self.options
        limit = self._limit
        kept = []
        for d in ordered:
            if self._below_score_threshold(d.categories[0].score):
                break
            box = d.bounding_box
            if any(overlap_similarity(box, k.bounding_box, opts.overlap_type)
                   > opts.min_suppression_threshold for k in kept):
                continue
            kept.append(d)
            if limit is not None and len(kept) >= limit:
                break
        return kept

    def _weighted(self, ordered):
        opts = self.options
        limit = self._limit
        kept = []
        remaining = ordered
        while remaining:
            seed = remaining[0]
            if self._below_score_threshold(seed.categories[0].score):
                break
            seed_box = seed.bounding_box
            cluster, rest = [], []
            for d in remaining:
                similarity = overlap_similarity(d.bounding_box, seed_box, opts.overlap_type)
                if similarity > opts.min_suppression_threshold:
                    cluster.append(d)
                else:
                    rest.append(d)
            if not any(d is seed for d in cluster):
                # threshold >= 1: nothing, not even the seed, clusters
                rest = [d for d in rest if d is not seed]

            merged = Detection(copy.copy(seed.categories), _weighted_box(cluster, seed_box),
                               seed.key_points)
            kept.append(merged)
            if limit is not None and len(kept) >= limit:
                break
            remaining = rest
        return kept


def _weighted_box(cluster, fallback: Rect) -> Rect:
    total = 0.0
    left = top = right = bottom = 0.0
    for d in cluster:
        score = d.categories[0].score
        box = d.bounding_box
        total += score
        left += box.left * score
        top += box.top * score
        right += box.right * score
        bottom += box.bottom * score
    if total <= 0.0:
        return Rect(fallback.left, fallback.top, fallback.right, fallback.bottom)
    return Rect(left / total, top / total, right / total, bottom / total)
