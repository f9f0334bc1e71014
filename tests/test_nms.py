#!/usr/bin/env python3
"""Tests for overlap metrics and non-max suppression."""

import pytest

from libretasks.errors import ArgumentError
from libretasks.postprocess.containers import Category, Detection, DetectionResult, Rect
from libretasks.postprocess.nms import (
    NmsAlgorithm,
    NmsOptions,
    NonMaxSuppression,
    OverlapType,
    overlap_similarity,
)


def _det(score, left, top, right, bottom, index=0):
    return Detection(categories=[Category(index=index, score=score)],
                     bounding_box=Rect(left, top, right, bottom))


# ── Rect ─────────────────────────────────────────────────────────────────────

class TestRect:

    def test_area(self):
        assert Rect(0.0, 0.0, 2.0, 3.0).area == 6.0

    def test_intersect(self):
        assert Rect(0, 0, 2, 2).intersect(Rect(1, 1, 3, 3)) == Rect(1, 1, 2, 2)

    def test_disjoint(self):
        assert Rect(0, 0, 1, 1).intersect(Rect(2, 2, 3, 3)) is None

    def test_touching_has_zero_area(self):
        inter = Rect(0, 0, 1, 1).intersect(Rect(1, 0, 2, 1))
        assert inter is not None
        assert inter.area == 0.0

    def test_union(self):
        assert Rect(0, 0, 2, 2).union(Rect(1, 1, 3, 3)) == Rect(0, 0, 3, 3)


# ── Overlap metrics ──────────────────────────────────────────────────────────

class TestOverlapSimilarity:

    A = Rect(0.0, 0.0, 2.0, 2.0)
    B = Rect(1.0, 1.0, 3.0, 3.0)

    def test_jaccard_uses_enclosing_box(self):
        assert overlap_similarity(self.A, self.B, OverlapType.JACCARD) == pytest.approx(1 / 9)

    def test_modified_jaccard_uses_second_box(self):
        small = Rect(1.0, 1.0, 2.0, 2.0)
        assert overlap_similarity(self.A, small, OverlapType.MODIFIED_JACCARD) == 1.0
        assert overlap_similarity(small, self.A, OverlapType.MODIFIED_JACCARD) == 0.25

    def test_iou(self):
        sim = overlap_similarity(self.A, self.B, OverlapType.INTERSECTION_OVER_UNION)
        assert sim == pytest.approx(1 / 7)

    @pytest.mark.parametrize("overlap_type", list(OverlapType))
    def test_disjoint_is_zero(self, overlap_type):
        assert overlap_similarity(self.A, Rect(5, 5, 6, 6), overlap_type) == 0.0

    @pytest.mark.parametrize("overlap_type", list(OverlapType))
    def test_identical_is_one(self, overlap_type):
        assert overlap_similarity(self.A, Rect(0, 0, 2, 2), overlap_type) == 1.0

    def test_zero_normalization(self):
        point = Rect(1.0, 1.0, 1.0, 1.0)
        assert overlap_similarity(point, point, OverlapType.INTERSECTION_OVER_UNION) == 0.0


# ── Options ──────────────────────────────────────────────────────────────────

class TestNmsOptions:

    def test_strings_converted(self):
        opts = NmsOptions(overlap_type="INTERSECTION_OVER_UNION", algorithm="weighted")
        assert opts.overlap_type == OverlapType.INTERSECTION_OVER_UNION
        assert opts.algorithm == NmsAlgorithm.WEIGHTED

    def test_unknown_overlap(self):
        with pytest.raises(ArgumentError, match="overlap type"):
            NmsOptions(overlap_type="dice")

    def test_unknown_algorithm(self):
        with pytest.raises(ArgumentError, match="NMS algorithm"):
            NmsOptions(algorithm="soft")

    def test_zero_max_results(self):
        with pytest.raises(ArgumentError, match="max results"):
            NonMaxSuppression(NmsOptions(max_results=0))

    def test_from_dict(self):
        opts = NmsOptions.from_dict({"overlap_type": "modified_jaccard", "max_results": 3})
        assert opts.overlap_type == OverlapType.MODIFIED_JACCARD
        assert opts.max_results == 3


# ── Default algorithm ────────────────────────────────────────────────────────

class TestDefaultNms:

    def _nms(self, **kwargs):
        kwargs.setdefault("overlap_type", OverlapType.INTERSECTION_OVER_UNION)
        kwargs.setdefault("min_suppression_threshold", 0.5)
        return NonMaxSuppression(NmsOptions(**kwargs))

    def test_duplicate_suppressed(self):
        kept = self._nms()([_det(0.8, 0, 0, 1, 1), _det(0.9, 0, 0, 1, 1)])
        assert [d.score for d in kept] == [0.9]

    def test_sorted_by_score(self):
        dets = [_det(0.2, 0, 0, 1, 1), _det(0.7, 2, 2, 3, 3), _det(0.5, 4, 4, 5, 5)]
        assert [d.score for d in self._nms()(dets)] == [0.7, 0.5, 0.2]

    def test_equal_similarity_not_suppressed(self):
        a, b = _det(0.9, 0, 0, 2, 2), _det(0.8, 1, 1, 3, 3)
        nms = self._nms(min_suppression_threshold=1 / 7)
        assert len(nms([a, b])) == 2

    def test_just_above_threshold_suppressed(self):
        a, b = _det(0.9, 0, 0, 2, 2), _det(0.8, 1, 1, 3, 3)
        nms = self._nms(min_suppression_threshold=0.14)
        assert len(nms([a, b])) == 1

    def test_default_options_keep_identical_boxes(self):
        dets = [_det(0.9, 0, 0, 1, 1), _det(0.8, 0, 0, 1, 1)]
        assert len(NonMaxSuppression()(dets)) == 2

    def test_max_results(self):
        dets = [_det(0.1 * i, i, i, i + 0.5, i + 0.5) for i in range(1, 6)]
        kept = self._nms(max_results=2)(dets)
        assert [round(d.score, 2) for d in kept] == [0.5, 0.4]

    def test_score_threshold_ends_scan(self):
        dets = [_det(0.9, 0, 0, 1, 1), _det(0.3, 2, 2, 3, 3), _det(0.6, 4, 4, 5, 5)]
        kept = self._nms(min_score_threshold=0.5)(dets)
        assert [d.score for d in kept] == [0.9, 0.6]

    def test_no_categories_dropped(self):
        empty = Detection(categories=[], bounding_box=Rect(0, 0, 1, 1))
        kept = self._nms()([empty, _det(0.4, 2, 2, 3, 3)])
        assert [d.score for d in kept] == [0.4]

    def test_best_category_kept(self):
        d = Detection(categories=[Category(0, 0.2), Category(3, 0.7), Category(1, 0.5)],
                      bounding_box=Rect(0, 0, 1, 1))
        kept = self._nms()([d])
        assert len(kept[0].categories) == 1
        assert kept[0].categories[0].index == 3

    def test_input_not_modified(self):
        d = Detection(categories=[Category(0, 0.2), Category(3, 0.7)],
                      bounding_box=Rect(0, 0, 1, 1))
        dets = [_det(0.1, 0, 0, 1, 1), d]
        self._nms()(dets)
        assert dets[0].score == 0.1
        assert len(d.categories) == 2

    def test_idempotent(self):
        dets = [_det(0.9, 0, 0, 1, 1), _det(0.85, 0.05, 0, 1, 1), _det(0.6, 0.5, 0.5, 1.5, 1.5),
                _det(0.4, 3, 3, 4, 4)]
        nms = self._nms(min_suppression_threshold=0.3)
        once = nms(dets)
        assert nms(once) == once

    def test_kept_boxes_pairwise_below_threshold(self):
        dets = [_det(0.05 * i, 0.1 * i, 0.0, 0.1 * i + 0.5, 0.5) for i in range(1, 15)]
        nms = self._nms(min_suppression_threshold=0.4)
        kept = nms(dets)
        for i, a in enumerate(kept):
            for b in kept[i + 1:]:
                sim = overlap_similarity(b.bounding_box, a.bounding_box,
                                         OverlapType.INTERSECTION_OVER_UNION)
                assert sim <= 0.4

    def test_empty(self):
        assert self._nms()([]) == []


# ── Weighted algorithm ───────────────────────────────────────────────────────

class TestWeightedNms:

    def _nms(self, **kwargs):
        return NonMaxSuppression(NmsOptions(overlap_type=OverlapType.INTERSECTION_OVER_UNION,
                                            algorithm=NmsAlgorithm.WEIGHTED,
                                            min_suppression_threshold=0.3, **kwargs))

    def test_cluster_averaged(self):
        dets = [_det(0.75, 0.0, 0.0, 1.0, 1.0, index=2), _det(0.25, 0.2, 0.0, 1.2, 1.0, index=5)]
        kept = self._nms()(dets)
        assert len(kept) == 1
        box = kept[0].bounding_box
        assert box.left == pytest.approx(0.05)
        assert box.right == pytest.approx(1.05)
        assert box.top == 0.0
        # seed's category and score
        assert kept[0].categories[0].index == 2
        assert kept[0].score == 0.75

    def test_separate_clusters(self):
        dets = [_det(0.9, 0, 0, 1, 1), _det(0.8, 5, 5, 6, 6), _det(0.7, 0, 0, 1, 1)]
        kept = self._nms()(dets)
        assert [d.score for d in kept] == [0.9, 0.8]
        assert kept[0].bounding_box == Rect(0, 0, 1, 1)

    def test_max_results(self):
        dets = [_det(0.9, 0, 0, 1, 1), _det(0.8, 5, 5, 6, 6)]
        assert len(self._nms(max_results=1)(dets)) == 1

    def test_score_threshold(self):
        dets = [_det(0.9, 0, 0, 1, 1), _det(0.2, 5, 5, 6, 6)]
        assert len(self._nms(min_score_threshold=0.5)(dets)) == 1

    def test_threshold_one_keeps_every_box(self):
        nms = NonMaxSuppression(NmsOptions(algorithm=NmsAlgorithm.WEIGHTED))
        dets = [_det(0.9, 0, 0, 1, 1), _det(0.8, 0, 0, 1, 1)]
        kept = nms(dets)
        assert [d.score for d in kept] == [0.9, 0.8]
        assert kept[1].bounding_box == Rect(0, 0, 1, 1)

    def test_result_str(self):
        kept = self._nms()([_det(0.9, 0, 0, 1, 1)])
        text = str(DetectionResult(detections=kept, timestamp_ms=12))
        assert "Timestamp: 12 ms" in text
        assert "Detection #0" in text
        assert "No Detection" in str(DetectionResult())
