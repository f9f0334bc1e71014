#!/usr/bin/env python3
"""Tests for the categories filter and classification post-processing."""

import numpy as np
import pytest

from libretasks.associated_files import LabelSet, text_lines
from libretasks.errors import ArgumentError
from libretasks.options import ClassifierOptions
from libretasks.postprocess.categories_filter import CategoriesFilter
from libretasks.postprocess.classification import (
    ClassificationHead,
    TensorsToClassification,
    select_categories,
)
from libretasks.postprocess.containers import ClassificationResult
from libretasks.postprocess.output_buffer import OutputBuffer
from libretasks.tensor import ElementType, QuantizationParams, TensorSpec

LABELS = LabelSet(names=("cat", "dog", "bird", "fish"),
                  display_names=("chat", "chien"))


# ── Label files ──────────────────────────────────────────────────────────────

class TestLabelFiles:

    def test_text_lines(self):
        assert text_lines(b"a\nb\r\nc\n") == ["a", "b", "c"]
        assert text_lines(b"a\nb") == ["a", "b"]
        assert text_lines(b"") == []
        assert text_lines(None) == []

    def test_blank_lines_keep_positions(self):
        assert text_lines(b"a\n\nc\n") == ["a", "", "c"]

    def test_lossy_utf8(self):
        assert text_lines(b"caf\xc3\xa9\n\xff\n") == ["café", "�"]

    def test_label_set_lookup(self):
        assert LABELS.name(3) == "fish"
        assert LABELS.name(4) is None
        assert LABELS.display_name(1) == "chien"
        assert LABELS.display_name(2) is None
        assert len(LABELS) == 4


# ── CategoriesFilter ─────────────────────────────────────────────────────────

class TestCategoriesFilter:

    def test_no_lists(self):
        f = CategoriesFilter(LABELS)
        c = f.create_category(1, 0.7)
        assert c.index == 1
        assert c.score == pytest.approx(0.7)
        assert c.category_name == "dog"
        assert c.display_name == "chien"

    def test_score_threshold(self):
        f = CategoriesFilter(LABELS, score_threshold=0.5)
        assert f.create_category(0, 0.49) is None
        assert f.create_category(0, 0.5) is not None

    def test_nan_score_rejected(self):
        assert CategoriesFilter(LABELS).create_category(0, float("nan")) is None

    def test_allow_list(self):
        f = CategoriesFilter(LABELS, allow_list=["dog", "fish"])
        assert [f.is_allowed(i) for i in range(4)] == [False, True, False, True]
        assert f.create_category(0, 0.9) is None
        assert f.create_category(3, 0.9).category_name == "fish"

    def test_deny_list(self):
        f = CategoriesFilter(LABELS, deny_list=["dog"])
        assert [f.is_allowed(i) for i in range(4)] == [True, False, True, True]
        assert f.create_category(1, 0.9) is None

    def test_both_lists_rejected(self):
        with pytest.raises(ArgumentError, match="mutually exclusive"):
            CategoriesFilter(LABELS, allow_list=["cat"], deny_list=["dog"])

    def test_index_out_of_range(self):
        f = CategoriesFilter(LABELS)
        assert f.create_category(4, 0.9) is None
        assert f.create_category(-1, 0.9) is None
        assert not f.is_allowed(10)

    def test_from_options(self):
        opts = ClassifierOptions(score_threshold=0.2, category_deny_list=("cat",))
        f = CategoriesFilter.from_options(LABELS, opts)
        assert f.score_threshold == 0.2
        assert not f.is_allowed(0)


# ── select_categories ────────────────────────────────────────────────────────

class TestSelectCategories:

    def test_sorted_descending(self):
        cats = select_categories([0.1, 0.9, 0.5, 0.3], CategoriesFilter(LABELS))
        assert [c.category_name for c in cats] == ["dog", "bird", "fish", "cat"]

    def test_max_results(self):
        cats = select_categories([0.1, 0.9, 0.5, 0.3], CategoriesFilter(LABELS), max_results=2)
        assert [c.index for c in cats] == [1, 2]

    def test_negative_max_results_keeps_all(self):
        cats = select_categories([0.1, 0.9, 0.5, 0.3], CategoriesFilter(LABELS), max_results=-1)
        assert len(cats) == 4

    def test_without_labels(self):
        cats = select_categories(np.array([[0.2, 0.05, 0.6]]), None, score_threshold=0.1)
        assert [c.index for c in cats] == [2, 0]
        assert cats[0].category_name is None

    def test_filter_threshold_applies(self):
        f = CategoriesFilter(LABELS, score_threshold=0.4)
        cats = select_categories([0.1, 0.9, 0.5, 0.3], f)
        assert [c.index for c in cats] == [1, 2]

    def test_nan_scores_dropped(self):
        f = CategoriesFilter(LABELS, score_threshold=0.1)
        cats = select_categories([0.2, float("nan"), 0.9, 0.5], f)
        assert [c.score for c in cats] == pytest.approx([0.9, 0.5, 0.2])
        assert [c.index for c in cats] == [2, 3, 0]

    def test_nan_scores_dropped_without_labels(self):
        cats = select_categories([float("nan"), 0.4, 0.7], None)
        assert [c.index for c in cats] == [2, 1]

    def test_nan_does_not_displace_top_scores(self):
        cats = select_categories([float("nan"), 0.3, 0.8, float("nan")],
                                 CategoriesFilter(LABELS), max_results=2)
        assert [c.index for c in cats] == [2, 1]


# ── TensorsToClassification ──────────────────────────────────────────────────

class TestTensorsToClassification:

    def _buffer(self, raw):
        spec = TensorSpec(index=0, element_type=ElementType.U8, shape=(1, 4),
                          quantization=QuantizationParams(scale=0.1, zero_point=0))
        buf = OutputBuffer(spec)
        buf.raw[:] = bytes(raw)
        return buf

    def test_quantized_head(self):
        buf = self._buffer([10, 200, 5, 0])
        f = CategoriesFilter(LABELS, score_threshold=0.3)
        post = TensorsToClassification([ClassificationHead(buf, f, 0, "probability")],
                                       max_results=2)
        result = post.result(timestamp_ms=40)
        assert isinstance(result, ClassificationResult)
        assert result.timestamp_ms == 40
        head = result.classifications[0]
        assert head.head_name == "probability"
        assert [c.category_name for c in head.categories] == ["dog", "cat"]
        assert head.categories[0].score == pytest.approx(20.0)
        assert head.categories[1].score == pytest.approx(1.0)

    def test_result_str(self):
        buf = self._buffer([0, 10, 0, 0])
        post = TensorsToClassification([ClassificationHead(buf, CategoriesFilter(LABELS))],
                                       max_results=1)
        text = str(post.result())
        assert "Classifications #0" in text
        assert 'category name: "dog"' in text
        assert 'display name: "chien"' in text

    def test_empty_result_str(self):
        assert "No Classification" in str(ClassificationResult())
