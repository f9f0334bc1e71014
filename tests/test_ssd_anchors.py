#!/usr/bin/env python3
"""Tests for SSD anchor generation."""

import math

import numpy as np
import pytest

from libretasks.errors import ArgumentError
from libretasks.postprocess.ssd_anchors import (
    Anchor,
    SsdAnchorsOptions,
    anchors_to_list,
    generate_anchors,
)


def _palm_options(size=192):
    return SsdAnchorsOptions(
        input_width=size, input_height=size, min_scale=0.1484375, max_scale=0.75,
        num_layers=4, strides=(8, 16, 16, 16), aspect_ratios=(1.0,),
        fixed_anchor_size=True,
    )


class TestPalmAnchors:

    def test_count(self):
        # 24x24 cells x 2 anchors at stride 8, 12x12 cells x 6 anchors at stride 16
        assert generate_anchors(_palm_options()).shape == (2016, 4)

    def test_dtype(self):
        assert generate_anchors(_palm_options()).dtype == np.float32

    def test_first_anchor(self):
        a = generate_anchors(_palm_options())
        np.testing.assert_allclose(a[0], [0.5 / 24, 0.5 / 24, 1.0, 1.0], rtol=1e-6)

    def test_order_variant_innermost(self):
        a = generate_anchors(_palm_options())
        # two variants per cell at stride 8 share a center
        np.testing.assert_array_equal(a[0, :2], a[1, :2])
        np.testing.assert_allclose(a[2, :2], [1.5 / 24, 0.5 / 24], rtol=1e-6)
        # next row starts after 24 cells
        np.testing.assert_allclose(a[48, :2], [0.5 / 24, 1.5 / 24], rtol=1e-6)

    def test_second_group(self):
        a = generate_anchors(_palm_options())
        np.testing.assert_allclose(a[1152, :2], [0.5 / 12, 0.5 / 12], rtol=1e-6)
        # six variants share the first stride-16 cell
        np.testing.assert_array_equal(a[1152:1158, :2], np.tile(a[1152, :2], (6, 1)))

    def test_fixed_size(self):
        a = generate_anchors(_palm_options())
        assert np.all(a[:, 2:] == 1.0)

    def test_all_centers_normalized(self):
        a = generate_anchors(_palm_options())
        assert np.all((a[:, :2] > 0.0) & (a[:, :2] < 1.0))


class TestAnchorScheme:

    def test_single_layer_with_interpolated(self):
        opts = SsdAnchorsOptions(input_width=16, input_height=16, min_scale=0.2, max_scale=0.8,
                                 num_layers=1, strides=(8,))
        a = generate_anchors(opts)
        assert a.shape == (8, 4)
        np.testing.assert_allclose(a[0], [0.25, 0.25, 0.5, 0.5], rtol=1e-6)
        np.testing.assert_allclose(a[1], [0.25, 0.25, math.sqrt(0.5), math.sqrt(0.5)], rtol=1e-6)
        np.testing.assert_allclose(a[2, :2], [0.75, 0.25], rtol=1e-6)

    def test_no_interpolated_anchor(self):
        opts = SsdAnchorsOptions(input_width=16, input_height=16, min_scale=0.2, max_scale=0.8,
                                 num_layers=1, strides=(8,), interpolated_scale_aspect_ratio=0.0)
        assert generate_anchors(opts).shape == (4, 4)

    def test_aspect_ratio_shapes(self):
        opts = SsdAnchorsOptions(input_width=8, input_height=8, min_scale=0.4, max_scale=0.4,
                                 num_layers=1, strides=(8,), aspect_ratios=(2.0,),
                                 interpolated_scale_aspect_ratio=0.0)
        a = generate_anchors(opts)
        np.testing.assert_allclose(a[0, 2:], [0.4 * math.sqrt(2.0), 0.4 / math.sqrt(2.0)],
                                   rtol=1e-6)

    def test_reduce_boxes_in_lowest_layer(self):
        opts = SsdAnchorsOptions(input_width=8, input_height=8, min_scale=0.5, max_scale=0.5,
                                 num_layers=1, strides=(8,), reduce_boxes_in_lowest_layer=True)
        a = generate_anchors(opts)
        assert a.shape == (3, 4)
        np.testing.assert_allclose(a[:, 2], [0.1, 0.5 * math.sqrt(2.0), 0.5 * math.sqrt(0.5)],
                                   rtol=1e-6)
        np.testing.assert_allclose(a[:, 3], [0.1, 0.5 / math.sqrt(2.0), 0.5 / math.sqrt(0.5)],
                                   rtol=1e-6)

    def test_linear_scales_across_layers(self):
        opts = SsdAnchorsOptions(input_width=4, input_height=4, min_scale=0.2, max_scale=0.6,
                                 num_layers=3, strides=(2, 4, 8),
                                 interpolated_scale_aspect_ratio=0.0)
        a = generate_anchors(opts)
        # 2x2 + 1x1 + 1x1 cells, one anchor each
        assert a.shape == (6, 4)
        np.testing.assert_allclose(a[[0, 4, 5], 2], [0.2, 0.4, 0.6], rtol=1e-6)

    def test_explicit_feature_maps(self):
        opts = SsdAnchorsOptions(min_scale=0.2, max_scale=0.2, num_layers=1, strides=(8,),
                                 feature_map_width=(3,), feature_map_height=(2,),
                                 interpolated_scale_aspect_ratio=0.0)
        a = generate_anchors(opts)
        assert a.shape == (6, 4)
        np.testing.assert_allclose(a[5, :2], [2.5 / 3, 1.5 / 2], rtol=1e-6)

    def test_custom_offsets(self):
        opts = SsdAnchorsOptions(input_width=8, input_height=8, min_scale=0.2, max_scale=0.2,
                                 num_layers=1, strides=(8,), anchor_offset_x=0.0,
                                 anchor_offset_y=0.0, interpolated_scale_aspect_ratio=0.0)
        np.testing.assert_array_equal(generate_anchors(opts)[0, :2], [0.0, 0.0])

    def test_anchors_to_list(self):
        a = generate_anchors(_palm_options())
        lst = anchors_to_list(a[:3])
        assert len(lst) == 3
        assert isinstance(lst[0], Anchor)
        assert lst[0].width == 1.0
        assert lst[0].x_center == pytest.approx(0.5 / 24)


class TestAnchorOptions:

    def test_strides_mismatch(self):
        opts = SsdAnchorsOptions(input_width=8, input_height=8, min_scale=0.1, max_scale=0.9,
                                 num_layers=3, strides=(8, 16))
        with pytest.raises(ArgumentError, match="num_layers"):
            generate_anchors(opts)

    def test_missing_input_size(self):
        opts = SsdAnchorsOptions(min_scale=0.1, max_scale=0.9, num_layers=1, strides=(8,))
        with pytest.raises(ArgumentError, match="input size"):
            opts.validate()

    def test_feature_map_length_mismatch(self):
        opts = SsdAnchorsOptions(num_layers=2, strides=(8, 16), feature_map_width=(4,),
                                 feature_map_height=(4, 2))
        with pytest.raises(ArgumentError):
            opts.validate()

    def test_from_dict(self):
        opts = SsdAnchorsOptions.from_dict({
            "input_width": 192, "input_height": 192, "min_scale": 0.1484375,
            "max_scale": 0.75, "num_layers": 4, "strides": [8, 16, 16, 16],
            "fixed_anchor_size": True,
        })
        assert opts.strides == (8, 16, 16, 16)
        assert generate_anchors(opts).shape == (2016, 4)

    def test_from_dict_unknown_key(self):
        with pytest.raises(ArgumentError, match="Unknown SsdAnchorsOptions"):
            SsdAnchorsOptions.from_dict({"num_layers": 1, "strides": [8], "stride": 8})
