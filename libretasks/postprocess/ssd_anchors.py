"""SSD anchor generation.

Synthesizes the prior boxes of SSD-style detectors (the MediaPipe
``SsdAnchorsCalculator`` scheme): one anchor per grid cell per
aspect-ratio variant per stride level, with scales linearly interpolated
across stride levels.  Anchors are computed once per task and shared,
read-only, by all its sessions.
"""

import math
from dataclasses import dataclass
from typing import List, NamedTuple, Sequence

import numpy as np

from ..errors import ArgumentError
from ..options import OptionsBase

__all__ = ["Anchor", "SsdAnchorsOptions", "generate_anchors", "anchors_to_list"]


class Anchor(NamedTuple):
    """Normalized prior box."""
    x_center: float
    y_center: float
    width: float
    height: float


@dataclass
class SsdAnchorsOptions(OptionsBase):
    """Anchor generator settings.

    Attributes:
        input_width, input_height: Model input size in pixels.
        min_scale, max_scale: Anchor scale at the first and last stride level.
        num_layers: Number of stride levels; must equal ``len(strides)``.
        strides: Output stride of each level.  Consecutive equal strides
            share one feature map.
        aspect_ratios: Aspect ratios of the anchors at each cell.
        anchor_offset_x, anchor_offset_y: Anchor center within a cell.
        interpolated_scale_aspect_ratio: Aspect ratio of the extra anchor at
            the geometric-mean scale of this and the next level (<= 0
            disables it).
        reduce_boxes_in_lowest_layer: Use fixed (1.0, 2.0, 0.5) ratios, with
            0.1 scale for the first, at level 0.
        fixed_anchor_size: Force width = height = 1.0.
        feature_map_width, feature_map_height: Explicit per-level grid sizes;
            when empty, ``ceil(input_size / stride)`` is used.
    """
    input_width: int = 0
    input_height: int = 0
    min_scale: float = 0.0
    max_scale: float = 0.0
    num_layers: int = 0
    strides: Sequence[int] = ()
    aspect_ratios: Sequence[float] = (1.0,)
    anchor_offset_x: float = 0.5
    anchor_offset_y: float = 0.5
    interpolated_scale_aspect_ratio: float = 1.0
    reduce_boxes_in_lowest_layer: bool = False
    fixed_anchor_size: bool = False
    feature_map_width: Sequence[int] = ()
    feature_map_height: Sequence[int] = ()

    _TUPLE_FIELDS = ("strides", "aspect_ratios", "feature_map_width", "feature_map_height")

    def validate(self):
        if len(self.strides) != self.num_layers:
            raise ArgumentError(
                f"strides has {len(self.strides)} entries, expected num_layers={self.num_layers}"
            )
        if self.feature_map_width or self.feature_map_height:
            if (len(self.feature_map_width) != self.num_layers
                    or len(self.feature_map_height) != self.num_layers):
                raise ArgumentError("feature_map_width/height must have num_layers entries")
        elif self.input_width <= 0 or self.input_height <= 0:
            raise ArgumentError(
                f"Invalid anchor input size {self.input_width}x{self.input_height}"
            )
        if any(s <= 0 for s in self.strides):
            raise ArgumentError(f"Strides must be positive, got {list(self.strides)}")
        if not self.aspect_ratios and not self.reduce_boxes_in_lowest_layer:
            raise ArgumentError("At least one aspect ratio is required")


def _calculate_scale(min_scale, max_scale, stride_index, num_strides):
    if num_strides == 1:
        return (min_scale + max_scale) * 0.5
    return min_scale + (max_scale - min_scale) * stride_index / (num_strides - 1.0)


def _layer_group_shapes(opts, layer_id):
    """Return (last_same_stride_layer, scales, aspect_ratios) for one group."""
    num_strides = len(opts.strides)
    scales: List[float] = []
    ratios: List[float] = []
    last = layer_id
    while last < num_strides and opts.strides[last] == opts.strides[layer_id]:
        scale = _calculate_scale(opts.min_scale, opts.max_scale, last, num_strides)
        if last == 0 and opts.reduce_boxes_in_lowest_layer:
            ratios += [1.0, 2.0, 0.5]
            scales += [0.1, scale, scale]
        else:
            for ratio in opts.aspect_ratios:
                ratios.append(ratio)
                scales.append(scale)
            if opts.interpolated_scale_aspect_ratio > 0.0:
                if last == num_strides - 1:
                    scale_next = 1.0
                else:
                    scale_next = _calculate_scale(opts.min_scale, opts.max_scale,
                                                  last + 1, num_strides)
                scales.append(math.sqrt(scale * scale_next))
                ratios.append(opts.interpolated_scale_aspect_ratio)
        last += 1
    return last, scales, ratios


def generate_anchors(opts: SsdAnchorsOptions) -> np.ndarray:
    """Generate SSD anchors.

    Args:
        opts: Anchor settings (validated here).

    Returns:
        ``(N, 4)`` float32 array of ``[x_center, y_center, width, height]``,
        ordered by level, then grid row, then column, then anchor variant.

    Raises:
        ArgumentError: if *opts* is inconsistent.
    """
    opts.validate()
    groups = []
    layer_id = 0
    while layer_id < opts.num_layers:
        last, scales, ratios = _layer_group_shapes(opts, layer_id)

        ratio_sqrts = np.sqrt(np.asarray(ratios, dtype=np.float64))
        scales = np.asarray(scales, dtype=np.float64)
        heights = scales / ratio_sqrts
        widths = scales * ratio_sqrts

        if opts.feature_map_height:
            fm_h = opts.feature_map_height[layer_id]
            fm_w = opts.feature_map_width[layer_id]
        else:
            stride = opts.strides[layer_id]
            fm_h = int(math.ceil(opts.input_height / stride))
            fm_w = int(math.ceil(opts.input_width / stride))

        n_variants = len(ratios)
        ys = (np.arange(fm_h, dtype=np.float64) + opts.anchor_offset_y) / fm_h
        xs = (np.arange(fm_w, dtype=np.float64) + opts.anchor_offset_x) / fm_w
        # y outermost, anchor variant innermost
        y_c = np.repeat(ys, fm_w * n_variants)
        x_c = np.tile(np.repeat(xs, n_variants), fm_h)
        if opts.fixed_anchor_size:
            w = np.ones(fm_h * fm_w * n_variants)
            h = np.ones(fm_h * fm_w * n_variants)
        else:
            w = np.tile(widths, fm_h * fm_w)
            h = np.tile(heights, fm_h * fm_w)
        groups.append(np.stack([x_c, y_c, w, h], axis=1))

        layer_id = last

    if not groups:
        return np.zeros((0, 4), dtype=np.float32)
    return np.concatenate(groups).astype(np.float32)


def anchors_to_list(anchors: np.ndarray) -> List[Anchor]:
    """Convert an anchor array into :class:`Anchor` tuples."""
    return [Anchor(*map(float, row)) for row in anchors]
