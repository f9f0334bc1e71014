"""Post-processing of raw model outputs.

Turns the output tensors of an inference call into structured results,
entirely in NumPy.

Modules:
    output_buffer      — per-session raw/float scratch for one output tensor
    categories_filter  — label lookup with allow/deny lists and a threshold
    classification     — per-head top-k category selection
    ssd_anchors        — SSD prior box generation
    detection_decoder  — anchor-relative box decode and category assignment
    nms                — non-max suppression (default and weighted)
    containers         — result dataclasses
"""

from .containers import (
    Category, Classifications, ClassificationResult, Rect, Detection, DetectionResult,
)
from .categories_filter import CategoriesFilter
from .classification import TensorsToClassification, ClassificationHead, select_categories
from .detection_decoder import BoxFormat, DetectionOptions, TensorsToDetection, decode_boxes
from .nms import NmsAlgorithm, NmsOptions, NonMaxSuppression, OverlapType, overlap_similarity
from .output_buffer import OutputBuffer
from .ssd_anchors import Anchor, SsdAnchorsOptions, anchors_to_list, generate_anchors

__all__ = [
    "Category", "Classifications", "ClassificationResult", "Rect", "Detection",
    "DetectionResult", "CategoriesFilter", "TensorsToClassification", "ClassificationHead",
    "select_categories", "BoxFormat", "DetectionOptions", "TensorsToDetection",
    "decode_boxes", "NmsAlgorithm", "NmsOptions", "NonMaxSuppression", "OverlapType",
    "overlap_similarity", "OutputBuffer", "Anchor", "SsdAnchorsOptions",
    "anchors_to_list", "generate_anchors",
]
