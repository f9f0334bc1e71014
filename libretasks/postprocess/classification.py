"""Classification post-processing: per-head top-k category selection."""

from typing import List, Optional, Sequence

import numpy as np

from .categories_filter import CategoriesFilter
from .containers import Category, ClassificationResult, Classifications
from .output_buffer import OutputBuffer


def select_categories(scores, categories_filter: Optional[CategoriesFilter],
                      max_results: int = -1, score_threshold: float = 0.0) -> List[Category]:
    """Rank the scores of one classifier head.

    Args:
        scores: 1-D float array, one score per category index.
        categories_filter: Names and filters categories; None when the model
            has no label map, in which case only *score_threshold* applies
            and categories are unnamed.
        max_results: Keep at most this many (negative: all).
        score_threshold: Threshold used when *categories_filter* is None.

    Returns:
        Categories sorted by descending score.
    """
    scores = np.asarray(scores, dtype=np.float32).reshape(-1)
    categories = []
    if categories_filter is not None:
        for i, score in enumerate(scores.tolist()):
            c = categories_filter.create_category(i, score)
            if c is not None:
                categories.append(c)
    else:
        for i, score in enumerate(scores.tolist()):
            if score >= score_threshold:
                categories.append(Category(index=i, score=score))

    categories.sort(key=lambda c: c.score, reverse=True)
    if max_results >= 0:
        del categories[max_results:]
    return categories


class ClassificationHead:
    """One output tensor of a classifier: scratch buffer plus filter."""

    def __init__(self, buffer: OutputBuffer, categories_filter: Optional[CategoriesFilter],
                 head_index: int = 0, head_name: Optional[str] = None):
        self.buffer = buffer
        self.categories_filter = categories_filter
        self.head_index = head_index
        self.head_name = head_name


class TensorsToClassification:
    """Builds a :class:`ClassificationResult` from filled output buffers.

    Holds per-session state only; never share one across threads.
    """

    def __init__(self, heads: Sequence[ClassificationHead], max_results: int = -1,
                 score_threshold: float = 0.0):
        self.heads = list(heads)
        self.max_results = max_results
        self.score_threshold = score_threshold

    def result(self, timestamp_ms: Optional[int] = None) -> ClassificationResult:
        classifications = []
        for head in self.heads:
            categories = select_categories(
                head.buffer.values(), head.categories_filter,
                self.max_results, self.score_threshold,
            )
            classifications.append(Classifications(
                head_index=head.head_index,
                categories=categories,
                head_name=head.head_name,
            ))
        return ClassificationResult(classifications=classifications, timestamp_ms=timestamp_ms)
