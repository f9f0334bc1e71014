"""Label lookup with allow/deny filtering and a score threshold."""

from typing import List, Optional, Sequence

from ..associated_files import LabelSet
from ..errors import ArgumentError
from .containers import Category


class CategoriesFilter:
    """Turns (index, score) pairs into named categories.

    Every label is tagged allowed or denied once, when the filter is built,
    so :meth:`create_category` (called once per output element per
    inference) is a list lookup plus a comparison.

    Args:
        labels: Category names (and optional display names) by index.
        score_threshold: Minimum score for a category to be created.
        allow_list: If non-empty, only these names are allowed.
        deny_list: If non-empty, these names are denied.

    Raises:
        ArgumentError: if both an allow list and a deny list are given.
    """

    def __init__(self, labels: LabelSet, score_threshold: float = 0.0,
                 allow_list: Sequence[str] = (), deny_list: Sequence[str] = ()):
        if allow_list and deny_list:
            raise ArgumentError("Category allow list and deny list are mutually exclusive")
        self.labels = labels
        self.score_threshold = score_threshold

        if allow_list:
            listed, allow_listed = frozenset(allow_list), True
        else:
            listed, allow_listed = frozenset(deny_list), False
        self._allowed: List[bool] = [
            (name in listed) == allow_listed for name in labels.names
        ]

    @classmethod
    def from_options(cls, labels: LabelSet, options) -> "CategoriesFilter":
        """Build from a :class:`~libretasks.options.ClassifierOptions`."""
        return cls(labels, options.score_threshold,
                   options.category_allow_list, options.category_deny_list)

    def __len__(self):
        return len(self._allowed)

    def is_allowed(self, index: int) -> bool:
        return 0 <= index < len(self._allowed) and self._allowed[index]

    def create_category(self, index: int, score: float) -> Optional[Category]:
        """Return a Category, or None if below threshold, denied or unlabeled."""
        # NaN scores fail this comparison and are dropped
        if not score >= self.score_threshold:
            return None
        if not 0 <= index < len(self._allowed) or not self._allowed[index]:
            return None
        return Category(
            index=index,
            score=float(score),
            category_name=self.labels.names[index],
            display_name=self.labels.display_name(index),
        )
