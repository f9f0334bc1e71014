"""Task configuration objects.

Options are plain dataclasses.  ``validate()`` raises
:class:`~libretasks.errors.ArgumentError` for bad configurations, so that
nothing invalid ever reaches a session's hot path.  Options can also be
read from a dict or a JSON sidecar file::

    opts = ClassifierOptions.from_json("model.json")
"""

import dataclasses
import json
import os
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import ArgumentError

__all__ = [
    "OptionsBase", "BaseTaskOptions", "ClassifierOptions", "HandDetectorOptions",
]


class OptionsBase:
    """Dict/JSON loading and validation shared by every options dataclass."""

    # Fields holding sequences; JSON lists are converted to tuples.
    _TUPLE_FIELDS = ()

    @classmethod
    def from_dict(cls, values):
        """Build options from a mapping; unknown keys are an ArgumentError."""
        names = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - names)
        if unknown:
            raise ArgumentError(f"Unknown {cls.__name__} option(s): {unknown}")
        kwargs = dict(values)
        for name in cls._TUPLE_FIELDS:
            if name in kwargs and kwargs[name] is not None:
                kwargs[name] = tuple(kwargs[name])
        opts = cls(**kwargs)
        opts.validate()
        return opts

    @classmethod
    def from_json(cls, path: str):
        """Load options from a JSON sidecar file."""
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))

    def to_dict(self):
        return dataclasses.asdict(self)

    def validate(self):
        """Raise ArgumentError if the configuration is unusable."""


@dataclass
class BaseTaskOptions(OptionsBase):
    """Where the model comes from.

    Exactly one of ``model_asset_path`` / ``model_asset_buffer`` must be
    set.  ``model_names`` overrides the task's default candidate entry names
    when the model is a task bundle.
    """
    model_asset_path: Optional[str] = None
    model_asset_buffer: Optional[bytes] = None
    model_names: Sequence[str] = ()

    _TUPLE_FIELDS = ("model_names",)

    def validate(self):
        if self.model_asset_path is None and self.model_asset_buffer is None:
            raise ArgumentError("Either model_asset_path or model_asset_buffer must be set")
        if self.model_asset_path is not None and self.model_asset_buffer is not None:
            raise ArgumentError("Only one of model_asset_path and model_asset_buffer may be set")
        if self.model_asset_path is not None and not os.path.isfile(self.model_asset_path):
            raise ArgumentError(f"Model file not found: {self.model_asset_path}")

    def load_buffer(self) -> bytes:
        """Return the model bytes (reads the file for path-based options)."""
        self.validate()
        if self.model_asset_buffer is not None:
            return self.model_asset_buffer
        with open(self.model_asset_path, "rb") as f:
            return f.read()


@dataclass
class ClassifierOptions(OptionsBase):
    """Category selection shared by classifiers and the object detector.

    Attributes:
        max_results: Keep at most this many categories (negative: all).
        score_threshold: Drop categories scoring below this.
        display_names_locale: Locale of the display-name label file.
        category_allow_list: Only these category names are reported.
        category_deny_list: These category names are never reported.
    """
    max_results: int = -1
    score_threshold: float = 0.0
    display_names_locale: str = "en"
    category_allow_list: Sequence[str] = ()
    category_deny_list: Sequence[str] = ()

    _TUPLE_FIELDS = ("category_allow_list", "category_deny_list")

    def validate(self):
        if self.max_results == 0:
            raise ArgumentError("The number of max results cannot be zero")
        if self.category_allow_list and self.category_deny_list:
            raise ArgumentError(
                "Category allow list and deny list are mutually exclusive"
            )


@dataclass
class HandDetectorOptions(OptionsBase):
    """Palm detection settings.

    Attributes:
        num_hands: Maximum number of hands reported (negative: unlimited).
        min_detection_confidence: Minimum score, after the logistic, for a
            candidate to be kept.
    """
    num_hands: int = 1
    min_detection_confidence: float = 0.5

    def validate(self):
        if self.num_hands == 0:
            raise ArgumentError("The number of max hands cannot be zero")
        if not 0.0 <= self.min_detection_confidence <= 1.0:
            raise ArgumentError(
                f"min_detection_confidence must be in [0, 1], got {self.min_detection_confidence}"
            )
