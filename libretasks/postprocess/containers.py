"""Result containers produced by the post-processors.

Plain dataclasses; ``__str__`` renders the human-readable multi-line form
used by the examples and when debugging sessions.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

__all__ = [
    "Category", "Classifications", "ClassificationResult",
    "Rect", "Detection", "DetectionResult",
]


@dataclass
class Category:
    """One scored category of a classification head or detection.

    ``category_name`` comes from the label map packed into the model
    metadata (not necessarily human-readable); ``display_name`` from the
    locale-specific label map, if any.
    """
    index: int
    score: float
    category_name: Optional[str] = None
    display_name: Optional[str] = None


@dataclass
class Classifications:
    """Predicted categories of one classifier head (output tensor)."""
    head_index: int
    categories: List[Category] = field(default_factory=list)
    head_name: Optional[str] = None


@dataclass
class ClassificationResult:
    classifications: List[Classifications] = field(default_factory=list)
    # Start of the input chunk, for time-series (audio) classification.
    timestamp_ms: Optional[int] = None

    def __str__(self):
        lines = ["ClassificationResult:"]
        if self.timestamp_ms is not None:
            lines.append(f"  Timestamp: {self.timestamp_ms} ms")
        if not self.classifications:
            lines.append("  No Classification")
            return "\n".join(lines)
        for i, head in enumerate(self.classifications):
            lines.append(f"  Classifications #{i}:")
            if head.head_name is not None:
                lines.append(f"    head name: {head.head_name}")
                lines.append(f"    head index: {head.head_index}")
            for j, c in enumerate(head.categories):
                lines.append(f"    category #{j}:")
                lines.append(f"      category name: {_quoted(c.category_name)}")
                lines.append(f"      display name: {_quoted(c.display_name)}")
                lines.append(f"      score: {c.score}")
                lines.append(f"      index: {c.index}")
        return "\n".join(lines)


@dataclass
class Rect:
    """Axis-aligned box; normalized coordinates, y grows downwards."""
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return (self.right - self.left) * (self.bottom - self.top)

    def intersect(self, other: "Rect") -> Optional["Rect"]:
        """Overlapping region, or None when the boxes are disjoint."""
        left = max(self.left, other.left)
        top = max(self.top, other.top)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)
        if left > right or top > bottom:
            return None
        return Rect(left, top, right, bottom)

    def union(self, other: "Rect") -> "Rect":
        """Smallest box enclosing both."""
        return Rect(
            min(self.left, other.left),
            min(self.top, other.top),
            max(self.right, other.right),
            max(self.bottom, other.bottom),
        )


@dataclass
class Detection:
    """One detected object.

    After non-max suppression ``categories`` holds exactly one entry.
    ``key_points`` is reserved: keypoint values are carried in the raw
    location tensor but not decoded.
    """
    categories: List[Category]
    bounding_box: Rect
    key_points: Optional[List[Tuple[float, float]]] = None

    @property
    def score(self) -> float:
        return self.categories[0].score if self.categories else 0.0


@dataclass
class DetectionResult:
    detections: List[Detection] = field(default_factory=list)
    timestamp_ms: Optional[int] = None

    def __len__(self):
        return len(self.detections)

    def __str__(self):
        lines = ["DetectionResult:"]
        if self.timestamp_ms is not None:
            lines.append(f"  Timestamp: {self.timestamp_ms} ms")
        if not self.detections:
            lines.append("  No Detection")
            return "\n".join(lines)
        for i, d in enumerate(self.detections):
            box = d.bounding_box
            lines.append(f"  Detection #{i}:")
            lines.append(
                f"    Box: (left: {box.left}, top: {box.top}, "
                f"right: {box.right}, bottom: {box.bottom})"
            )
            for j, c in enumerate(d.categories):
                lines.append(f"    Category #{j}:")
                lines.append(f"      index: {c.index}")
                lines.append(f"      score: {c.score}")
                lines.append(f"      class name: {_quoted(c.category_name)}")
                lines.append(f"      display name: {_quoted(c.display_name)}")
        return "\n".join(lines)


def _quoted(name):
    return "None" if name is None else f'"{name}"'
