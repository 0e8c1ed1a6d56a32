"""Data structures shared by detection, recognition and output generation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


Point = Tuple[float, float]


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in absolute pixel coordinates of the source image."""

    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> Point:
        return ((self.x1 + self.x2) / 2, (self.y1 + self.y2) / 2)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x1, self.y1, self.x2, self.y2)

    def iou(self, other: "BoundingBox") -> float:
        """Intersection over union with another box; 0 when they do not overlap."""
        ix1 = max(self.x1, other.x1)
        iy1 = max(self.y1, other.y1)
        ix2 = min(self.x2, other.x2)
        iy2 = min(self.y2, other.y2)

        intersection = max(0.0, ix2 - ix1) * max(0.0, iy2 - iy1)
        if intersection <= 0:
            return 0.0
        union = self.area + other.area - intersection
        return intersection / union if union > 0 else 0.0


@dataclass(frozen=True)
class RawDetection:
    """A candidate decoded from the detector output, in model input space."""

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: int


@dataclass(frozen=True)
class Detection:
    """A text region that survived score filtering and NMS."""

    box: BoundingBox
    score: float
    class_id: int = 0

    @property
    def center(self) -> Point:
        return self.box.center

    def with_text(self, text: str) -> "RecognizedDetection":
        return RecognizedDetection(
            box=self.box, score=self.score, class_id=self.class_id, text=text
        )


@dataclass(frozen=True)
class RecognizedDetection(Detection):
    """A detection augmented with its recognized character sequence."""

    text: str = ""


@dataclass(frozen=True)
class PreprocessMetadata:
    """Geometry needed to map model-space coordinates back to the image."""

    original_width: int
    original_height: int
    square_size: int
    model_input_width: int
    model_input_height: int


@dataclass(frozen=True)
class OCRResult:
    """Terminal artifact for one image, detections in reading order."""

    detections: List[RecognizedDetection]
    text: str
    xml: str
    json: Dict[str, Any]
    image_name: str = "image"
    image_width: int = 0
    image_height: int = 0
    image_url: Optional[str] = None


@dataclass
class BatchResult:
    """Aggregated outcome of a multi-image run."""

    results: List[OCRResult] = field(default_factory=list)
    failures: List[Tuple[str, Exception]] = field(default_factory=list)
    cancelled: bool = False
    partial: List[RecognizedDetection] = field(default_factory=list)

    @property
    def image_names(self) -> List[str]:
        return [result.image_name for result in self.results]
