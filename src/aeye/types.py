from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class BoundingBox:
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
    def center_x(self) -> float:
        return self.left + self.width / 2

    @property
    def center_y(self) -> float:
        return self.top + self.height / 2

    @property
    def center(self) -> Tuple[float, float]:
        return (self.center_x, self.center_y)

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.left, self.top, self.right, self.bottom)


@dataclass(frozen=True)
class Detection:
    label: str
    confidence: float  # winning class score, 0.0 to 1.0
    box: BoundingBox  # image pixels
    class_id: int = -1

    @property
    def confidence_percentage(self) -> str:
        return f"{round(self.confidence * 100)}%"


@dataclass(frozen=True)
class Candidate:
    raw_box: Tuple[float, float, float, float]  # (xc, yc, w, h), encoding unresolved
    best_class_index: int
    best_score: float
    second_class_index: int
    second_score: float
    anchor_index: int = -1

    @property
    def confidence_gap(self) -> float:
        return self.best_score - self.second_score


DetectionSet = Tuple[Detection, ...]


@dataclass(frozen=True)
class FrameStats:
    anchors: int = 0
    candidates: int = 0
    rejected_by_floor: int = 0
    rejected_by_gap: int = 0
    rejected_by_geometry: int = 0
    accepted_pre_nms: int = 0
    accepted_post_nms: int = 0
    coordinates: str | None = None
    smoothed: bool = False


@dataclass(frozen=True)
class PipelineResult:
    detections: DetectionSet
    stats: FrameStats
