"""Box geometry: encoding detection, scale-back to image pixels and sanity filters."""

from __future__ import annotations

from enum import Enum
from typing import Sequence

from aeye.config import DetectionSettings
from aeye.types import BoundingBox, Candidate, Detection


class CoordinateSystem(str, Enum):
    NORMALIZED = "normalized"
    PIXEL = "pixel"


def center_to_corners(
    xc: float, yc: float, w: float, h: float, image_width: int, image_height: int
) -> tuple[float, float, float, float]:
    """Map a normalized center-format box to clamped pixel corners."""
    half_w = w / 2
    half_h = h / 2
    left = min(max((xc - half_w) * image_width, 0.0), float(image_width))
    top = min(max((yc - half_h) * image_height, 0.0), float(image_height))
    right = min(max((xc + half_w) * image_width, 0.0), float(image_width))
    bottom = min(max((yc + half_h) * image_height, 0.0), float(image_height))
    return left, top, right, bottom


class BoxNormalizer:
    """Turn gated candidates into image-space detections with plausible geometry."""

    def __init__(self, settings: DetectionSettings, input_width: int, input_height: int) -> None:
        self.settings = settings
        self.input_width = input_width
        self.input_height = input_height

    def detect_encoding(self, candidates: Sequence[Candidate]) -> CoordinateSystem:
        """Decide the batch's encoding from a sample of raw boxes."""
        bound = self.settings.normalized_bound
        sample = candidates[: self.settings.coordinate_sample_size]
        for candidate in sample:
            if any(value > bound for value in candidate.raw_box):
                return CoordinateSystem.PIXEL
        return CoordinateSystem.NORMALIZED

    def _normalized(self, candidate: Candidate, system: CoordinateSystem) -> tuple[float, float, float, float]:
        xc, yc, w, h = candidate.raw_box
        if system is CoordinateSystem.PIXEL:
            return (xc / self.input_width, yc / self.input_height, w / self.input_width, h / self.input_height)
        return xc, yc, w, h

    def to_detection(
        self,
        candidate: Candidate,
        label: str,
        system: CoordinateSystem,
        image_width: int,
        image_height: int,
    ) -> Detection | None:
        """Return a detection, or None when any geometry check fails."""
        s = self.settings
        xc, yc, w, h = self._normalized(candidate, system)

        if not (s.min_box_fraction <= w <= s.max_box_fraction):
            return None
        if not (s.min_box_fraction <= h <= s.max_box_fraction):
            return None

        left, top, right, bottom = center_to_corners(xc, yc, w, h, image_width, image_height)
        if right <= left or bottom <= top:
            return None

        width = right - left
        height = bottom - top
        if width < s.min_box_pixels or height < s.min_box_pixels:
            return None

        aspect = width / height
        if not (s.min_aspect_ratio <= aspect <= s.max_aspect_ratio):
            return None

        return Detection(
            label=label,
            confidence=candidate.best_score,
            box=BoundingBox(left=left, top=top, right=right, bottom=bottom),
            class_id=candidate.best_class_index,
        )

    def normalize(
        self,
        candidates: Sequence[Candidate],
        labels: Sequence[str],
        image_width: int,
        image_height: int,
    ) -> tuple[list[Detection], int, CoordinateSystem | None]:
        """Convert a frame's gated candidates; returns detections, rejected count, encoding."""
        if image_width <= 0 or image_height <= 0:
            raise ValueError(f"Image size must be positive, got {image_width}x{image_height}")
        if not candidates:
            return [], 0, None

        system = self.detect_encoding(candidates)
        detections: list[Detection] = []
        for candidate in candidates:
            detection = self.to_detection(
                candidate,
                labels[candidate.best_class_index],
                system,
                image_width,
                image_height,
            )
            if detection is not None:
                detections.append(detection)

        return detections, len(candidates) - len(detections), system
