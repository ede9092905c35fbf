"""Inter-frame box smoothing for streaming mode."""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import replace
from typing import Sequence

from aeye.types import BoundingBox, Detection, DetectionSet


def blend_boxes(previous: BoundingBox, current: BoundingBox, alpha: float) -> BoundingBox:
    """Exponential blend, each edge independently."""
    keep = 1.0 - alpha
    return BoundingBox(
        left=previous.left * keep + current.left * alpha,
        top=previous.top * keep + current.top * alpha,
        right=previous.right * keep + current.right * alpha,
        bottom=previous.bottom * keep + current.bottom * alpha,
    )


def same_labels(a: Sequence[Detection], b: Sequence[Detection]) -> bool:
    return Counter(d.label for d in a) == Counter(d.label for d in b)


def _center_distance(a: BoundingBox, b: BoundingBox) -> float:
    return math.hypot(a.center_x - b.center_x, a.center_y - b.center_y)


class TemporalStabilizer:
    """Smooth box jitter while the set of visible labels stays the same.

    Owns the previously returned set and replaces it on every call. When the
    label multiset changes the current frame passes through untouched.
    """

    def __init__(self, alpha: float, nearest_tiebreak: bool = True) -> None:
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"Smoothing factor must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self.nearest_tiebreak = nearest_tiebreak
        self._previous: DetectionSet = ()

    @property
    def previous(self) -> DetectionSet:
        return self._previous

    def reset(self) -> None:
        self._previous = ()

    def _match(self, current: Detection, pool: list[Detection]) -> Detection | None:
        same = [p for p in pool if p.label == current.label]
        if not same:
            return None
        if self.nearest_tiebreak and len(same) > 1:
            return min(same, key=lambda p: _center_distance(p.box, current.box))
        return same[0]

    def stabilize(self, current: Sequence[Detection]) -> tuple[DetectionSet, bool]:
        """Return the (possibly smoothed) set and whether smoothing was applied."""
        current_set = tuple(current)
        previous = self._previous

        if not previous or not current_set or not same_labels(previous, current_set):
            self._previous = current_set
            return current_set, False

        pool = list(previous)
        smoothed: list[Detection] = []
        for det in current_set:
            match = self._match(det, pool)
            if match is None:
                smoothed.append(det)
                continue
            pool.remove(match)
            smoothed.append(replace(det, box=blend_boxes(match.box, det.box, self.alpha)))

        result = tuple(smoothed)
        self._previous = result
        return result, True
