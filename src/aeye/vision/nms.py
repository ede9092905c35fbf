"""Intersection over Union and greedy non-maximum suppression."""

from __future__ import annotations

from typing import Sequence

from aeye.types import BoundingBox, Detection


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Calculate Intersection over Union between two corner-format boxes.

    Returns 0.0 for disjoint boxes and when the union area is zero.
    """
    x_left = max(a.left, b.left)
    y_top = max(a.top, b.top)
    x_right = min(a.right, b.right)
    y_bottom = min(a.bottom, b.bottom)

    intersection = max(0.0, x_right - x_left) * max(0.0, y_bottom - y_top)
    union = a.area + b.area - intersection
    if union <= 0:
        return 0.0
    return intersection / union


def suppress(
    detections: Sequence[Detection],
    iou_threshold: float,
    max_detections: int | None = None,
) -> list[Detection]:
    """Keep the most confident box of every overlapping group, then cap the count."""
    ordered = sorted(detections, key=lambda d: d.confidence, reverse=True)
    suppressed = [False] * len(ordered)
    kept: list[Detection] = []

    for i, det in enumerate(ordered):
        if suppressed[i]:
            continue
        kept.append(det)
        for j in range(i + 1, len(ordered)):
            if not suppressed[j] and iou(det.box, ordered[j].box) > iou_threshold:
                suppressed[j] = True

    if max_detections is not None:
        return kept[:max_detections]
    return kept
