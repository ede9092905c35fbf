"""Per-anchor best/second-best class extraction."""

from __future__ import annotations

import numpy as np

from aeye.types import Candidate
from aeye.vision.tensor import TensorView


def top_two_classes(scores: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Return best/second (index, score) arrays for an ``(anchors, classes)`` matrix.

    Equal scores order by lower class index. With a single class the second
    index is -1 and its score 0.
    """
    num_anchors, num_classes = scores.shape
    if num_classes == 1:
        best_idx = np.zeros(num_anchors, dtype=np.int64)
        return best_idx, scores[:, 0], np.full(num_anchors, -1, dtype=np.int64), np.zeros(num_anchors, dtype=scores.dtype)

    rows = np.arange(num_anchors)
    best_idx = scores.argmax(axis=1)
    best_score = scores[rows, best_idx]

    masked = np.array(scores, copy=True)
    masked[rows, best_idx] = -np.inf
    second_idx = masked.argmax(axis=1)
    second_score = masked[rows, second_idx]
    return best_idx, best_score, second_idx, second_score


def decode_candidates(view: TensorView) -> list[Candidate]:
    """Emit one candidate per anchor whose best class score is nonzero."""
    scores = view.scores()
    if scores.shape[0] == 0:
        return []

    best_idx, best_score, second_idx, second_score = top_two_classes(scores)
    boxes = view.boxes()

    out: list[Candidate] = []
    for anchor in np.flatnonzero(best_score > 0.0):
        xc, yc, w, h = boxes[anchor]
        out.append(
            Candidate(
                raw_box=(float(xc), float(yc), float(w), float(h)),
                best_class_index=int(best_idx[anchor]),
                best_score=float(best_score[anchor]),
                second_class_index=int(second_idx[anchor]),
                second_score=float(second_score[anchor]),
                anchor_index=int(anchor),
            )
        )
    return out
