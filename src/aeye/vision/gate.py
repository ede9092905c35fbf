"""Confidence gating: per-class floors and top-two ambiguity rejection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from aeye.config import DetectionSettings
from aeye.types import Candidate

log = logging.getLogger(__name__)

# Scores come from float32 tensors; a value equal to its limit up to this much passes.
SCORE_TOLERANCE = 1e-6


class GateVerdict(str, Enum):
    ACCEPTED = "accepted"
    REJECTED_FLOOR = "rejected_floor"
    REJECTED_GAP = "rejected_gap"


@dataclass(frozen=True)
class GateTally:
    total: int = 0
    rejected_by_floor: int = 0
    rejected_by_gap: int = 0
    accepted: int = 0


class ConfidenceGate:
    """Reject candidates below their class floor or too close to the runner-up class."""

    def __init__(self, labels: Sequence[str], settings: DetectionSettings) -> None:
        self.labels = list(labels)
        self.default_threshold = settings.confidence_threshold
        self.class_thresholds = dict(settings.class_thresholds)
        self.gap_check_enabled = settings.gap_check_enabled
        self.min_gap = settings.min_confidence_gap

        known = set(self.labels)
        unknown = sorted(label for label in self.class_thresholds if label not in known)
        if unknown:
            log.warning("Ignoring threshold overrides for unknown labels: %s", ", ".join(unknown))

        self._floors = [self.threshold_for(label) for label in self.labels]

    def threshold_for(self, label: str) -> float:
        return self.class_thresholds.get(label, self.default_threshold)

    def admit(self, candidate: Candidate) -> GateVerdict:
        if candidate.best_score < self._floors[candidate.best_class_index] - SCORE_TOLERANCE:
            return GateVerdict.REJECTED_FLOOR
        if self.gap_check_enabled and candidate.confidence_gap < self.min_gap - SCORE_TOLERANCE:
            return GateVerdict.REJECTED_GAP
        return GateVerdict.ACCEPTED

    def apply(self, candidates: Iterable[Candidate]) -> tuple[list[Candidate], GateTally]:
        accepted: list[Candidate] = []
        total = floor = gap = 0
        for candidate in candidates:
            total += 1
            verdict = self.admit(candidate)
            if verdict is GateVerdict.REJECTED_FLOOR:
                floor += 1
            elif verdict is GateVerdict.REJECTED_GAP:
                gap += 1
            else:
                accepted.append(candidate)

        tally = GateTally(total=total, rejected_by_floor=floor, rejected_by_gap=gap, accepted=len(accepted))
        return accepted, tally
