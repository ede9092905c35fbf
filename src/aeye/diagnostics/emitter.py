"""Frame stats sending utilities for offline threshold tuning."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Literal

import httpx

from aeye.diagnostics.schemas import FrameStatsRecord, TuningSummary
from aeye.types import FrameStats

log = logging.getLogger(__name__)


class SequenceCounter:
    """Monotonic sequence counter per runtime session."""

    def __init__(self, start: int = 0):
        self._value = start

    def next(self) -> int:
        self._value += 1
        return self._value


class StatsEmitter:
    """POST frame stats to a collector endpoint with local JSONL fallback on failures.

    Each send runs on the calling thread and can block it for up to
    ``timeout_seconds``.
    """

    def __init__(
        self,
        endpoint: str | None,
        fallback_jsonl_path: str | Path,
        timeout_seconds: float = 2.0,
        mode: Literal["on_demand", "streaming"] = "on_demand",
    ) -> None:
        self.endpoint = endpoint
        self.fallback_jsonl_path = Path(fallback_jsonl_path)
        self.timeout_seconds = timeout_seconds
        self.mode = mode
        self._seq = SequenceCounter()
        self._client = httpx.Client(timeout=self.timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def __call__(self, stats: FrameStats) -> bool:
        """Pipeline stats sink entry point."""
        return self.emit(FrameStatsRecord.from_stats(stats, seq=self._seq.next(), mode=self.mode))

    def emit(self, record: FrameStatsRecord) -> bool:
        """Send record. Returns True on successful endpoint send."""
        payload = record.model_dump(mode="json")

        if self.endpoint:
            try:
                response = self._client.post(self.endpoint, json=payload)
                response.raise_for_status()
                return True
            except httpx.HTTPError as exc:
                log.warning("Stats endpoint unavailable, writing locally: %s", exc)

        self._write_fallback(payload)
        return False

    def _write_fallback(self, payload: dict) -> None:
        self.fallback_jsonl_path.parent.mkdir(parents=True, exist_ok=True)
        with self.fallback_jsonl_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(payload) + "\n")


def load_records(jsonl_path: str | Path) -> list[FrameStatsRecord]:
    """Read validated records from a stats JSONL log, skipping blank lines."""
    path = Path(jsonl_path)
    if not path.exists():
        return []

    records: list[FrameStatsRecord] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            records.append(FrameStatsRecord.model_validate_json(line))
    return records


def summarize_stats(jsonl_path: str | Path) -> TuningSummary:
    """Aggregate per-frame counters into totals for threshold tuning."""
    summary = TuningSummary()
    for record in load_records(jsonl_path):
        summary.frames += 1
        summary.anchors += record.anchors
        summary.candidates += record.candidates
        summary.rejected_by_floor += record.rejected_by_floor
        summary.rejected_by_gap += record.rejected_by_gap
        summary.rejected_by_geometry += record.rejected_by_geometry
        summary.accepted_pre_nms += record.accepted_pre_nms
        summary.accepted_post_nms += record.accepted_post_nms
        if record.accepted_post_nms == 0:
            summary.empty_frames += 1
        if record.smoothed:
            summary.smoothed_frames += 1
    return summary
