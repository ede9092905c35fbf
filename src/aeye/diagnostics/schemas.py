"""Per-frame tuning records shared by the emitter and offline summaries."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from aeye.types import FrameStats


class FrameStatsRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    record_id: str = Field(default_factory=lambda: str(uuid4()))
    seq: int = Field(ge=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    mode: Literal["on_demand", "streaming"] = "on_demand"
    anchors: int = Field(ge=0)
    candidates: int = Field(ge=0)
    rejected_by_floor: int = Field(ge=0)
    rejected_by_gap: int = Field(ge=0)
    rejected_by_geometry: int = Field(ge=0)
    accepted_pre_nms: int = Field(ge=0)
    accepted_post_nms: int = Field(ge=0)
    coordinates: Literal["normalized", "pixel"] | None = None
    smoothed: bool = False

    @classmethod
    def from_stats(
        cls,
        stats: FrameStats,
        seq: int,
        mode: Literal["on_demand", "streaming"] = "on_demand",
    ) -> "FrameStatsRecord":
        return cls(
            seq=seq,
            mode=mode,
            anchors=stats.anchors,
            candidates=stats.candidates,
            rejected_by_floor=stats.rejected_by_floor,
            rejected_by_gap=stats.rejected_by_gap,
            rejected_by_geometry=stats.rejected_by_geometry,
            accepted_pre_nms=stats.accepted_pre_nms,
            accepted_post_nms=stats.accepted_post_nms,
            coordinates=stats.coordinates,
            smoothed=stats.smoothed,
        )


class TuningSummary(BaseModel):
    frames: int = 0
    anchors: int = 0
    candidates: int = 0
    rejected_by_floor: int = 0
    rejected_by_gap: int = 0
    rejected_by_geometry: int = 0
    accepted_pre_nms: int = 0
    accepted_post_nms: int = 0
    empty_frames: int = 0
    smoothed_frames: int = 0

    def rate(self, count: int) -> float:
        """Share of gated candidates represented by ``count``."""
        return count / self.candidates if self.candidates else 0.0

    @property
    def floor_rejection_rate(self) -> float:
        return self.rate(self.rejected_by_floor)

    @property
    def gap_rejection_rate(self) -> float:
        return self.rate(self.rejected_by_gap)

    @property
    def geometry_rejection_rate(self) -> float:
        return self.rate(self.rejected_by_geometry)

    @property
    def nms_suppressed(self) -> int:
        return self.accepted_pre_nms - self.accepted_post_nms

