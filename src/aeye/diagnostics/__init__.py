"""Frame stats contracts and transport helpers."""

from aeye.diagnostics.emitter import SequenceCounter, StatsEmitter, load_records, summarize_stats
from aeye.diagnostics.schemas import FrameStatsRecord, TuningSummary

__all__ = [
    "FrameStatsRecord",
    "SequenceCounter",
    "StatsEmitter",
    "TuningSummary",
    "load_records",
    "summarize_stats",
]
