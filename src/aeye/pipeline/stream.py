"""Streaming detection: bounded cadence, newest-frame-wins, box smoothing."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from aeye.config import StreamingSettings
from aeye.pipeline.detect import DetectionPipeline
from aeye.types import PipelineResult
from aeye.vision.stabilizer import TemporalStabilizer
from aeye.vision.tensor import OutputTensor

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameOutput:
    """One forward pass as produced by the model runner for a camera frame."""

    tensor: OutputTensor
    image_width: int
    image_height: int


InferFn = Callable[[Any], FrameOutput]


class StreamingDetector:
    """Sample camera frames at a bounded rate and smooth boxes across samples.

    Frames arriving before ``min_interval_seconds`` has elapsed, or while a
    previous sample is still being processed, are dropped rather than queued.
    The in-flight flag is also what keeps the stabilizer single-writer.
    """

    def __init__(
        self,
        pipeline: DetectionPipeline,
        settings: StreamingSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pipeline = pipeline
        self.min_interval_seconds = settings.min_interval_seconds
        self.stabilizer = TemporalStabilizer(settings.smoothing_alpha, nearest_tiebreak=settings.nearest_tiebreak)
        self._clock = clock
        self._in_flight = threading.Lock()
        self._last_tick: float | None = None

        self.frames_offered = 0
        self.frames_processed = 0
        self.dropped_cadence = 0
        self.dropped_busy = 0

    def offer(self, frame: Any, infer: InferFn) -> PipelineResult | None:
        """Process ``frame`` if a sampling tick is due; return None when it is dropped."""
        self.frames_offered += 1

        if not self._in_flight.acquire(blocking=False):
            self.dropped_busy += 1
            return None

        try:
            now = self._clock()
            if self._last_tick is not None and (now - self._last_tick) < self.min_interval_seconds:
                self.dropped_cadence += 1
                return None
            self._last_tick = now

            output = infer(frame)
            result = self.pipeline.run(
                output.tensor,
                output.image_width,
                output.image_height,
                stabilizer=self.stabilizer,
            )
            self.frames_processed += 1
            return result
        finally:
            self._in_flight.release()

    def reset(self) -> None:
        """Forget the previous frame's detections, e.g. when the camera view changes."""
        with self._in_flight:
            self.stabilizer.reset()
            self._last_tick = None

    def counters(self) -> dict[str, int]:
        return {
            "frames_offered": self.frames_offered,
            "frames_processed": self.frames_processed,
            "dropped_cadence": self.dropped_cadence,
            "dropped_busy": self.dropped_busy,
        }


FrameSource = Callable[[], Any]


@dataclass
class StreamingSession:
    """Background loop pulling camera frames into a streaming detector.

    ``frame_source`` returns the next frame, or None once the camera is closed.
    """

    detector: StreamingDetector
    frame_source: FrameSource
    infer: InferFn
    on_result: Callable[[PipelineResult], None] | None = None
    status: str = "idle"
    last_error: str | None = None
    _stop: threading.Event = field(default_factory=threading.Event)
    _thread: threading.Thread | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _latest: PipelineResult | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self.status = "running"
        self._thread = threading.Thread(target=self._run_loop, name="aeye-stream", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        if self.status == "running":
            self.status = "stopped"

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def latest(self) -> PipelineResult | None:
        with self._lock:
            return self._latest

    def _run_loop(self) -> None:
        try:
            while not self._stop.is_set():
                frame = self.frame_source()
                if frame is None:
                    break
                result = self.detector.offer(frame, self.infer)
                if result is None:
                    continue
                with self._lock:
                    self._latest = result
                if self.on_result is not None:
                    self.on_result(result)
            self.status = "stopped"
        except Exception as exc:
            log.exception("Streaming loop failed")
            self.last_error = str(exc)
            self.status = "error"
