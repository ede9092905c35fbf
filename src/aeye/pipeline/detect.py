"""Decode-and-stabilize pipeline over one detector forward pass."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Sequence

from aeye.config import AppSettings, load_labels
from aeye.errors import ConfigErrorType, ConfigurationError, DetectorBusyError
from aeye.types import DetectionSet, FrameStats, PipelineResult
from aeye.vision.boxes import BoxNormalizer
from aeye.vision.decoder import decode_candidates
from aeye.vision.gate import ConfidenceGate
from aeye.vision.nms import suppress
from aeye.vision.stabilizer import TemporalStabilizer
from aeye.vision.tensor import OutputTensor, Quantization, TensorLayout, TensorView

log = logging.getLogger(__name__)

StatsSink = Callable[[FrameStats], None]


class DetectionPipeline:
    """Turn raw detector output into a capped, de-duplicated list of labeled boxes.

    Constructed once per loaded model. Every stage except the optional
    stabilizer is stateless, so one pipeline can serve any number of frames.
    ``stats_sink`` is called synchronously at the end of every ``run``; a sink
    that does network I/O delays the frame by as long as the call takes.
    """

    def __init__(
        self,
        labels: Sequence[str],
        settings: AppSettings,
        stats_sink: StatsSink | None = None,
    ) -> None:
        self.labels = list(labels)
        self.settings = settings
        self.stats_sink = stats_sink

        model = settings.model
        if not self.labels:
            raise ConfigurationError("Label vocabulary is empty", ConfigErrorType.LABELS_NOT_FOUND)
        # raises LABEL_MISMATCH when no axis fits 4 + len(labels)
        self.layout = TensorLayout.resolve(model.output_shape, num_classes=len(self.labels))

        self.quantization = (
            Quantization(scale=model.quantization.scale, zero_point=model.quantization.zero_point)
            if model.quantization is not None
            else None
        )
        detection = settings.detection
        self.gate = ConfidenceGate(self.labels, detection)
        self.normalizer = BoxNormalizer(detection, model.input_width, model.input_height)

        log.info(
            "Init layout=%s input=%sx%s quantized=%s conf=%s gap=%s(%s) iou=%s max_det=%s",
            self.layout.describe(),
            model.input_width,
            model.input_height,
            self.quantization is not None,
            detection.confidence_threshold,
            detection.min_confidence_gap,
            "on" if detection.gap_check_enabled else "off",
            detection.nms_iou_threshold,
            detection.max_detections,
        )

    @classmethod
    def from_settings(cls, settings: AppSettings, stats_sink: StatsSink | None = None) -> "DetectionPipeline":
        """Load the label vocabulary named in settings and build the pipeline."""
        return cls(load_labels(settings.model.labels_path), settings, stats_sink=stats_sink)

    def tensor_from_array(self, array) -> OutputTensor:
        """Wrap a raw output array with this model's quantization parameters."""
        return OutputTensor.from_array(array, quantization=self.quantization)

    def run(
        self,
        tensor: OutputTensor,
        image_width: int,
        image_height: int,
        stabilizer: TemporalStabilizer | None = None,
    ) -> PipelineResult:
        detection = self.settings.detection
        view = TensorView(self.layout, tensor)

        candidates = decode_candidates(view)
        gated, tally = self.gate.apply(candidates)
        boxes, rejected_geometry, system = self.normalizer.normalize(gated, self.labels, image_width, image_height)
        kept = suppress(boxes, detection.nms_iou_threshold, detection.max_detections)

        smoothed = False
        if stabilizer is not None:
            detections, smoothed = stabilizer.stabilize(kept)
        else:
            detections = tuple(kept)

        stats = FrameStats(
            anchors=view.num_anchors,
            candidates=tally.total,
            rejected_by_floor=tally.rejected_by_floor,
            rejected_by_gap=tally.rejected_by_gap,
            rejected_by_geometry=rejected_geometry,
            accepted_pre_nms=len(boxes),
            accepted_post_nms=len(kept),
            coordinates=system.value if system is not None else None,
            smoothed=smoothed,
        )
        log.debug(
            "frame anchors=%s candidates=%s floor=%s gap=%s geometry=%s pre_nms=%s post_nms=%s",
            stats.anchors,
            stats.candidates,
            stats.rejected_by_floor,
            stats.rejected_by_gap,
            stats.rejected_by_geometry,
            stats.accepted_pre_nms,
            stats.accepted_post_nms,
        )
        if self.stats_sink is not None:
            self.stats_sink(stats)

        return PipelineResult(detections=detections, stats=stats)

    def detect(self, tensor: OutputTensor, image_width: int, image_height: int) -> DetectionSet:
        """Return only the detection set for one frame."""
        return self.run(tensor, image_width, image_height).detections


class OnDemandDetector:
    """Run single captures on a background worker, one at a time."""

    def __init__(self, pipeline: DetectionPipeline) -> None:
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="aeye-detect")
        self._in_flight = threading.Lock()

    def submit(self, tensor: OutputTensor, image_width: int, image_height: int) -> Future[PipelineResult]:
        if not self._in_flight.acquire(blocking=False):
            raise DetectorBusyError("A detection is already running for this capture")

        try:
            return self._executor.submit(self._run, tensor, image_width, image_height)
        except BaseException:
            self._in_flight.release()
            raise

    def _run(self, tensor: OutputTensor, image_width: int, image_height: int) -> PipelineResult:
        try:
            return self.pipeline.run(tensor, image_width, image_height)
        finally:
            # released before the future resolves, so a waiting caller can resubmit at once
            self._in_flight.release()

    def detect(self, tensor: OutputTensor, image_width: int, image_height: int) -> PipelineResult:
        """Submit and block until the result is ready."""
        return self.submit(tensor, image_width, image_height).result()

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
