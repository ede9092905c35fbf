from __future__ import annotations

import threading
from pathlib import Path

import numpy as np
import pytest

from aeye.config import AppSettings, DetectionSettings, ModelSettings, QuantizationSettings
from aeye.errors import ConfigErrorType, ConfigurationError, DetectorBusyError
from aeye.pipeline.detect import DetectionPipeline, OnDemandDetector
from aeye.types import FrameStats, PipelineResult
from aeye.vision.stabilizer import TemporalStabilizer
from aeye.vision.tensor import OutputTensor

LABELS = ["person", "chair", "couch"]

Anchor = tuple[tuple[float, float, float, float], list[float]]

# Two chairs: (300,300,700,700) and (300,300,700,540) on a 1000x1000 image, IoU 0.6.
CHAIR_ANCHORS: list[Anchor] = [
    ((0.5, 0.5, 0.4, 0.4), [0.0, 0.80, 0.0]),
    ((0.5, 0.42, 0.4, 0.24), [0.0, 0.55, 0.0]),
    ((0.1, 0.1, 0.1, 0.1), [0.0, 0.0, 0.0]),
]


def make_output(anchors: list[Anchor], attributes_first: bool = True, dtype=np.float32) -> np.ndarray:
    grid = np.array([list(box) + list(scores) for box, scores in anchors], dtype=dtype)
    return (grid.T if attributes_first else grid)[None]


def make_settings(
    anchors: int,
    attributes_first: bool = True,
    quantization: QuantizationSettings | None = None,
    **detection,
) -> AppSettings:
    attrs = 4 + len(LABELS)
    shape = [1, attrs, anchors] if attributes_first else [1, anchors, attrs]
    return AppSettings(
        detection=DetectionSettings(**detection),
        model=ModelSettings(output_shape=shape, input_width=640, input_height=640, quantization=quantization),
    )


def run(anchors: list[Anchor], attributes_first: bool = True, **detection) -> PipelineResult:
    pipeline = DetectionPipeline(LABELS, make_settings(len(anchors), attributes_first, **detection))
    return pipeline.run(OutputTensor.from_array(make_output(anchors, attributes_first)), 1000, 1000)


def test_overlapping_chairs_collapse_to_the_confident_one() -> None:
    result = run(CHAIR_ANCHORS, nms_iou_threshold=0.45)

    assert len(result.detections) == 1
    chair = result.detections[0]
    assert chair.label == "chair"
    assert chair.class_id == 1
    assert chair.confidence == pytest.approx(0.80)
    assert chair.box.as_tuple() == pytest.approx((300.0, 300.0, 700.0, 700.0), abs=1e-3)

    assert result.stats == FrameStats(
        anchors=3,
        candidates=2,
        rejected_by_floor=0,
        rejected_by_gap=0,
        rejected_by_geometry=0,
        accepted_pre_nms=2,
        accepted_post_nms=1,
        coordinates="normalized",
        smoothed=False,
    )


def test_anchors_first_layout_gives_the_same_result() -> None:
    a = run(CHAIR_ANCHORS, attributes_first=True)
    b = run(CHAIR_ANCHORS, attributes_first=False)
    assert a.detections == b.detections


def test_pixel_space_output_is_scaled_back() -> None:
    pixel_anchors = [(tuple(v * 640 for v in box), scores) for box, scores in CHAIR_ANCHORS]
    result = run(pixel_anchors)

    assert result.stats.coordinates == "pixel"
    assert result.detections[0].box.as_tuple() == pytest.approx((300.0, 300.0, 700.0, 700.0), abs=1e-2)


def test_quantized_output_is_dequantized() -> None:
    quant = QuantizationSettings(scale=0.01, zero_point=0)
    raw = np.rint(make_output(CHAIR_ANCHORS, dtype=np.float64) * 100).astype(np.uint8)
    pipeline = DetectionPipeline(LABELS, make_settings(len(CHAIR_ANCHORS), quantization=quant))

    result = pipeline.run(pipeline.tensor_from_array(raw), 1000, 1000)

    assert len(result.detections) == 1
    assert result.detections[0].confidence == pytest.approx(0.80, abs=1e-4)


def test_ambiguous_top_two_is_rejected_end_to_end() -> None:
    anchors: list[Anchor] = [((0.5, 0.5, 0.4, 0.4), [0.0, 0.60, 0.50])]

    rejected = run(anchors, min_confidence_gap=0.15)
    assert rejected.detections == ()
    assert rejected.stats.rejected_by_gap == 1

    accepted = run(anchors, min_confidence_gap=0.05)
    assert [d.label for d in accepted.detections] == ["chair"]


def test_nothing_detected_is_an_empty_set() -> None:
    result = run([((0.5, 0.5, 0.4, 0.4), [0.0, 0.0, 0.0])])
    assert result.detections == ()
    assert result.stats.candidates == 0
    assert result.stats.coordinates is None


def test_geometry_rejections_are_counted() -> None:
    anchors: list[Anchor] = [
        ((0.5, 0.5, 0.95, 0.4), [0.9, 0.0, 0.0]),
        ((0.5, 0.5, 0.3, 0.3), [0.9, 0.0, 0.0]),
    ]
    result = run(anchors)
    assert result.stats.rejected_by_geometry == 1
    assert len(result.detections) == 1


def test_result_is_capped_and_sorted() -> None:
    anchors: list[Anchor] = [
        ((0.1 * i + 0.05, 0.5, 0.05, 0.1), [0.9 - 0.05 * i, 0.0, 0.0]) for i in range(8)
    ]
    result = run(anchors, max_detections=5)

    confidences = [d.confidence for d in result.detections]
    assert len(confidences) == 5
    assert confidences == sorted(confidences, reverse=True)
    assert result.stats.accepted_pre_nms == 8


def test_raising_a_class_threshold_never_adds_detections_of_that_class() -> None:
    rng = np.random.default_rng(3)
    anchors: list[Anchor] = []
    for _ in range(200):
        box = (*rng.uniform(0.2, 0.8, size=2), *rng.uniform(0.05, 0.3, size=2))
        anchors.append((tuple(float(v) for v in box), [0.0, float(rng.uniform()), float(rng.uniform())]))

    counts = []
    for threshold in (0.1, 0.3, 0.5, 0.7, 0.9):
        result = run(anchors, class_thresholds={"chair": threshold}, max_detections=50)
        counts.append(sum(1 for d in result.detections if d.label == "chair"))

    assert counts == sorted(counts, reverse=True)


def test_label_count_must_match_model_classes() -> None:
    settings = AppSettings(model=ModelSettings(output_shape=[1, 84, 8400]))
    with pytest.raises(ConfigurationError) as excinfo:
        DetectionPipeline(LABELS, settings)
    assert excinfo.value.error_type is ConfigErrorType.LABEL_MISMATCH


def test_from_settings_loads_label_file(tmp_path: Path) -> None:
    labels_path = tmp_path / "labelmap.txt"
    labels_path.write_text("person\nchair\n\ncouch\n", encoding="utf-8")
    settings = make_settings(3)
    settings.model.labels_path = str(labels_path)

    pipeline = DetectionPipeline.from_settings(settings)

    assert pipeline.labels == LABELS


def test_stats_sink_receives_every_frame() -> None:
    seen: list[FrameStats] = []
    pipeline = DetectionPipeline(LABELS, make_settings(len(CHAIR_ANCHORS)), stats_sink=seen.append)
    tensor = OutputTensor.from_array(make_output(CHAIR_ANCHORS))

    pipeline.run(tensor, 1000, 1000)
    pipeline.run(tensor, 1000, 1000)

    assert len(seen) == 2
    assert seen[0].accepted_post_nms == 1


def test_stabilizer_is_applied_when_given() -> None:
    pipeline = DetectionPipeline(LABELS, make_settings(len(CHAIR_ANCHORS)))
    stabilizer = TemporalStabilizer(alpha=0.5)
    first = OutputTensor.from_array(make_output(CHAIR_ANCHORS))
    moved = [((0.52, 0.5, 0.4, 0.4), [0.0, 0.80, 0.0])] + CHAIR_ANCHORS[1:]

    pipeline.run(first, 1000, 1000, stabilizer=stabilizer)
    result = pipeline.run(OutputTensor.from_array(make_output(moved)), 1000, 1000, stabilizer=stabilizer)

    assert result.stats.smoothed is True
    assert result.detections[0].box.left == pytest.approx(310.0, abs=1e-2)


def test_on_demand_detector_runs_one_capture_at_a_time(monkeypatch) -> None:
    pipeline = DetectionPipeline(LABELS, make_settings(len(CHAIR_ANCHORS)))
    tensor = OutputTensor.from_array(make_output(CHAIR_ANCHORS))
    started = threading.Event()
    release = threading.Event()
    original_run = pipeline.run

    def slow_run(*args, **kwargs):
        started.set()
        release.wait(timeout=5)
        return original_run(*args, **kwargs)

    monkeypatch.setattr(pipeline, "run", slow_run)
    detector = OnDemandDetector(pipeline)
    try:
        future = detector.submit(tensor, 1000, 1000)
        assert started.wait(timeout=5)
        assert detector.busy is True
        with pytest.raises(DetectorBusyError):
            detector.submit(tensor, 1000, 1000)

        release.set()
        assert len(future.result(timeout=5).detections) == 1

        again = detector.detect(tensor, 1000, 1000)
        assert again.detections[0].label == "chair"
    finally:
        release.set()
        detector.close()


@pytest.mark.parametrize("dtype", [np.float32, np.float64])
@pytest.mark.parametrize("best, second", [(0.60, 0.50), (0.70, 0.60)])
def test_gap_equal_to_minimum_passes_for_any_tensor_dtype(dtype, best: float, second: float) -> None:
    anchors: list[Anchor] = [((0.5, 0.5, 0.4, 0.4), [0.0, best, second])]
    pipeline = DetectionPipeline(LABELS, make_settings(1, min_confidence_gap=0.10))

    result = pipeline.run(OutputTensor.from_array(make_output(anchors, dtype=dtype)), 1000, 1000)

    assert result.stats.rejected_by_gap == 0
    assert [d.label for d in result.detections] == ["chair"]
