"""Aeye command line interface."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer

app = typer.Typer(help="Aeye detection core CLI", no_args_is_help=True)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _detection_rows(detections) -> list[dict]:
    return [
        {
            "label": det.label,
            "confidence": round(det.confidence, 4),
            "box": [round(v, 1) for v in det.box.as_tuple()],
        }
        for det in detections
    ]


@app.command("detect")
def detect(
    tensor: Path = typer.Option(..., exists=True, help="Saved raw output tensor (.npy)"),
    width: int = typer.Option(..., help="Destination image width in pixels"),
    height: int = typer.Option(..., help="Destination image height in pixels"),
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
    log_level: str = typer.Option("INFO", help="Logging level"),
) -> None:
    """Decode one forward pass and print the accepted detections."""
    import numpy as np

    from aeye.config import load_settings
    from aeye.pipeline.detect import DetectionPipeline

    _setup_logging(log_level)
    settings = load_settings(config)
    pipeline = DetectionPipeline.from_settings(settings)

    result = pipeline.run(pipeline.tensor_from_array(np.load(tensor)), width, height)
    for row in _detection_rows(result.detections):
        typer.echo(json.dumps(row))
    if not result.detections:
        typer.echo("No objects detected")


@app.command("stream")
def stream(
    tensors: Path = typer.Option(..., exists=True, file_okay=False, help="Directory of .npy tensors, one per frame"),
    width: int = typer.Option(..., help="Destination image width in pixels"),
    height: int = typer.Option(..., help="Destination image height in pixels"),
    fps: float = typer.Option(30.0, help="Camera frame rate the replay simulates"),
    interval: float | None = typer.Option(None, help="Override minimum seconds between processed frames"),
    record: bool = typer.Option(False, help="Record per-frame stats for tuning"),
    post: bool = typer.Option(False, help="Also POST recorded stats to the configured endpoint"),
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
    log_level: str = typer.Option("INFO", help="Logging level"),
) -> None:
    """Replay saved tensors through streaming mode with cadence and smoothing."""
    import numpy as np

    from aeye.config import load_settings
    from aeye.diagnostics.emitter import StatsEmitter
    from aeye.pipeline.detect import DetectionPipeline
    from aeye.pipeline.stream import FrameOutput, StreamingDetector

    _setup_logging(log_level)
    settings = load_settings(config)
    streaming = settings.streaming
    if interval is not None:
        streaming = streaming.model_copy(update={"min_interval_seconds": interval})

    # posting blocks the frame loop, so replays write JSONL unless asked
    emitter = None
    if record or settings.diagnostics.enabled:
        emitter = StatsEmitter(
            endpoint=settings.diagnostics.endpoint if post else None,
            fallback_jsonl_path=settings.diagnostics.local_jsonl_path,
            timeout_seconds=settings.diagnostics.request_timeout_seconds,
            mode="streaming",
        )
    pipeline = DetectionPipeline.from_settings(settings, stats_sink=emitter)

    frame_paths = sorted(tensors.glob("*.npy"))
    clock_state = {"t": 0.0}
    detector = StreamingDetector(pipeline, streaming, clock=lambda: clock_state["t"])

    def infer(path: Path) -> FrameOutput:
        return FrameOutput(pipeline.tensor_from_array(np.load(path)), width, height)

    try:
        for idx, path in enumerate(frame_paths):
            clock_state["t"] = idx / fps
            result = detector.offer(path, infer)
            if result is None:
                continue
            labels = ", ".join(f"{d.label} {d.confidence_percentage}" for d in result.detections) or "-"
            smoothed = " (smoothed)" if result.stats.smoothed else ""
            typer.echo(f"{path.name}: {labels}{smoothed}")
    finally:
        if emitter is not None:
            emitter.close()

    typer.echo(json.dumps(detector.counters()))


@app.command("tune")
def tune(
    stats: Path = typer.Option(Path("data/runs/frame_stats.jsonl"), help="Frame stats JSONL log"),
) -> None:
    """Summarize recorded frame stats for threshold tuning."""
    from aeye.diagnostics.emitter import summarize_stats

    summary = summarize_stats(stats)
    if summary.frames == 0:
        typer.echo(f"No frame stats found in {stats}")
        raise typer.Exit(code=1)

    typer.echo(f"frames={summary.frames} empty={summary.empty_frames} smoothed={summary.smoothed_frames}")
    typer.echo(f"candidates={summary.candidates} anchors={summary.anchors}")
    typer.echo(f"rejected floor={summary.rejected_by_floor} ({summary.floor_rejection_rate:.1%})")
    typer.echo(f"rejected gap={summary.rejected_by_gap} ({summary.gap_rejection_rate:.1%})")
    typer.echo(f"rejected geometry={summary.rejected_by_geometry} ({summary.geometry_rejection_rate:.1%})")
    typer.echo(f"pre_nms={summary.accepted_pre_nms} post_nms={summary.accepted_post_nms} suppressed={summary.nms_suppressed}")


@app.command("labels")
def labels(
    config: Path = typer.Option(Path("configs/default.yaml"), help="App config yaml"),
) -> None:
    """Check the label vocabulary against the configured output tensor shape."""
    from aeye.config import load_labels, load_settings
    from aeye.errors import ConfigurationError
    from aeye.vision.tensor import TensorLayout

    settings = load_settings(config)
    try:
        vocabulary = load_labels(settings.model.labels_path)
        layout = TensorLayout.resolve(settings.model.output_shape, num_classes=len(vocabulary))
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}")
        raise typer.Exit(code=1)

    typer.echo(f"{len(vocabulary)} labels match output layout {layout.describe()}")


if __name__ == "__main__":
    app()
