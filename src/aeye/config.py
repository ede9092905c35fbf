"""Project configuration models and YAML loading."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from aeye.errors import ConfigErrorType, ConfigurationError


class DetectionSettings(BaseModel):
    confidence_threshold: float = Field(default=0.25, ge=0.0, le=1.0)
    class_thresholds: dict[str, float] = Field(default_factory=dict)
    gap_check_enabled: bool = True
    min_confidence_gap: float = Field(default=0.10, ge=0.0, le=1.0)
    nms_iou_threshold: float = Field(default=0.45, ge=0.0, le=1.0)
    max_detections: int = Field(default=5, ge=1)
    min_box_fraction: float = Field(default=0.02, gt=0.0, le=1.0)
    max_box_fraction: float = Field(default=0.80, gt=0.0, le=1.0)
    min_box_pixels: float = Field(default=20.0, ge=0.0)
    min_aspect_ratio: float = Field(default=0.1, gt=0.0)
    max_aspect_ratio: float = Field(default=10.0, gt=0.0)
    normalized_bound: float = Field(default=1.5, gt=0.0)
    coordinate_sample_size: int = Field(default=32, ge=1)

    @model_validator(mode="after")
    def _check_ranges(self) -> "DetectionSettings":
        if self.min_box_fraction > self.max_box_fraction:
            raise ValueError("min_box_fraction must not exceed max_box_fraction")
        if self.min_aspect_ratio > self.max_aspect_ratio:
            raise ValueError("min_aspect_ratio must not exceed max_aspect_ratio")
        for label, threshold in self.class_thresholds.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"Threshold for '{label}' must be within [0, 1]")
        return self


class StreamingSettings(BaseModel):
    min_interval_seconds: float = Field(default=0.3, ge=0.0)
    smoothing_alpha: float = Field(default=0.7, gt=0.0, le=1.0)
    nearest_tiebreak: bool = True


class QuantizationSettings(BaseModel):
    scale: float = Field(gt=0.0)
    zero_point: int = 0


class ModelSettings(BaseModel):
    labels_path: str = "configs/labelmap.txt"
    input_width: int = Field(default=640, ge=1)
    input_height: int = Field(default=640, ge=1)
    output_shape: list[int] = Field(default_factory=lambda: [1, 84, 8400])
    quantization: QuantizationSettings | None = None


class DiagnosticsSettings(BaseModel):
    enabled: bool = False
    endpoint: str | None = None
    local_jsonl_path: str = "data/runs/frame_stats.jsonl"
    request_timeout_seconds: float = 2.0


class AppSettings(BaseModel):
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    streaming: StreamingSettings = Field(default_factory=StreamingSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    diagnostics: DiagnosticsSettings = Field(default_factory=DiagnosticsSettings)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def load_settings(config_path: str | Path | None = None) -> AppSettings:
    """Load YAML configuration into typed app settings."""
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        return AppSettings()

    with path.open("r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    return AppSettings.model_validate(raw)


def load_labels(labels_path: str | Path) -> list[str]:
    """Read the ordered label vocabulary, one class name per line."""
    path = Path(labels_path)
    if not path.exists():
        raise ConfigurationError(f"Labels file not found: {path}", ConfigErrorType.LABELS_NOT_FOUND)

    with path.open("r", encoding="utf-8") as f:
        labels = [line.strip() for line in f if line.strip()]

    if not labels:
        raise ConfigurationError(f"No labels found in labels file: {path}", ConfigErrorType.LABELS_NOT_FOUND)
    return labels
