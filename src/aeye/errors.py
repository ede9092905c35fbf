"""Detector error types."""

from __future__ import annotations

from enum import Enum


class ConfigErrorType(str, Enum):
    LABELS_NOT_FOUND = "labels_not_found"
    INVALID_MODEL = "invalid_model"
    LABEL_MISMATCH = "label_mismatch"


class ConfigurationError(Exception):
    """Fatal load-time problem: the pipeline refuses to decode with this setup."""

    def __init__(self, message: str, error_type: ConfigErrorType):
        super().__init__(message)
        self.message = message
        self.error_type = error_type

    def __str__(self) -> str:
        return f"{self.message} (type: {self.error_type.value})"


class DetectorBusyError(RuntimeError):
    """Raised when an on-demand detection is submitted while one is still running."""
