"""Shape-aware, dequantizing read access over a detector's raw output buffer.

YOLO-style heads emit one tensor holding, for every anchor, four box attributes
``(xc, yc, w, h)`` followed by one score per class. Exporters disagree on axis
order, so the tensor is either ``[1, attributes, anchors]`` or
``[1, anchors, attributes]``. The order is resolved once per model into a
:class:`TensorLayout`; per-frame views only index through it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from aeye.errors import ConfigErrorType, ConfigurationError

BOX_ATTRIBUTES = 4


@dataclass(frozen=True)
class Quantization:
    scale: float
    zero_point: int = 0

    def dequantize(self, raw: np.ndarray) -> np.ndarray:
        return (raw.astype(np.float32) - np.float32(self.zero_point)) * np.float32(self.scale)


@dataclass(frozen=True)
class OutputTensor:
    """Flat output buffer as handed over by the model runner."""

    buffer: np.ndarray
    quantization: Quantization | None = None

    @classmethod
    def from_array(cls, array: np.ndarray, quantization: Quantization | None = None) -> "OutputTensor":
        return cls(buffer=np.ascontiguousarray(array).reshape(-1), quantization=quantization)


@dataclass(frozen=True)
class TensorLayout:
    """Axis layout of the output tensor, resolved once at model load."""

    attributes_first: bool
    num_attributes: int
    num_anchors: int

    @property
    def num_classes(self) -> int:
        return self.num_attributes - BOX_ATTRIBUTES

    @property
    def size(self) -> int:
        return self.num_attributes * self.num_anchors

    @classmethod
    def resolve(cls, shape: Sequence[int], num_classes: int) -> "TensorLayout":
        """Find which non-batch axis carries box attributes plus class scores."""
        dims = [int(d) for d in shape]
        if len(dims) != 3 or dims[0] != 1:
            raise ConfigurationError(
                f"Expected output tensor shape [1, A, B], got {dims}",
                ConfigErrorType.INVALID_MODEL,
            )

        expected = BOX_ATTRIBUTES + num_classes
        _, first, second = dims
        if first == expected:
            return cls(attributes_first=True, num_attributes=first, num_anchors=second)
        if second == expected:
            return cls(attributes_first=False, num_attributes=second, num_anchors=first)

        raise ConfigurationError(
            f"Output tensor shape {dims} has no axis of size {expected} (4 box attributes + {num_classes} classes)",
            ConfigErrorType.LABEL_MISMATCH,
        )

    def describe(self) -> str:
        order = "attrs,anchors" if self.attributes_first else "anchors,attrs"
        return f"[1,{order}] attrs={self.num_attributes} anchors={self.num_anchors}"


class TensorView:
    """Read accessor over one frame's output buffer."""

    def __init__(self, layout: TensorLayout, tensor: OutputTensor) -> None:
        buffer = np.asarray(tensor.buffer).reshape(-1)
        if buffer.size != layout.size:
            raise ValueError(f"Output buffer holds {buffer.size} values, layout expects {layout.size}")

        self.layout = layout
        self.quantization = tensor.quantization
        if layout.attributes_first:
            self._grid = buffer.reshape(layout.num_attributes, layout.num_anchors)
        else:
            # transposed view, no copy
            self._grid = buffer.reshape(layout.num_anchors, layout.num_attributes).T
        self._dequantized: np.ndarray | None = None

    @property
    def num_anchors(self) -> int:
        return self.layout.num_anchors

    @property
    def num_classes(self) -> int:
        return self.layout.num_classes

    def _read(self, row: int, anchor_index: int) -> float:
        raw = self._grid[row, anchor_index]
        if self.quantization is None:
            return float(raw)
        return (float(raw) - self.quantization.zero_point) * self.quantization.scale

    def score_at(self, class_index: int, anchor_index: int) -> float:
        return self._read(BOX_ATTRIBUTES + class_index, anchor_index)

    def box_attribute_at(self, attr_index: int, anchor_index: int) -> float:
        if not 0 <= attr_index < BOX_ATTRIBUTES:
            raise IndexError(f"Box attribute index out of range: {attr_index}")
        return self._read(attr_index, anchor_index)

    def _values(self) -> np.ndarray:
        """Attribute-major float matrix, dequantized once per view."""
        if self._dequantized is None:
            if self.quantization is None:
                floating = np.issubdtype(self._grid.dtype, np.floating)
                self._dequantized = self._grid if floating else self._grid.astype(np.float32)
            else:
                self._dequantized = self.quantization.dequantize(self._grid)
        return self._dequantized

    def scores(self) -> np.ndarray:
        """Class scores as an ``(anchors, classes)`` array."""
        return self._values()[BOX_ATTRIBUTES:].T

    def boxes(self) -> np.ndarray:
        """Raw box attributes as an ``(anchors, 4)`` array."""
        return self._values()[:BOX_ATTRIBUTES].T
