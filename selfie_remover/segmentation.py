"""Segmentation results and the collaborator interface that produces them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np

from .images import ImageBuffer


@dataclass(frozen=True, eq=False)
class SegmentationResult:
    """
    Per-pixel person/background classification aligned to a source image.

    `confidence` holds values in [0, 1]. When `graded` is False the values are
    hard labels (exactly 0 or 1) and carry no edge information.
    """

    confidence: np.ndarray  # (H, W) float32
    graded: bool = True
    threshold: float = 0.5

    def __post_init__(self) -> None:
        if self.confidence.ndim != 2:
            raise ValueError("segmentation confidence must be a 2D (H, W) array")
        self.confidence.setflags(write=False)

    @property
    def width(self) -> int:
        return int(self.confidence.shape[1])

    @property
    def height(self) -> int:
        return int(self.confidence.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def is_foreground(self, x: int, y: int) -> bool:
        return bool(self.confidence[y, x] >= self.threshold)

    def foreground_mask(self) -> np.ndarray:
        return self.confidence >= self.threshold

    @classmethod
    def from_labels(cls, labels: np.ndarray) -> "SegmentationResult":
        conf = np.asarray(labels).astype(bool).astype(np.float32)
        return cls(confidence=conf, graded=False)

    @classmethod
    def from_confidence(cls, confidence: np.ndarray, threshold: float = 0.5) -> "SegmentationResult":
        conf = np.clip(np.asarray(confidence, dtype=np.float32), 0.0, 1.0)
        return cls(confidence=conf, graded=True, threshold=threshold)


@runtime_checkable
class Segmenter(Protocol):
    """Human-segmentation collaborator consumed by the pipeline."""

    def load(self) -> None:
        """Initialize the model. May be slow; must be safe to call twice."""
        ...

    def segment(self, image: ImageBuffer) -> SegmentationResult:
        """Classify every pixel of `image` as person or background."""
        ...
