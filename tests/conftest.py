"""Shared fixtures: synthetic images and fake segmentation collaborators."""

from __future__ import annotations

from io import BytesIO
import threading
import time
from typing import Callable, Optional

import numpy as np
from PIL import Image
import pytest

from selfie_remover import config
from selfie_remover.images import ImageBuffer
from selfie_remover.segmentation import SegmentationResult


def make_image(width: int, height: int, seed: int = 0) -> ImageBuffer:
    rng = np.random.default_rng(seed)
    rgb = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    return ImageBuffer.from_array(rgb)


def png_bytes(image: ImageBuffer) -> bytes:
    buf = BytesIO()
    image.to_pil().save(buf, format="PNG")
    return buf.getvalue()


def left_half_labels(width: int, height: int) -> np.ndarray:
    labels = np.zeros((height, width), dtype=bool)
    labels[:, : width // 2] = True
    return labels


class FakeSegmenter:
    """Returns a segmentation built by `factory` from the image; counts calls."""

    def __init__(
        self,
        factory: Optional[Callable[[ImageBuffer], SegmentationResult]] = None,
        fail_loads: int = 0,
    ) -> None:
        self.factory = factory or (lambda img: SegmentationResult.from_labels(left_half_labels(img.width, img.height)))
        self.fail_loads = fail_loads
        self.load_calls = 0
        self.segment_calls = 0
        self.segment_error: Optional[Exception] = None

    def load(self) -> None:
        self.load_calls += 1
        time.sleep(0.01)
        if self.load_calls <= self.fail_loads:
            raise OSError("weights unavailable")

    def segment(self, image: ImageBuffer) -> SegmentationResult:
        self.segment_calls += 1
        if self.segment_error is not None:
            raise self.segment_error
        return self.factory(image)


class BlockingSegmenter(FakeSegmenter):
    """Holds inside segment() until released and records overlapping calls."""

    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def segment(self, image: ImageBuffer) -> SegmentationResult:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            self.release.wait(timeout=2)
            return super().segment(image)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def settings() -> config.Settings:
    return config.Settings(
        segmenter_model_path=None,
        mask_smoothing_strategy="auto",
        mask_box_radius=1,
        mask_edge_band_low=0.05,
        mask_edge_band_high=0.95,
        composite_mode="multiply",
    )


@pytest.fixture
def fake_segmenter() -> FakeSegmenter:
    return FakeSegmenter()
