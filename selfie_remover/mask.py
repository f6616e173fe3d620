"""Mask synthesis from segmentation output with optional edge smoothing."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Dict, NamedTuple, Optional

import cv2
import numpy as np

from . import config
from .errors import DimensionMismatch
from .images import ImageBuffer
from .segmentation import SegmentationResult

logger = logging.getLogger(__name__)


class Rgba(NamedTuple):
    r: int
    g: int
    b: int
    a: int

    def validate(self) -> "Rgba":
        for value in self:
            if not 0 <= int(value) <= 255:
                raise ValueError(f"color channel out of range: {tuple(self)}")
        return self


OPAQUE_WHITE = Rgba(255, 255, 255, 255)
TRANSPARENT_BLACK = Rgba(0, 0, 0, 0)


@dataclass(frozen=True)
class ColorPair:
    """Colors for subject pixels (`foreground`) and everything else."""

    foreground: Rgba = OPAQUE_WHITE
    background: Rgba = TRANSPARENT_BLACK

    def __post_init__(self) -> None:
        object.__setattr__(self, "foreground", Rgba(*self.foreground).validate())
        object.__setattr__(self, "background", Rgba(*self.background).validate())

    @classmethod
    def default(cls) -> "ColorPair":
        return cls(OPAQUE_WHITE, TRANSPARENT_BLACK)

    def inverted(self) -> "ColorPair":
        return ColorPair(foreground=self.background, background=self.foreground)


# An edge-smoothing strategy maps a segmentation result to per-pixel subject
# weights in [0, 1].
SmoothingStrategy = Callable[[SegmentationResult, Optional[config.Settings]], np.ndarray]


def _hard_weights(segmentation: SegmentationResult) -> np.ndarray:
    return segmentation.foreground_mask().astype(np.float32)


def confidence_weights(
    segmentation: SegmentationResult, settings: Optional[config.Settings] = None
) -> np.ndarray:
    """Use the collaborator's confidence inside the uncertain band, hard labels outside."""
    low, high = config.edge_band(settings)
    conf = segmentation.confidence.astype(np.float32)
    band = (conf > low) & (conf < high)
    return np.where(band, conf, _hard_weights(segmentation))


def box_weights(
    segmentation: SegmentationResult, settings: Optional[config.Settings] = None
) -> np.ndarray:
    """Average hard labels over a fixed-radius square neighbourhood."""
    settings = settings or config.get_settings()
    radius = settings.mask_box_radius
    kernel = (2 * radius + 1, 2 * radius + 1)
    hard = _hard_weights(segmentation)
    return np.clip(cv2.blur(hard, kernel, borderType=cv2.BORDER_REPLICATE), 0.0, 1.0)


def auto_weights(
    segmentation: SegmentationResult, settings: Optional[config.Settings] = None
) -> np.ndarray:
    """
    Confidence-proportional where the collaborator reports an uncertain edge,
    box-averaged labels everywhere else along the boundary.
    """
    box = box_weights(segmentation, settings)
    if not segmentation.graded:
        return box
    settings = settings or config.get_settings()
    low, high = config.edge_band(settings)
    conf = segmentation.confidence
    band = ((conf > low) & (conf < high)).astype(np.uint8)
    radius = settings.mask_box_radius
    kernel = np.ones((2 * radius + 1, 2 * radius + 1), np.uint8)
    covered = cv2.dilate(band, kernel, iterations=1) > 0
    # Saturated mattes jump straight across the band; feather those edges by label.
    hard = segmentation.foreground_mask().astype(np.uint8)
    near_edge = cv2.dilate(hard, kernel) != cv2.erode(hard, kernel)
    return np.where(near_edge & ~covered, box, confidence_weights(segmentation, settings))


STRATEGIES: Dict[str, SmoothingStrategy] = {
    "auto": auto_weights,
    "confidence": confidence_weights,
    "box": box_weights,
}


def get_strategy(name: Optional[str] = None, settings: Optional[config.Settings] = None) -> SmoothingStrategy:
    settings = settings or config.get_settings()
    key = (name or settings.mask_smoothing_strategy).lower()
    try:
        return STRATEGIES[key]
    except KeyError:
        raise ValueError(f"unknown smoothing strategy '{key}'; expected one of {sorted(STRATEGIES)}") from None


def synthesize(
    segmentation: SegmentationResult,
    width: int,
    height: int,
    foreground: Rgba = OPAQUE_WHITE,
    background: Rgba = TRANSPARENT_BLACK,
    smooth_edges: bool = True,
    strategy: Optional[str] = None,
    settings: Optional[config.Settings] = None,
) -> ImageBuffer:
    """
    Paint subject pixels `foreground` and the rest `background`.

    With `smooth_edges` the boundary is blended channel-wise between the two
    colors by the selected smoothing strategy; otherwise every pixel is
    exactly one of them. Polarity is decided entirely by the colors passed in.

    Raises:
        DimensionMismatch: when the segmentation is not `width` x `height`.
    """
    if segmentation.size != (width, height):
        raise DimensionMismatch(expected=(width, height), actual=segmentation.size)

    fg = np.asarray(Rgba(*foreground).validate(), dtype=np.float32)
    bg = np.asarray(Rgba(*background).validate(), dtype=np.float32)

    if smooth_edges:
        weights = get_strategy(strategy, settings)(segmentation, settings)
    else:
        weights = _hard_weights(segmentation)

    w = weights[..., None]
    pixels = np.rint(bg + w * (fg - bg))
    mask = np.clip(pixels, 0, 255).astype(np.uint8)

    if logger.isEnabledFor(logging.DEBUG):
        edge = (weights > 0.0) & (weights < 1.0)
        logger.debug(
            "mask: size=%dx%d smooth=%s foreground=%.4f edge_pixels=%d",
            width,
            height,
            smooth_edges,
            float(np.mean(weights)) if weights.size else 0.0,
            int(np.count_nonzero(edge)),
        )
    return ImageBuffer(mask)
