"""Cut the subject out of a source image using a mask's alpha as a stencil."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from . import config
from .errors import DimensionMismatch
from .images import ImageBuffer

logger = logging.getLogger(__name__)


def composite(source: ImageBuffer, mask: ImageBuffer, mode: Optional[str] = None) -> ImageBuffer:
    """
    Keep source RGB untouched and derive visibility from the mask alpha.

    `multiply` keeps any transparency the source already had (canvas
    "destination-in"); `replace` takes the mask alpha as-is.

    Raises:
        DimensionMismatch: when source and mask sizes differ.
    """
    if source.size != mask.size:
        raise DimensionMismatch(expected=source.size, actual=mask.size, what="mask")

    mode = (mode or config.get_settings().composite_mode).lower()
    if mode == "multiply":
        src_a = source.alpha.astype(np.uint16)
        mask_a = mask.alpha.astype(np.uint16)
        alpha = ((src_a * mask_a + 127) // 255).astype(np.uint8)
    elif mode == "replace":
        alpha = mask.alpha.copy()
    else:
        raise ValueError("composite mode must be one of multiply | replace")

    rgba = np.dstack((source.rgb, alpha))
    logger.debug(
        "composite: mode=%s size=%dx%d visible=%d",
        mode,
        source.width,
        source.height,
        int(np.count_nonzero(alpha)),
    )
    return ImageBuffer(np.ascontiguousarray(rgba))
