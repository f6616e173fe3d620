"""
TorchScript portrait segmenter.

The segmenter:
 - picks the inference device (CUDA -> Apple MPS -> CPU),
 - loads a TorchScript matting/segmentation checkpoint once,
 - resizes inputs by the longest edge and normalizes them to [-1, 1],
 - returns a confidence map at the source resolution.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from threading import Lock
from typing import Optional, Tuple

import numpy as np
from PIL import Image
import torch
import torch.nn.functional as F

from . import config
from .images import ImageBuffer
from .segmentation import SegmentationResult

logger = logging.getLogger(__name__)


def pick_device(preferred: Optional[str] = None) -> torch.device:
    """Return the inference device, preferring CUDA when available."""
    if preferred:
        return torch.device(preferred)
    if torch.cuda.is_available():
        return torch.device("cuda")
    if torch.backends.mps.is_available():  # type: ignore[attr-defined]
        return torch.device("mps")
    return torch.device("cpu")


def compute_resize_dims(width: int, height: int, max_long_edge: int) -> Tuple[int, int]:
    """Preserve aspect ratio while constraining the longest edge."""
    if max_long_edge <= 0:
        return width, height
    long_edge = max(width, height)
    if long_edge <= max_long_edge:
        return width, height
    scale = max_long_edge / long_edge
    new_w = int(width * scale)
    new_h = int(height * scale)
    # Encoder/decoder stride chains want dimensions divisible by 32.
    new_w = max(32, math.ceil(new_w / 32) * 32)
    new_h = max(32, math.ceil(new_h / 32) * 32)
    return new_w, new_h


class TorchScriptSegmenter:
    """Segmentation collaborator backed by a TorchScript module."""

    def __init__(
        self,
        model_path: Optional[Path],
        device: Optional[str] = None,
        max_long_edge: int = 1024,
        threshold: float = 0.5,
    ) -> None:
        self.model_path = Path(model_path) if model_path else None
        self.device = pick_device(device)
        self.max_long_edge = max_long_edge
        self.threshold = threshold
        self._model: Optional[torch.nn.Module] = None
        self._lock = Lock()

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        if self._model is not None:
            return
        with self._lock:
            if self._model is None:
                if self.model_path is None:
                    raise FileNotFoundError("SEGMENTER_MODEL_PATH is not configured")
                if not self.model_path.exists():
                    raise FileNotFoundError(f"Segmentation checkpoint not found at {self.model_path}")
                logger.info("Loading TorchScript segmenter from %s", self.model_path)
                model = torch.jit.load(str(self.model_path), map_location=self.device)
                model.eval()
                self._model = model
                logger.info("Segmenter loaded on device: %s", self.device)

    def _to_tensor(self, image: ImageBuffer) -> torch.Tensor:
        rgb = Image.fromarray(np.array(image.rgb), mode="RGB")
        new_w, new_h = compute_resize_dims(image.width, image.height, self.max_long_edge)
        if (new_w, new_h) != image.size:
            rgb = rgb.resize((new_w, new_h), Image.BILINEAR)
        im_np = np.asarray(rgb).astype("float32") / 255.0
        im_np = (im_np - 0.5) / 0.5
        im_np = np.transpose(im_np, (2, 0, 1))  # HWC -> CHW
        return torch.from_numpy(im_np).unsqueeze(0).to(self.device)

    def segment(self, image: ImageBuffer) -> SegmentationResult:
        if self._model is None:
            raise RuntimeError("Segmenter used before load()")
        tensor = self._to_tensor(image)
        with torch.no_grad():
            output = self._model(tensor)
        # Matting models commonly return (semantic, detail, matte); the matte is last.
        if isinstance(output, (tuple, list)):
            output = output[-1]
        if output.dim() == 3:
            output = output.unsqueeze(1)
        matte = F.interpolate(
            output[:, :1].float(),
            size=(image.height, image.width),
            mode="bilinear",
            align_corners=False,
        )
        confidence = matte[0, 0].detach().cpu().numpy()
        return SegmentationResult.from_confidence(confidence, threshold=self.threshold)


def build_segmenter(settings: Optional[config.Settings] = None) -> TorchScriptSegmenter:
    """Create the default collaborator from settings; loading is deferred."""
    settings = settings or config.get_settings()
    return TorchScriptSegmenter(
        model_path=settings.segmenter_model_path,
        device=settings.segmenter_device,
        max_long_edge=settings.segmenter_max_long_edge,
        threshold=settings.foreground_threshold,
    )
