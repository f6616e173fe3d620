"""
Image buffers shared by every pipeline stage.

An ImageBuffer is an immutable RGBA grid plus its lossless transport form
(PNG bytes, or a PNG data URL for hosts that display them directly).
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from functools import cached_property
from io import BytesIO

import numpy as np
from PIL import Image, ImageOps

from .errors import DecodeFailure

PNG_MIME = "image/png"


@dataclass(frozen=True, eq=False)
class ImageBuffer:
    pixels: np.ndarray  # (H, W, 4) uint8, read-only

    def __post_init__(self) -> None:
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4 or self.pixels.dtype != np.uint8:
            raise ValueError("ImageBuffer expects an (H, W, 4) uint8 array")
        self.pixels.setflags(write=False)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        """(width, height), same order as PIL."""
        return self.width, self.height

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[..., 3]

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[..., :3]

    @cached_property
    def encoded(self) -> bytes:
        """PNG bytes; computed once."""
        buf = BytesIO()
        self.to_pil().save(buf, format="PNG")
        return buf.getvalue()

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.array(self.pixels), mode="RGBA")

    def to_data_url(self) -> str:
        return f"data:{PNG_MIME};base64,{base64.b64encode(self.encoded).decode('ascii')}"

    @classmethod
    def from_array(cls, array: np.ndarray) -> "ImageBuffer":
        """Build from HxW (gray), HxWx3 (RGB) or HxWx4 (RGBA) uint8 data."""
        arr = np.asarray(array)
        if arr.dtype != np.uint8:
            raise ValueError("pixel data must be uint8")
        if arr.ndim == 2:
            arr = np.repeat(arr[..., None], 3, axis=2)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ValueError(f"unsupported pixel array shape {arr.shape}")
        if arr.shape[2] == 3:
            opaque = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate([arr, opaque], axis=2)
        return cls(np.ascontiguousarray(arr).copy())

    @classmethod
    def from_pil(cls, image: Image.Image) -> "ImageBuffer":
        return cls(np.array(image.convert("RGBA"), dtype=np.uint8))

    @classmethod
    def from_bytes(cls, data: bytes) -> "ImageBuffer":
        """
        Decode any Pillow-readable image, honoring its EXIF orientation.

        Raises:
            DecodeFailure: when the bytes are not a readable image.
        """
        if not data:
            raise DecodeFailure("Empty image data")
        try:
            image = Image.open(BytesIO(data))
            image = ImageOps.exif_transpose(image)
            return cls.from_pil(image)
        except Exception as exc:  # noqa: BLE001
            raise DecodeFailure("Invalid image data") from exc
