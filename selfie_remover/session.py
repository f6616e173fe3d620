"""Per-session image state, mutated only by the pipeline coordinator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .images import ImageBuffer


@dataclass(frozen=True, eq=False)
class ProcessResult:
    original: ImageBuffer
    processed: ImageBuffer
    mask: ImageBuffer

    @property
    def original_encoded(self) -> bytes:
        return self.original.encoded

    @property
    def processed_encoded(self) -> bytes:
        return self.processed.encoded

    @property
    def mask_encoded(self) -> bytes:
        return self.mask.encoded

    def as_data_urls(self) -> Dict[str, str]:
        return {
            "originalImage": self.original.to_data_url(),
            "processedImage": self.processed.to_data_url(),
            "maskImage": self.mask.to_data_url(),
        }


@dataclass(frozen=True, eq=False)
class SessionSnapshot:
    original: Optional[ImageBuffer]
    processed: Optional[ImageBuffer]
    mask: Optional[ImageBuffer]
    busy: bool


@dataclass(eq=False)
class Session:
    """
    Current original/processed/mask images plus the busy flag.

    `processed` and `mask` are always both set or both None.
    """

    original: Optional[ImageBuffer] = None
    processed: Optional[ImageBuffer] = None
    mask: Optional[ImageBuffer] = None
    busy: bool = False

    def set_original(self, image: ImageBuffer) -> None:
        self.original = image

    def publish(self, result: ProcessResult) -> None:
        """Install a run's outputs in one step."""
        self.original, self.processed, self.mask = result.original, result.processed, result.mask

    def clear_results(self) -> None:
        self.processed, self.mask = None, None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            original=self.original,
            processed=self.processed,
            mask=self.mask,
            busy=self.busy,
        )
