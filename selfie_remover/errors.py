"""Error kinds raised by the mask/composite pipeline."""

from __future__ import annotations


class BackgroundRemoverError(Exception):
    """Base class for every failure surfaced by the pipeline."""


class ModelLoadFailure(BackgroundRemoverError):
    """The segmentation collaborator could not be initialized. Retryable."""


class SegmentationFailure(BackgroundRemoverError):
    """The segmentation collaborator failed on a specific image."""


class DimensionMismatch(BackgroundRemoverError, ValueError):
    """Two buffers that must share a size do not."""

    def __init__(self, expected: tuple[int, int], actual: tuple[int, int], what: str = "segmentation"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{what} size {actual[0]}x{actual[1]} does not match image size {expected[0]}x{expected[1]}"
        )


class DecodeFailure(BackgroundRemoverError, ValueError):
    """The source image could not be decoded."""


class PipelineBusy(BackgroundRemoverError):
    """A pipeline run is already in flight for this session."""
