"""
Background removal pipeline coordinator.

`BackgroundRemover.process` is the main entry point used by the HTTP API and
the CLI. It keeps orchestration simple:
image -> segmentation collaborator -> mask synthesis -> compositing -> session.

One coordinator owns one Session and runs at most one pipeline at a time.
Coordinators that share a `SharedModel` share a single model load.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any, Callable, Optional, TypeVar, Union

from . import config
from .compositor import composite
from .errors import BackgroundRemoverError, ModelLoadFailure, PipelineBusy, SegmentationFailure
from .images import ImageBuffer
from .mask import ColorPair, synthesize
from .segmentation import SegmentationResult, Segmenter
from .session import ProcessResult, Session, SessionSnapshot

logger = logging.getLogger(__name__)

CompleteCallback = Callable[[ProcessResult], None]
ErrorCallback = Callable[[BaseException], None]

T = TypeVar("T")


class PipelineState(str, Enum):
    IDLE = "idle"
    LOADING_MODEL = "loading_model"
    READY = "ready"
    SEGMENTING = "segmenting"
    COMPOSITING = "compositing"
    FAILED = "failed"


@dataclass(frozen=True)
class MaskOptions:
    smooth_edges: bool = True
    inverted: bool = False
    colors: ColorPair = field(default_factory=ColorPair.default)
    strategy: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None) -> "MaskOptions":
        settings = settings or config.get_settings()
        return cls(
            smooth_edges=settings.mask_smooth_edges,
            inverted=settings.mask_inverted,
            strategy=settings.mask_smoothing_strategy,
        )

    def color_pair(self) -> ColorPair:
        """Colors actually painted; inversion swaps subject and background."""
        return self.colors.inverted() if self.inverted else self.colors


async def _in_worker(func: Callable[..., T], *args: Any) -> T:
    """
    Run `func` in a worker thread.

    A cancelled caller still waits for the thread to return, so the work
    never outlives the run that started it.
    """
    future = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait({future})
        if not future.cancelled():
            future.exception()
        raise


class SharedModel:
    """
    Load-once handle around a segmentation collaborator.

    The first `ensure_loaded()` starts the load; concurrent callers await the
    same attempt. A failed attempt is forgotten so the next caller retries.
    """

    def __init__(self, segmenter: Segmenter) -> None:
        self.segmenter = segmenter
        self._ready = False
        self._task: Optional[asyncio.Task] = None

    @property
    def ready(self) -> bool:
        return self._ready

    async def _load(self) -> None:
        try:
            await asyncio.to_thread(self.segmenter.load)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Segmentation model failed to load: %s", exc)
            raise ModelLoadFailure(f"Segmentation model failed to load: {exc}") from exc
        self._ready = True
        logger.info("Segmentation model ready")

    async def ensure_loaded(self) -> None:
        if self._ready:
            return
        if self._task is None:
            self._task = asyncio.ensure_future(self._load())
        task = self._task
        try:
            await asyncio.shield(task)
        finally:
            if self._task is task and task.done() and not self._ready:
                self._task = None


class BackgroundRemover:
    """Coordinates model loading and per-image processing for one Session."""

    def __init__(
        self,
        segmenter: Union[Segmenter, SharedModel],
        options: Optional[MaskOptions] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        settings: Optional[config.Settings] = None,
    ) -> None:
        self.model = segmenter if isinstance(segmenter, SharedModel) else SharedModel(segmenter)
        self.segmenter = self.model.segmenter
        self.settings = settings or config.get_settings()
        self.options = options or MaskOptions.from_settings(self.settings)
        self.on_complete = on_complete
        self.on_error = on_error
        self.state = PipelineState.READY if self.model.ready else PipelineState.IDLE
        self.last_error: Optional[BaseException] = None
        self._session = Session()

    @property
    def session(self) -> SessionSnapshot:
        return self._session.snapshot()

    @property
    def busy(self) -> bool:
        return self._session.busy

    @property
    def model_ready(self) -> bool:
        return self.model.ready

    def _settle(self) -> None:
        self.state = PipelineState.READY if self.model.ready else PipelineState.IDLE

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    async def _ensure_model(self) -> None:
        if self.model.ready:
            return
        self.state = PipelineState.LOADING_MODEL
        try:
            await self.model.ensure_loaded()
        finally:
            self._settle()

    async def load_model(self) -> None:
        """
        Load the segmentation collaborator once.

        Concurrent callers share a single attempt; later calls are no-ops.

        Raises:
            ModelLoadFailure: when loading fails. A later call retries.
        """
        try:
            await self._ensure_model()
        except ModelLoadFailure as exc:
            self._report_error(exc)
            raise

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _render(
        self, image: ImageBuffer, segmentation: SegmentationResult, options: MaskOptions
    ) -> ProcessResult:
        pair = options.color_pair()
        mask = synthesize(
            segmentation,
            image.width,
            image.height,
            foreground=pair.foreground,
            background=pair.background,
            smooth_edges=options.smooth_edges,
            strategy=options.strategy,
            settings=self.settings,
        )
        self.state = PipelineState.COMPOSITING
        processed = composite(image, mask, mode=self.settings.composite_mode)
        # Encode here so PNG compression stays off the event loop.
        for buf in (image, mask, processed):
            buf.encoded
        return ProcessResult(original=image, processed=processed, mask=mask)

    async def _run(self, image: Union[ImageBuffer, bytes], options: MaskOptions) -> ProcessResult:
        if not isinstance(image, ImageBuffer):
            image = await _in_worker(ImageBuffer.from_bytes, bytes(image))
        self._session.set_original(image)

        await self._ensure_model()

        self.state = PipelineState.SEGMENTING
        try:
            segmentation = await _in_worker(self.segmenter.segment, image)
        except Exception as exc:  # noqa: BLE001
            raise SegmentationFailure(f"Segmentation failed: {exc}") from exc
        if not isinstance(segmentation, SegmentationResult):
            raise SegmentationFailure(
                f"Segmenter returned {type(segmentation).__name__}, expected SegmentationResult"
            )

        result = await _in_worker(self._render, image, segmentation, options)
        self._session.publish(result)
        self.state = PipelineState.READY
        return result

    async def process(
        self, image: Union[ImageBuffer, bytes], options: Optional[MaskOptions] = None
    ) -> ProcessResult:
        """
        Remove the background from `image` and publish the results.

        Cancelling the calling task takes effect once the current step's
        worker thread has returned; nothing is published.

        Raises:
            PipelineBusy: when another run is still in flight.
            DecodeFailure: when `image` bytes are not a readable image.
            ModelLoadFailure: when the model could not be loaded.
            SegmentationFailure: when the collaborator failed on this image.
            DimensionMismatch: when the segmentation size disagrees with the image.
        """
        if self._session.busy:
            error = PipelineBusy("A background removal run is already in progress")
            logger.warning("Rejected process(): %s", error)
            self._report_error(error)
            raise error

        self._session.busy = True
        try:
            result = await self._run(image, options or self.options)
        except asyncio.CancelledError:
            logger.info("Background removal cancelled")
            self._settle()
            raise
        except BackgroundRemoverError as exc:
            self._fail(exc)
            raise
        except Exception as exc:  # noqa: BLE001
            error = BackgroundRemoverError(f"Background removal failed: {exc}")
            self._fail(error)
            raise error from exc
        finally:
            self._session.busy = False

        logger.info("Background removed (%dx%d)", result.original.width, result.original.height)
        if self.on_complete is not None:
            self.on_complete(result)
        return result

    def clear(self) -> None:
        """Drop processed and mask images; the original and the model stay."""
        self._session.clear_results()
        logger.debug("Session results cleared")

    # ------------------------------------------------------------------

    def _fail(self, error: BackgroundRemoverError) -> None:
        self.state = PipelineState.FAILED
        logger.exception("Background removal failed: %s", error)
        try:
            self._report_error(error)
        finally:
            self._settle()

    def _report_error(self, error: BaseException) -> None:
        self.last_error = error
        if self.on_error is not None:
            self.on_error(error)
