"""Top-level controller for the capture -> classify -> rank -> present flow.

Each accepted image gets the next request id. A result is only published as
the latest one if no newer image was accepted while it was being classified,
so a slow classification can never overwrite the answer for a newer image.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from fruitlens.errors import (
    CaptureError,
    ClassificationError,
    DecodeError,
    FruitLensError,
    InitializationError,
)
from fruitlens.ml.image_source import capture_from_file, capture_from_live_video
from fruitlens.ml.lifecycle import LifecycleState
from fruitlens.ml.presentation import format_result
from fruitlens.ml.ranking import FRUIT_VOCABULARY, rank_predictions

if TYPE_CHECKING:
    from collections.abc import Callable

    from fruitlens.ml.image_source import FrameSource, ImageArtifact
    from fruitlens.ml.lifecycle import ClassifierLifecycle
    from fruitlens.ml.presentation import DisplayResult

logger = logging.getLogger(__name__)

NOT_READY_MESSAGE = "Model not loaded yet. Please wait..."


@dataclass(frozen=True)
class PipelineOutcome:
    """What one pipeline run produced.

    ``request_id`` is None when the run failed before an image was accepted.
    """

    request_id: int | None
    status_message: str
    display: DisplayResult | None = None
    error: FruitLensError | None = None
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def status_message_for(error: FruitLensError) -> str:
    """User-facing message for a pipeline error."""
    if isinstance(error, InitializationError):
        return "Error loading model. Please restart the service."
    if isinstance(error, CaptureError):
        return f"Could not capture an image: {error}"
    if isinstance(error, DecodeError):
        return f"Could not read the uploaded image: {error}"
    return "Error processing image. Please try again."


class FruitPipeline:
    """Owns the classifier lifecycle, the staged image and the latest result."""

    def __init__(
        self,
        lifecycle: ClassifierLifecycle,
        *,
        capture_size: tuple[int, int] = (640, 480),
        max_image_pixels: int = 16_777_216,
        vocabulary: tuple[str, ...] = FRUIT_VOCABULARY,
    ) -> None:
        self.lifecycle = lifecycle
        self._capture_size = capture_size
        self._max_image_pixels = max_image_pixels
        self._vocabulary = vocabulary

        self._sequence = 0
        self._staged: ImageArtifact | None = None
        self._latest: PipelineOutcome | None = None
        self._camera: FrameSource | None = None
        self._camera_lock = asyncio.Lock()

    @property
    def latest(self) -> PipelineOutcome | None:
        """The most recent non-stale outcome."""
        return self._latest

    @property
    def staged(self) -> ImageArtifact | None:
        return self._staged

    @property
    def camera_active(self) -> bool:
        return self._camera is not None and self._camera.is_open

    # -- Camera -------------------------------------------------------------

    async def start_camera(self, factory: Callable[[], FrameSource]) -> None:
        """Open a camera stream through ``factory`` unless one is already active.

        Raises:
            CaptureError: If the camera cannot be opened.
        """
        async with self._camera_lock:
            if self.camera_active:
                return
            self._camera = await asyncio.to_thread(factory)

    def stop_camera(self) -> None:
        if self._camera is not None:
            self._camera.close()
            self._camera = None

    # -- Submissions --------------------------------------------------------

    async def submit_upload(self, data: bytes) -> PipelineOutcome:
        """Decode uploaded bytes and classify them."""
        not_ready = self._check_ready()
        if not_ready is not None:
            return not_ready
        try:
            artifact = await capture_from_file(data, self._max_image_pixels)
        except DecodeError as exc:
            logger.info("Rejected upload: %s", exc)
            return self._failure(None, exc)
        return await self.run(artifact)

    async def submit_capture(self) -> PipelineOutcome:
        """Grab the current camera frame and classify it."""
        not_ready = self._check_ready()
        if not_ready is not None:
            return not_ready
        if self._camera is None:
            return self._failure(None, CaptureError("Camera has not been started"))
        try:
            artifact = await asyncio.to_thread(capture_from_live_video, self._camera, self._capture_size)
        except CaptureError as exc:
            logger.info("Capture failed: %s", exc)
            return self._failure(None, exc)
        return await self.run(artifact)

    async def run(self, artifact: ImageArtifact) -> PipelineOutcome:
        """Stage ``artifact`` as the current image and classify it."""
        request_id = self._stage(artifact)
        try:
            raw = await self.lifecycle.classify(artifact)
        except ClassificationError as exc:
            return self._publish(self._failure(request_id, exc))

        display = format_result(rank_predictions(raw, self._vocabulary))
        return self._publish(PipelineOutcome(request_id=request_id, status_message=display.headline, display=display))

    # -- Internal -----------------------------------------------------------

    def _stage(self, artifact: ImageArtifact) -> int:
        self._sequence += 1
        self._staged = artifact
        logger.debug("Staged %s image %dx%d as request %d", artifact.source, artifact.width, artifact.height, self._sequence)
        return self._sequence

    def _publish(self, outcome: PipelineOutcome) -> PipelineOutcome:
        if outcome.request_id != self._sequence:
            logger.info("Discarding stale result for request %s (latest is %d)", outcome.request_id, self._sequence)
            return replace(outcome, stale=True)
        self._latest = outcome
        return outcome

    def _check_ready(self) -> PipelineOutcome | None:
        if self.lifecycle.get_handle() is not None:
            return None
        if self.lifecycle.state is LifecycleState.FAILED:
            error: FruitLensError = self.lifecycle.last_error or InitializationError("Classifier failed to load")
            return self._failure(None, error)
        return PipelineOutcome(
            request_id=None,
            status_message=NOT_READY_MESSAGE,
            error=ClassificationError(f"Classifier is not ready (state: {self.lifecycle.state})"),
        )

    @staticmethod
    def _failure(request_id: int | None, error: FruitLensError) -> PipelineOutcome:
        return PipelineOutcome(request_id=request_id, status_message=status_message_for(error), error=error)
