"""End-to-end tests for the pipeline controller with fake collaborators."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import numpy as np
import pytest
from conftest import FakeFrameSource, FakeHandle, FakeLoader, GatedHandle, make_settings, png_bytes

from fruitlens.errors import CaptureError, ClassificationError, DecodeError, InitializationError
from fruitlens.ml.image_classifier import ModelConfig
from fruitlens.ml.image_source import ImageArtifact, ImageSourceKind
from fruitlens.ml.inference import InferencePool
from fruitlens.ml.lifecycle import ClassifierLifecycle, LifecycleState
from fruitlens.pipeline import NOT_READY_MESSAGE, FruitPipeline

if TYPE_CHECKING:
    from collections.abc import Iterator

    from fruitlens.ml.image_classifier import RawLabel


@pytest.fixture()
def pool() -> Iterator[InferencePool]:
    inference_pool = InferencePool(make_settings(max_concurrent=2))
    yield inference_pool
    inference_pool.shutdown()


def _pipeline(loader: FakeLoader, pool: InferencePool) -> FruitPipeline:
    lifecycle = ClassifierLifecycle(loader, pool, primary=ModelConfig(version=2))
    return FruitPipeline(lifecycle, capture_size=(64, 48), max_image_pixels=1_000_000)


async def _ready_pipeline(predictions: list[RawLabel], pool: InferencePool) -> FruitPipeline:
    pipeline = _pipeline(FakeLoader(FakeHandle(predictions)), pool)
    await pipeline.lifecycle.initialize()
    return pipeline


def _artifact() -> ImageArtifact:
    return ImageArtifact.from_array(np.zeros((4, 4, 3), dtype=np.uint8), ImageSourceKind.UPLOAD)


class TestScenarios:
    async def test_banana_is_recognized(self, pool: InferencePool) -> None:
        pipeline = await _ready_pipeline(
            [{"className": "banana", "probability": 0.92}, {"className": "yellow object", "probability": 0.5}],
            pool,
        )

        outcome = await pipeline.submit_upload(png_bytes())

        assert outcome.ok
        assert outcome.display is not None
        assert outcome.display.matched is True
        assert [(i.text, i.confidence_label) for i in outcome.display.items] == [("Banana", "92.0%")]
        assert pipeline.latest is outcome

    async def test_non_fruit_shows_raw_top_guesses(self, pool: InferencePool) -> None:
        pipeline = await _ready_pipeline([{"className": "golden retriever", "probability": 0.8}], pool)

        outcome = await pipeline.submit_upload(png_bytes())

        assert outcome.display is not None
        assert outcome.display.matched is False
        assert [(i.text, i.confidence_label) for i in outcome.display.items] == [("Golden Retriever", "80.0%")]

    async def test_degraded_classifier_still_classifies(self, pool: InferencePool) -> None:
        fallback = FakeHandle([{"className": "orange", "probability": 0.55}])
        pipeline = _pipeline(FakeLoader(RuntimeError("primary"), fallback), pool)
        await pipeline.lifecycle.initialize()

        outcome = await pipeline.submit_upload(png_bytes())

        assert pipeline.lifecycle.state is LifecycleState.DEGRADED
        assert outcome.ok
        assert outcome.display is not None
        assert outcome.display.items[0].text == "Orange"

    async def test_failed_classifier_reports_initialization_error(self, pool: InferencePool) -> None:
        pipeline = _pipeline(FakeLoader(RuntimeError("primary"), RuntimeError("fallback")), pool)
        await pipeline.lifecycle.initialize()

        outcome = await pipeline.submit_upload(png_bytes())

        assert pipeline.lifecycle.state is LifecycleState.FAILED
        assert isinstance(outcome.error, InitializationError)
        assert "restart" in outcome.status_message
        with pytest.raises(ClassificationError):
            await pipeline.lifecycle.classify(_artifact())


class TestErrorsBecomeStatusMessages:
    async def test_not_ready_yet(self, pool: InferencePool) -> None:
        pipeline = _pipeline(FakeLoader(FakeHandle()), pool)

        outcome = await pipeline.submit_upload(png_bytes())

        assert isinstance(outcome.error, ClassificationError)
        assert outcome.status_message == NOT_READY_MESSAGE
        assert outcome.request_id is None
        assert pipeline.staged is None

    async def test_bad_upload(self, pool: InferencePool) -> None:
        pipeline = await _ready_pipeline([], pool)

        outcome = await pipeline.submit_upload(b"not an image")

        assert isinstance(outcome.error, DecodeError)
        assert outcome.status_message.startswith("Could not read the uploaded image")
        assert pipeline.latest is None

    async def test_classifier_failure(self, pool: InferencePool) -> None:
        pipeline = _pipeline(FakeLoader(FakeHandle(fail_classify=True)), pool)
        await pipeline.lifecycle.initialize()

        outcome = await pipeline.submit_upload(png_bytes())

        assert isinstance(outcome.error, ClassificationError)
        assert outcome.status_message == "Error processing image. Please try again."
        assert pipeline.latest is outcome

    async def test_capture_without_camera(self, pool: InferencePool) -> None:
        pipeline = await _ready_pipeline([], pool)

        outcome = await pipeline.submit_capture()

        assert isinstance(outcome.error, CaptureError)


class TestCamera:
    async def test_capture_classifies_current_frame(self, pool: InferencePool) -> None:
        pipeline = await _ready_pipeline([{"className": "lemon", "probability": 0.4}], pool)
        frame = np.full((480, 640, 3), 200, dtype=np.uint8)
        await pipeline.start_camera(lambda: FakeFrameSource(frame))

        outcome = await pipeline.submit_capture()

        assert outcome.ok
        assert pipeline.staged is not None
        assert pipeline.staged.source is ImageSourceKind.CAMERA
        assert (pipeline.staged.width, pipeline.staged.height) == (64, 48)

    async def test_capture_before_first_frame(self, pool: InferencePool) -> None:
        pipeline = await _ready_pipeline([], pool)
        await pipeline.start_camera(lambda: FakeFrameSource(None))

        outcome = await pipeline.submit_capture()

        assert isinstance(outcome.error, CaptureError)
        assert pipeline.staged is None

    async def test_stop_camera_closes_stream(self, pool: InferencePool) -> None:
        pipeline = await _ready_pipeline([], pool)
        source = FakeFrameSource(np.zeros((4, 4, 3), dtype=np.uint8))
        await pipeline.start_camera(lambda: source)
        assert pipeline.camera_active

        pipeline.stop_camera()

        assert not pipeline.camera_active
        assert source.is_open is False

    async def test_overlapping_starts_open_one_stream(self, pool: InferencePool) -> None:
        pipeline = await _ready_pipeline([], pool)
        opened: list[FakeFrameSource] = []

        def slow_factory() -> FakeFrameSource:
            time.sleep(0.05)
            source = FakeFrameSource(np.zeros((4, 4, 3), dtype=np.uint8))
            opened.append(source)
            return source

        await asyncio.gather(pipeline.start_camera(slow_factory), pipeline.start_camera(slow_factory))
        pipeline.stop_camera()

        assert len(opened) == 1
        assert not any(source.is_open for source in opened)


class TestLatestRequestWins:
    async def test_request_ids_increase(self, pool: InferencePool) -> None:
        pipeline = await _ready_pipeline([{"className": "plum", "probability": 0.3}], pool)

        first = await pipeline.run(_artifact())
        second = await pipeline.run(_artifact())

        assert first.request_id is not None
        assert second.request_id == first.request_id + 1

    async def test_stale_result_does_not_overwrite_newer(self, pool: InferencePool) -> None:
        handle = GatedHandle([{"className": "peach", "probability": 0.6}])
        pipeline = _pipeline(FakeLoader(handle), pool)
        await pipeline.lifecycle.initialize()

        slow = asyncio.create_task(pipeline.run(_artifact()))
        assert await asyncio.to_thread(handle.entered.wait, 5)

        newer = await pipeline.run(_artifact())
        handle.release.set()
        older = await slow

        assert older.stale is True
        assert newer.stale is False
        assert pipeline.latest is newer
        assert older.request_id is not None
        assert newer.request_id is not None
        assert older.request_id < newer.request_id
