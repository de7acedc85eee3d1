"""Classifier lifecycle: one-shot initialization with a single fallback.

States:
    uninitialized -> initializing -> ready | degraded | failed

The primary configuration is loaded first and optionally self-tested on a
blank input. A failing self-test only records a warning; the model still
counts as ready. If the primary load fails, the default configuration is
tried once. Nothing is retried after that, so a failed manager stays failed
until the process restarts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

from fruitlens.errors import ClassificationError, InitializationError
from fruitlens.ml.image_classifier import ModelConfig

if TYPE_CHECKING:
    from fruitlens.ml.image_classifier import ClassifierHandle, ClassifierLoader, RawLabel
    from fruitlens.ml.image_source import ImageArtifact
    from fruitlens.ml.inference import InferencePool

logger = logging.getLogger(__name__)


class LifecycleState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DEGRADED = "degraded"
    FAILED = "failed"


_USABLE_STATES = frozenset({LifecycleState.READY, LifecycleState.DEGRADED})


@dataclass(frozen=True)
class LifecycleSnapshot:
    """Point-in-time view of the manager, for status reporting."""

    state: LifecycleState
    model_name: str | None
    fallback: bool
    self_test_passed: bool | None
    warnings: tuple[str, ...]
    error: str | None


class ClassifierLifecycle:
    """Owns the single classifier handle and its readiness state."""

    def __init__(
        self,
        loader: ClassifierLoader,
        pool: InferencePool,
        primary: ModelConfig,
        fallback: ModelConfig | None = None,
        *,
        self_test: bool = True,
        top_k: int = 10,
    ) -> None:
        self._loader = loader
        self._pool = pool
        self._primary = primary
        self._fallback = fallback if fallback is not None else ModelConfig()
        self._self_test = self_test
        self._top_k = top_k

        self._state = LifecycleState.UNINITIALIZED
        self._handle: ClassifierHandle | None = None
        self._self_test_passed: bool | None = None
        self._warnings: list[str] = []
        self._last_error: InitializationError | None = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def last_error(self) -> InitializationError | None:
        return self._last_error

    def get_handle(self) -> ClassifierHandle | None:
        """Return the classifier handle, or None unless ready or degraded."""
        if self._state in _USABLE_STATES:
            return self._handle
        return None

    async def initialize(self) -> LifecycleState:
        """Load the classifier. Only the first call does any work."""
        if self._state is not LifecycleState.UNINITIALIZED:
            return self._state
        self._state = LifecycleState.INITIALIZING
        logger.info("Loading primary classifier %s", self._primary)

        try:
            handle = await self._pool.run(self._loader.load, self._primary)
        except Exception as exc:
            logger.exception("Primary classifier load failed, trying fallback %s", self._fallback)
            self._warnings.append(f"Primary model failed to load: {exc}")
            await self._load_fallback()
            return self._state

        if self._self_test:
            await self._run_self_test(handle)
        self._handle = handle
        self._state = LifecycleState.READY
        logger.info("Classifier %s ready", handle.model_name)
        return self._state

    async def classify(self, artifact: ImageArtifact) -> list[RawLabel]:
        """Run the classifier on one artifact.

        Raises:
            ClassificationError: If the classifier is not usable or the call fails.
        """
        handle = self.get_handle()
        if handle is None:
            raise ClassificationError(f"Classifier is not ready (state: {self._state})")
        try:
            return await self._pool.run(handle.classify, artifact.pixels, self._top_k)
        except Exception as exc:
            logger.exception("Classification failed on %dx%d %s image", artifact.width, artifact.height, artifact.source)
            raise ClassificationError(f"Classification failed: {exc}") from exc

    def snapshot(self) -> LifecycleSnapshot:
        return LifecycleSnapshot(
            state=self._state,
            model_name=self._handle.model_name if self._handle is not None else None,
            fallback=self._state is LifecycleState.DEGRADED,
            self_test_passed=self._self_test_passed,
            warnings=tuple(self._warnings),
            error=str(self._last_error) if self._last_error is not None else None,
        )

    # -- Internal -----------------------------------------------------------

    async def _load_fallback(self) -> None:
        try:
            handle = await self._pool.run(self._loader.load, self._fallback)
        except Exception as exc:
            logger.exception("Fallback classifier load failed")
            self._last_error = InitializationError(f"Could not load any classifier: {exc}")
            self._last_error.__cause__ = exc
            self._state = LifecycleState.FAILED
            return

        self._handle = handle
        self._state = LifecycleState.DEGRADED
        logger.warning("Running on fallback classifier %s", handle.model_name)

    async def _run_self_test(self, handle: ClassifierHandle) -> None:
        blank = np.zeros(handle.input_shape, dtype=np.float32)
        try:
            await self._pool.run(handle.run_tensor, blank)
        except Exception as exc:
            self._self_test_passed = False
            self._warnings.append(f"Self-test failed: {exc}")
            logger.warning("Classifier self-test failed, continuing anyway: %s", exc)
            return
        self._self_test_passed = True
