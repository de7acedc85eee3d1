"""Classifier boundary types.

The pipeline only depends on these shapes, never on a specific model family.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, TypedDict

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray


class RawLabel(TypedDict):
    """One entry of a classifier's raw output."""

    className: str  # noqa: N815
    probability: float


@dataclass(frozen=True)
class ModelConfig:
    """Load configuration for a MobileNet-style classifier.

    ``model_url`` overrides the ``(version, alpha)`` registry lookup. The
    default instance is the "unconfigured" load used as the fallback.
    """

    version: int = 1
    alpha: float = 1.0
    model_url: str | None = None


class ClassifierHandle(Protocol):
    """Protocol for a loaded, ready-to-use image classifier."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def input_shape(self) -> tuple[int, ...]:
        """Return the concrete input tensor shape (batch size 1)."""
        ...

    def classify(self, image: NDArray[np.uint8], top_k: int) -> list[RawLabel]:
        """Classify an image and return ranked labels.

        Args:
            image: HxWx3 RGB uint8 array.
            top_k: Maximum number of labels to return.

        Returns:
            Labels sorted by probability (descending).
        """
        ...

    def run_tensor(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the model on an already preprocessed input tensor."""
        ...


class ClassifierLoader(Protocol):
    """Protocol for the external classifier loader."""

    def load(self, config: ModelConfig) -> ClassifierHandle:
        """Load a classifier for the given configuration."""
        ...
