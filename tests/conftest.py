"""Shared fakes for the classifier, camera and settings."""

from __future__ import annotations

import io
import threading
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from fruitlens.config import Settings
from fruitlens.ml.image_classifier import ModelConfig, RawLabel

if TYPE_CHECKING:
    from numpy.typing import NDArray


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/fruitlens_test_models",
        "max_concurrent": 2,
        "self_test": True,
        "top_k": 10,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def png_bytes(width: int = 32, height: int = 16, color: tuple[int, int, int] = (200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeHandle:
    """In-memory classifier returning canned predictions."""

    def __init__(
        self,
        predictions: list[RawLabel] | None = None,
        *,
        name: str = "fake_mobilenet",
        fail_self_test: bool = False,
        fail_classify: bool = False,
    ) -> None:
        self.predictions = predictions if predictions is not None else []
        self._name = name
        self.fail_self_test = fail_self_test
        self.fail_classify = fail_classify
        self.classified: list[NDArray[np.uint8]] = []
        self.self_test_inputs: list[NDArray[np.float32]] = []

    @property
    def model_name(self) -> str:
        return self._name

    @property
    def input_shape(self) -> tuple[int, ...]:
        return (1, 3, 224, 224)

    def classify(self, image: NDArray[np.uint8], top_k: int) -> list[RawLabel]:
        if self.fail_classify:
            raise RuntimeError("classifier exploded")
        self.classified.append(image)
        return list(self.predictions)[:top_k]

    def run_tensor(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        self.self_test_inputs.append(tensor)
        if self.fail_self_test:
            raise RuntimeError("bad blank input")
        return np.zeros((1, 1001), dtype=np.float32)


class GatedHandle(FakeHandle):
    """Blocks the first classify call until ``release`` is set."""

    def __init__(self, predictions: list[RawLabel]) -> None:
        super().__init__(predictions)
        self.entered = threading.Event()
        self.release = threading.Event()
        self._first = True

    def classify(self, image: NDArray[np.uint8], top_k: int) -> list[RawLabel]:
        if self._first:
            self._first = False
            self.entered.set()
            self.release.wait(timeout=5)
        return super().classify(image, top_k)


class FakeLoader:
    """Returns (or raises) the queued results in order and records configs."""

    def __init__(self, *results: FakeHandle | Exception) -> None:
        self._results = list(results)
        self.configs: list[ModelConfig] = []
        self.loaded: list[str] = []

    def load(self, config: ModelConfig) -> FakeHandle:
        self.configs.append(config)
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        self.loaded.append(result.model_name)
        return result

    def get_loaded_models(self) -> list[str]:
        return list(self.loaded)


class FakeFrameSource:
    """Camera stand-in serving a fixed frame."""

    def __init__(self, frame: NDArray[np.uint8] | None, *, is_open: bool = True) -> None:
        self.frame = frame
        self._open = is_open

    @property
    def is_open(self) -> bool:
        return self._open

    def read_frame(self) -> NDArray[np.uint8] | None:
        return self.frame

    def close(self) -> None:
        self._open = False
