"""Model manager: download and load MobileNet ONNX classifiers.

Resolves a ``ModelConfig`` to ONNX weights plus ImageNet labels on the
HuggingFace Hub, creates an ONNX InferenceSession, and wraps it in a handle
that turns RGB images into ranked ``{className, probability}`` labels.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode
from PIL import Image

from fruitlens.ml.image_classifier import ModelConfig, RawLabel

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from fruitlens.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classifier."""

    name: str
    repo_id: str
    filename: str
    version: int | None
    alpha: float | None
    image_size: int
    license: str
    labels_filename: str = "config.json"


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "mobilenet_v1_1.0_224": ModelSpec(
        name="mobilenet_v1_1.0_224",
        repo_id="Xenova/mobilenet_v1_1.0_224",
        filename="onnx/model.onnx",
        version=1,
        alpha=1.0,
        image_size=224,
        license="Apache-2.0",
    ),
    "mobilenet_v1_0.75_192": ModelSpec(
        name="mobilenet_v1_0.75_192",
        repo_id="Xenova/mobilenet_v1_0.75_192",
        filename="onnx/model.onnx",
        version=1,
        alpha=0.75,
        image_size=192,
        license="Apache-2.0",
    ),
    "mobilenet_v2_1.0_224": ModelSpec(
        name="mobilenet_v2_1.0_224",
        repo_id="Xenova/mobilenet_v2_1.0_224",
        filename="onnx/model.onnx",
        version=2,
        alpha=1.0,
        image_size=224,
        license="Apache-2.0",
    ),
}

# MobileNet preprocessing: resize shortest edge to 256/224 of the crop, then
# scale pixels to [-1, 1].
_RESIZE_RATIO = 256 / 224
_PIXEL_MEAN = 0.5
_PIXEL_STD = 0.5


def resolve_spec(config: ModelConfig) -> ModelSpec:
    """Map a load configuration to a model spec.

    An explicit ``model_url`` of the form ``<owner>/<repo>/<path/to/model.onnx>``
    wins over the ``(version, alpha)`` lookup.

    Raises:
        ValueError: If the URL is malformed or no registered model matches.
    """
    registered = _find_registered(config.version, config.alpha)
    if config.model_url:
        parts = config.model_url.strip("/").split("/")
        if len(parts) < 3 or not parts[-1].endswith(".onnx"):
            raise ValueError(f"Model URL must look like '<owner>/<repo>/<file>.onnx', got {config.model_url!r}")
        repo_id, filename = "/".join(parts[:2]), "/".join(parts[2:])
        for spec in MODEL_REGISTRY.values():
            if (spec.repo_id, spec.filename) == (repo_id, filename):
                return spec
        return ModelSpec(
            name=config.model_url,
            repo_id=repo_id,
            filename=filename,
            version=config.version,
            alpha=config.alpha,
            image_size=registered.image_size if registered else 224,
            license="unknown",
        )

    if registered is None:
        raise ValueError(f"No registered model for version={config.version}, alpha={config.alpha}")
    return registered


def _find_registered(version: int, alpha: float) -> ModelSpec | None:
    for spec in MODEL_REGISTRY.values():
        if spec.version == version and spec.alpha == alpha:
            return spec
    return None


def load_labels(config_path: Path) -> list[str]:
    """Read the ``id2label`` mapping of a HuggingFace model config as a list."""
    with config_path.open(encoding="utf-8") as fh:
        data = json.load(fh)
    id2label: dict[str, str] = data["id2label"]
    return [label for _, label in sorted(id2label.items(), key=lambda item: int(item[0]))]


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    result: NDArray[np.float32] = exp / np.sum(exp)
    return result


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------


class OnnxClassifierHandle:
    """A loaded ONNX image classifier with its label table."""

    def __init__(self, spec: ModelSpec, session: InferenceSession, labels: list[str]) -> None:
        self._spec = spec
        self._session = session
        self._labels = labels

        model_input = session.get_inputs()[0]
        self._input_name: str = model_input.name
        self._input_shape = self._concrete_shape(model_input.shape, spec.image_size)
        self._channels_first = self._input_shape[1] == 3

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def input_shape(self) -> tuple[int, ...]:
        return self._input_shape

    def classify(self, image: NDArray[np.uint8], top_k: int) -> list[RawLabel]:
        """Classify an HxWx3 RGB image and return the top-k labels."""
        logits = self.run_tensor(self.preprocess(image))
        probs = softmax(logits.reshape(-1).astype(np.float32))

        order = np.argsort(probs)[::-1][:top_k]
        return [
            RawLabel(className=self._label_for(int(idx)), probability=float(probs[idx]))
            for idx in order
        ]

    def run_tensor(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        outputs = self._session.run(None, {self._input_name: tensor})
        result: NDArray[np.float32] = np.asarray(outputs[0], dtype=np.float32)
        return result

    def preprocess(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize, center-crop and normalize an image into the model's input layout."""
        size = self._spec.image_size
        pil = Image.fromarray(image).convert("RGB")

        short = round(size * _RESIZE_RATIO)
        scale = short / min(pil.width, pil.height)
        resized = pil.resize(
            (max(size, round(pil.width * scale)), max(size, round(pil.height * scale))),
            Image.Resampling.BILINEAR,
        )
        left = (resized.width - size) // 2
        top = (resized.height - size) // 2
        cropped = resized.crop((left, top, left + size, top + size))

        arr = np.asarray(cropped, dtype=np.float32) / 255.0
        arr = (arr - _PIXEL_MEAN) / _PIXEL_STD
        if self._channels_first:
            arr = arr.transpose(2, 0, 1)
        return np.ascontiguousarray(arr[np.newaxis, ...], dtype=np.float32)

    def _label_for(self, index: int) -> str:
        if 0 <= index < len(self._labels):
            return self._labels[index]
        return f"class {index}"

    @staticmethod
    def _concrete_shape(shape: list[int | str | None], image_size: int) -> tuple[int, ...]:
        # Dynamic dims come back as names or None; batch is 1, spatial dims
        # follow the registry image size.
        dims: list[int] = []
        for position, dim in enumerate(shape):
            if isinstance(dim, int) and dim > 0:
                dims.append(dim)
            elif position == 0:
                dims.append(1)
            else:
                dims.append(image_size)
        return tuple(dims)


# ---------------------------------------------------------------------------
# Concrete loader
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Downloads ONNX classifiers from the Hub and loads them into handles."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._handles: dict[str, OnnxClassifierHandle] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, spec: ModelSpec) -> tuple[Path, Path]:
        """Download model weights and label config if not already present locally."""
        model_path = self._models_dir / spec.repo_id / spec.filename
        labels_path = self._models_dir / spec.repo_id / spec.labels_filename
        if model_path.exists() and labels_path.exists():
            return model_path, labels_path

        local_dir = str(self._models_dir / spec.repo_id)
        model_path = Path(hf_hub_download(repo_id=spec.repo_id, filename=spec.filename, local_dir=local_dir))
        labels_path = Path(hf_hub_download(repo_id=spec.repo_id, filename=spec.labels_filename, local_dir=local_dir))
        logger.info("Downloaded %s to %s", spec.name, model_path)
        return model_path, labels_path

    def load(self, config: ModelConfig) -> OnnxClassifierHandle:
        """Return a cached handle for ``config``, loading it if needed."""
        spec = resolve_spec(config)
        with self._lock:
            cached = self._handles.get(spec.name)
            if cached is not None:
                return cached

        model_path, labels_path = self.ensure_downloaded(spec)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )
        handle = OnnxClassifierHandle(spec, session, load_labels(labels_path))

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._handles.get(spec.name)
            if existing is not None:
                return existing
            self._handles[spec.name] = handle
            logger.info("Loaded classifier %s (input %s)", spec.name, handle.input_shape)
            return handle

    def get_loaded_models(self) -> list[str]:
        """Return names of models with loaded handles."""
        with self._lock:
            return list(self._handles.keys())

    def shutdown(self) -> None:
        """Drop all loaded handles."""
        with self._lock:
            self._handles.clear()
            logger.info("All classifier handles cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                ("CUDAExecutionProvider", {"device_id": 0}),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
