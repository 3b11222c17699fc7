"""Model manager: download, load, cache, and evict ONNX detection models.

Handles downloading models from HuggingFace, creating and caching ONNX
InferenceSessions, TTL-based eviction, and AGPL license gating.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from pawplanner.ml.labels import COCO_80, COCO_91

if TYPE_CHECKING:
    from pawplanner.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is downloaded and return its file path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def unload_idle_models(self) -> None:
        """Unload models that have exceeded their TTL."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    OBJECT_DETECTION = "object_detection"


class OutputFormat(StrEnum):
    # logits (1, Q, C+1) + pred_boxes (1, Q, 4); last class is "no object"
    DETR = "detr"
    # (1, N, 6) rows of [x1, y1, x2, y2, score, class_id], already NMS-free
    END2END = "end2end"


IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX model."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    task: ModelTask
    license: str
    agpl: bool
    output_format: OutputFormat
    input_size: tuple[int, int]
    labels: tuple[str | None, ...]
    mean: tuple[float, float, float] | None = None
    std: tuple[float, float, float] | None = None


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "yolos_tiny": ModelSpec(
        name="yolos_tiny",
        repo_id="Xenova/yolos-tiny",
        filename="model.onnx",
        subfolder="onnx",
        task=ModelTask.OBJECT_DETECTION,
        license="Apache-2.0",
        agpl=False,
        output_format=OutputFormat.DETR,
        input_size=(512, 512),
        labels=COCO_91,
        mean=IMAGENET_MEAN,
        std=IMAGENET_STD,
    ),
    "detr_resnet50": ModelSpec(
        name="detr_resnet50",
        repo_id="Xenova/detr-resnet-50",
        filename="model.onnx",
        subfolder="onnx",
        task=ModelTask.OBJECT_DETECTION,
        license="Apache-2.0",
        agpl=False,
        output_format=OutputFormat.DETR,
        input_size=(800, 800),
        labels=COCO_91,
        mean=IMAGENET_MEAN,
        std=IMAGENET_STD,
    ),
    "yolov10n": ModelSpec(
        name="yolov10n",
        repo_id="onnx-community/yolov10n",
        filename="model.onnx",
        subfolder="onnx",
        task=ModelTask.OBJECT_DETECTION,
        license="AGPL-3.0",
        agpl=True,
        output_format=OutputFormat.END2END,
        input_size=(640, 640),
        labels=COCO_80,
    ),
    "yolov10s": ModelSpec(
        name="yolov10s",
        repo_id="onnx-community/yolov10s",
        filename="model.onnx",
        subfolder="onnx",
        task=ModelTask.OBJECT_DETECTION,
        license="AGPL-3.0",
        agpl=True,
        output_format=OutputFormat.END2END,
        input_size=(640, 640),
        labels=COCO_80,
    ),
}


def get_model_spec(model_name: str) -> ModelSpec:
    """Look up a registry entry by name."""
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class _CachedSession:
    session: InferenceSession
    last_used: float


class OnnxModelManager:
    """Downloads, loads, caches, and evicts ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._sessions: dict[str, _CachedSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Download a model from HuggingFace if not already present locally."""
        spec = get_model_spec(model_name)
        self._check_license(spec)

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        # Registry entries share filenames, so each model gets its own directory.
        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir / spec.name),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.session

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                existing.last_used = time.monotonic()
                return existing.session
            self._sessions[model_name] = _CachedSession(
                session=session,
                last_used=time.monotonic(),
            )
            logger.info("Loaded session for %s", model_name)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def unload_idle_models(self) -> None:
        """Remove sessions that have exceeded the configured TTL."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [name for name, cached in self._sessions.items() if (now - cached.last_used) > ttl]
            for name in expired:
                del self._sessions[name]
                logger.info("Evicted idle session for %s", name)

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _check_license(self, spec: ModelSpec) -> None:
        if spec.agpl and not self._settings.accept_agpl_license:
            raise RuntimeError(f"Model '{spec.name}' requires PAWPLANNER_ACCEPT_AGPL_LICENSE=true")

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
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
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
