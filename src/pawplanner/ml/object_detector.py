"""ONNX object detector producing per-region observations.

Implementations: YOLOS / DETR (``detr`` output format), YOLOv10 (``end2end``).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from pawplanner.detection.aggregator import Observation
from pawplanner.errors import InferenceError
from pawplanner.ml.labels import label_for
from pawplanner.ml.model_manager import OutputFormat, get_model_spec

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from pawplanner.ml.model_manager import ModelManager
    from pawplanner.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


def decode_detr_outputs(
    logits: NDArray[np.float32],
    labels: tuple[str | None, ...],
    score_threshold: float,
) -> list[Observation]:
    """Turn DETR-style class logits into observations.

    Args:
        logits: (1, Q, C+1) raw class logits; the last class means "no object".
        labels: Class-id to label table.
        score_threshold: Minimum softmax probability of the best real class.

    Returns:
        One observation per query above the threshold, in query order.
    """
    query_logits = logits[0].astype(np.float64)
    shifted = query_logits - query_logits.max(axis=-1, keepdims=True)
    probs = np.exp(shifted)
    probs /= probs.sum(axis=-1, keepdims=True)
    class_probs = probs[:, :-1]

    class_ids = class_probs.argmax(axis=-1)
    scores = class_probs.max(axis=-1)

    observations: list[Observation] = []
    for query, (class_id, score) in enumerate(zip(class_ids, scores, strict=True)):
        if score < score_threshold:
            continue
        observations.append(
            Observation(label=label_for(labels, int(class_id)), confidence=float(score), region_id=query)
        )
    return observations


def decode_end2end_outputs(
    rows: NDArray[np.float32],
    labels: tuple[str | None, ...],
    score_threshold: float,
) -> list[Observation]:
    """Turn NMS-free (1, N, 6) ``[x1, y1, x2, y2, score, class_id]`` rows into observations."""
    observations: list[Observation] = []
    for index, row in enumerate(rows[0]):
        score = float(row[4])
        if score < score_threshold:
            continue
        observations.append(Observation(label=label_for(labels, int(row[5])), confidence=score, region_id=index))
    return observations


class OnnxObjectDetector:
    """Decodes a photo, runs the configured ONNX model, and returns observations."""

    def __init__(
        self,
        model_manager: ModelManager,
        preprocessor: ImagePreprocessor,
        model_name: str,
        score_threshold: float = 0.5,
    ) -> None:
        self._model_manager = model_manager
        self._preprocessor = preprocessor
        self._spec = get_model_spec(model_name)
        self._score_threshold = score_threshold

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        return self._spec.name

    def detect(self, image: bytes) -> list[Observation]:
        """Detect objects in an encoded image.

        Args:
            image: Raw file bytes as uploaded.

        Returns:
            Observations in the order the model emitted them.

        Raises:
            DecodeError: If the bytes are not a usable image.
            InferenceError: If the model cannot be loaded or run.
        """
        pixels = self._preprocessor.decode_image(image)

        try:
            tensor = self._preprocessor.preprocess_for_detection(pixels, self._spec)
            session = self._model_manager.get_session(self._spec.name)
            outputs = self._run(session, tensor)
            observations = self._decode(outputs)
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(f"Detection with {self._spec.name} failed: {exc}") from exc

        logger.debug("%s produced %d observation(s)", self._spec.name, len(observations))
        return observations

    # -- Internal -----------------------------------------------------------

    def _run(self, session: InferenceSession, tensor: NDArray[np.float32]) -> dict[str, NDArray[np.float32]]:
        inputs = session.get_inputs()
        feed: dict[str, NDArray[np.generic]] = {inputs[0].name: tensor}
        for extra in inputs[1:]:
            if extra.name != "pixel_mask":
                raise InferenceError(f"Unsupported model input: {extra.name}")
            _, _, height, width = tensor.shape
            feed[extra.name] = np.ones((1, height, width), dtype=np.int64)

        output_names = [output.name for output in session.get_outputs()]
        return dict(zip(output_names, session.run(output_names, feed), strict=True))

    def _decode(self, outputs: dict[str, NDArray[np.float32]]) -> list[Observation]:
        if self._spec.output_format is OutputFormat.DETR:
            return decode_detr_outputs(outputs["logits"], self._spec.labels, self._score_threshold)
        first = next(iter(outputs.values()))
        return decode_end2end_outputs(first, self._spec.labels, self._score_threshold)
