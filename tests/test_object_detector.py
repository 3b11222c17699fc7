"""Tests for the ONNX object detector and its output decoders."""

from __future__ import annotations

import io
from unittest.mock import MagicMock

import numpy as np
import pytest
from PIL import Image

from pawplanner.errors import DecodeError, InferenceError
from pawplanner.ml.labels import COCO_80, COCO_91
from pawplanner.ml.object_detector import OnnxObjectDetector, decode_detr_outputs, decode_end2end_outputs
from pawplanner.ml.preprocessing import PillowPreprocessor

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(10, 20, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def _io(name: str) -> MagicMock:
    node = MagicMock()
    node.name = name
    return node


def _detr_logits(rows: list[tuple[int, float]], num_classes: int = 92) -> np.ndarray:
    """Build (1, Q, C) logits where query i strongly prefers class rows[i][0]."""
    logits = np.zeros((1, len(rows), num_classes), dtype=np.float32)
    for query, (class_id, strength) in enumerate(rows):
        logits[0, query, class_id] = strength
    return logits


def _mock_session(inputs: list[str], outputs: dict[str, np.ndarray]) -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [_io(name) for name in inputs]
    session.get_outputs.return_value = [_io(name) for name in outputs]
    session.run.return_value = list(outputs.values())
    return session


def _detector(session: MagicMock, model_name: str = "yolos_tiny", threshold: float = 0.5) -> OnnxObjectDetector:
    manager = MagicMock()
    manager.get_session.return_value = session
    return OnnxObjectDetector(manager, PillowPreprocessor(max_image_pixels=10_000), model_name, threshold)


# ---------------------------------------------------------------------------
# Output decoders
# ---------------------------------------------------------------------------


class TestDecodeDetrOutputs:
    def test_maps_classes_and_keeps_query_order(self) -> None:
        logits = _detr_logits([(18, 20.0), (17, 20.0)])  # dog, cat
        observations = decode_detr_outputs(logits, COCO_91, 0.5)

        assert [o.label for o in observations] == ["dog", "cat"]
        assert [o.region_id for o in observations] == [0, 1]
        assert all(o.confidence > 0.99 for o in observations)

    def test_no_object_class_is_ignored_and_thresholded(self) -> None:
        logits = _detr_logits([(91, 20.0)])  # "no object" dominates
        assert decode_detr_outputs(logits, COCO_91, 0.5) == []

    def test_threshold_filters_low_scores(self) -> None:
        logits = _detr_logits([(1, 20.0), (1, 0.0)])
        observations = decode_detr_outputs(logits, COCO_91, 0.5)
        assert len(observations) == 1
        assert observations[0].label == "person"

    def test_unassigned_category_yields_missing_label(self) -> None:
        logits = _detr_logits([(12, 20.0)])  # unassigned COCO id
        observations = decode_detr_outputs(logits, COCO_91, 0.5)
        assert len(observations) == 1
        assert observations[0].label is None


class TestDecodeEnd2EndOutputs:
    def test_rows_above_threshold(self) -> None:
        rows = np.array(
            [[[0, 0, 10, 10, 0.9, 16], [0, 0, 5, 5, 0.8, 15], [0, 0, 1, 1, 0.1, 0]]],
            dtype=np.float32,
        )
        observations = decode_end2end_outputs(rows, COCO_80, 0.5)

        assert [o.label for o in observations] == ["dog", "cat"]
        assert observations[0].confidence == pytest.approx(0.9)
        assert [o.region_id for o in observations] == [0, 1]

    def test_out_of_range_class_yields_missing_label(self) -> None:
        rows = np.array([[[0, 0, 1, 1, 0.9, 200]]], dtype=np.float32)
        assert decode_end2end_outputs(rows, COCO_80, 0.5)[0].label is None


# ---------------------------------------------------------------------------
# OnnxObjectDetector
# ---------------------------------------------------------------------------


class TestOnnxObjectDetector:
    def test_unknown_model_raises_keyerror(self) -> None:
        with pytest.raises(KeyError, match="Unknown model"):
            _detector(MagicMock(), model_name="nope")

    def test_detect_runs_session_and_decodes(self) -> None:
        session = _mock_session(
            ["pixel_values"],
            {"logits": _detr_logits([(17, 20.0), (17, 10.0)]), "pred_boxes": np.zeros((1, 2, 4), np.float32)},
        )
        detector = _detector(session)

        observations = detector.detect(_png_bytes())

        assert [o.label for o in observations] == ["cat", "cat"]
        output_names, feed = session.run.call_args.args
        assert output_names == ["logits", "pred_boxes"]
        assert feed["pixel_values"].shape == (1, 3, 512, 512)

    def test_pixel_mask_input_is_filled(self) -> None:
        session = _mock_session(
            ["pixel_values", "pixel_mask"],
            {"logits": _detr_logits([(1, 20.0)]), "pred_boxes": np.zeros((1, 1, 4), np.float32)},
        )
        _detector(session, model_name="detr_resnet50").detect(_png_bytes())

        _, feed = session.run.call_args.args
        assert feed["pixel_mask"].shape == (1, 800, 800)
        assert feed["pixel_mask"].dtype == np.int64

    def test_end2end_model(self) -> None:
        session = _mock_session(["images"], {"output0": np.array([[[0, 0, 1, 1, 0.7, 0]]], np.float32)})
        observations = _detector(session, model_name="yolov10n").detect(_png_bytes())
        assert [o.label for o in observations] == ["person"]

    def test_bad_bytes_raise_decode_error(self) -> None:
        session = _mock_session(["pixel_values"], {})
        with pytest.raises(DecodeError):
            _detector(session).detect(b"nope")
        session.run.assert_not_called()

    def test_session_failure_raises_inference_error(self) -> None:
        session = _mock_session(["pixel_values"], {"logits": _detr_logits([(1, 1.0)])})
        session.run.side_effect = RuntimeError("onnx blew up")
        with pytest.raises(InferenceError, match="onnx blew up"):
            _detector(session).detect(_png_bytes())

    def test_model_load_failure_raises_inference_error(self) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = RuntimeError("requires PAWPLANNER_ACCEPT_AGPL_LICENSE=true")
        detector = OnnxObjectDetector(manager, PillowPreprocessor(max_image_pixels=10_000), "yolov10n")
        with pytest.raises(InferenceError, match="AGPL"):
            detector.detect(_png_bytes())

    def test_unsupported_input_raises_inference_error(self) -> None:
        session = _mock_session(["pixel_values", "mystery"], {"logits": _detr_logits([(1, 1.0)])})
        with pytest.raises(InferenceError, match="mystery"):
            _detector(session).detect(_png_bytes())

    def test_preprocessing_failure_raises_inference_error(self) -> None:
        session = _mock_session(["pixel_values"], {"logits": _detr_logits([(1, 1.0)])})
        manager = MagicMock()
        manager.get_session.return_value = session
        preprocessor = MagicMock()
        preprocessor.decode_image.return_value = np.zeros((8, 8, 3), dtype=np.uint8)
        preprocessor.preprocess_for_detection.side_effect = ValueError("cannot reshape array")
        detector = OnnxObjectDetector(manager, preprocessor, "yolos_tiny")

        with pytest.raises(InferenceError, match="cannot reshape array"):
            detector.detect(b"ignored")
        session.run.assert_not_called()

    def test_model_name(self) -> None:
        assert _detector(MagicMock()).model_name == "yolos_tiny"
