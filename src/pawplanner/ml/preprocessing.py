"""Image preprocessing: decoding uploaded photos and building model input tensors."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image, ImageOps

from pawplanner.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pawplanner.ml.model_manager import ModelSpec

logger = logging.getLogger(__name__)


class ImagePreprocessor(Protocol):
    """Protocol for image preprocessing."""

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Args:
            image_bytes: Raw file bytes (any format Pillow can open).

        Returns:
            HxWx3 RGB uint8 numpy array.

        Raises:
            DecodeError: If the image cannot be decoded or exceeds size limits.
        """
        ...

    def preprocess_for_detection(self, image: NDArray[np.uint8], spec: ModelSpec) -> NDArray[np.float32]:
        """Prepare an image for an object detection model.

        Args:
            image: HxWx3 RGB uint8 array.
            spec: Registry entry describing the model's input.

        Returns:
            1x3xHxW float32 tensor.
        """
        ...


class PillowPreprocessor:
    """Pillow-backed decoder and resizer."""

    def __init__(self, max_image_pixels: int) -> None:
        self._max_image_pixels = max_image_pixels

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if width * height > self._max_image_pixels:
                    raise DecodeError(
                        f"Image is {width}x{height} pixels, limit is {self._max_image_pixels}"
                    )
                # Honour camera orientation before the model sees the pixels.
                oriented = ImageOps.exif_transpose(img)
                rgb = oriented.convert("RGB")
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Cannot decode image: {exc}") from exc

        logger.debug("Decoded %dx%d image", rgb.width, rgb.height)
        return np.asarray(rgb, dtype=np.uint8)

    def preprocess_for_detection(self, image: NDArray[np.uint8], spec: ModelSpec) -> NDArray[np.float32]:
        resized = Image.fromarray(image).resize(spec.input_size, Image.Resampling.BILINEAR)
        tensor = np.asarray(resized, dtype=np.float32) / 255.0
        if spec.mean is not None and spec.std is not None:
            tensor = (tensor - np.asarray(spec.mean, dtype=np.float32)) / np.asarray(spec.std, dtype=np.float32)
        return np.ascontiguousarray(tensor.transpose(2, 0, 1)[np.newaxis], dtype=np.float32)
