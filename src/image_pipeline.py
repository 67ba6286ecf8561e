"""
Image normalization for transmission and inference.

Turns a raw capture into a small grayscale JPEG: desaturate, downscale so the
longest side fits the configured bound, then re-encode at decreasing quality
until the size ceiling or the quality floor is reached.
"""

import logging
from typing import Union

import cv2
import numpy as np

from config import Config
from exceptions import PipelineError
from models import ProcessedImage

logger = logging.getLogger(__name__)

RawImage = Union[bytes, bytearray, memoryview, np.ndarray]


class ImagePipeline:
    """Normalizes raw frames into ProcessedImage instances."""

    def __init__(self, config: Config):
        self.config = config
        self.max_dimension = config.image.max_dimension
        self.max_size_bytes = config.image.max_size_kb * 1024
        self.quality_start = config.image.quality_start
        self.quality_step = config.image.quality_step
        self.quality_floor = config.image.quality_floor

    def process(self, raw: RawImage) -> ProcessedImage:
        """Run the full pipeline. Raises PipelineError on decode/encode failure."""
        frame = self.decode(raw)
        gray = self.to_grayscale(frame)
        resized = self.downscale(gray, self.max_dimension)
        image = self.compress(resized)
        logger.debug(f"Processed image: {image.width}x{image.height}, "
                     f"{image.size_kb}KB at quality {image.quality}")
        return image

    @staticmethod
    def decode(raw: RawImage) -> np.ndarray:
        """Accept encoded bytes or an already decoded frame."""
        if isinstance(raw, (bytes, bytearray, memoryview)):
            buffer = np.frombuffer(raw, dtype=np.uint8)
            if buffer.size == 0:
                raise PipelineError(PipelineError.DECODE_FAILED, "Empty image data")
            frame = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
            if frame is None:
                raise PipelineError(PipelineError.DECODE_FAILED, "Could not decode image data")
            return frame

        if isinstance(raw, np.ndarray):
            if raw.size == 0:
                raise PipelineError(PipelineError.DECODE_FAILED, "Empty frame")
            if raw.dtype != np.uint8:
                raise PipelineError(PipelineError.DECODE_FAILED, f"Unsupported frame dtype: {raw.dtype}")
            if raw.ndim == 2 or (raw.ndim == 3 and raw.shape[2] in (1, 3, 4)):
                return raw
            raise PipelineError(PipelineError.DECODE_FAILED, f"Unsupported frame shape: {raw.shape}")

        raise PipelineError(PipelineError.DECODE_FAILED, f"Unsupported image type: {type(raw).__name__}")

    @staticmethod
    def to_grayscale(frame: np.ndarray) -> np.ndarray:
        """Convert to a single luminance channel."""
        if frame.ndim == 2:
            return frame
        channels = frame.shape[2]
        if channels == 1:
            return frame[:, :, 0]
        if channels == 4:
            return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

    @staticmethod
    def downscale(frame: np.ndarray, max_dimension: int) -> np.ndarray:
        """Shrink so max(width, height) <= max_dimension. Never upscales."""
        height, width = frame.shape[:2]
        longest = max(width, height)
        if longest <= max_dimension:
            return frame

        scale = max_dimension / longest
        new_width = min(max_dimension, max(1, round(width * scale)))
        new_height = min(max_dimension, max(1, round(height * scale)))
        return cv2.resize(frame, (new_width, new_height), interpolation=cv2.INTER_AREA)

    def compress(self, frame: np.ndarray) -> ProcessedImage:
        """
        Encode as JPEG, lowering quality until the result fits.

        The attempt at the quality floor is returned even if it is still over
        the size ceiling.
        """
        quality = self.quality_start
        while True:
            success, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
            if not success:
                raise PipelineError(PipelineError.ENCODE_FAILED, f"JPEG encoding failed at quality {quality}")

            data = buffer.tobytes()
            if len(data) <= self.max_size_bytes or quality <= self.quality_floor:
                if len(data) > self.max_size_bytes:
                    logger.warning(f"Image still {len(data) // 1024}KB at quality floor {quality}")
                height, width = frame.shape[:2]
                return ProcessedImage(data=data, width=width, height=height, quality=quality)

            quality = max(self.quality_floor, quality - self.quality_step)

    @staticmethod
    def size_kb(image: ProcessedImage) -> int:
        return image.size_kb
