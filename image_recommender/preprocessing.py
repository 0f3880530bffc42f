"""
Image preprocessing pipeline for feature extraction.

Turns decoded pixel data of any size into the fixed-size, channel-normalized
tensor the feature extractor was trained against:

    1. Nearest-neighbor resample to the target grid (integer index mapping,
       no interpolation)
    2. Drop the alpha channel if present
    3. Normalize each RGB channel with the ImageNet mean/std

The resampling must stay bit-for-bit stable: feature vectors already stored
in a corpus were computed from exactly these tensors.
"""

import os
import logging
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# Target size of the model input. The defaults match ResNet-50.
DEFAULT_TARGET_WIDTH = int(os.environ.get("PREPROCESS_TARGET_WIDTH", "224"))
DEFAULT_TARGET_HEIGHT = int(os.environ.get("PREPROCESS_TARGET_HEIGHT", "224"))

# ImageNet channel statistics (RGB order)
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)

SUPPORTED_CHANNELS = (3, 4)


class InvalidImageError(ValueError):
    """Raised when raw pixel data does not match its declared dimensions."""


@dataclass(frozen=True)
class PreprocessConfig:
    """
    Normalization constants and target size for preprocessing.

    The mean/std values belong to the downstream model; change them only
    together with the model.
    """

    mean: Tuple[float, float, float] = IMAGENET_MEAN
    std: Tuple[float, float, float] = IMAGENET_STD
    target_width: int = DEFAULT_TARGET_WIDTH
    target_height: int = DEFAULT_TARGET_HEIGHT

    @property
    def tensor_length(self) -> int:
        return self.target_width * self.target_height * 3


@dataclass(frozen=True)
class RawImage:
    """Decoded pixels: interleaved RGB or RGBA bytes, row-major."""

    width: int
    height: int
    channels: int
    data: bytes

    @classmethod
    def from_array(cls, image_np: np.ndarray) -> "RawImage":
        """Wrap an HxWxC uint8 array (C = 3 or 4)."""
        if image_np.ndim != 3:
            raise InvalidImageError(
                f"Expected an HxWxC array, got shape {image_np.shape}"
            )
        h, w, c = image_np.shape
        data = np.ascontiguousarray(image_np, dtype=np.uint8).tobytes()
        return cls(width=w, height=h, channels=c, data=data)

    def to_array(self) -> np.ndarray:
        """View the buffer as an HxWxC uint8 array (validates first)."""
        validate_raw_image(self)
        return np.frombuffer(self.data, dtype=np.uint8).reshape(
            self.height, self.width, self.channels
        )


def validate_raw_image(raw: RawImage) -> None:
    """
    Check that a RawImage is well formed.

    Raises:
        InvalidImageError: On an empty buffer, non-positive dimensions,
            an unsupported channel count, or a buffer length that does not
            equal width * height * channels.
    """
    if not raw.data:
        raise InvalidImageError("Image buffer is empty")
    if raw.width <= 0 or raw.height <= 0:
        raise InvalidImageError(
            f"Invalid dimensions {raw.width}x{raw.height}"
        )
    if raw.channels not in SUPPORTED_CHANNELS:
        raise InvalidImageError(
            f"Unsupported channel count {raw.channels} (expected 3 or 4)"
        )
    expected = raw.width * raw.height * raw.channels
    if len(raw.data) != expected:
        raise InvalidImageError(
            f"Buffer length {len(raw.data)} doesn't match "
            f"{raw.width}x{raw.height}x{raw.channels} = {expected}"
        )


def preprocess(raw: RawImage,
               config: PreprocessConfig = None,
               target_width: int = None,
               target_height: int = None) -> np.ndarray:
    """
    Resample and normalize a raw image into a model input tensor.

    Destination pixel (x, y) reads source pixel
    (x * width // target_width, y * height // target_height). Only the
    first three channels are used.

    Args:
        raw: Decoded image.
        config: Normalization constants and target size. Defaults to
            PreprocessConfig().
        target_width: Optional override of config.target_width.
        target_height: Optional override of config.target_height.

    Returns:
        Flat float32 array of length target_height * target_width * 3,
        pixel-major with the channel index varying fastest.

    Raises:
        InvalidImageError: If the raw image is malformed.
    """
    config = config or PreprocessConfig()
    if target_width is None:
        target_width = config.target_width
    if target_height is None:
        target_height = config.target_height
    if target_width <= 0 or target_height <= 0:
        raise ValueError(
            f"Invalid target size {target_width}x{target_height}"
        )

    pixels = raw.to_array()

    # Integer index mapping, same as a floor of the scaled coordinate
    src_x = (np.arange(target_width) * raw.width) // target_width
    src_y = (np.arange(target_height) * raw.height) // target_height
    resampled = pixels[src_y[:, None], src_x[None, :], :3]

    mean = np.asarray(config.mean, dtype=np.float32)
    std = np.asarray(config.std, dtype=np.float32)
    tensor = (resampled.astype(np.float32) / np.float32(255.0) - mean) / std

    return tensor.reshape(-1)


def decode_image(buffer: bytes) -> RawImage:
    """
    Decode an encoded image (PNG, JPEG, BMP, ...) into RGB or RGBA pixels.

    Raises:
        InvalidImageError: If OpenCV cannot decode the buffer.
    """
    encoded = np.frombuffer(buffer, dtype=np.uint8)
    if encoded.size == 0:
        raise InvalidImageError("Image buffer is empty")

    image = cv2.imdecode(encoded, cv2.IMREAD_UNCHANGED)
    if image is None:
        raise InvalidImageError("Could not decode image buffer")

    if image.dtype != np.uint8:
        # 16-bit PNG/TIFF
        image = (image / 257).astype(np.uint8)

    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    elif image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    else:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    return RawImage.from_array(image)


def load_image(path: str) -> RawImage:
    """Read and decode an image file."""
    with open(path, 'rb') as f:
        buffer = f.read()
    try:
        return decode_image(buffer)
    except InvalidImageError as e:
        raise InvalidImageError(f"{path}: {e}") from e


def compute_average_rgb(raw: RawImage) -> Tuple[float, float, float]:
    """
    Compute the mean of each RGB channel (alpha ignored).

    A cheap color summary of an image, independent of the model.

    Returns:
        Tuple of (r_mean, g_mean, b_mean) on the 0-255 scale.
    """
    pixels = raw.to_array()[:, :, :3].reshape(-1, 3)
    r_mean, g_mean, b_mean = (float(v) for v in pixels.mean(axis=0))
    return r_mean, g_mean, b_mean
