"""
Image -> model input tensor.

The steps and their order reproduce the training-time transform:
    open -> resize (W, H) bilinear, aspect ratio ignored -> grayscale 'L'
    -> / 255.0 -> float32 (1, 1, H, W)
"""

import io
import logging
import os
from typing import BinaryIO, Union

import numpy as np
from PIL import Image

from .config import ModelConfig
from .errors import PreprocessingFailed

logger = logging.getLogger(__name__)

ImageSource = Union[str, os.PathLike, bytes, BinaryIO, Image.Image]

# Modes that resize() can interpolate bilinearly without conversion
_PASSTHROUGH_MODES = {'L', 'RGB'}
# 16-bit PNGs open as 'I;16' (or 'I' on older Pillow)
_WIDE_INT_MODES = {'I', 'I;16', 'I;16L', 'I;16B', 'I;16N'}
_FLOAT_MODES = {'F'}


def load_image(source: ImageSource) -> Image.Image:
    """Open a path, encoded bytes, file object or PIL image into a loaded PIL image."""
    if isinstance(source, Image.Image):
        image = source
    elif isinstance(source, (bytes, bytearray)):
        image = Image.open(io.BytesIO(source))
    else:
        image = Image.open(source)
    image.load()

    if image.mode in _FLOAT_MODES:
        raise ValueError(f'Unsupported image mode {image.mode}')
    if image.mode in _WIDE_INT_MODES:
        image = _to_8bit(image)

    # 'P' and '1' would silently fall back to NEAREST, alpha/CMYK need flattening
    if image.mode not in _PASSTHROUGH_MODES:
        image = image.convert('RGB')
    return image


def _to_8bit(image: Image.Image) -> Image.Image:
    """16-bit grayscale -> 'L' by dropping the low byte (convert() would clip at 255)."""
    arr = np.asarray(image).astype(np.int64)
    if arr.size and (arr.min() < 0 or arr.max() > 0xFFFF):
        raise ValueError(f'Unsupported image mode {image.mode}: values outside 16-bit range')
    return Image.fromarray((arr >> 8).astype(np.uint8))


def preprocess(source: ImageSource, config: ModelConfig) -> np.ndarray:
    """
    Build the NCHW input tensor for one model.

    Args:
        source: Image path, encoded bytes, binary file object or PIL image
        config: Geometry of the target model

    Returns:
        float32 array of shape (1, 1, input_height, input_width), values in [0, 1]

    Raises:
        PreprocessingFailed: the image could not be read, converted or resized
    """
    try:
        image = load_image(source)
        orig_w, orig_h = image.size

        # Exact fit: both axes stretched independently, no letterbox/crop
        image = image.resize((config.input_width, config.input_height), Image.BILINEAR)
        image = image.convert('L')

        arr = np.asarray(image, dtype=np.float32) / 255.0
        tensor = np.ascontiguousarray(arr.reshape(config.input_shape))
    except Exception as e:
        raise PreprocessingFailed(e) from e

    logger.debug('Preprocessed %dx%d image -> %s for %s',
                 orig_w, orig_h, tensor.shape, config.model_type)
    return tensor
