"""Image decoding helpers and the raster adapter used by every stage."""

from __future__ import annotations

import os
from io import BytesIO
from pathlib import Path
from typing import Tuple, Union, cast

import numpy as np
from PIL import Image

from .errors import InvalidImageError

ImageInput = Union[Image.Image, np.ndarray, bytes, bytearray, str, "os.PathLike[str]"]


def load_rgb_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes into an RGB PIL Image."""
    try:
        img = cast(Image.Image, Image.open(BytesIO(image_bytes)))
        img.load()
    except Exception as exc:
        raise InvalidImageError("Invalid image bytes") from exc

    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


def load_image_file(path: Union[str, "os.PathLike[str]"]) -> Image.Image:
    """Read and decode an image file into an RGB PIL Image."""
    image_path = Path(path)
    try:
        data = image_path.read_bytes()
    except OSError as exc:
        raise InvalidImageError(f"Cannot read image {image_path}: {exc}") from exc
    return load_rgb_image(data)


def _array_to_rgb(array: np.ndarray) -> np.ndarray:
    if array.ndim == 2:
        array = np.stack([array] * 3, axis=-1)
    elif array.ndim == 3 and array.shape[2] == 1:
        array = np.concatenate([array] * 3, axis=-1)
    elif array.ndim == 3 and array.shape[2] == 4:
        array = array[:, :, :3]
    elif not (array.ndim == 3 and array.shape[2] == 3):
        raise InvalidImageError(f"Unsupported image array shape {array.shape}")

    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(array)


def to_rgb_array(image: ImageInput) -> np.ndarray:
    """Adapt any supported image input into an ``(H, W, 3)`` uint8 RGB array.

    PIL images, numpy arrays (grayscale, RGB or RGBA), encoded bytes and
    file paths are accepted. Arrays are assumed to already be RGB ordered.
    """
    if image is None:
        raise InvalidImageError("Image is missing")

    if isinstance(image, (bytes, bytearray)):
        image = load_rgb_image(bytes(image))
    elif isinstance(image, (str, os.PathLike)):
        image = load_image_file(image)

    if isinstance(image, Image.Image):
        width, height = image.size
        if width <= 0 or height <= 0:
            raise InvalidImageError(f"Image has zero dimensions ({width}x{height})")
        if image.mode != "RGB":
            image = image.convert("RGB")
        array = np.asarray(image, dtype=np.uint8)
    elif isinstance(image, np.ndarray):
        array = image
    else:
        raise InvalidImageError(f"Unsupported image type {type(image).__name__}")

    if array.ndim < 2 or array.shape[0] <= 0 or array.shape[1] <= 0:
        raise InvalidImageError(f"Image has zero dimensions (shape {array.shape})")
    return _array_to_rgb(array)


def image_size(array: np.ndarray) -> Tuple[int, int]:
    """Return ``(width, height)`` of an image array."""
    height, width = array.shape[:2]
    return int(width), int(height)
