"""Tensor preparation for the detection and recognition models."""

from __future__ import annotations

from typing import Sequence, Tuple

import cv2
import numpy as np

from .errors import InvalidImageError
from .image_io import ImageInput, to_rgb_array
from .layout_types import PreprocessMetadata


def _check_shape(input_shape: Sequence[int]) -> Tuple[int, int, int, int]:
    if len(input_shape) != 4:
        raise ValueError(f"input_shape must be (N, C, H, W), got {tuple(input_shape)}")
    batch, channels, height, width = (int(v) for v in input_shape)
    if channels < 1 or channels > 3:
        raise ValueError(f"Unsupported channel count {channels}")
    return batch, channels, height, width


def _to_chw(pixels: np.ndarray, channels: int) -> np.ndarray:
    # (H, W, 3) -> (C, H, W), keeping only the channels the model consumes.
    return np.transpose(pixels[:, :, :channels], (2, 0, 1))


def pad_to_square(rgb: np.ndarray) -> np.ndarray:
    """Place the image at the top-left of a black square canvas."""
    height, width = rgb.shape[:2]
    square = max(width, height)
    canvas = np.zeros((square, square, 3), dtype=np.uint8)
    canvas[:height, :width] = rgb
    return canvas


def preprocess_for_detection(
    image: ImageInput,
    input_shape: Sequence[int],
    mean: Sequence[float],
    std: Sequence[float],
) -> Tuple[np.ndarray, PreprocessMetadata]:
    """Pad, resize and normalize an image for the layout detector.

    Returns an ``(N, C, H, W)`` float32 tensor and the metadata needed to
    map detections back to source pixels.
    """
    batch, channels, model_h, model_w = _check_shape(input_shape)
    rgb = to_rgb_array(image)
    orig_h, orig_w = rgb.shape[:2]

    square = pad_to_square(rgb)
    resized = cv2.resize(square, (model_w, model_h), interpolation=cv2.INTER_LINEAR)

    mean_arr = np.asarray(mean[:channels], dtype=np.float32).reshape(channels, 1, 1)
    std_arr = np.asarray(std[:channels], dtype=np.float32).reshape(channels, 1, 1)
    chw = _to_chw(resized, channels).astype(np.float32)
    normalized = (chw - mean_arr) / std_arr

    tensor = np.broadcast_to(normalized, (batch, channels, model_h, model_w))
    metadata = PreprocessMetadata(
        original_width=orig_w,
        original_height=orig_h,
        square_size=square.shape[0],
        model_input_width=model_w,
        model_input_height=model_h,
    )
    return np.ascontiguousarray(tensor, dtype=np.float32), metadata


def orient_line_image(rgb: np.ndarray, *, clockwise: bool = True) -> np.ndarray:
    """Rotate a taller-than-wide crop by 90 degrees into a landscape strip."""
    height, width = rgb.shape[:2]
    if height <= width:
        return rgb
    rotation = cv2.ROTATE_90_CLOCKWISE if clockwise else cv2.ROTATE_90_COUNTERCLOCKWISE
    return cv2.rotate(rgb, rotation)


def preprocess_for_recognition(
    image: ImageInput,
    input_shape: Sequence[int],
    *,
    rotate_clockwise: bool = True,
) -> np.ndarray:
    """Rotate, resize (ignoring aspect ratio) and scale a crop to ``[-1, 1]``."""
    batch, channels, model_h, model_w = _check_shape(input_shape)
    rgb = to_rgb_array(image)
    if rgb.size == 0:
        raise InvalidImageError("Crop has zero dimensions")

    oriented = orient_line_image(rgb, clockwise=rotate_clockwise)
    resized = cv2.resize(oriented, (model_w, model_h), interpolation=cv2.INTER_LINEAR)

    chw = _to_chw(resized, channels).astype(np.float32)
    normalized = 2.0 * (chw / 255.0 - 0.5)
    tensor = np.broadcast_to(normalized, (batch, channels, model_h, model_w))
    return np.ascontiguousarray(tensor, dtype=np.float32)
