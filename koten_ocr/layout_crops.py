"""Crop extraction and debug rendering for detected text regions."""

from __future__ import annotations

from io import BytesIO
from typing import Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from .layout_post import round_half_up
from .layout_types import BoundingBox, Detection, RecognizedDetection


def crop_region(image: np.ndarray, box: BoundingBox) -> np.ndarray:
    """Cut ``box`` out of an ``(H, W, C)`` array.

    The origin is clamped inside the image, the crop is at least one pixel
    on each side and is truncated at the image edge.
    """
    img_h, img_w = image.shape[:2]
    width = max(1, round_half_up(box.x2 - box.x1))
    height = max(1, round_half_up(box.y2 - box.y1))

    x1 = max(0, min(img_w - 1, round_half_up(box.x1)))
    y1 = max(0, min(img_h - 1, round_half_up(box.y1)))
    safe_w = min(width, img_w - x1)
    safe_h = min(height, img_h - y1)
    return image[y1 : y1 + safe_h, x1 : x1 + safe_w].copy()


def encode_image_bytes(
    img: np.ndarray, *, format: str = "png", quality: int = 90
) -> Tuple[bytes, str]:
    """Encode an RGB array with Pillow, returning ``(bytes, mime)``."""
    buf = BytesIO()
    save_kwargs = {"format": format.upper()}
    if format.lower() == "jpeg":
        save_kwargs["quality"] = quality
        save_kwargs["optimize"] = True
    Image.fromarray(img).save(buf, **save_kwargs)
    mime = f"image/{'jpeg' if format.lower() == 'jpeg' else 'png'}"
    return buf.getvalue(), mime


def draw_detections(
    image: np.ndarray, detections: Sequence[Detection]
) -> np.ndarray:
    """Return a copy of an RGB image with numbered boxes in reading order."""
    annotated = image.copy()

    for index, detection in enumerate(detections, 1):
        box = detection.box
        top_left = (int(box.x1), int(box.y1))
        bottom_right = (int(box.x2), int(box.y2))
        cv2.rectangle(annotated, top_left, bottom_right, (255, 0, 0), 2)

        label = str(index)
        if isinstance(detection, RecognizedDetection) and detection.text:
            # Hershey fonts have no CJK glyphs; keep the label numeric.
            label = f"{index} ({len(detection.text)})"
        cv2.putText(
            annotated,
            label,
            (top_left[0], max(12, top_left[1] - 4)),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.5,
            (0, 0, 255),
            1,
        )

    return annotated
