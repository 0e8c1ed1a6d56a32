"""Post-processing utilities for layout detection."""

from __future__ import annotations

import math
from typing import Iterable, List, Optional

import numpy as np

from .layout_types import BoundingBox, Detection, PreprocessMetadata, RawDetection


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def decode_raw_detections(
    dets: np.ndarray, labels: Optional[np.ndarray] = None
) -> List[RawDetection]:
    """Decode ``(x1, y1, x2, y2, score)`` quintets and a parallel label array."""
    flat = np.asarray(dets, dtype=np.float64).reshape(-1)
    count = flat.size // 5
    quintets = flat[: count * 5].reshape(count, 5)
    label_values = (
        np.asarray(labels).reshape(-1) if labels is not None else np.zeros(count)
    )

    raw: List[RawDetection] = []
    for i, (x1, y1, x2, y2, score) in enumerate(quintets):
        class_id = int(label_values[i]) if i < label_values.size else 0
        raw.append(
            RawDetection(
                x1=float(x1),
                y1=float(y1),
                x2=float(x2),
                y2=float(y2),
                score=float(score),
                class_id=class_id,
            )
        )
    return raw


def clamp_bbox(
    x1: float, y1: float, x2: float, y2: float, width: int, height: int
) -> Optional[BoundingBox]:
    """Clamp a bbox to image bounds; return None if invalid after clamping."""
    ix1 = max(0, min(round_half_up(x1), width))
    iy1 = max(0, min(round_half_up(y1), height))
    ix2 = max(0, min(round_half_up(x2), width))
    iy2 = max(0, min(round_half_up(y2), height))

    if ix2 <= ix1 or iy2 <= iy1:
        return None
    return BoundingBox(ix1, iy1, ix2, iy2)


def to_image_box(
    raw: RawDetection, metadata: PreprocessMetadata, vertical_expand_ratio: float
) -> Optional[BoundingBox]:
    """Map a model-space box back onto the source image.

    Coordinates are normalized by the model input size and scaled by the
    padded square size, since the source sits at the top-left of that
    square. Top and bottom then grow by ``vertical_expand_ratio`` of the
    box height before clamping.
    """
    square = metadata.square_size
    x1 = raw.x1 / metadata.model_input_width * square
    y1 = raw.y1 / metadata.model_input_height * square
    x2 = raw.x2 / metadata.model_input_width * square
    y2 = raw.y2 / metadata.model_input_height * square

    delta_h = (y2 - y1) * vertical_expand_ratio
    return clamp_bbox(
        x1,
        y1 - delta_h,
        x2,
        y2 + delta_h,
        width=metadata.original_width,
        height=metadata.original_height,
    )


def to_detections(
    raw_dets: Iterable[RawDetection],
    metadata: PreprocessMetadata,
    *,
    score_threshold: float,
    vertical_expand_ratio: float,
) -> List[Detection]:
    """Filter raw candidates by score and convert them to image-space detections."""
    detections: List[Detection] = []
    for raw in raw_dets:
        if raw.score < score_threshold:
            continue
        box = to_image_box(raw, metadata, vertical_expand_ratio)
        if box is None:
            continue
        detections.append(Detection(box=box, score=raw.score, class_id=raw.class_id))
    return detections


def non_max_suppression(
    detections: Iterable[Detection],
    iou_threshold: float,
    max_detections: Optional[int] = None,
) -> List[Detection]:
    """Greedy NMS by descending score.

    Ties keep their input order. A candidate is dropped when its IoU with an
    accepted box is at least ``iou_threshold``; selection stops once
    ``max_detections`` boxes are kept.
    """
    remaining = sorted(detections, key=lambda det: -det.score)
    keep: List[Detection] = []

    while remaining:
        if max_detections is not None and len(keep) >= max_detections:
            break
        current = remaining.pop(0)
        keep.append(current)
        remaining = [
            det for det in remaining if current.box.iou(det.box) < iou_threshold
        ]

    return keep

