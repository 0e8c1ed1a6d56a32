"""Reading-order recovery by recursive XY-cut.

Groups of text regions are split at whitespace gaps, first along the Y
axis (upper block before lower block) and then along the X axis (right
block first in vertical writing, left block first otherwise). Groups
that cannot be split are sorted by center position, treating centers
within ``same_line_tolerance`` pixels as one column (vertical mode) or
one row (horizontal mode).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cmp_to_key
from typing import List, Optional, Sequence, TypeVar

from .config import DEFAULT_READING_ORDER_CONFIG, ReadingOrderConfig
from .layout_types import Detection

logger = logging.getLogger(__name__)

DetectionT = TypeVar("DetectionT", bound=Detection)


@dataclass(frozen=True)
class _Node:
    index: int
    x1: float
    y1: float
    x2: float
    y2: float
    cx: float
    cy: float


def _find_gap(spans: Sequence[tuple], samples: int) -> Optional[float]:
    """Return the gap line closest to the middle of ``spans``, if any.

    Candidate lines sit at ``samples`` even steps across the extent, the
    first and last step excluded. A line is a gap when no span strictly
    straddles it.
    """
    low = min(start for start, _ in spans)
    high = max(end for _, end in spans)
    extent = high - low
    if extent <= 0 or samples < 2:
        return None

    step = extent / samples
    middle = low + extent / 2
    best: Optional[float] = None
    k = 1
    while True:
        line = low + k * step
        if line >= high - step:
            break
        k += 1
        if any(start < line < end for start, end in spans):
            continue
        if best is None or abs(line - middle) < abs(best - middle):
            best = line
    return best


class ReadingOrderProcessor:
    """Orders detections in natural reading order for one page."""

    def __init__(self, config: ReadingOrderConfig = DEFAULT_READING_ORDER_CONFIG) -> None:
        self.config = config

    @property
    def vertical_mode(self) -> bool:
        return self.config.vertical_mode

    def process(
        self, detections: Sequence[DetectionT], image_width: int, image_height: int
    ) -> List[DetectionT]:
        """Return ``detections`` permuted into reading order.

        The input is not modified; the result holds the same objects.
        """
        if not detections:
            return []

        nodes = []
        for index, det in enumerate(detections):
            box = det.box
            cx, cy = box.center
            nodes.append(_Node(index, box.x1, box.y1, box.x2, box.y2, cx, cy))

        ordered = self._xycut(nodes)
        logger.debug(
            "Ordered %d regions (vertical_mode=%s, page %dx%d)",
            len(ordered),
            self.config.vertical_mode,
            image_width,
            image_height,
        )
        return [detections[node.index] for node in ordered]

    def _xycut(self, nodes: List[_Node]) -> List[_Node]:
        if len(nodes) <= 1:
            return nodes

        groups = self._split_by_rows(nodes)
        if groups is None:
            groups = self._split_by_columns(nodes)
        if groups is None:
            return self._sort_by_position(nodes)

        result: List[_Node] = []
        for group in groups:
            result.extend(self._xycut(group))
        return result

    def _split_by_rows(self, nodes: List[_Node]) -> Optional[List[List[_Node]]]:
        if len(nodes) <= 2:
            return None
        split_y = _find_gap([(n.y1, n.y2) for n in nodes], self.config.cut_samples)
        if split_y is None:
            return None
        upper = [n for n in nodes if n.cy < split_y]
        lower = [n for n in nodes if n.cy >= split_y]
        if not upper or not lower:
            return None
        return [upper, lower]

    def _split_by_columns(self, nodes: List[_Node]) -> Optional[List[List[_Node]]]:
        if len(nodes) <= 2:
            return None
        split_x = _find_gap([(n.x1, n.x2) for n in nodes], self.config.cut_samples)
        if split_x is None:
            return None
        left = [n for n in nodes if n.cx < split_x]
        right = [n for n in nodes if n.cx >= split_x]
        if not left or not right:
            return None
        if self.config.vertical_mode:
            return [right, left]
        return [left, right]

    def _sort_by_position(self, nodes: List[_Node]) -> List[_Node]:
        tolerance = self.config.same_line_tolerance

        if self.config.vertical_mode:
            def compare(a: _Node, b: _Node) -> float:
                x_diff = b.cx - a.cx
                if abs(x_diff) > tolerance:
                    return x_diff
                return a.cy - b.cy
        else:
            def compare(a: _Node, b: _Node) -> float:
                y_diff = a.cy - b.cy
                if abs(y_diff) > tolerance:
                    return y_diff
                return a.cx - b.cx

        return sorted(nodes, key=cmp_to_key(compare))


def order_detections(
    detections: Sequence[DetectionT],
    image_width: int,
    image_height: int,
    vertical_mode: bool = True,
) -> List[DetectionT]:
    """One-shot ordering with default tuning for the given writing direction."""
    config = ReadingOrderConfig(vertical_mode=vertical_mode)
    return ReadingOrderProcessor(config).process(detections, image_width, image_height)
