"""Test helpers: stub inference sessions, loaders and synthetic images."""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from koten_ocr.layout_detector import LayoutDetector
from koten_ocr.layout_types import BoundingBox, Detection, RecognizedDetection
from koten_ocr.pipeline import KotenOCRPipeline
from koten_ocr.text_recognizer import TextRecognizer


# idx 4 -> "春", idx 5 -> "夏", idx 6 -> "秋" after the vocabulary offset.
VOCAB = ["<", ">", "_", "春", "夏", "秋"]


class StubSession:
    """Returns canned outputs and records every feed it receives."""

    def __init__(
        self,
        outputs: Optional[Mapping[str, np.ndarray]] = None,
        input_names: Sequence[str] = ("input",),
        output_names: Sequence[str] = ("output",),
        error: Optional[Exception] = None,
    ):
        self.outputs = dict(outputs or {})
        self.input_names = list(input_names)
        self.output_names = list(output_names)
        self.error = error
        self.feeds: List[Dict[str, np.ndarray]] = []

    def run(self, feeds):
        self.feeds.append(dict(feeds))
        if self.error is not None:
            raise self.error
        return self.outputs


class SequenceSession(StubSession):
    """Recognizer stub that answers each call with the next logit matrix."""

    def __init__(self, logits: Iterable[np.ndarray], **kwargs):
        super().__init__(**kwargs)
        self._queue = list(logits)

    def run(self, feeds):
        self.feeds.append(dict(feeds))
        if self.error is not None:
            raise self.error
        return {self.output_names[0]: self._queue.pop(0)}


def make_loader(session):
    """Build a loader that hands back ``session`` and remembers the paths."""
    calls = []

    def loader(path, options=None):
        calls.append(path)
        return session

    loader.calls = calls
    return loader


def detector_outputs(rows: Sequence[Sequence[float]], labels: Optional[Sequence[int]] = None):
    dets = np.asarray([list(rows)], dtype=np.float32).reshape(1, len(rows), 5)
    if labels is None:
        labels = [0] * len(rows)
    return {"dets": dets, "labels": np.asarray([list(labels)], dtype=np.int64)}


def one_hot_logits(indices: Sequence[int], vocab_size: int = len(VOCAB) + 1, length: int = 26):
    """A ``(1, length, vocab)`` logit tensor whose argmax follows ``indices``.

    Positions beyond ``indices`` are ``<eos>``.
    """
    logits = np.zeros((1, length, vocab_size), dtype=np.float32)
    padded = list(indices) + [0] * (length - len(indices))
    for position, index in enumerate(padded[:length]):
        logits[0, position, index] = 1.0
    return logits


def solid_image(width: int, height: int, value=255) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


def det(x1, y1, x2, y2, score=0.9, text=None):
    detection = Detection(box=BoundingBox(x1, y1, x2, y2), score=score)
    if text is None:
        return detection
    return detection.with_text(text)


def texts(detections: Iterable[RecognizedDetection]) -> List[str]:
    return [d.text for d in detections]


# Two vertical lines on a 100x100 page; the right one scores higher.
COLUMNS = [[60, 5, 80, 95, 0.9], [10, 5, 30, 95, 0.8]]
SMALL_INPUT = {"input_shape": [1, 3, 100, 100]}


def build_pipeline(pages=1, recognizer_error=None, **kwargs):
    """A pipeline over stub sessions that reads "春" then "夏" on every page."""
    detector = LayoutDetector(loader=make_loader(StubSession(detector_outputs(COLUMNS))))
    detector.initialize("layout.onnx", SMALL_INPUT)

    logits = [one_hot_logits([4]), one_hot_logits([5])] * pages
    session = SequenceSession(logits, error=recognizer_error)
    recognizer = TextRecognizer(loader=make_loader(session))
    recognizer.initialize("parseq.onnx", char_list=VOCAB)
    return KotenOCRPipeline(detector, recognizer, **kwargs)
