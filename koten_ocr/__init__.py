"""OCR for classical Japanese documents."""

from .errors import (
    DetectionError,
    InvalidImageError,
    KotenOCRError,
    ModelLoadError,
    NotInitializedError,
    PipelineCancelled,
    RecognitionError,
)
from .layout_detector import LayoutDetector
from .layout_types import (
    BatchResult,
    BoundingBox,
    Detection,
    OCRResult,
    RecognizedDetection,
)
from .output import OutputGenerator
from .pipeline import (
    CallbackProgressSink,
    KotenOCRPipeline,
    LoggingProgressSink,
    PipelineState,
    ProgressSink,
)
from .reading_order import ReadingOrderProcessor, order_detections
from .text_recognizer import TextRecognizer

__version__ = "1.0.0"

__all__ = [
    "BatchResult",
    "BoundingBox",
    "CallbackProgressSink",
    "Detection",
    "DetectionError",
    "InvalidImageError",
    "KotenOCRError",
    "KotenOCRPipeline",
    "LayoutDetector",
    "LoggingProgressSink",
    "ModelLoadError",
    "NotInitializedError",
    "OCRResult",
    "OutputGenerator",
    "PipelineCancelled",
    "PipelineState",
    "ProgressSink",
    "ReadingOrderProcessor",
    "RecognitionError",
    "RecognizedDetection",
    "TextRecognizer",
    "order_detections",
]
