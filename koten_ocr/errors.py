"""Exception taxonomy for the OCR pipeline."""

from __future__ import annotations

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .layout_types import RecognizedDetection


class KotenOCRError(Exception):
    """Base class for every error raised by the pipeline components."""


class InvalidImageError(KotenOCRError, ValueError):
    """Raised when an input image is undecodable or has zero dimensions."""


class ModelLoadError(KotenOCRError):
    """Raised when an inference engine cannot load its model weights."""


class NotInitializedError(KotenOCRError, RuntimeError):
    """Raised when a component is used before ``initialize`` was called."""


class DetectionError(KotenOCRError):
    """Raised when the layout detection inference call fails."""


class RecognitionError(KotenOCRError):
    """Raised when the text recognition inference call fails."""


class PipelineCancelled(KotenOCRError):
    """Raised when a run is stopped through the cooperative cancel flag.

    ``partial`` holds the regions recognized before the stop was observed.
    """

    def __init__(
        self,
        message: str = "processing cancelled",
        partial: Optional[List["RecognizedDetection"]] = None,
    ) -> None:
        super().__init__(message)
        self.partial = list(partial or [])
