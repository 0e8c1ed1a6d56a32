"""End-to-end OCR orchestration: detect, recognize, order, serialize."""

from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from typing import (
    Any,
    Callable,
    Generator,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from .config import (
    DEFAULT_OUTPUT_CONFIG,
    DEFAULT_READING_ORDER_CONFIG,
    OutputConfig,
    PathLike,
    ReadingOrderConfig,
    load_config_document,
    output_overrides,
    reading_order_overrides,
    resolve_config,
)
from .errors import KotenOCRError, NotInitializedError, PipelineCancelled
from .image_io import ImageInput, image_size, to_rgb_array
from .inference import SessionLoader, load_session
from .layout_crops import crop_region
from .layout_detector import LayoutDetector
from .layout_types import BatchResult, OCRResult, RecognizedDetection
from .output import OutputGenerator
from .reading_order import ReadingOrderProcessor
from .text_recognizer import CharList, TextRecognizer

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    RECOGNIZING = "recognizing"
    ORDERING = "ordering"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProgressSink(Protocol):
    def report(self, percent: float, message: str) -> None:
        ...


class CallbackProgressSink:
    """Adapts a ``(percent, message)`` callable to the sink interface."""

    def __init__(self, callback: Callable[[float, str], Any]) -> None:
        self._callback = callback

    def report(self, percent: float, message: str) -> None:
        self._callback(percent, message)


class LoggingProgressSink:
    def report(self, percent: float, message: str) -> None:
        logger.info("[%3d%%] %s", int(percent), message)


def as_progress_sink(
    progress: "ProgressSink | Callable[[float, str], Any] | None",
) -> ProgressSink:
    if progress is None:
        return LoggingProgressSink()
    if hasattr(progress, "report"):
        return progress  # type: ignore[return-value]
    return CallbackProgressSink(progress)  # type: ignore[arg-type]


# Stage boundaries as percentages of one image's run.
_START = 40
_DETECTING = 45
_RECOGNIZING = 50
_RECOGNITION_SPAN = 30
_ORDERING = 80
_GENERATING = 90
_DONE = 100


class KotenOCRPipeline:
    """Owns one detector, one recognizer and runs images through all stages.

    Work is sequential. The private step generator yields after every unit
    (each stage and each recognized region); :meth:`process` simply drains
    it while :meth:`process_async` hands control back to the event loop at
    every yield.
    """

    def __init__(
        self,
        detector: LayoutDetector,
        recognizer: TextRecognizer,
        reading_order: Optional[ReadingOrderProcessor] = None,
        output: Optional[OutputGenerator] = None,
        *,
        progress: "ProgressSink | Callable[[float, str], Any] | None" = None,
    ) -> None:
        self.detector = detector
        self.recognizer = recognizer
        self.reading_order = reading_order or ReadingOrderProcessor()
        self.output = output or OutputGenerator()
        self.progress = as_progress_sink(progress)
        self.state = PipelineState.IDLE
        self._cancel = threading.Event()

    @classmethod
    def from_models(
        cls,
        layout_model: PathLike,
        recognizer_model: PathLike,
        *,
        config_path: Optional[PathLike] = None,
        charset_path: Optional[PathLike] = None,
        char_list: Optional[CharList] = None,
        layout_config: Optional[Mapping[str, Any]] = None,
        recognizer_config: Optional[Mapping[str, Any]] = None,
        reading_order_config: Optional[Mapping[str, Any]] = None,
        output_config: Optional[Mapping[str, Any]] = None,
        loader: SessionLoader = load_session,
        progress: "ProgressSink | Callable[[float, str], Any] | None" = None,
    ) -> "KotenOCRPipeline":
        """Build and initialize every component from model files and config."""
        sink = as_progress_sink(progress)
        sink.report(0, "Initializing models")
        document = load_config_document(config_path)

        detector = LayoutDetector(loader=loader)
        detector.initialize(layout_model, layout_config, config_path=config_path)
        sink.report(10, "Layout detection model loaded")

        recognizer = TextRecognizer(loader=loader)
        recognizer.initialize(
            recognizer_model,
            recognizer_config,
            char_list,
            config_path=config_path,
            charset_path=charset_path,
        )
        sink.report(15, "Text recognition model loaded")

        order_config: ReadingOrderConfig = resolve_config(
            DEFAULT_READING_ORDER_CONFIG,
            reading_order_overrides(document),
            reading_order_config,
        )
        sink.report(20, "Reading order configured")

        out_config: OutputConfig = resolve_config(
            DEFAULT_OUTPUT_CONFIG, output_overrides(document), output_config
        )
        sink.report(30, "Output generation configured")

        return cls(
            detector,
            recognizer,
            ReadingOrderProcessor(order_config),
            OutputGenerator(out_config),
            progress=sink,
        )

    def cancel(self) -> None:
        """Ask the current run to stop after the unit in progress."""
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def _report(self, percent: float, message: str) -> None:
        self.progress.report(percent, message)

    def _transition(self, state: PipelineState, percent: float, message: str) -> None:
        logger.debug("Pipeline %s -> %s", self.state.value, state.value)
        self.state = state
        self._report(percent, message)

    def _steps(
        self, image: ImageInput, image_name: str, image_url: Optional[str]
    ) -> Generator[None, None, OCRResult]:
        if not (self.detector.initialized and self.recognizer.initialized):
            raise NotInitializedError("Pipeline components must be initialized first")

        percent: float = _START
        self.state = PipelineState.IDLE
        try:
            self._report(_START, f"Processing {image_name}")
            rgb = to_rgb_array(image)
            width, height = image_size(rgb)
            yield

            percent = _DETECTING
            self._transition(PipelineState.DETECTING, _DETECTING, "Detecting layout")
            detections = self.detector.detect(rgb)
            self._report(_RECOGNIZING, f"Detected {len(detections)} text regions")
            yield

            percent = _RECOGNIZING
            self._transition(PipelineState.RECOGNIZING, _RECOGNIZING, "Recognizing text")
            recognized: List[RecognizedDetection] = []
            total = len(detections)
            for count, detection in enumerate(detections, 1):
                if self._cancel.is_set():
                    raise PipelineCancelled(
                        f"Cancelled after {len(recognized)}/{total} regions",
                        partial=recognized,
                    )
                text = self.recognizer.read(crop_region(rgb, detection.box))
                recognized.append(detection.with_text(text))
                percent = _RECOGNIZING + (count * _RECOGNITION_SPAN) // total
                self._report(percent, f"Recognizing text ({count}/{total})")
                yield

            percent = _ORDERING
            self._transition(PipelineState.ORDERING, _ORDERING, "Ordering regions")
            ordered = self.reading_order.process(recognized, width, height)
            yield

            percent = _GENERATING
            self._transition(PipelineState.GENERATING, _GENERATING, "Generating output")
            result = OCRResult(
                detections=ordered,
                text=self.output.generate_text(ordered),
                xml=self.output.generate_xml(ordered, width, height, image_name, image_url),
                json=self.output.generate_json(ordered, width, height, image_name),
                image_name=image_name,
                image_width=width,
                image_height=height,
                image_url=image_url,
            )
            self._transition(PipelineState.DONE, _DONE, "Done")
            yield
            return result
        except PipelineCancelled:
            self._transition(PipelineState.CANCELLED, percent, "Cancelled")
            raise
        except Exception as exc:
            self._transition(PipelineState.FAILED, percent, f"Failed: {exc}")
            raise

    @staticmethod
    def _drain(steps: Generator[None, None, OCRResult]) -> OCRResult:
        while True:
            try:
                next(steps)
            except StopIteration as stop:
                return stop.value

    @staticmethod
    async def _drain_async(steps: Generator[None, None, OCRResult]) -> OCRResult:
        while True:
            try:
                next(steps)
            except StopIteration as stop:
                return stop.value
            await asyncio.sleep(0)

    def process(
        self,
        image: ImageInput,
        image_name: str = "image",
        image_url: Optional[str] = None,
    ) -> OCRResult:
        """Run one image through every stage and return its result.

        Component errors propagate unchanged; the pipeline state is left at
        ``FAILED`` (or ``CANCELLED``) when that happens.
        """
        self._cancel.clear()
        return self._drain(self._steps(image, image_name, image_url))

    async def process_async(
        self,
        image: ImageInput,
        image_name: str = "image",
        image_url: Optional[str] = None,
    ) -> OCRResult:
        self._cancel.clear()
        return await self._drain_async(self._steps(image, image_name, image_url))

    def _batch_items(
        self, images: Sequence[ImageInput], image_names: Sequence[str]
    ) -> Iterable[Tuple[ImageInput, str]]:
        for index, image in enumerate(images):
            name = image_names[index] if index < len(image_names) else f"image_{index + 1}"
            yield image, name

    def _absorb(self, batch: BatchResult, name: str, exc: KotenOCRError) -> None:
        if isinstance(exc, PipelineCancelled):
            batch.cancelled = True
            batch.partial = exc.partial
            logger.info("Batch cancelled while processing %s", name)
            return
        logger.exception("Failed to process %s: %s", name, exc)
        batch.failures.append((name, exc))

    def process_batch(
        self,
        images: Sequence[ImageInput],
        image_names: Sequence[str] = (),
        image_urls: Sequence[Optional[str]] = (),
    ) -> BatchResult:
        """Process images in submission order.

        A failing image is recorded in ``failures`` and the batch continues;
        completed results are kept when the batch is cancelled.
        """
        self._cancel.clear()
        batch = BatchResult()
        for index, (image, name) in enumerate(self._batch_items(images, image_names)):
            if self._cancel.is_set():
                batch.cancelled = True
                break
            url = image_urls[index] if index < len(image_urls) else None
            try:
                batch.results.append(self._drain(self._steps(image, name, url)))
            except NotInitializedError:
                raise
            except KotenOCRError as exc:
                self._absorb(batch, name, exc)
                if batch.cancelled:
                    break
        return batch

    async def process_batch_async(
        self,
        images: Sequence[ImageInput],
        image_names: Sequence[str] = (),
        image_urls: Sequence[Optional[str]] = (),
    ) -> BatchResult:
        self._cancel.clear()
        batch = BatchResult()
        for index, (image, name) in enumerate(self._batch_items(images, image_names)):
            if self._cancel.is_set():
                batch.cancelled = True
                break
            url = image_urls[index] if index < len(image_urls) else None
            try:
                result = await self._drain_async(self._steps(image, name, url))
                batch.results.append(result)
            except NotInitializedError:
                raise
            except KotenOCRError as exc:
                self._absorb(batch, name, exc)
                if batch.cancelled:
                    break
        return batch
