import asyncio

import pytest

from koten_ocr.errors import (
    InvalidImageError,
    NotInitializedError,
    PipelineCancelled,
    RecognitionError,
)
from koten_ocr.layout_detector import LayoutDetector
from koten_ocr.pipeline import CallbackProgressSink, KotenOCRPipeline, PipelineState
from koten_ocr.text_recognizer import TextRecognizer

from Tests.helpers import (
    COLUMNS,
    SMALL_INPUT,
    VOCAB,
    SequenceSession,
    StubSession,
    build_pipeline,
    detector_outputs,
    one_hot_logits,
    solid_image,
    texts,
)


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, percent, message):
        self.events.append((percent, message))

    @property
    def percents(self):
        return [percent for percent, _ in self.events]


def test_process_end_to_end():
    recorder = Recorder()
    pipeline = build_pipeline(progress=recorder)

    result = pipeline.process(solid_image(100, 100), image_name="page.jpg")

    assert result.text == "春\n夏"
    assert texts(result.detections) == ["春", "夏"]
    assert result.detections[0].box.x1 == 60
    assert (result.image_width, result.image_height) == (100, 100)
    assert result.json["document"]["image"]["name"] == "page.jpg"
    assert "      春\n      夏\n" in result.xml
    assert pipeline.state is PipelineState.DONE
    assert recorder.percents == [40, 45, 50, 50, 65, 80, 80, 90, 100]


def test_recognition_failure_propagates_and_marks_failed():
    recorder = Recorder()
    pipeline = build_pipeline(recognizer_error=RuntimeError("engine down"), progress=recorder)

    with pytest.raises(RecognitionError, match="engine down"):
        pipeline.process(solid_image(100, 100))

    assert pipeline.state is PipelineState.FAILED
    assert recorder.events[-1][1].startswith("Failed")


def test_uninitialized_components_are_rejected():
    pipeline = KotenOCRPipeline(LayoutDetector(), TextRecognizer())
    with pytest.raises(NotInitializedError):
        pipeline.process(solid_image(10, 10))


def test_batch_records_failures_and_continues():
    pipeline = build_pipeline(pages=2)

    batch = pipeline.process_batch(
        [solid_image(100, 100), b"not an image", solid_image(100, 100)]
    )

    assert batch.image_names == ["image_1", "image_3"]
    assert [result.text for result in batch.results] == ["春\n夏", "春\n夏"]
    assert len(batch.failures) == 1
    name, error = batch.failures[0]
    assert name == "image_2"
    assert isinstance(error, InvalidImageError)
    assert not batch.cancelled


def test_batch_propagates_unexpected_errors():
    class BrokenOrder:
        def process(self, detections, width, height):
            raise TypeError("bug")

    pipeline = build_pipeline(reading_order=BrokenOrder())
    with pytest.raises(TypeError):
        pipeline.process_batch([solid_image(100, 100)])


def test_cancel_between_regions_keeps_partial_results():
    pipeline = build_pipeline()

    def cancel_after_first_region(percent, message):
        if message.startswith("Recognizing text (1/"):
            pipeline.cancel()

    pipeline.progress = CallbackProgressSink(cancel_after_first_region)

    with pytest.raises(PipelineCancelled) as excinfo:
        pipeline.process(solid_image(100, 100))

    assert texts(excinfo.value.partial) == ["春"]
    assert pipeline.state is PipelineState.CANCELLED


def test_cancelled_batch_stops_before_next_image():
    pipeline = build_pipeline(pages=2)

    def cancel_after_first_region(percent, message):
        if message.startswith("Recognizing text (1/"):
            pipeline.cancel()

    pipeline.progress = CallbackProgressSink(cancel_after_first_region)
    batch = pipeline.process_batch([solid_image(100, 100), solid_image(100, 100)])

    assert batch.cancelled
    assert batch.results == []
    assert texts(batch.partial) == ["春"]


def test_async_processing_matches_sync():
    pipeline = build_pipeline(pages=3)

    result = asyncio.run(pipeline.process_async(solid_image(100, 100), image_name="a"))
    assert result.text == "春\n夏"

    batch = asyncio.run(
        pipeline.process_batch_async(
            [solid_image(100, 100), solid_image(100, 100)], image_names=["b", "c"]
        )
    )
    assert batch.image_names == ["b", "c"]
    assert not batch.failures


def test_from_models_reports_initialization_progress():
    sessions = {
        "layout.onnx": StubSession(detector_outputs(COLUMNS)),
        "parseq.onnx": SequenceSession([one_hot_logits([4]), one_hot_logits([5])]),
    }

    def loader(path, options=None):
        return sessions[path]

    recorder = Recorder()
    pipeline = KotenOCRPipeline.from_models(
        "layout.onnx",
        "parseq.onnx",
        char_list=VOCAB,
        layout_config=SMALL_INPUT,
        reading_order_config={"vertical_mode": False},
        loader=loader,
        progress=recorder,
    )

    assert recorder.percents == [0, 10, 15, 20, 30]
    assert pipeline.reading_order.vertical_mode is False

    # Horizontal order puts the left line first.
    result = pipeline.process(solid_image(100, 100))
    assert texts(result.detections) == ["夏", "春"]
