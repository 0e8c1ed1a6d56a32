import numpy as np
import pytest

from koten_ocr.errors import DetectionError, ModelLoadError, NotInitializedError
from koten_ocr.inference import load_session
from koten_ocr.layout_detector import LayoutDetector
from koten_ocr.layout_types import BoundingBox

from Tests.helpers import StubSession, detector_outputs, make_loader, solid_image


SMALL_INPUT = {"input_shape": [1, 3, 64, 64]}


def _detector(session):
    detector = LayoutDetector(loader=make_loader(session))
    detector.initialize("layout.onnx", SMALL_INPUT)
    return detector


def test_detect_before_initialize_raises():
    with pytest.raises(NotInitializedError):
        LayoutDetector().detect(solid_image(10, 10))


def test_detect_maps_boxes_to_image_space():
    session = StubSession(
        detector_outputs([[10, 5, 30, 25, 0.9], [0, 0, 1, 1, 0.1]]),
        output_names=("dets", "labels"),
    )
    detector = _detector(session)

    # 128x64 pads to a 128 square, so model coordinates double.
    detections = detector.detect(solid_image(128, 64))

    assert len(detections) == 1
    assert detections[0].box == BoundingBox(20, 9, 60, 51)
    assert detections[0].score == pytest.approx(0.9)

    feed = session.feeds[0]["input"]
    assert feed.shape == (1, 3, 64, 64)
    assert feed.dtype == np.float32


def test_detect_orders_by_score_after_nms():
    session = StubSession(
        detector_outputs(
            [
                [0, 0, 10, 10, 0.5],
                [0, 20, 10, 30, 0.95],
                [1, 0, 11, 10, 0.6],
            ]
        )
    )
    detections = _detector(session).detect(solid_image(64, 64))
    assert [round(d.score, 2) for d in detections] == [0.95, 0.6]


def test_detect_falls_back_to_positional_outputs():
    dets = detector_outputs([[10, 10, 20, 20, 0.8]])
    session = StubSession({"boxes": dets["dets"], "classes": dets["labels"]})
    assert len(_detector(session).detect(solid_image(64, 64))) == 1


def test_engine_failure_becomes_detection_error():
    session = StubSession(error=RuntimeError("engine exploded"))
    detector = _detector(session)
    with pytest.raises(DetectionError, match="engine exploded"):
        detector.detect(solid_image(64, 64))


def test_initialize_reads_yaml_section(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(
        "layout_detection:\n  score_threshold: 0.7\n  input_shape: [1, 3, 64, 64]\n",
        encoding="utf-8",
    )
    detector = LayoutDetector(loader=make_loader(StubSession()))
    detector.initialize("layout.onnx", config_path=config)
    assert detector.config.score_threshold == 0.7
    assert detector.config.input_shape == (1, 3, 64, 64)


def test_loader_failure_becomes_model_load_error():
    def broken_loader(path, options=None):
        raise OSError("no such file")

    detector = LayoutDetector(loader=broken_loader)
    with pytest.raises(ModelLoadError):
        detector.initialize("missing.onnx")
    assert not detector.initialized


def test_load_session_rejects_missing_and_unknown_files(tmp_path):
    with pytest.raises(ModelLoadError):
        load_session(tmp_path / "missing.onnx")

    unknown = tmp_path / "weights.bin"
    unknown.write_bytes(b"\0")
    with pytest.raises(ModelLoadError, match="Unsupported model format"):
        load_session(unknown)


def test_inference_without_session_raises_not_initialized():
    tensor = np.zeros((1, 3, 64, 64), dtype=np.float32)
    with pytest.raises(NotInitializedError):
        LayoutDetector()._run(tensor)
