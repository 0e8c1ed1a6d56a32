import numpy as np
import pytest

from koten_ocr.errors import InvalidImageError
from koten_ocr.preprocessing import (
    orient_line_image,
    pad_to_square,
    preprocess_for_detection,
    preprocess_for_recognition,
)

from Tests.helpers import solid_image


IDENTITY = {"mean": (0.0, 0.0, 0.0), "std": (1.0, 1.0, 1.0)}


def test_pad_to_square_places_image_top_left():
    canvas = pad_to_square(solid_image(4, 2))
    assert canvas.shape == (4, 4, 3)
    assert (canvas[:2] == 255).all()
    assert (canvas[2:] == 0).all()


def test_detection_tensor_layout_and_metadata():
    image = np.zeros((2, 4, 3), dtype=np.uint8)
    image[:, :] = (10, 20, 30)

    tensor, metadata = preprocess_for_detection(image, (1, 3, 4, 4), **IDENTITY)

    assert tensor.shape == (1, 3, 4, 4)
    assert tensor.dtype == np.float32
    assert (tensor[0, 0, :2] == 10).all()
    assert (tensor[0, 1, :2] == 20).all()
    assert (tensor[0, 2, :2] == 30).all()
    assert (tensor[0, :, 2:] == 0).all()

    assert metadata.original_width == 4
    assert metadata.original_height == 2
    assert metadata.square_size == 4
    assert (metadata.model_input_width, metadata.model_input_height) == (4, 4)


def test_detection_normalization_uses_channel_mean_std():
    mean = (123.675, 116.28, 103.53)
    std = (58.395, 57.12, 57.375)
    tensor, _ = preprocess_for_detection(solid_image(8, 8, value=0), (1, 3, 8, 8), mean, std)
    for channel in range(3):
        assert tensor[0, channel, 0, 0] == pytest.approx(-mean[channel] / std[channel], rel=1e-5)


def test_orient_line_image_rotates_tall_crops():
    tall = np.zeros((20, 5, 3), dtype=np.uint8)
    tall[19, 0] = 255  # bottom-left
    tall[0, 4] = 128  # top-right

    clockwise = orient_line_image(tall)
    assert clockwise.shape == (5, 20, 3)
    assert clockwise[0, 0, 0] == 255

    counter = orient_line_image(tall, clockwise=False)
    assert counter.shape == (5, 20, 3)
    assert counter[0, 0, 0] == 128


def test_orient_line_image_keeps_wide_crops():
    wide = solid_image(20, 5)
    assert orient_line_image(wide) is wide


def test_recognition_tensor_range():
    white = preprocess_for_recognition(solid_image(50, 10, 255), (1, 3, 32, 384))
    black = preprocess_for_recognition(solid_image(10, 50, 0), (1, 3, 32, 384))
    assert white.shape == black.shape == (1, 3, 32, 384)
    assert np.allclose(white, 1.0)
    assert np.allclose(black, -1.0)


def test_invalid_images_raise():
    with pytest.raises(InvalidImageError):
        preprocess_for_detection(b"not an image", (1, 3, 8, 8), **IDENTITY)
    with pytest.raises(InvalidImageError):
        preprocess_for_recognition(np.zeros((0, 5, 3), dtype=np.uint8), (1, 3, 32, 384))
    with pytest.raises(InvalidImageError):
        preprocess_for_detection(None, (1, 3, 8, 8), **IDENTITY)
