import io

import numpy as np
import pytest
from PIL import Image

from koten_ocr.errors import InvalidImageError
from koten_ocr.image_io import image_size, load_rgb_image, to_rgb_array
from koten_ocr.layout_crops import crop_region, draw_detections, encode_image_bytes
from koten_ocr.layout_types import BoundingBox

from Tests.helpers import det, solid_image


def _png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def test_load_rgb_image_invalid_bytes():
    with pytest.raises(ValueError):
        load_rgb_image(b"not an image")


def test_to_rgb_array_accepts_every_input_kind(tmp_path):
    pil = Image.new("L", (6, 4), color=200)
    path = tmp_path / "page.png"
    pil.save(path)

    for source in (pil, _png_bytes(pil), path, str(path)):
        array = to_rgb_array(source)
        assert array.shape == (4, 6, 3)
        assert array.dtype == np.uint8
        assert (array == 200).all()

    rgba = np.zeros((3, 5, 4), dtype=np.uint8)
    assert to_rgb_array(rgba).shape == (3, 5, 3)
    assert to_rgb_array(np.zeros((3, 5), dtype=np.float32)).shape == (3, 5, 3)
    assert image_size(to_rgb_array(rgba)) == (5, 3)


def test_to_rgb_array_rejects_bad_input(tmp_path):
    with pytest.raises(InvalidImageError):
        to_rgb_array(np.zeros((0, 0, 3), dtype=np.uint8))
    with pytest.raises(InvalidImageError):
        to_rgb_array(tmp_path / "missing.png")
    with pytest.raises(InvalidImageError):
        to_rgb_array(42)


def test_crop_region_clamps_to_image():
    image = solid_image(100, 50)
    assert crop_region(image, BoundingBox(10, 5, 30, 25)).shape == (20, 20, 3)
    assert crop_region(image, BoundingBox(90, 40, 130, 80)).shape == (10, 10, 3)
    assert crop_region(image, BoundingBox(-10, -10, -5, -5)).shape == (5, 5, 3)
    assert crop_region(image, BoundingBox(10, 10, 10.2, 10.2)).shape == (1, 1, 3)


def test_annotation_encodes_png():
    annotated = draw_detections(solid_image(40, 20), [det(0, 0, 10, 10, text="春")])
    data, mime = encode_image_bytes(annotated, format="png")
    assert mime == "image/png"
    assert Image.open(io.BytesIO(data)).size == (40, 20)
