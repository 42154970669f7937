"""Tests for image decoding and model input preparation."""

from __future__ import annotations

import io

import numpy as np
import pytest
from fakes import make_jpeg
from PIL import Image

from coincounter.ml.preprocessing import (
    center_crop_resize,
    decode_image,
    input_size,
    is_channels_first,
    to_model_input,
)


class TestDecodeImage:
    def test_decodes_rgb(self) -> None:
        image = decode_image(make_jpeg(64, 48), max_pixels=10_000)
        assert image.shape == (48, 64, 3)
        assert image.dtype == np.uint8

    def test_converts_grayscale_to_rgb(self) -> None:
        buffer = io.BytesIO()
        Image.new("L", (10, 10), 80).save(buffer, format="PNG")
        assert decode_image(buffer.getvalue(), max_pixels=10_000).shape == (10, 10, 3)

    def test_applies_exif_orientation(self) -> None:
        buffer = io.BytesIO()
        img = Image.new("RGB", (40, 20), (10, 20, 30))
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 degrees clockwise on display
        img.save(buffer, format="JPEG", exif=exif)

        assert decode_image(buffer.getvalue(), max_pixels=10_000).shape == (40, 20, 3)

    def test_rejects_garbage(self) -> None:
        with pytest.raises(ValueError, match="Cannot decode image"):
            decode_image(b"\x00\x01 not an image", max_pixels=10_000)

    def test_rejects_oversized(self) -> None:
        with pytest.raises(ValueError, match="too large"):
            decode_image(make_jpeg(100, 100), max_pixels=9_999)


class TestModelInput:
    def test_center_crop_resize_square(self) -> None:
        image = np.zeros((30, 90, 3), dtype=np.uint8)
        image[:, 30:60] = 255
        out = center_crop_resize(image, 10)
        assert out.shape == (10, 10, 3)
        assert int(out.min()) == 255

    @pytest.mark.parametrize(
        ("shape", "expected"),
        [([1, 3, 224, 224], 224), ([1, 299, 299, 3], 299), (["N", 3, "H", "W"], 224)],
    )
    def test_input_size(self, shape: list[int | str], expected: int) -> None:
        assert input_size(shape) == expected

    def test_layout_detection(self) -> None:
        assert is_channels_first([1, 3, 224, 224])
        assert not is_channels_first([1, 224, 224, 3])

    def test_float_nchw(self) -> None:
        image = np.full((20, 20, 3), 255, dtype=np.uint8)
        tensor = to_model_input(image, [1, 3, 8, 8])
        assert tensor.shape == (1, 3, 8, 8)
        assert tensor.dtype == np.float32
        assert np.allclose(tensor, 1.0)

    def test_uint8_nhwc(self) -> None:
        image = np.full((20, 20, 3), 7, dtype=np.uint8)
        tensor = to_model_input(image, [1, 8, 8, 3], "tensor(uint8)")
        assert tensor.shape == (1, 8, 8, 3)
        assert tensor.dtype == np.uint8
        assert int(tensor.max()) == 7
