from __future__ import annotations

import base64
from io import BytesIO

import pytest
from PIL import Image

from core.errors import ClientError
from core.image_utils import (
    TG_PHOTO_MAX_SIDE,
    _fit_dimensions,
    compress_for_photo,
    decode_base64_image,
    to_image_input,
)


def _png(width: int, height: int) -> bytes:
    buffer = BytesIO()
    Image.new("RGBA", (width, height), (255, 0, 0, 128)).save(buffer, format="PNG")
    return buffer.getvalue()


def test_to_image_input_builds_data_url() -> None:
    data = _png(64, 32)
    image = to_image_input(data)

    assert (image.width, image.height) == (64, 32)
    assert image.data_url == "data:image/png;base64," + base64.b64encode(data).decode("ascii")


def test_to_image_input_rejects_non_images() -> None:
    with pytest.raises(ClientError):
        to_image_input(b"definitely not an image")


def test_decode_base64_image_accepts_data_urls() -> None:
    data = _png(8, 8)
    encoded = base64.b64encode(data).decode("ascii")

    assert decode_base64_image(encoded) == data
    assert decode_base64_image(f"data:image/png;base64,{encoded}") == data


def test_fit_dimensions() -> None:
    assert _fit_dimensions(1024, 768) == (1024, 768)
    width, height = _fit_dimensions(8192, 1024)
    assert width == TG_PHOTO_MAX_SIDE
    assert height == 512


def test_compress_for_photo_keeps_small_images_and_shrinks_large_ones() -> None:
    small = _png(32, 32)
    assert compress_for_photo(small) == small

    compressed = compress_for_photo(_png(64, 64), max_size=10)
    with Image.open(BytesIO(compressed)) as image:
        assert image.size == (64, 64)
        assert image.format == "JPEG"
