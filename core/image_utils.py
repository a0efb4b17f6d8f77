from __future__ import annotations

import base64
import binascii
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from core.errors import ClientError
from core.models import ImageInput

TG_PHOTO_MAX_BYTES = 10 * 1024 * 1024
TG_PHOTO_MAX_SIDE = 4096
TG_PHOTO_MAX_SUM = 10000


_resampling = getattr(Image, "Resampling", None)
LANCZOS_RESAMPLE = getattr(_resampling, "LANCZOS", 1)


def _fit_dimensions(width: int, height: int) -> tuple[int, int]:
    ratio = 1.0
    if width > TG_PHOTO_MAX_SIDE:
        ratio = min(ratio, TG_PHOTO_MAX_SIDE / width)
    if height > TG_PHOTO_MAX_SIDE:
        ratio = min(ratio, TG_PHOTO_MAX_SIDE / height)
    if width * ratio + height * ratio > TG_PHOTO_MAX_SUM:
        ratio = min(ratio, TG_PHOTO_MAX_SUM / (width + height))
    return (int(width * ratio), int(height * ratio)) if ratio < 1.0 else (width, height)


def compress_for_photo(
    image_bytes: bytes,
    max_size: int = TG_PHOTO_MAX_BYTES,
) -> bytes:
    image: Image.Image = Image.open(BytesIO(image_bytes))
    target_w, target_h = _fit_dimensions(image.width, image.height)
    needs_resize = target_w != image.width or target_h != image.height
    if not needs_resize and len(image_bytes) <= max_size:
        return image_bytes

    if image.mode == "RGBA":
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.split()[3])
        image = background
    elif image.mode != "RGB":
        image = image.convert("RGB")

    if needs_resize:
        image = image.resize((target_w, target_h), LANCZOS_RESAMPLE)

    for quality in (95, 90, 85, 80, 70, 60, 50):
        buffer = BytesIO()
        image.save(buffer, format="JPEG", quality=quality, optimize=True)
        if buffer.tell() <= max_size:
            return buffer.getvalue()
    return buffer.getvalue()


def to_image_input(image_bytes: bytes) -> ImageInput:
    """Encode an uploaded image as a data URL together with its size."""
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            width, height = image.width, image.height
            mime = Image.MIME.get(image.format or "", "image/png")
    except (UnidentifiedImageError, OSError):
        raise ClientError("The attached file is not an image.") from None
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return ImageInput(data_url=f"data:{mime};base64,{encoded}", width=width, height=height)


def decode_base64_image(data: str) -> bytes:
    """Decode a base64 image returned by the backend; data URL prefixes are allowed."""
    _, sep, payload = data.partition("base64,")
    try:
        return base64.b64decode(payload if sep else data, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid base64 image data") from exc
