from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Size:
    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def __add__(self, other: Size) -> Size:
        return Size(self.width + other.width, self.height + other.height)

    def __sub__(self, other: Size) -> Size:
        return Size(self.width - other.width, self.height - other.height)

    def __mul__(self, factor: int | float) -> Size:
        if isinstance(factor, int):
            return Size(self.width * factor, self.height * factor)
        return Size(int(self.width * factor), int(self.height * factor))

    __rmul__ = __mul__

    def __floordiv__(self, divisor: int) -> Size:
        return Size(self.width // divisor, self.height // divisor)


def resolve_desired_size(
    specified_width: int | None = None,
    specified_height: int | None = None,
    original_width: int | None = None,
    original_height: int | None = None,
    *,
    default_width: int,
    default_height: int,
) -> Size:
    """Pick the requested size.

    A missing dimension falls back to the command default. A dimension of
    zero means "same as the source image" and falls back to the default when
    there is no source image.
    """
    width = default_width if specified_width is None else specified_width
    height = default_height if specified_height is None else specified_height
    if width == 0:
        width = original_width or default_width
    if height == 0:
        height = original_height or default_height
    return Size(max(1, width), max(1, height))


def constrain(size: Size, max_pixels: int | None) -> Size:
    """Scale ``size`` down to fit into ``max_pixels``, keeping its aspect ratio."""
    if size.pixel_count <= 0:
        return Size(1, 1)
    if max_pixels is None or size.pixel_count <= max_pixels:
        return size
    ratio = size.aspect_ratio
    width = max(1, math.floor(math.sqrt(max_pixels * ratio)))
    height = max(1, math.floor(math.sqrt(max_pixels / ratio)))
    # a side clamped to one pixel leaves the budget to the other side
    if width * height > max_pixels:
        if width == 1:
            height = max(1, max_pixels)
        else:
            width = max(1, max_pixels // height)
    return Size(width, height)
