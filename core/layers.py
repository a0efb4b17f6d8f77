from __future__ import annotations

from typing import TypeVar

from core.models import NullableValueRange, ValueRange

V = TypeVar("V")


def first_set(*candidates: V | None, default: V) -> V:
    """Return the first candidate that is not ``None``, else ``default``.

    Candidates are ordered from highest to lowest priority.
    """
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return default


def layer_range(
    override: NullableValueRange | None,
    base: ValueRange,
) -> ValueRange:
    """Overlay a partial per-command range on top of a complete one."""
    if override is None:
        return base
    low = first_set(override.min, default=base.min)
    high = first_set(override.max, default=base.max)
    if low > high:
        low, high = high, low
    default = first_set(override.default, default=base.default)
    return ValueRange(low, high, max(low, min(high, default)))
