from __future__ import annotations

import pytest

from core.layers import first_set, layer_range
from core.models import NullableValueRange, ValueRange


def test_first_set_priority() -> None:
    assert first_set(5, 3, 2, default=1) == 5
    assert first_set(None, 3, 2, default=1) == 3
    assert first_set(None, None, 2, default=1) == 2
    assert first_set(None, None, None, default=1) == 1


def test_first_set_keeps_falsy_values() -> None:
    assert first_set(0, 3, default=1) == 0
    assert first_set(False, True, default=True) is False


def test_layer_range_overlays_partial_override() -> None:
    base = ValueRange(1, 40, 25)
    assert layer_range(None, base) is base
    assert layer_range(NullableValueRange(default=30), base) == ValueRange(1, 40, 30)
    assert layer_range(NullableValueRange(max=20), base) == ValueRange(1, 20, 20)
    assert layer_range(NullableValueRange(min=50, max=10), base) == ValueRange(10, 50, 25)


def test_value_range_validates_default() -> None:
    with pytest.raises(ValueError):
        ValueRange(1, 10, 20)
    assert ValueRange(1.0, 2.0, 1.5).clamp(3.0) == 2.0
    assert not ValueRange(1, 2, 1).contains(0)
