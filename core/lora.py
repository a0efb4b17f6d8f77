"""
``/lora`` sub-commands: ``list [tag]`` and ``info <lora>``.

LoRAs are looked up among the configured ones of the matching audience; the
regular command never shows NSFW entries and ``/lora_nsfw`` shows only those.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from core.errors import ClientError
from core.models import Lora, RecommendedWeights

USAGE_TEXT = "Usage: /lora list [tag] | info <name>"


@dataclass(frozen=True)
class ListLoras:
    tag: str | None = None


@dataclass(frozen=True)
class LoraInfo:
    query: str


LoraCommand = Union[ListLoras, LoraInfo]


def parse_lora_command(text: str) -> LoraCommand:
    head, _, rest = (text or "").strip().partition(" ")
    action = head.lower() or "list"
    rest = rest.strip()
    if action == "list":
        return ListLoras(rest or None)
    if action == "info":
        if not rest:
            raise ClientError("Name the LoRA, e.g. /lora info detail_tweaker")
        return LoraInfo(rest)
    raise ClientError(USAGE_TEXT)


def _search_key(lora: Lora) -> str:
    return " | ".join([lora.id.lower(), lora.name.lower(), *(tag.lower() for tag in lora.tags)])


def find_lora(loras: tuple[Lora, ...], query: str) -> Lora:
    """Exact id or name first, then the entry whose id, name or tags mention ``query`` most."""
    wanted = query.strip().lower()
    for item in loras:
        if wanted in (item.id.lower(), item.name.lower()):
            return item
    scored = [(_search_key(item).count(wanted), item) for item in loras] if wanted else []
    scored = [entry for entry in scored if entry[0] > 0]
    if not scored:
        raise ClientError("That LoRA does not exist.")
    return max(scored, key=lambda entry: entry[0])[1]


def filter_loras(loras: tuple[Lora, ...], tag: str | None) -> tuple[Lora, ...]:
    if tag is None:
        return loras
    wanted = tag.lower()
    return tuple(item for item in loras if wanted in (t.lower() for t in item.tags))


def activation_key(lora: Lora) -> str:
    weights = lora.recommended_weights
    weight = weights.default if weights and weights.default is not None else 1.0
    return f"<lora:{lora.id}:{weight}>"


def describe_weights(weights: RecommendedWeights | None) -> str | None:
    if weights is None or weights.is_empty:
        return None
    if weights.low is None and weights.high is None:
        return f"around {weights.default}"
    if weights.high is None:
        return f"{weights.low} or higher"
    if weights.low is None:
        return f"{weights.high} or lower"
    return f"{weights.low} - {weights.high}"
