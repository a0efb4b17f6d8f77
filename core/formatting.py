from __future__ import annotations

import html as _html
from collections.abc import Iterable, Mapping
from typing import Any

from core.lora import activation_key, describe_weights
from core.models import ControlnetUnit, Lora

WAITING_TITLE = "Waiting..."
GENERATING_TITLE = "Generating..."
COMPLETED_TITLE = "Generation complete"
FAILED_TITLE = "Generation failed"

_MAX_MESSAGE_LEN = 4000


def h(text: Any) -> str:
    """HTML-escape user-provided text for Telegram HTML mode."""
    return _html.escape(str(text))


def truncate(text: str, max_len: int = 80) -> str:
    text = text.replace("\n", " ").strip()
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "\u2026"


def format_params(params: Mapping[str, str]) -> str:
    return "\n".join(f"<b>{h(key)}:</b> {h(value)}" for key, value in params.items())


def format_footer(params: Mapping[str, str]) -> str:
    if not params:
        return ""
    return "<i>" + " · ".join(f"{h(key)}: {h(value)}" for key, value in params.items()) + "</i>"


def format_warnings(warnings: Iterable[str]) -> str:
    return "\n".join(f"⚠️ {h(item)}" for item in warnings)


def format_controlnets(units: Iterable[ControlnetUnit]) -> str:
    lines = [
        f"<b>ControlNet {index}:</b> {h(unit.type.name)} (weight {unit.weight})"
        for index, unit in enumerate(units, start=1)
    ]
    return "\n".join(lines)


def _status_text(
    title: str,
    *,
    main: Mapping[str, str] | None = None,
    other: Mapping[str, str] | None = None,
    warnings: Iterable[str] = (),
    controlnets: Iterable[ControlnetUnit] = (),
) -> str:
    blocks = [
        f"<b>{h(title)}</b>",
        format_params(main or {}),
        format_controlnets(controlnets),
        format_warnings(warnings),
        format_footer(other or {}),
    ]
    text = "\n\n".join(block for block in blocks if block)
    if len(text) > _MAX_MESSAGE_LEN:
        text = _status_text(
            title,
            main={key: truncate(value, 300) for key, value in (main or {}).items()},
            warnings=warnings,
        )
    return text


def waiting_text(position: int, **blocks) -> str:
    title = WAITING_TITLE if position <= 0 else f"{WAITING_TITLE} (position {position} in queue)"
    return _status_text(title, **blocks)


def generating_text(**blocks) -> str:
    return _status_text(GENERATING_TITLE, **blocks)


def completed_text(**blocks) -> str:
    return _status_text(COMPLETED_TITLE, **blocks)


def failed_text(error: str, **blocks) -> str:
    warnings = [error, *blocks.pop("warnings", ())]
    return _status_text(FAILED_TITLE, warnings=warnings, **blocks)


def format_request_status(state: str, position: int | None) -> str:
    if state == "queued" and position:
        return f"queued (position {position})"
    return state


def format_queue_status(length: int, own_states: Iterable[str]) -> str:
    states = list(own_states)
    lines = [f"<b>Queue:</b> {length} task(s)"]
    if states:
        lines.append(f"<b>Your requests:</b> {h(', '.join(states))}")
    return "\n".join(lines)


def format_preferences(title: str, entries: Iterable[tuple[str, str]]) -> str:
    rows = [f"<b>{h(key)}</b> = {h(value)}" for key, value in entries]
    return f"<b>{h(title)}</b>\n" + ("\n".join(rows) if rows else "None")


def format_lora_info(lora: Lora) -> str:
    lines = [
        f"<b>{h(lora.name)}</b>",
        "",
        "<b>How to use this LoRA</b>",
        "Add the activation key below to your prompt and adjust its weight.",
    ]
    if lora.keywords:
        lines.append(
            "<i>This LoRA has keywords. Adding them to your prompt will make it more likely to have an effect.</i>"
        )
    lines.append("")
    lines.append(f"<b>Activation key:</b> <code>{h(activation_key(lora))}</code>")
    if lora.keywords:
        lines.append(f"<b>Keywords:</b> {h(', '.join(lora.keywords))}")
    weights = describe_weights(lora.recommended_weights)
    if weights:
        lines.append(f"<b>Recommended weights:</b> {h(weights)}")
    footer = []
    if lora.tags:
        footer.append(f"Tags: {h(', '.join(lora.tags))}")
    if lora.url:
        footer.append(f"Source: {h(lora.url)}")
    if footer:
        lines.append("")
        lines.append("<i>" + "\n".join(footer) + "</i>")
    return "\n".join(lines)


def format_lora_list(loras: Iterable[Lora], tag: str | None = None) -> str:
    title = "LoRAs" if tag is None else f"LoRAs tagged {tag}"
    rows = [f"• {h(item.name)} (<code>{h(item.id)}</code>)" for item in loras]
    return f"<b>{h(title)}</b>\n" + ("\n".join(rows) if rows else "None")
