"""
Parse ``key=value`` options out of command text.

``/txt2img a castle at dusk steps=30 negative="blurry, lowres"`` yields the
free text ``a castle at dusk`` plus the options ``steps`` and ``negative``.
Option names are case-insensitive and ``-`` is treated as ``_``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from core.app_config import IMG2IMG, TXT2IMG
from core.errors import ClientError
from core.models import ImageInput, ResizeMode
from core.resolver import ControlnetRequest, ImageRequest

_OPTION_RE = re.compile(r'(?<!\S)([A-Za-z][\w-]*)=(?:"([^"]*)"|(\S*))')
_SIZE_RE = re.compile(r"^\s*(\d+)\s*[xX×]\s*(\d+)\s*$")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _option_key(raw: str) -> str:
    return raw.strip().lower().replace("-", "_")


@dataclass
class ParsedArgs:
    text: str
    options: dict[str, str] = field(default_factory=dict)

    def has(self, *names: str) -> bool:
        return any(name in self.options for name in names)

    def take_str(self, *names: str) -> str | None:
        for name in names:
            if name in self.options:
                value = self.options.pop(name).strip()
                return value or None
        return None

    def take_int(self, *names: str) -> int | None:
        raw = self.take_str(*names)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            raise ClientError(f"{names[0]} must be a whole number.") from None

    def take_float(self, *names: str) -> float | None:
        raw = self.take_str(*names)
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            raise ClientError(f"{names[0]} must be a number.") from None

    def take_bool(self, *names: str) -> bool | None:
        raw = self.take_str(*names)
        if raw is None:
            return None
        value = raw.lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        raise ClientError(f"{names[0]} must be on or off.")

    def take_size(self, *names: str) -> tuple[int, int] | None:
        raw = self.take_str(*names)
        if raw is None:
            return None
        match = _SIZE_RE.match(raw)
        if not match:
            raise ClientError(f"{names[0]} must look like 768x512.")
        return int(match.group(1)), int(match.group(2))

    def ensure_consumed(self) -> None:
        if self.options:
            unknown = ", ".join(sorted(self.options))
            raise ClientError(f"Unknown option(s): {unknown}")


def parse_args(text: str) -> ParsedArgs:
    options: dict[str, str] = {}

    def take(match: re.Match[str]) -> str:
        key = _option_key(match.group(1))
        quoted, bare = match.group(2), match.group(3)
        if quoted is None and bare.startswith('"'):
            raise ClientError(f"Unterminated quote in option {key}.")
        options[key] = quoted if quoted is not None else bare
        return " "

    rest = _OPTION_RE.sub(take, text or "")
    return ParsedArgs(text=" ".join(rest.split()), options=options)


def parse_resize_mode(raw: str) -> ResizeMode:
    value = raw.strip().lower()
    if value.isdigit():
        try:
            return ResizeMode(int(value))
        except ValueError:
            pass
    for mode in ResizeMode:
        if value in (mode.name.lower(), mode.label.lower()):
            return mode
    choices = ", ".join(mode.name.lower() for mode in ResizeMode)
    raise ClientError(f"resize_mode must be one of: {choices}.")


def image_request_from_args(
    command: str,
    args: ParsedArgs,
    *,
    source_image: ImageInput | None = None,
    control_image: ImageInput | None = None,
) -> ImageRequest:
    """Build an :class:`ImageRequest` from parsed command options."""
    if command not in (TXT2IMG, IMG2IMG):
        raise ClientError(f"Unknown command: {command}")

    prompt = args.take_str("prompt") or args.text or None
    negative = args.take_str("negative", "negative_prompt", "neg")
    width = args.take_int("width", "w")
    height = args.take_int("height", "h")
    size = args.take_size("size")
    if size is not None:
        width = width if width is not None else size[0]
        height = height if height is not None else size[1]

    controlnets: tuple[ControlnetRequest, ...] = ()
    controlnet_type = args.take_str("controlnet", "cn")
    controlnet_weight = args.take_float("controlnet_weight", "cn_weight")
    if controlnet_type is not None or controlnet_weight is not None:
        if control_image is None:
            raise ClientError("Reply to a photo to use it as the ControlNet image.")
        controlnets = (ControlnetRequest(control_image, controlnet_type, controlnet_weight),)

    common = dict(
        command=command,
        prompt=prompt,
        negative_prompt=negative,
        width=width,
        height=height,
        count=args.take_int("count", "n"),
        seed=args.take_int("seed"),
        checkpoint=args.take_str("checkpoint", "model"),
        steps=args.take_int("steps"),
        cfg=args.take_float("cfg"),
        enable_adetailer=args.take_bool("adetailer", "enable_adetailer"),
        controlnets=controlnets,
    )
    if command == TXT2IMG:
        request = ImageRequest(
            **common,
            hires_factor=args.take_float("hires", "hires_factor"),
            hires_steps=args.take_int("hires_steps"),
            hires_denoising=args.take_float("hires_denoising"),
        )
    else:
        resize_raw = args.take_str("resize_mode", "resize")
        request = ImageRequest(
            **common,
            source_image=source_image,
            denoising_strength=args.take_float("denoising", "denoising_strength"),
            resize_mode=parse_resize_mode(resize_raw) if resize_raw is not None else None,
        )
    args.ensure_consumed()
    return request
