"""
Generation settings loaded from ``application.yaml``.

Layout::

    commands:
      global:   {width: {min, max, default}, steps: ..., max_pixels: ...}
      txt2img:  {steps: {default: 30}, hires_factor: ...}
      img2img:  {denoising_strength: ...}
    checkpoints:
      installed: [{id, name}]
    controlnet:
      weight: {min, max, default}
      installed: [{name, params: {...}, supports_hires_fix}]
    lora:
      tags: [...]
      installed: [{id, name, url, thumbnail_url, nsfw, recommended_weights, keywords, tags}]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from core.layers import first_set, layer_range
from core.models import (
    Checkpoint,
    ControlnetType,
    ControlnetTypeParams,
    Lora,
    NullableValueRange,
    RecommendedWeights,
    ResizeMode,
    ValueRange,
)

logger = logging.getLogger(__name__)

TXT2IMG = "txt2img"
IMG2IMG = "img2img"


@dataclass(frozen=True)
class GlobalCommandConfig:
    default_checkpoint: str | None = None
    always_included_prompt: str | None = None
    always_included_negative_prompt: str | None = None
    width: ValueRange[int] = ValueRange(1, 8192, 1024)
    height: ValueRange[int] = ValueRange(1, 8192, 1024)
    max_pixels: int | None = None
    count: ValueRange[int] = ValueRange(1, 9, 1)
    default_sampler: str = "Euler a"
    steps: ValueRange[int] = ValueRange(1, 40, 25)
    cfg: ValueRange[float] = ValueRange(1.0, 30.0, 6.0)
    default_enable_adetailer: bool = False


@dataclass(frozen=True)
class CommandConfig:
    default_checkpoint: str | None = None
    always_included_prompt: str | None = None
    always_included_negative_prompt: str | None = None
    width: NullableValueRange[int] | None = None
    height: NullableValueRange[int] | None = None
    max_pixels: int | None = None
    count: NullableValueRange[int] | None = None
    default_sampler: str | None = None
    steps: NullableValueRange[int] | None = None
    cfg: NullableValueRange[float] | None = None
    default_enable_adetailer: bool | None = None


@dataclass(frozen=True)
class Txt2ImgCommandConfig(CommandConfig):
    hires_factor: ValueRange[float] = ValueRange(1.0, 20.0, 1.0)
    hires_steps: ValueRange[int] = ValueRange(0, 40, 0)
    hires_upscaler: str = "Latent"
    hires_denoising: ValueRange[float] = ValueRange(0.0, 1.0, 0.65)


@dataclass(frozen=True)
class Img2ImgCommandConfig(CommandConfig):
    denoising_strength: ValueRange[float] = ValueRange(0.0, 1.0, 0.6)
    default_resize_mode: ResizeMode = ResizeMode.CROP
    display_source_image_by_default: bool = True


@dataclass(frozen=True)
class CommandSettings:
    """Global and per-command configuration flattened into concrete values."""

    default_checkpoint: str | None
    always_included_prompt: str | None
    always_included_negative_prompt: str | None
    width: ValueRange[int]
    height: ValueRange[int]
    max_pixels: int | None
    count: ValueRange[int]
    sampler: str
    steps: ValueRange[int]
    cfg: ValueRange[float]
    enable_adetailer: bool


@dataclass(frozen=True)
class CommandsConfig:
    global_: GlobalCommandConfig = field(default_factory=GlobalCommandConfig)
    txt2img: Txt2ImgCommandConfig = field(default_factory=Txt2ImgCommandConfig)
    img2img: Img2ImgCommandConfig = field(default_factory=Img2ImgCommandConfig)

    def settings_for(self, command: str) -> CommandSettings:
        if command == TXT2IMG:
            specific: CommandConfig = self.txt2img
        elif command == IMG2IMG:
            specific = self.img2img
        else:
            raise KeyError(command)
        base = self.global_
        return CommandSettings(
            default_checkpoint=first_set(
                specific.default_checkpoint, default=base.default_checkpoint
            ),
            always_included_prompt=first_set(
                specific.always_included_prompt, default=base.always_included_prompt
            ),
            always_included_negative_prompt=first_set(
                specific.always_included_negative_prompt,
                default=base.always_included_negative_prompt,
            ),
            width=layer_range(specific.width, base.width),
            height=layer_range(specific.height, base.height),
            max_pixels=first_set(specific.max_pixels, default=base.max_pixels),
            count=layer_range(specific.count, base.count),
            sampler=first_set(specific.default_sampler, default=base.default_sampler),
            steps=layer_range(specific.steps, base.steps),
            cfg=layer_range(specific.cfg, base.cfg),
            enable_adetailer=first_set(
                specific.default_enable_adetailer, default=base.default_enable_adetailer
            ),
        )


@dataclass(frozen=True)
class ControlnetConfig:
    weight: ValueRange[float] = ValueRange(0.0, 2.0, 1.0)
    installed: tuple[ControlnetType, ...] = ()

    def find(self, name: str | None) -> ControlnetType | None:
        """Look up a type by name, falling back to the first installed one."""
        if not self.installed:
            return None
        for item in self.installed:
            if item.name == name:
                return item
        return self.installed[0]


@dataclass(frozen=True)
class LoraConfig:
    tags: tuple[str, ...] = ()
    installed: tuple[Lora, ...] = ()

    def available(self, *, nsfw: bool) -> tuple[Lora, ...]:
        return tuple(item for item in self.installed if item.nsfw == nsfw)


@dataclass(frozen=True)
class AppConfig:
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    checkpoints: tuple[Checkpoint, ...] = ()
    controlnet: ControlnetConfig = field(default_factory=ControlnetConfig)
    lora: LoraConfig = field(default_factory=LoraConfig)

    def checkpoint_by_id(self, checkpoint_id: str | None) -> Checkpoint | None:
        for item in self.checkpoints:
            if item.id == checkpoint_id:
                return item
        return None

    @classmethod
    def from_dict(cls, raw: Any) -> AppConfig:
        if not isinstance(raw, dict):
            return cls()
        commands_raw = _as_dict(raw.get("commands"))
        checkpoints_raw = _as_dict(raw.get("checkpoints")).get("installed")
        controlnet_raw = _as_dict(raw.get("controlnet"))
        lora_raw = _as_dict(raw.get("lora"))
        return cls(
            commands=CommandsConfig(
                global_=_global_config(_as_dict(commands_raw.get("global"))),
                txt2img=_txt2img_config(_as_dict(commands_raw.get(TXT2IMG))),
                img2img=_img2img_config(_as_dict(commands_raw.get(IMG2IMG))),
            ),
            checkpoints=tuple(_checkpoints(checkpoints_raw)),
            controlnet=ControlnetConfig(
                weight=_value_range(
                    controlnet_raw.get("weight"), ControlnetConfig.weight, float
                ),
                installed=tuple(_controlnet_types(controlnet_raw.get("installed"))),
            ),
            lora=LoraConfig(
                tags=tuple(_str_list(lora_raw.get("tags"))),
                installed=tuple(_loras(lora_raw.get("installed"))),
            ),
        )


def load_app_config(path: str | Path) -> AppConfig:
    config_path = Path(path)
    if not config_path.exists():
        logger.warning("%s not found, using built-in generation defaults", config_path)
        return AppConfig()
    with config_path.open(encoding="utf-8") as stream:
        raw = yaml.safe_load(stream)
    return AppConfig.from_dict(raw)


# ---------------------------------------------------------------------------
# Normalizers
# ---------------------------------------------------------------------------


def _as_dict(raw: Any) -> dict[str, Any]:
    return raw if isinstance(raw, dict) else {}


def _opt_str(raw: Any) -> str | None:
    if raw is None:
        return None
    value = str(raw).strip()
    return value or None


def _opt_int(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _opt_float(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _opt_bool(raw: Any) -> bool | None:
    return raw if isinstance(raw, bool) else None


def _caster(cast: Callable[[Any], Any]) -> Callable[[Any], Any]:
    return _opt_int if cast is int else _opt_float


def _value_range(raw: Any, fallback: ValueRange, cast: Callable[[Any], Any]) -> ValueRange:
    if not isinstance(raw, dict):
        return fallback
    read = _caster(cast)
    return layer_range(
        NullableValueRange(read(raw.get("min")), read(raw.get("max")), read(raw.get("default"))),
        fallback,
    )


def _nullable_range(raw: Any, cast: Callable[[Any], Any]) -> NullableValueRange | None:
    if not isinstance(raw, dict):
        return None
    read = _caster(cast)
    return NullableValueRange(read(raw.get("min")), read(raw.get("max")), read(raw.get("default")))


def _shared_fields(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "default_checkpoint": _opt_str(raw.get("default_checkpoint")),
        "always_included_prompt": _opt_str(raw.get("always_included_prompt")),
        "always_included_negative_prompt": _opt_str(raw.get("always_included_negative_prompt")),
        "max_pixels": _opt_int(raw.get("max_pixels")),
    }


def _global_config(raw: dict[str, Any]) -> GlobalCommandConfig:
    base = GlobalCommandConfig()
    return GlobalCommandConfig(
        **_shared_fields(raw),
        width=_value_range(raw.get("width"), base.width, int),
        height=_value_range(raw.get("height"), base.height, int),
        count=_value_range(raw.get("count"), base.count, int),
        default_sampler=_opt_str(raw.get("default_sampler")) or base.default_sampler,
        steps=_value_range(raw.get("steps"), base.steps, int),
        cfg=_value_range(raw.get("cfg"), base.cfg, float),
        default_enable_adetailer=bool(_opt_bool(raw.get("default_enable_adetailer"))),
    )


def _command_fields(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        **_shared_fields(raw),
        "width": _nullable_range(raw.get("width"), int),
        "height": _nullable_range(raw.get("height"), int),
        "count": _nullable_range(raw.get("count"), int),
        "default_sampler": _opt_str(raw.get("default_sampler")),
        "steps": _nullable_range(raw.get("steps"), int),
        "cfg": _nullable_range(raw.get("cfg"), float),
        "default_enable_adetailer": _opt_bool(raw.get("default_enable_adetailer")),
    }


def _txt2img_config(raw: dict[str, Any]) -> Txt2ImgCommandConfig:
    base = Txt2ImgCommandConfig()
    return Txt2ImgCommandConfig(
        **_command_fields(raw),
        hires_factor=_value_range(raw.get("hires_factor"), base.hires_factor, float),
        hires_steps=_value_range(raw.get("hires_steps"), base.hires_steps, int),
        hires_upscaler=_opt_str(raw.get("hires_upscaler")) or base.hires_upscaler,
        hires_denoising=_value_range(raw.get("hires_denoising"), base.hires_denoising, float),
    )


def _img2img_config(raw: dict[str, Any]) -> Img2ImgCommandConfig:
    base = Img2ImgCommandConfig()
    resize_mode = base.default_resize_mode
    mode_raw = _opt_int(raw.get("default_resize_mode"))
    if mode_raw is not None:
        try:
            resize_mode = ResizeMode(mode_raw)
        except ValueError:
            logger.warning("Unknown img2img resize mode %s, using %s", mode_raw, resize_mode.name)
    display_source = _opt_bool(raw.get("display_source_image_by_default"))
    return Img2ImgCommandConfig(
        **_command_fields(raw),
        denoising_strength=_value_range(
            raw.get("denoising_strength"), base.denoising_strength, float
        ),
        default_resize_mode=resize_mode,
        display_source_image_by_default=(
            base.display_source_image_by_default if display_source is None else display_source
        ),
    )


def _checkpoints(raw: Any) -> list[Checkpoint]:
    if not isinstance(raw, list):
        return []
    items: list[Checkpoint] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        checkpoint_id = _opt_str(entry.get("id"))
        if not checkpoint_id:
            continue
        items.append(Checkpoint(id=checkpoint_id, name=_opt_str(entry.get("name")) or checkpoint_id))
    return items


def _controlnet_types(raw: Any) -> list[ControlnetType]:
    if not isinstance(raw, list):
        return []
    items: list[ControlnetType] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        name = _opt_str(entry.get("name"))
        if not name:
            continue
        params = _as_dict(entry.get("params"))
        supports_hires = _opt_bool(entry.get("supports_hires_fix"))
        items.append(
            ControlnetType(
                name=name,
                params=ControlnetTypeParams(
                    model=_opt_str(params.get("model")),
                    module=_opt_str(params.get("module")),
                    processor_res=_opt_int(params.get("processor_res")),
                    threshold_a=_opt_float(params.get("threshold_a")),
                    threshold_b=_opt_float(params.get("threshold_b")),
                ),
                supports_hires_fix=True if supports_hires is None else supports_hires,
            )
        )
    return items


def _str_list(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [value for value in (_opt_str(item) for item in raw) if value]


def _recommended_weights(raw: Any) -> RecommendedWeights | None:
    if not isinstance(raw, dict):
        return None
    weights = RecommendedWeights(
        low=_opt_float(raw.get("low")),
        high=_opt_float(raw.get("high")),
        default=_opt_float(raw.get("default")),
    )
    return None if weights.is_empty else weights


def _loras(raw: Any) -> list[Lora]:
    if not isinstance(raw, list):
        return []
    items: list[Lora] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        lora_id = _opt_str(entry.get("id"))
        if not lora_id:
            continue
        items.append(
            Lora(
                id=lora_id,
                name=_opt_str(entry.get("name")) or lora_id,
                url=_opt_str(entry.get("url")),
                thumbnail_url=_opt_str(entry.get("thumbnail_url")),
                nsfw=bool(_opt_bool(entry.get("nsfw"))),
                recommended_weights=_recommended_weights(entry.get("recommended_weights")),
                keywords=tuple(_str_list(entry.get("keywords"))),
                tags=tuple(_str_list(entry.get("tags"))),
            )
        )
    return items
