from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from core.app_config import IMG2IMG, TXT2IMG, AppConfig, CommandSettings
from core.errors import ClientError
from core.layers import first_set
from core.models import (
    ControlnetUnit,
    GenerationParameters,
    HiresParams,
    ImageInput,
    ResizeMode,
    UserPreferences,
)
from core.prompt_text import merge_prefixes
from core.size import Size, constrain, resolve_desired_size

logger = logging.getLogger(__name__)

MAX_SEED = 2**31 - 1


@dataclass(frozen=True)
class ControlnetRequest:
    image: ImageInput | None
    type_name: str | None = None
    weight: float | None = None


@dataclass(frozen=True)
class ImageRequest:
    """Raw image request as typed by the user; every field is optional."""

    command: str = TXT2IMG
    prompt: str | None = None
    negative_prompt: str | None = None
    width: int | None = None
    height: int | None = None
    count: int | None = None
    seed: int | None = None
    checkpoint: str | None = None
    steps: int | None = None
    cfg: float | None = None
    enable_adetailer: bool | None = None
    hires_factor: float | None = None
    hires_steps: int | None = None
    hires_denoising: float | None = None
    source_image: ImageInput | None = None
    denoising_strength: float | None = None
    resize_mode: ResizeMode | None = None
    controlnets: tuple[ControlnetRequest, ...] = ()


@dataclass(frozen=True)
class DisplayParams:
    """Human readable parameters shown while queued and with the result."""

    main: dict[str, str] = field(default_factory=dict)
    other: dict[str, str] = field(default_factory=dict)
    controlnets: tuple[ControlnetUnit, ...] = ()


@dataclass(frozen=True)
class ResolvedRequest:
    command: str
    params: GenerationParameters
    display: DisplayParams
    warnings: tuple[str, ...] = ()


class ParameterResolver:
    """Merge call overrides, user preferences and configuration into one request."""

    def __init__(self, app_config: AppConfig, *, rng: random.Random | None = None) -> None:
        self.app_config = app_config
        self._rng = rng or random.Random()

    def resolve(
        self,
        request: ImageRequest,
        preferences: UserPreferences | None = None,
    ) -> ResolvedRequest:
        if request.command not in (TXT2IMG, IMG2IMG):
            raise ClientError(f"Unknown command: {request.command}")
        _validate(request)
        prefs = preferences or UserPreferences()
        settings = self.app_config.commands.settings_for(request.command)
        warnings: list[str] = []

        checkpoint_id = self._resolve_checkpoint(request, prefs, settings)
        steps = settings.steps.clamp(first_set(request.steps, prefs.steps, default=settings.steps.default))
        cfg = settings.cfg.clamp(first_set(request.cfg, prefs.cfg, default=settings.cfg.default))
        count = max(
            1,
            settings.count.clamp(first_set(request.count, prefs.count, default=settings.count.default)),
        )
        enable_adetailer = first_set(
            request.enable_adetailer, prefs.enable_adetailer, default=settings.enable_adetailer
        )
        seed = request.seed if request.seed is not None else self._rng.randint(0, MAX_SEED)

        source = request.source_image
        desired = resolve_desired_size(
            first_set(request.width, prefs.width, default=None),
            first_set(request.height, prefs.height, default=None),
            source.width if source else None,
            source.height if source else None,
            default_width=settings.width.default,
            default_height=settings.height.default,
        )
        clamped = Size(settings.width.clamp(desired.width), settings.height.clamp(desired.height))
        size = constrain(clamped, settings.max_pixels)
        if size.pixel_count < desired.pixel_count:
            warnings.append(f"{desired} was reduced to {size} due to size constraints.")
        elif size != desired:
            warnings.append(f"{desired} was adjusted to {size} to fit the allowed range.")

        controlnets = self._resolve_controlnets(request, warnings)

        hires: HiresParams | None = None
        denoising_strength: float | None = None
        resize_mode: ResizeMode | None = None
        if request.command == TXT2IMG:
            hires = self._resolve_hires(request, settings, size, controlnets, warnings)
        else:
            img2img = self.app_config.commands.img2img
            denoising_strength = img2img.denoising_strength.clamp(
                first_set(request.denoising_strength, default=img2img.denoising_strength.default)
            )
            resize_mode = first_set(request.resize_mode, default=img2img.default_resize_mode)

        params = GenerationParameters(
            prompt=merge_prefixes(
                [settings.always_included_prompt, prefs.prompt_prefix],
                request.prompt,
            ),
            negative_prompt=merge_prefixes(
                [settings.always_included_negative_prompt, prefs.negative_prompt_prefix],
                request.negative_prompt,
            ),
            width=size.width,
            height=size.height,
            count=count,
            seed=seed,
            sampler=settings.sampler,
            steps=steps,
            cfg=cfg,
            checkpoint_id=checkpoint_id,
            enable_adetailer=enable_adetailer,
            hires=hires,
            controlnets=controlnets,
            init_image=source.data_url if request.command == IMG2IMG and source else None,
            denoising_strength=denoising_strength,
            resize_mode=resize_mode,
        )
        return ResolvedRequest(
            command=request.command,
            params=params,
            display=self._display(request, params, size),
            warnings=tuple(warnings),
        )

    def _resolve_checkpoint(
        self,
        request: ImageRequest,
        prefs: UserPreferences,
        settings: CommandSettings,
    ) -> str | None:
        candidate = first_set(
            request.checkpoint, prefs.checkpoint, settings.default_checkpoint, default=None
        )
        installed = self.app_config.checkpoints
        if not installed:
            return candidate
        if self.app_config.checkpoint_by_id(candidate) is None:
            if candidate is not None:
                logger.info("Unknown checkpoint %r, using %r", candidate, installed[0].id)
            return installed[0].id
        return candidate

    def _resolve_controlnets(
        self,
        request: ImageRequest,
        warnings: list[str],
    ) -> tuple[ControlnetUnit, ...]:
        if not request.controlnets:
            return ()
        config = self.app_config.controlnet
        units: list[ControlnetUnit] = []
        for index, unit in enumerate(request.controlnets, start=1):
            kind = config.find(unit.type_name)
            if kind is None:
                raise ClientError("ControlNet is not configured.")
            if unit.type_name is not None and kind.name != unit.type_name:
                warnings.append(
                    f"Unknown ControlNet type {unit.type_name!r}, using {kind.name!r} instead."
                )
            if unit.image is None:
                raise ClientError(f"ControlNet {index} image must be an image.")
            units.append(
                ControlnetUnit(
                    image=unit.image.data_url,
                    type=kind,
                    weight=config.weight.clamp(first_set(unit.weight, default=config.weight.default)),
                )
            )
            logger.debug("ControlNet unit %d: %s", index, kind.name)
        return tuple(units)

    def _resolve_hires(
        self,
        request: ImageRequest,
        settings: CommandSettings,
        size: Size,
        controlnets: tuple[ControlnetUnit, ...],
        warnings: list[str],
    ) -> HiresParams | None:
        txt2img = self.app_config.commands.txt2img
        factor = txt2img.hires_factor.clamp(
            first_set(request.hires_factor, default=txt2img.hires_factor.default)
        )
        if factor <= 1.0:
            return None
        if not all(unit.type.supports_hires_fix for unit in controlnets):
            warnings.append("Hires-fix was ignored because a selected ControlNet type does not support it.")
            return None
        scaled = size * factor
        if settings.max_pixels is not None and scaled.pixel_count > settings.max_pixels:
            warnings.append("Hires-fix was ignored due to size constraints.")
            return None
        return HiresParams(
            factor=factor,
            steps=txt2img.hires_steps.clamp(
                first_set(request.hires_steps, default=txt2img.hires_steps.default)
            ),
            upscaler=txt2img.hires_upscaler,
            denoising=txt2img.hires_denoising.clamp(
                first_set(request.hires_denoising, default=txt2img.hires_denoising.default)
            ),
        )

    def _display(
        self,
        request: ImageRequest,
        params: GenerationParameters,
        size: Size,
    ) -> DisplayParams:
        main: dict[str, str] = {}
        if request.prompt:
            main["Prompt"] = request.prompt
        if request.negative_prompt:
            main["Negative prompt"] = request.negative_prompt
        if params.hires is not None:
            main["Size"] = f"{size * params.hires.factor} (scaled up from {size})"
        else:
            main["Size"] = str(size)
        main["Seed"] = str(params.seed)
        checkpoint = self.app_config.checkpoint_by_id(params.checkpoint_id)
        if checkpoint is not None:
            main["Checkpoint"] = checkpoint.name

        other: dict[str, str] = {"Steps": str(params.steps), "CFG": str(params.cfg)}
        if params.hires is not None:
            other["Hires factor"] = str(params.hires.factor)
            other["Hires steps"] = str(params.hires.steps)
            other["Hires denoising"] = str(params.hires.denoising)
        if params.denoising_strength is not None:
            other["Denoising strength"] = str(params.denoising_strength)
        if params.resize_mode is not None:
            other["Resize mode"] = params.resize_mode.label
        if params.enable_adetailer:
            other["ADetailer"] = "on"
        return DisplayParams(main=main, other=other, controlnets=params.controlnets)


def _validate(request: ImageRequest) -> None:
    if request.command == IMG2IMG and (
        request.source_image is None or not request.source_image.data_url
    ):
        raise ClientError("Image must be an image.")
    for index, unit in enumerate(request.controlnets, start=1):
        if unit.image is None or not unit.image.data_url:
            raise ClientError(f"ControlNet {index} image must be an image.")
    if request.count is not None and request.count < 1:
        raise ClientError("count must be at least 1.")
    for name in _NON_NEGATIVE_FIELDS:
        value = getattr(request, name)
        if value is not None and value < 0:
            raise ClientError(f"{name} must not be negative.")


_NON_NEGATIVE_FIELDS = (
    "width",
    "height",
    "seed",
    "steps",
    "cfg",
    "hires_factor",
    "hires_steps",
    "hires_denoising",
    "denoising_strength",
)
