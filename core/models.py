from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T", int, float)


@dataclass(frozen=True)
class ValueRange(Generic[T]):
    """Bounds and default of a numeric option."""

    min: T
    max: T
    default: T

    def __post_init__(self) -> None:
        if not self.min <= self.default <= self.max:
            raise ValueError(
                f"invalid range: expected {self.min} <= {self.default} <= {self.max}"
            )

    def clamp(self, value: T) -> T:
        return max(self.min, min(self.max, value))

    def contains(self, value: T) -> bool:
        return self.min <= value <= self.max


@dataclass(frozen=True)
class NullableValueRange(Generic[T]):
    """Per-command partial override of a :class:`ValueRange`."""

    min: T | None = None
    max: T | None = None
    default: T | None = None


@dataclass(frozen=True)
class Checkpoint:
    id: str
    name: str


@dataclass(frozen=True)
class ControlnetTypeParams:
    model: str | None = None
    module: str | None = None
    processor_res: int | None = None
    threshold_a: float | None = None
    threshold_b: float | None = None


@dataclass(frozen=True)
class ControlnetType:
    name: str
    params: ControlnetTypeParams = field(default_factory=ControlnetTypeParams)
    supports_hires_fix: bool = True


@dataclass(frozen=True)
class RecommendedWeights:
    low: float | None = None
    high: float | None = None
    default: float | None = None

    @property
    def is_empty(self) -> bool:
        return self.low is None and self.high is None and self.default is None


@dataclass(frozen=True)
class Lora:
    id: str
    name: str
    url: str | None = None
    thumbnail_url: str | None = None
    nsfw: bool = False
    recommended_weights: RecommendedWeights | None = None
    keywords: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()


class ResizeMode(enum.IntEnum):
    STRETCH = 0
    CROP = 1
    FILL = 2
    LATENT = 3

    @property
    def label(self) -> str:
        return {
            ResizeMode.STRETCH: "Stretch",
            ResizeMode.CROP: "Crop",
            ResizeMode.FILL: "Fill",
            ResizeMode.LATENT: "Latent upscale",
        }[self]


class ResourceClass(enum.Enum):
    """Backend model families that cannot be resident at the same time."""

    IMAGE = "image"
    TEXT = "text"


@dataclass(frozen=True)
class ImageInput:
    """An image supplied by the user, already encoded as a data URL."""

    data_url: str
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class ControlnetUnit:
    image: str
    type: ControlnetType
    weight: float


@dataclass(frozen=True)
class HiresParams:
    factor: float
    steps: int
    upscaler: str
    denoising: float


@dataclass(frozen=True)
class GenerationParameters:
    """Fully resolved request, ready to hand to the image backend."""

    prompt: str | None
    negative_prompt: str | None
    width: int
    height: int
    count: int
    seed: int
    sampler: str
    steps: int
    cfg: float
    checkpoint_id: str | None = None
    enable_adetailer: bool = False
    hires: HiresParams | None = None
    controlnets: tuple[ControlnetUnit, ...] = ()
    init_image: str | None = None
    denoising_strength: float | None = None
    resize_mode: ResizeMode | None = None

    @property
    def is_img2img(self) -> bool:
        return self.init_image is not None


@dataclass(frozen=True)
class UserPreferences:
    """Sparse per-user overrides; ``None`` means "not set"."""

    checkpoint: str | None = None
    steps: int | None = None
    cfg: float | None = None
    width: int | None = None
    height: int | None = None
    count: int | None = None
    prompt_prefix: str | None = None
    negative_prompt_prefix: str | None = None
    enable_adetailer: bool | None = None

    @property
    def is_empty(self) -> bool:
        return self == UserPreferences()
