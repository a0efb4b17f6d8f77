"""
Stable Diffusion WebUI API client.

Talks to the ``/sdapi/v1`` endpoints of an AUTOMATIC1111-compatible server:
- Builds txt2img / img2img payloads from resolved generation parameters
- Adds ControlNet and ADetailer units through ``alwayson_scripts``
- Returns the base64 images of a response, raising ``BackendError`` on failure
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from config import Config
from core.errors import BackendError
from core.models import ControlnetUnit, GenerationParameters

logger = logging.getLogger(__name__)

ADETAILER_ARGS: list[dict[str, Any]] = [
    {"ad_model": "hand_yolov8n.pt", "ad_prompt": "hand"},
    {"ad_model": "face_yolov8n.pt"},
]


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def _controlnet_args(units: tuple[ControlnetUnit, ...]) -> list[dict[str, Any]]:
    args: list[dict[str, Any]] = []
    for unit in units:
        kind = unit.type.params
        entry: dict[str, Any] = {"input_image": unit.image, "weight": unit.weight}
        if kind.module is not None:
            entry["module"] = kind.module
        if kind.model is not None:
            entry["model"] = kind.model
        if kind.processor_res is not None:
            entry["processor_res"] = int(kind.processor_res)
        if kind.threshold_a is not None:
            entry["threshold_a"] = kind.threshold_a
        if kind.threshold_b is not None:
            entry["threshold_b"] = kind.threshold_b
        args.append(entry)
    return args


def _alwayson_scripts(params: GenerationParameters) -> dict[str, Any]:
    scripts: dict[str, Any] = {}
    if params.controlnets:
        scripts["controlnet"] = {"args": _controlnet_args(params.controlnets)}
    if params.enable_adetailer:
        scripts["ADetailer"] = {"args": [dict(item) for item in ADETAILER_ARGS]}
    return scripts


def _common_payload(params: GenerationParameters) -> dict[str, Any]:
    override_settings: dict[str, Any] = {}
    if params.checkpoint_id is not None:
        override_settings["sd_model_checkpoint"] = params.checkpoint_id
    payload: dict[str, Any] = {
        "prompt": params.prompt,
        "negative_prompt": params.negative_prompt,
        "width": params.width,
        "height": params.height,
        "n_iter": params.count,
        "seed": params.seed,
        "sampler_name": params.sampler,
        "steps": params.steps,
        "cfg_scale": params.cfg,
        "override_settings": override_settings,
        "alwayson_scripts": _alwayson_scripts(params),
        "save_images": True,
    }
    return {key: value for key, value in payload.items() if value is not None}


def build_txt2img_payload(params: GenerationParameters) -> dict[str, Any]:
    payload = _common_payload(params)
    hires = params.hires
    payload["enable_hr"] = hires is not None
    if hires is not None:
        payload.update(
            {
                "hr_scale": hires.factor,
                "hr_second_pass_steps": hires.steps,
                "hr_upscaler": hires.upscaler,
                "hr_additional_modules": ["Use same choices"],
                "denoising_strength": hires.denoising,
            }
        )
    return payload


def build_img2img_payload(params: GenerationParameters) -> dict[str, Any]:
    if params.init_image is None:
        raise ValueError("img2img requires an init image")
    payload = _common_payload(params)
    payload["init_images"] = [params.init_image]
    payload["include_init_images"] = False
    if params.denoising_strength is not None:
        payload["denoising_strength"] = params.denoising_strength
    if params.resize_mode is not None:
        payload["resize_mode"] = int(params.resize_mode)
    return payload


def _raise_for_payload(status: int, data: Any) -> None:
    if isinstance(data, dict) and data.get("error"):
        raise BackendError(
            str(data["error"]),
            detail=_opt_text(data.get("detail")),
            errors=_opt_text(data.get("errors")),
        )
    if status >= 400:
        detail = _opt_text(data.get("detail")) if isinstance(data, dict) else None
        raise BackendError(f"Backend responded with HTTP {status}", detail=detail)


def _opt_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SDClient:
    """Async client for the Stable Diffusion WebUI HTTP API."""

    def __init__(self, config: Config) -> None:
        self.base_url = config.sd_api_url
        self.timeout = config.backend_timeout
        self._session: aiohttp.ClientSession | None = None

    # -- session management --------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    # -- generation ----------------------------------------------------------

    async def generate(self, params: GenerationParameters) -> list[str]:
        if params.is_img2img:
            return await self.img2img(params)
        return await self.txt2img(params)

    async def txt2img(self, params: GenerationParameters) -> list[str]:
        return await self._post_images("/sdapi/v1/txt2img", build_txt2img_payload(params))

    async def img2img(self, params: GenerationParameters) -> list[str]:
        return await self._post_images("/sdapi/v1/img2img", build_img2img_payload(params))

    async def _post_images(self, path: str, payload: dict[str, Any]) -> list[str]:
        session = await self._get_session()
        logger.debug(
            "POST %s %dx%d n_iter=%s", path, payload["width"], payload["height"], payload["n_iter"]
        )
        try:
            async with session.post(
                f"{self.base_url}{path}",
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                data = await resp.json(content_type=None)
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise BackendError(
                f"Stable Diffusion request failed: {str(exc) or type(exc).__name__}"
            ) from exc

        _raise_for_payload(status, data)
        images = data.get("images") if isinstance(data, dict) else None
        if not isinstance(images, list):
            raise BackendError("Stable Diffusion response contained no images")
        return [str(item) for item in images]

    async def check_connection(self) -> bool:
        """Return True if the WebUI API is reachable."""
        session = await self._get_session()
        try:
            async with session.get(
                f"{self.base_url}/sdapi/v1/progress",
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False
