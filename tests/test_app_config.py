from __future__ import annotations

from pathlib import Path

import pytest

from core.app_config import IMG2IMG, TXT2IMG, AppConfig, load_app_config
from core.models import ResizeMode, ValueRange


def _raw_config() -> dict:
    return {
        "commands": {
            "global": {
                "always_included_prompt": "masterpiece",
                "width": {"min": 64, "max": 2048, "default": 512},
                "steps": {"min": 1, "max": 50, "default": 20},
                "max_pixels": 1_000_000,
            },
            "txt2img": {"steps": {"default": 30}, "hires_upscaler": "ESRGAN"},
            "img2img": {"steps": {"max": 25}, "default_resize_mode": 2},
        },
        "checkpoints": {
            "installed": [
                {"id": "a.safetensors", "name": "[Anime] A"},
                {"id": "b.safetensors"},
                {"name": "no id"},
            ]
        },
        "controlnet": {
            "weight": {"max": 1.5},
            "installed": [
                {"name": "canny", "params": {"module": "canny", "processor_res": "512"}},
                {"name": "depth", "supports_hires_fix": False},
            ],
        },
    }


def test_from_dict_reads_every_section() -> None:
    config = AppConfig.from_dict(_raw_config())

    assert config.commands.global_.width == ValueRange(64, 2048, 512)
    assert config.commands.txt2img.hires_upscaler == "ESRGAN"
    assert config.commands.img2img.default_resize_mode is ResizeMode.FILL
    assert [item.id for item in config.checkpoints] == ["a.safetensors", "b.safetensors"]
    assert config.checkpoints[1].name == "b.safetensors"
    assert config.controlnet.weight == ValueRange(0.0, 1.5, 1.0)
    assert config.controlnet.installed[0].params.processor_res == 512
    assert config.controlnet.installed[1].supports_hires_fix is False


def test_settings_for_layers_command_over_global() -> None:
    config = AppConfig.from_dict(_raw_config())

    txt2img = config.commands.settings_for(TXT2IMG)
    img2img = config.commands.settings_for(IMG2IMG)

    assert txt2img.steps == ValueRange(1, 50, 30)
    assert img2img.steps == ValueRange(1, 25, 20)
    assert txt2img.always_included_prompt == "masterpiece"
    assert txt2img.max_pixels == 1_000_000
    with pytest.raises(KeyError):
        config.commands.settings_for("upscale")


def test_controlnet_find_falls_back_to_first_type() -> None:
    config = AppConfig.from_dict(_raw_config())

    assert config.controlnet.find("depth").name == "depth"
    assert config.controlnet.find("pose").name == "canny"
    assert AppConfig().controlnet.find("canny") is None


def test_unknown_resize_mode_keeps_default() -> None:
    config = AppConfig.from_dict({"commands": {"img2img": {"default_resize_mode": 9}}})
    assert config.commands.img2img.default_resize_mode is ResizeMode.CROP


def test_load_app_config_handles_missing_and_present_files(tmp_path: Path) -> None:
    assert load_app_config(tmp_path / "missing.yaml") == AppConfig()

    path = tmp_path / "application.yaml"
    path.write_text(
        "commands:\n  global:\n    default_sampler: DPM++ 2M\n",
        encoding="utf-8",
    )
    assert load_app_config(path).commands.global_.default_sampler == "DPM++ 2M"
