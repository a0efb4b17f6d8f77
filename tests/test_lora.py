from __future__ import annotations

import pytest

from core.app_config import AppConfig
from core.errors import ClientError
from core.formatting import format_lora_info, format_lora_list
from core.lora import (
    ListLoras,
    LoraInfo,
    activation_key,
    describe_weights,
    filter_loras,
    find_lora,
    parse_lora_command,
)
from core.models import Lora, RecommendedWeights

APP_CONFIG = AppConfig.from_dict(
    {
        "lora": {
            "tags": ["style", "detail"],
            "installed": [
                {
                    "id": "add_detail",
                    "name": "Detail Tweaker",
                    "url": "https://example.com/add_detail",
                    "recommended_weights": {"low": -1, "high": 1, "default": 0.5},
                    "tags": ["detail"],
                },
                {
                    "id": "watercolor_v1",
                    "name": "Watercolor Style",
                    "keywords": ["watercolor", "ink wash"],
                    "tags": ["style"],
                },
                {"id": "spicy", "name": "Spicy", "nsfw": True, "recommended_weights": {}},
                {"name": "no id"},
            ],
        }
    }
)


def test_lora_section_is_parsed() -> None:
    config = APP_CONFIG.lora

    assert config.tags == ("style", "detail")
    assert [item.id for item in config.installed] == ["add_detail", "watercolor_v1", "spicy"]
    assert config.installed[0].recommended_weights == RecommendedWeights(-1.0, 1.0, 0.5)
    assert config.installed[1].keywords == ("watercolor", "ink wash")
    assert config.installed[2].recommended_weights is None
    assert [item.id for item in config.available(nsfw=True)] == ["spicy"]
    assert AppConfig().lora.installed == ()


def test_parse_lora_command() -> None:
    assert parse_lora_command("") == ListLoras()
    assert parse_lora_command("list style") == ListLoras("style")
    assert parse_lora_command("INFO Detail Tweaker") == LoraInfo("Detail Tweaker")
    with pytest.raises(ClientError):
        parse_lora_command("info")
    with pytest.raises(ClientError):
        parse_lora_command("delete add_detail")


def test_find_lora_by_id_name_and_search_key() -> None:
    loras = APP_CONFIG.lora.available(nsfw=False)

    assert find_lora(loras, "add_detail").id == "add_detail"
    assert find_lora(loras, "watercolor style").id == "watercolor_v1"
    assert find_lora(loras, "detail").id == "add_detail"
    with pytest.raises(ClientError, match="does not exist"):
        find_lora(loras, "spicy")


def test_filter_loras_by_tag() -> None:
    loras = APP_CONFIG.lora.available(nsfw=False)
    assert [item.id for item in filter_loras(loras, "Style")] == ["watercolor_v1"]
    assert filter_loras(loras, None) == loras


def test_activation_key_and_weights() -> None:
    assert activation_key(Lora("a", "A")) == "<lora:a:1.0>"
    assert activation_key(Lora("a", "A", recommended_weights=RecommendedWeights(default=0.7))) == (
        "<lora:a:0.7>"
    )
    assert describe_weights(None) is None
    assert describe_weights(RecommendedWeights(default=0.8)) == "around 0.8"
    assert describe_weights(RecommendedWeights(low=0.4)) == "0.4 or higher"
    assert describe_weights(RecommendedWeights(high=0.9)) == "0.9 or lower"
    assert describe_weights(RecommendedWeights(low=0.4, high=0.9)) == "0.4 - 0.9"


def test_format_lora_info() -> None:
    text = format_lora_info(APP_CONFIG.lora.installed[0])

    assert text.startswith("<b>Detail Tweaker</b>")
    assert "<b>Activation key:</b> <code>&lt;lora:add_detail:0.5&gt;</code>" in text
    assert "<b>Recommended weights:</b> -1.0 - 1.0" in text
    assert "Keywords" not in text
    assert text.endswith("<i>Tags: detail\nSource: https://example.com/add_detail</i>")

    watercolor = format_lora_info(APP_CONFIG.lora.installed[1])
    assert "<b>Keywords:</b> watercolor, ink wash" in watercolor


def test_format_lora_list() -> None:
    loras = APP_CONFIG.lora.available(nsfw=False)

    assert format_lora_list(loras) == (
        "<b>LoRAs</b>\n"
        "• Detail Tweaker (<code>add_detail</code>)\n"
        "• Watercolor Style (<code>watercolor_v1</code>)"
    )
    assert format_lora_list((), "anime") == "<b>LoRAs tagged anime</b>\nNone"
