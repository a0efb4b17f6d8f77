from __future__ import annotations

import pytest

from core.app_config import AppConfig
from core.errors import ClientError
from core.models import UserPreferences
from core.user_preferences import (
    ClearPreferences,
    ListPreferences,
    ResetPreferences,
    SetPreferences,
    apply_preferences_command,
    describe_preferences,
    normalize_user_preferences,
    parse_preferences_command,
    preferences_to_dict,
)

APP_CONFIG = AppConfig.from_dict(
    {
        "commands": {"global": {"steps": {"min": 1, "max": 40, "default": 25}}},
        "checkpoints": {"installed": [{"id": "anime.safetensors", "name": "[Anime] Mix"}]},
    }
)


def test_normalize_user_preferences_drops_invalid_values() -> None:
    prefs = normalize_user_preferences(
        {
            "checkpoint": "  anime.safetensors ",
            "steps": "30",
            "cfg": 7,
            "width": True,
            "count": 2,
            "prompt_prefix": "   ",
            "enable_adetailer": "yes",
            "unknown": 1,
        }
    )

    assert prefs == UserPreferences(checkpoint="anime.safetensors", cfg=7.0, count=2)
    assert normalize_user_preferences(["not", "a", "dict"]) == UserPreferences()


def test_preferences_to_dict_keeps_set_fields_only() -> None:
    assert preferences_to_dict(UserPreferences(steps=30, enable_adetailer=False)) == {
        "steps": 30,
        "enable_adetailer": False,
    }


def test_parse_list_and_clear() -> None:
    assert parse_preferences_command("", APP_CONFIG) == ListPreferences()
    assert parse_preferences_command("list", APP_CONFIG) == ListPreferences()
    assert parse_preferences_command("CLEAR", APP_CONFIG) == ClearPreferences()


def test_parse_set_uses_aliases_and_checkpoint_names() -> None:
    command = parse_preferences_command(
        'set model="[anime] mix" steps=30 prefix="best quality" adetailer=off',
        APP_CONFIG,
    )

    assert command == SetPreferences(
        UserPreferences(
            checkpoint="anime.safetensors",
            steps=30,
            prompt_prefix="best quality",
            enable_adetailer=False,
        )
    )


@pytest.mark.parametrize(
    "text",
    [
        "set",
        "set steps=100",
        "set checkpoint=missing",
        "set sampler=euler",
        "set 30",
        "reset",
        "reset colour",
        "frobnicate",
    ],
)
def test_parse_rejects_bad_input(text: str) -> None:
    with pytest.raises(ClientError):
        parse_preferences_command(text, APP_CONFIG)


def test_apply_set_reset_and_clear() -> None:
    current = UserPreferences(steps=20, cfg=5.0)

    updated = apply_preferences_command(SetPreferences(UserPreferences(steps=30, width=768)), current)
    assert updated == UserPreferences(steps=30, cfg=5.0, width=768)

    reset = apply_preferences_command(
        parse_preferences_command("reset steps, cfg", APP_CONFIG), updated
    )
    assert reset == UserPreferences(width=768)
    assert parse_preferences_command("reset steps steps", APP_CONFIG) == ResetPreferences(("steps",))

    assert apply_preferences_command(ListPreferences(), current) is current
    assert apply_preferences_command(ClearPreferences(), current) == UserPreferences()


def test_describe_preferences_uses_checkpoint_names() -> None:
    entries = describe_preferences(
        UserPreferences(checkpoint="anime.safetensors", width=768, enable_adetailer=True),
        APP_CONFIG,
    )

    assert entries == [
        ("checkpoint", "[Anime] Mix"),
        ("width", "768px"),
        ("enable_adetailer", "on"),
    ]
