from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Union

from core.app_config import AppConfig
from core.command_args import ParsedArgs, parse_args
from core.errors import ClientError
from core.models import UserPreferences, ValueRange

PREFERENCE_FIELDS: tuple[str, ...] = tuple(item.name for item in fields(UserPreferences))

_ALIASES = {
    "adetailer": "enable_adetailer",
    "model": "checkpoint",
    "prefix": "prompt_prefix",
    "negative_prefix": "negative_prompt_prefix",
}


@dataclass(frozen=True)
class ListPreferences:
    pass


@dataclass(frozen=True)
class SetPreferences:
    updates: UserPreferences


@dataclass(frozen=True)
class ResetPreferences:
    names: tuple[str, ...]


@dataclass(frozen=True)
class ClearPreferences:
    pass


PreferencesCommand = Union[ListPreferences, SetPreferences, ResetPreferences, ClearPreferences]


# ---------------------------------------------------------------------------
# Stored form
# ---------------------------------------------------------------------------


def normalize_user_preferences(raw: Any) -> UserPreferences:
    if not isinstance(raw, dict):
        return UserPreferences()

    def _int(key: str) -> int | None:
        value = raw.get(key)
        return value if isinstance(value, int) and not isinstance(value, bool) else None

    def _float(key: str) -> float | None:
        value = raw.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def _str(key: str) -> str | None:
        value = raw.get(key)
        if not isinstance(value, str):
            return None
        return value.strip() or None

    adetailer = raw.get("enable_adetailer")
    return UserPreferences(
        checkpoint=_str("checkpoint"),
        steps=_int("steps"),
        cfg=_float("cfg"),
        width=_int("width"),
        height=_int("height"),
        count=_int("count"),
        prompt_prefix=_str("prompt_prefix"),
        negative_prompt_prefix=_str("negative_prompt_prefix"),
        enable_adetailer=adetailer if isinstance(adetailer, bool) else None,
    )


def preferences_to_dict(preferences: UserPreferences) -> dict[str, Any]:
    return {key: value for key, value in asdict(preferences).items() if value is not None}


# ---------------------------------------------------------------------------
# /preferences sub-commands
# ---------------------------------------------------------------------------


def _field_name(raw: str) -> str:
    key = raw.strip().lower().replace("-", "_")
    key = _ALIASES.get(key, key)
    if key not in PREFERENCE_FIELDS:
        raise ClientError(
            f"Unknown preference: {raw}. Known: {', '.join(PREFERENCE_FIELDS)}"
        )
    return key


def _in_range(name: str, value: Any, bounds: ValueRange) -> Any:
    if value is None:
        return None
    if not bounds.contains(value):
        raise ClientError(f"{name} must be between {bounds.min} and {bounds.max}.")
    return value


def _checkpoint_id(raw: str | None, app_config: AppConfig) -> str | None:
    if raw is None:
        return None
    for item in app_config.checkpoints:
        if raw == item.id or raw.lower() == item.name.lower():
            return item.id
    raise ClientError(f"Unknown checkpoint: {raw}")


def _parse_set(args: ParsedArgs, app_config: AppConfig) -> SetPreferences:
    if args.text:
        raise ClientError("Use name=value pairs, e.g. /preferences set steps=30")
    args.options = {_field_name(key): value for key, value in args.options.items()}
    if not args.options:
        raise ClientError("Nothing to set.")
    limits = app_config.commands.global_
    updates = UserPreferences(
        checkpoint=_checkpoint_id(args.take_str("checkpoint"), app_config),
        steps=_in_range("steps", args.take_int("steps"), limits.steps),
        cfg=_in_range("cfg", args.take_float("cfg"), limits.cfg),
        width=_in_range("width", args.take_int("width"), limits.width),
        height=_in_range("height", args.take_int("height"), limits.height),
        count=_in_range("count", args.take_int("count"), limits.count),
        prompt_prefix=args.take_str("prompt_prefix"),
        negative_prompt_prefix=args.take_str("negative_prompt_prefix"),
        enable_adetailer=args.take_bool("enable_adetailer"),
    )
    args.ensure_consumed()
    if updates.is_empty:
        raise ClientError("Nothing to set.")
    return SetPreferences(updates)


def parse_preferences_command(text: str, app_config: AppConfig) -> PreferencesCommand:
    """Parse ``list | set k=v ... | reset name ... | clear``."""
    head, _, rest = (text or "").strip().partition(" ")
    action = head.lower() or "list"
    if action == "list":
        return ListPreferences()
    if action == "clear":
        return ClearPreferences()
    if action == "set":
        return _parse_set(parse_args(rest), app_config)
    if action == "reset":
        names = tuple(dict.fromkeys(_field_name(item) for item in rest.replace(",", " ").split()))
        if not names:
            raise ClientError("Name the preferences to reset, e.g. /preferences reset steps cfg")
        return ResetPreferences(names)
    raise ClientError("Usage: /preferences list | set name=value ... | reset name ... | clear")


def apply_preferences_command(
    command: PreferencesCommand,
    current: UserPreferences,
) -> UserPreferences:
    """Return the preferences after ``command``. ``list`` changes nothing."""
    if isinstance(command, ListPreferences):
        return current
    if isinstance(command, SetPreferences):
        changes = {
            key: value for key, value in asdict(command.updates).items() if value is not None
        }
        return replace(current, **changes)
    if isinstance(command, ResetPreferences):
        return replace(current, **{name: None for name in command.names})
    if isinstance(command, ClearPreferences):
        return UserPreferences()
    raise TypeError(f"Unhandled preferences command: {command!r}")


def describe_preferences(
    preferences: UserPreferences,
    app_config: AppConfig,
) -> list[tuple[str, str]]:
    """Human readable ``(name, value)`` pairs of the set preferences."""
    entries: list[tuple[str, str]] = []
    if preferences.checkpoint is not None:
        checkpoint = app_config.checkpoint_by_id(preferences.checkpoint)
        entries.append(("checkpoint", checkpoint.name if checkpoint else preferences.checkpoint))
    if preferences.steps is not None:
        entries.append(("steps", str(preferences.steps)))
    if preferences.cfg is not None:
        entries.append(("cfg", str(preferences.cfg)))
    if preferences.width is not None:
        entries.append(("width", f"{preferences.width}px"))
    if preferences.height is not None:
        entries.append(("height", f"{preferences.height}px"))
    if preferences.count is not None:
        entries.append(("count", str(preferences.count)))
    if preferences.prompt_prefix is not None:
        entries.append(("prompt_prefix", f'"{preferences.prompt_prefix}"'))
    if preferences.negative_prompt_prefix is not None:
        entries.append(("negative_prompt_prefix", f'"{preferences.negative_prompt_prefix}"'))
    if preferences.enable_adetailer is not None:
        entries.append(("enable_adetailer", "on" if preferences.enable_adetailer else "off"))
    return entries
