from __future__ import annotations

import logging

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from core.app_config import AppConfig
from core.errors import ClientError, describe_error, log_error
from core.formatting import format_preferences
from core.formatting import h
from core.storage import PreferenceStore
from core.telegram import message_user_id
from core.user_preferences import (
    ClearPreferences,
    ListPreferences,
    apply_preferences_command,
    describe_preferences,
    parse_preferences_command,
)

logger = logging.getLogger(__name__)


def register_preferences_handlers(
    router: Router,
    app_config: AppConfig,
    store: PreferenceStore,
) -> None:
    @router.message(Command("preferences", "prefs"))
    async def cmd_preferences(msg: Message, command: CommandObject):
        uid = message_user_id(msg)
        try:
            parsed = parse_preferences_command(command.args or "", app_config)
        except ClientError as exc:
            log_error(logger, exc)
            await msg.reply(f"❌ {h(describe_error(exc))}")
            return

        current = store.read(uid)
        if isinstance(parsed, ListPreferences):
            name = msg.from_user.full_name if msg.from_user else str(uid)
            await msg.reply(
                format_preferences(
                    f"Preferences for {name}", describe_preferences(current, app_config)
                )
            )
            return

        if isinstance(parsed, ClearPreferences):
            store.clear(uid)
            logger.info("Cleared preferences of user %s", uid)
            await msg.reply("✅ <b>Preferences cleared</b>")
            return

        updated = apply_preferences_command(parsed, current)
        store.write(uid, updated)
        logger.info("Updated preferences of user %s", uid)
        await msg.reply(
            format_preferences("Preferences updated", describe_preferences(updated, app_config))
        )
