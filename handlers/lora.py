from __future__ import annotations

import logging

from aiogram import Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from core.app_config import AppConfig
from core.errors import ClientError, describe_error, log_error
from core.formatting import format_lora_info, format_lora_list, h
from core.lora import ListLoras, filter_loras, find_lora, parse_lora_command

logger = logging.getLogger(__name__)

_CAPTION_LIMIT = 1024


def register_lora_handlers(router: Router, app_config: AppConfig) -> None:
    async def _handle(msg: Message, text: str, *, nsfw: bool) -> None:
        loras = app_config.lora.available(nsfw=nsfw)
        try:
            parsed = parse_lora_command(text)
            if isinstance(parsed, ListLoras):
                await msg.reply(format_lora_list(filter_loras(loras, parsed.tag), parsed.tag))
                return
            lora = find_lora(loras, parsed.query)
        except ClientError as exc:
            log_error(logger, exc)
            await msg.reply(f"❌ {h(describe_error(exc))}")
            return

        text = format_lora_info(lora)
        if lora.thumbnail_url and len(text) <= _CAPTION_LIMIT:
            try:
                await msg.reply_photo(photo=lora.thumbnail_url, caption=text)
                return
            except TelegramBadRequest as exc:
                logger.info("LoRA thumbnail for %s not sent: %s", lora.id, exc)
        await msg.reply(text)

    @router.message(Command("lora"))
    async def cmd_lora(msg: Message, command: CommandObject):
        await _handle(msg, command.args or "", nsfw=False)

    @router.message(Command("lora_nsfw"))
    async def cmd_lora_nsfw(msg: Message, command: CommandObject):
        await _handle(msg, command.args or "", nsfw=True)
