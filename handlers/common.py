from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message
from aiogram.types.base import TelegramObject

from config import Config
from core.formatting import format_queue_status, format_request_status
from core.orchestrator import GenerationOrchestrator
from core.telegram import message_user_id
from core.ui_copy import ACCESS_DENIED_TEXT, HELP_TEXT, NOTHING_TO_CANCEL_TEXT, START_TEXT

logger = logging.getLogger(__name__)


def is_allowed(cfg: Config, user_id: int | None) -> bool:
    return not cfg.allowed_users or (user_id is not None and user_id in cfg.allowed_users)


def register_common_handlers(
    router: Router,
    cfg: Config,
    orchestrator: GenerationOrchestrator,
) -> None:
    async def wl_msg(
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        if not isinstance(event, Message):
            return await handler(event, data)
        user_id = event.from_user.id if event.from_user else None
        if not is_allowed(cfg, user_id):
            logger.info("Rejected message from user %s", user_id)
            if (event.text or event.caption or "").startswith("/"):
                await event.answer(ACCESS_DENIED_TEXT)
            return None
        return await handler(event, data)

    router.message.outer_middleware(wl_msg)

    @router.message(CommandStart())
    async def cmd_start(msg: Message):
        await msg.answer(START_TEXT)

    @router.message(Command("help"))
    async def cmd_help(msg: Message):
        await msg.answer(HELP_TEXT)

    @router.message(Command("queue"))
    async def cmd_queue(msg: Message):
        uid = message_user_id(msg)
        states = [
            format_request_status(state.value, position)
            for state, position in orchestrator.request_status(uid)
        ]
        await msg.answer(format_queue_status(len(orchestrator.queue), states))

    @router.message(Command("cancel"))
    async def cmd_cancel(msg: Message):
        uid = message_user_id(msg)
        cancelled = await orchestrator.cancel_pending(uid)
        if cancelled:
            logger.info("User %s cancelled %d queued request(s)", uid, cancelled)
            await msg.answer(f"🛑 Cancelled {cancelled} waiting request(s).")
        else:
            await msg.answer(NOTHING_TO_CANCEL_TEXT)
