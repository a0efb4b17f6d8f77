from __future__ import annotations

import logging

from aiogram import Bot, F, Router
from aiogram.types import Message, User
from aiogram.utils.chat_action import ChatActionSender

from core.app_config import AppConfig
from core.chat_prompting import (
    BOT_IDENTIFIER,
    FALLBACK_REPLY,
    ActionChoice,
    ChatImageParams,
    ChatLine,
    MessageInfo,
    action_choice_messages,
    canonize,
    clean_reply,
    image_params_messages,
    image_request_from_chat,
    parse_action,
    parse_image_params,
    parse_status_message,
    reply_messages,
    resolve_identifiers,
)
from core.errors import BackendError, log_error
from core.formatting import h, waiting_text
from core.orchestrator import GenerationOrchestrator
from core.telegram import addresses_bot, message_user_id
from tg_client import ChatCompletionParams, TGClient

from .generation import submit_generation

logger = logging.getLogger(__name__)


def _message_info(msg: Message, me: User, checkpoints) -> MessageInfo | None:
    text = msg.text or msg.caption or ""
    if msg.from_user is not None and msg.from_user.id == me.id:
        status = parse_status_message(text, checkpoints)
        if status is not None:
            return status
        author = BOT_IDENTIFIER
    else:
        author = msg.from_user.full_name if msg.from_user else "User"
    if me.username:
        text = text.replace(f"@{me.username}", f"@{BOT_IDENTIFIER}")
    if not text.strip():
        return None
    return ChatLine(author, canonize(text))


def register_chat_handlers(
    router: Router,
    app_config: AppConfig,
    orchestrator: GenerationOrchestrator,
    client: TGClient,
) -> None:
    checkpoints = app_config.checkpoints

    async def _choose_action(infos: list[MessageInfo], bot_name: str) -> ActionChoice | None:
        try:
            text = await client.chat_completion(
                ChatCompletionParams(
                    messages=action_choice_messages(infos, bot_name),
                    max_tokens=10,
                    stop=["\n"],
                    should_continue=True,
                )
            )
        except BackendError as exc:
            log_error(logger, exc)
            return None
        action = parse_action(text)
        if action is None:
            logger.warning("Could not read an action from %r", text)
        return action

    async def _image_params(
        infos: list[MessageInfo],
        bot_name: str,
        action: ActionChoice,
    ) -> ChatImageParams | None:
        if not action.generates_image:
            return None
        try:
            text = await client.chat_completion(
                ChatCompletionParams(
                    messages=image_params_messages(infos, bot_name, checkpoints),
                    stop=["\n{{"],
                    should_continue=True,
                )
            )
            return parse_image_params(text, checkpoints)
        except BackendError as exc:
            log_error(logger, exc)
        except ValueError as exc:
            logger.warning("Failed to get image generation params: %s", exc)
        return None

    async def _reply_text(
        infos: list[MessageInfo],
        bot_name: str,
        action: ActionChoice,
        params: ChatImageParams | None,
    ) -> str | None:
        try:
            text = await client.chat_completion(
                ChatCompletionParams(
                    messages=reply_messages(infos, bot_name, action, params),
                    stop=["\n{{"],
                    should_continue=True,
                )
            )
        except BackendError as exc:
            log_error(logger, exc)
            return None
        return clean_reply(text) or None

    @router.message(F.text, ~F.text.startswith("/"))
    async def on_chat_message(msg: Message, bot: Bot):
        me = await bot.me()
        if msg.from_user is None or msg.from_user.is_bot or not addresses_bot(msg, me):
            return

        bot_name = me.first_name
        infos = [
            info
            for info in (
                _message_info(msg.reply_to_message, me, checkpoints) if msg.reply_to_message else None,
                _message_info(msg, me, checkpoints),
            )
            if info is not None
        ]
        if not infos:
            return

        async def work() -> tuple[ChatImageParams | None, str | None]:
            async with ChatActionSender.typing(bot=bot, chat_id=msg.chat.id):
                action = await _choose_action(infos, bot_name)
                params = await _image_params(infos, bot_name, action) if action else None
                text = await _reply_text(infos, bot_name, action or ActionChoice.RESPOND, params)
                return params, text

        try:
            params, text = await orchestrator.run_text(work)
        except BackendError as exc:
            log_error(logger, exc)
            params, text = None, None

        reply = await msg.reply(h(resolve_identifiers(text or FALLBACK_REPLY, bot_name)))
        if params is None:
            return

        status = await reply.reply(waiting_text(0))
        await submit_generation(
            orchestrator,
            image_request_from_chat(params, checkpoints, bot_name),
            status,
            owner_id=message_user_id(msg),
        )
