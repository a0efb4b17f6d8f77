from __future__ import annotations

from aiogram.types import Message, User


def message_user_id(msg: Message) -> int:
    return msg.from_user.id if msg.from_user else 0


def addresses_bot(msg: Message, me: User) -> bool:
    """True for private chats, replies to the bot and ``@username`` mentions."""
    if msg.chat.type == "private":
        return True
    reply = msg.reply_to_message
    if reply is not None and reply.from_user is not None and reply.from_user.id == me.id:
        return True
    return bool(me.username) and f"@{me.username}".lower() in (msg.text or "").lower()


async def download_image(message: Message | None) -> bytes | None:
    """Bytes of the largest photo, or of an image sent as a document."""
    if message is None or message.bot is None:
        return None
    if message.photo:
        target = message.photo[-1]
    elif message.document and (message.document.mime_type or "").startswith("image/"):
        target = message.document
    else:
        return None
    buffer = await message.bot.download(target)
    return buffer.read() if buffer is not None else None
