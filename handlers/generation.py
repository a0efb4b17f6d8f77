from __future__ import annotations

import logging

from aiogram import Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command, CommandObject
from aiogram.types import BufferedInputFile, InputMediaPhoto, Message

from core.app_config import IMG2IMG, TXT2IMG, AppConfig
from core.command_args import image_request_from_args, parse_args
from core.errors import ClientError, describe_error
from core.formatting import completed_text, failed_text, generating_text, waiting_text
from core.image_utils import compress_for_photo, decode_base64_image, to_image_input
from core.models import ImageInput
from core.orchestrator import GenerationObserver, GenerationOrchestrator, ImageResult, Outcome
from core.resolver import DisplayParams, ImageRequest
from core.telegram import download_image, message_user_id

logger = logging.getLogger(__name__)

_MEDIA_GROUP_LIMIT = 10


class StatusMessageObserver(GenerationObserver):
    """Mirror the request lifecycle into one editable status message."""

    def __init__(self, status: Message, *, source_image: bytes | None = None) -> None:
        self.status = status
        self.source_image = source_image

    async def _edit(self, text: str) -> None:
        try:
            await self.status.edit_text(text)
        except TelegramBadRequest as exc:
            logger.debug("Status message not updated: %s", exc)

    async def on_queue_position_changed(self, position: int, display: DisplayParams) -> None:
        await self._edit(
            waiting_text(
                position,
                main=display.main,
                other=display.other,
                controlnets=display.controlnets,
            )
        )

    async def on_run_started(self, display: DisplayParams) -> None:
        await self._edit(
            generating_text(main=display.main, other=display.other, controlnets=display.controlnets)
        )

    async def on_succeeded(self, result: ImageResult) -> None:
        display = result.display
        await self._edit(
            completed_text(
                main=display.main,
                other=display.other,
                warnings=result.warnings,
                controlnets=display.controlnets,
            )
        )
        await deliver_result(self.status, result, source_image=self.source_image)

    async def on_failed(
        self,
        error: Exception,
        display: DisplayParams,
        warnings: tuple[str, ...],
    ) -> None:
        await self._edit(
            failed_text(
                describe_error(error),
                main=display.main,
                other=display.other,
                warnings=warnings,
                controlnets=display.controlnets,
            )
        )


async def deliver_result(
    status: Message,
    result: ImageResult,
    *,
    source_image: bytes | None = None,
) -> None:
    media: list[InputMediaPhoto] = []
    if source_image is not None:
        media.append(
            InputMediaPhoto(
                media=BufferedInputFile(compress_for_photo(source_image), "source.jpg"),
                caption="Source",
            )
        )
    for index, image in enumerate(result.images):
        media.append(
            InputMediaPhoto(
                media=BufferedInputFile(
                    compress_for_photo(decode_base64_image(image)),
                    f"{result.seed + index}.png",
                ),
                caption=f"Seed: {result.seed + index}",
            )
        )
    for index, (unit, preview) in enumerate(result.controlnet_images, start=1):
        if preview is None:
            continue
        media.append(
            InputMediaPhoto(
                media=BufferedInputFile(decode_base64_image(preview), f"controlnet_{index}.png"),
                caption=f"ControlNet {index}: {unit.type.name}",
            )
        )

    for start in range(0, len(media), _MEDIA_GROUP_LIMIT):
        chunk = media[start : start + _MEDIA_GROUP_LIMIT]
        if len(chunk) == 1:
            await status.reply_photo(photo=chunk[0].media, caption=chunk[0].caption)
        else:
            await status.reply_media_group(media=chunk)


async def submit_generation(
    orchestrator: GenerationOrchestrator,
    request: ImageRequest,
    status: Message,
    *,
    owner_id: int,
    source_image: bytes | None = None,
) -> Outcome:
    observer = StatusMessageObserver(status, source_image=source_image)
    return await orchestrator.generate_image(request, owner_id=owner_id, observer=observer)


def register_generation_handlers(
    router: Router,
    app_config: AppConfig,
    orchestrator: GenerationOrchestrator,
) -> None:
    async def _generate(msg: Message, command_name: str, text: str) -> None:
        uid = message_user_id(msg)
        status = await msg.reply(waiting_text(0))
        source_bytes: bytes | None = None
        try:
            args = parse_args(text)
            source: ImageInput | None = None
            if command_name == IMG2IMG:
                source_bytes = await download_image(msg) or await download_image(
                    msg.reply_to_message
                )
                if source_bytes is None:
                    raise ClientError("Attach a photo or reply to one to use img2img.")
                source = to_image_input(source_bytes)
            control: ImageInput | None = None
            if args.has("controlnet", "cn", "controlnet_weight", "cn_weight"):
                control_bytes = await download_image(msg.reply_to_message)
                if control_bytes is not None:
                    control = to_image_input(control_bytes)
            request = image_request_from_args(
                command_name, args, source_image=source, control_image=control
            )
        except ClientError as exc:
            await status.edit_text(failed_text(describe_error(exc)))
            return

        show_source = app_config.commands.img2img.display_source_image_by_default
        await submit_generation(
            orchestrator,
            request,
            status,
            owner_id=uid,
            source_image=source_bytes if show_source else None,
        )

    @router.message(Command(TXT2IMG))
    async def cmd_txt2img(msg: Message, command: CommandObject):
        await _generate(msg, TXT2IMG, command.args or "")

    @router.message(Command(IMG2IMG))
    async def cmd_img2img(msg: Message, command: CommandObject):
        await _generate(msg, IMG2IMG, command.args or "")
