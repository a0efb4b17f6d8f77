"""
Telegram bot for Stable Diffusion image generation with a chat companion.

Features:
- /txt2img — generate images from a prompt with key=value options
- /img2img — transform an attached or replied-to photo
- /preferences — list, set, reset or clear personal defaults
- /lora, /lora_nsfw — list configured LoRAs and show how to use one
- /queue — show the shared execution queue
- /cancel — drop your requests that are still waiting
- Mention or reply to the bot to chat; it can generate images on request
- Whitelist-based access control
"""

from __future__ import annotations

import asyncio
import logging
import sys

from app_context import AppContext, create_app_context
from config import Config
from handlers.registry import register_handlers

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(cfg: Config) -> AppContext:
    app = create_app_context(cfg)
    register_handlers(
        app.router,
        cfg=cfg,
        app_config=app.app_config,
        orchestrator=app.orchestrator,
        preferences=app.preferences,
        tg_client=app.tg_client,
    )
    return app


async def main() -> None:
    cfg = Config.from_env()
    if not cfg.telegram_token:
        logger.error("TELEGRAM_BOT_TOKEN not set")
        sys.exit(1)

    app = create_app(cfg)

    if await app.sd_client.check_connection():
        logger.info("Stable Diffusion API is reachable at %s", cfg.sd_api_url)
    else:
        logger.warning("Stable Diffusion API is NOT reachable at %s", cfg.sd_api_url)

    try:
        logger.info("Bot starting...")
        await app.dispatcher.start_polling(app.bot)
    finally:
        await app.close()


if __name__ == "__main__":
    asyncio.run(main())
