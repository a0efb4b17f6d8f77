from __future__ import annotations

from dataclasses import dataclass

from aiogram import Bot, Dispatcher, Router
from aiogram.client.default import DefaultBotProperties

from config import Config
from core.app_config import AppConfig, load_app_config
from core.execution_queue import ExecutionQueue
from core.orchestrator import GenerationOrchestrator
from core.resolver import ParameterResolver
from core.storage import PreferenceStore
from sd_client import SDClient
from tg_client import TGClient


@dataclass(slots=True)
class AppContext:
    cfg: Config
    app_config: AppConfig
    bot: Bot
    dispatcher: Dispatcher
    router: Router
    sd_client: SDClient
    tg_client: TGClient | None
    preferences: PreferenceStore
    queue: ExecutionQueue
    orchestrator: GenerationOrchestrator

    async def close(self) -> None:
        await self.sd_client.close()
        if self.tg_client is not None:
            await self.tg_client.close()
        await self.bot.session.close()


def create_app_context(cfg: Config) -> AppContext:
    bot = Bot(
        token=cfg.telegram_token,
        default=DefaultBotProperties(parse_mode="HTML"),
    )
    dispatcher = Dispatcher()
    router = Router()
    dispatcher.include_router(router)

    app_config = load_app_config(cfg.app_config_path)
    sd_client = SDClient(cfg)
    tg_client = TGClient(cfg) if cfg.chat_enabled else None
    preferences = PreferenceStore(cfg.data_dir)
    queue = ExecutionQueue()
    orchestrator = GenerationOrchestrator(
        queue,
        ParameterResolver(app_config),
        preferences,
        sd_client,
        text_backend=tg_client,
        text_model=cfg.tg_model_name,
    )

    return AppContext(
        cfg=cfg,
        app_config=app_config,
        bot=bot,
        dispatcher=dispatcher,
        router=router,
        sd_client=sd_client,
        tg_client=tg_client,
        preferences=preferences,
        queue=queue,
        orchestrator=orchestrator,
    )
