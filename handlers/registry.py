from __future__ import annotations

from aiogram import Router

from config import Config
from core.app_config import AppConfig
from core.orchestrator import GenerationOrchestrator
from core.storage import PreferenceStore
from tg_client import TGClient

from .chat import register_chat_handlers
from .common import register_common_handlers
from .generation import register_generation_handlers
from .lora import register_lora_handlers
from .preferences import register_preferences_handlers


def register_handlers(
    router: Router,
    *,
    cfg: Config,
    app_config: AppConfig,
    orchestrator: GenerationOrchestrator,
    preferences: PreferenceStore,
    tg_client: TGClient | None,
) -> None:
    register_common_handlers(router, cfg, orchestrator)
    register_generation_handlers(router, app_config, orchestrator)
    register_preferences_handlers(router, app_config, preferences)
    register_lora_handlers(router, app_config)
    if tg_client is not None:
        register_chat_handlers(router, app_config, orchestrator, tg_client)
