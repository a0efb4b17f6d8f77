import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _env_float(name: str, default: float) -> float:
    return float(_env(name, str(default)))


def _env_csv_ints(name: str) -> list[int]:
    raw = _env(name, "")
    if not raw.strip():
        return []
    return [int(uid.strip()) for uid in raw.split(",") if uid.strip()]


def _strip_trailing_slash(url: str) -> str:
    return url.rstrip("/")


@dataclass
class Config:
    telegram_token: str = ""
    sd_api_url: str = "http://127.0.0.1:7860"
    # Chat hook is disabled when empty
    tg_api_url: str = ""
    tg_model_name: str = ""
    allowed_users: list[int] = field(default_factory=list)

    # Paths
    app_config_path: str = "application.yaml"
    data_dir: str = "data"

    # Seconds; applies to every backend request
    backend_timeout: float = 600.0

    @classmethod
    def from_env(cls) -> "Config":
        token = _env("TELEGRAM_BOT_TOKEN", "")
        if not token:
            raise ValueError("TELEGRAM_BOT_TOKEN is not set in .env")

        return cls(
            telegram_token=token,
            sd_api_url=_strip_trailing_slash(_env("SD_API_URL", "http://127.0.0.1:7860")),
            tg_api_url=_strip_trailing_slash(_env("TG_API_URL", "")),
            tg_model_name=_env("TG_MODEL_NAME", "").strip(),
            allowed_users=_env_csv_ints("ALLOWED_USERS"),
            app_config_path=_env("APP_CONFIG_PATH", "application.yaml"),
            data_dir=_env("DATA_DIR", "data"),
            backend_timeout=_env_float("BACKEND_TIMEOUT", 600.0),
        )

    @property
    def chat_enabled(self) -> bool:
        return bool(self.tg_api_url)


config = Config.from_env() if os.getenv("TELEGRAM_BOT_TOKEN") else Config()
