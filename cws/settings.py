# cws/settings.py
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Process-level settings, loaded from environment variables and .env files.

    Gateway behaviour (port, timeouts, debug mode) lives in the config file
    managed by `cws.nucleus.config.ConfigManager`; these settings only say
    where things are and how the process runs.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # Application settings
    LOG_LEVEL: str = "INFO"
    DATA_DIR: str = "data"
    CONFIG_FILE: str = "config.json"

    # Server settings
    SERVER_HOST: str = "0.0.0.0"
    WEBSOCKET_PATH: str = "/cwebsender"
    REAPER_INTERVAL_SECONDS: float = 60.0

    # Nonce storage
    NONCE_BACKEND: Literal["memory", "redis"] = "memory"

    # Redis settings
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def data_path(self) -> Path:
        return Path(self.DATA_DIR)

    @property
    def config_path(self) -> Path:
        return self.data_path / self.CONFIG_FILE


# Create a single, globally accessible instance of the settings.
settings = Settings()
