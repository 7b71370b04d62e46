# cws/nucleus/config.py
import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cws.errors import ConfigurationLoadError

logger = logging.getLogger(__name__)

DEFAULT_BLOCKED_COMMANDS = ("stop", "op", "deop", "reload")


# --- Pydantic Models for Configuration ---
# Field aliases are the key names operators write in config.json.

class WebsocketConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    connection_timeout_seconds: float = Field(300, alias="connection-timeout-seconds", gt=0)
    nonce_expiration_seconds: float = Field(300, alias="nonce-expiration-seconds", gt=0)


class GatewayConfig(BaseModel):
    """The canonical model for the gateway's configuration file."""
    model_config = ConfigDict(populate_by_name=True)

    websocket_port: int = Field(8080, alias="websocket-port", ge=0, le=65535)
    debug_mode: bool = Field(False, alias="debug-mode")
    websocket: WebsocketConfig = Field(default_factory=WebsocketConfig)
    blocked_commands: List[str] = Field(default_factory=list, alias="blocked-commands")

    @property
    def connection_timeout_ms(self) -> int:
        return int(self.websocket.connection_timeout_seconds * 1000)

    @property
    def nonce_expiration_ms(self) -> int:
        return int(self.websocket.nonce_expiration_seconds * 1000)

    @property
    def blocked_command_set(self) -> frozenset:
        extra = (name.strip().lower() for name in self.blocked_commands)
        return frozenset(DEFAULT_BLOCKED_COMMANDS).union(name for name in extra if name)


# --- The ConfigManager Itself ---

class ConfigManager:
    """
    Manages the gateway configuration file. A missing file is created with
    the defaults; a broken one is reported as ConfigurationLoadError.
    """
    def __init__(self, path: Path):
        self.path = Path(path)
        self.config: Optional[GatewayConfig] = None
        logger.info("ConfigManager initialized.")

    def load(self) -> GatewayConfig:
        if not self.path.exists():
            logger.warning(f"Config file '{self.path}' not found. Writing defaults...")
            self._write_defaults()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except OSError as e:
            logger.error(f"CRITICAL: Could not read config file '{self.path}': {e}")
            raise ConfigurationLoadError(f"could not read {self.path}") from e
        except json.JSONDecodeError as e:
            logger.error(f"CRITICAL: Could not parse '{self.path}'. Make sure it's valid JSON.")
            raise ConfigurationLoadError(f"invalid JSON in {self.path}") from e

        try:
            self.config = GatewayConfig.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Invalid data structure in '{self.path}': {e}")
            raise ConfigurationLoadError(f"invalid configuration in {self.path}") from e

        if self.config.debug_mode:
            logger.info("Debug mode enabled!")
        logger.info(f"Configuration loaded from '{self.path}' (port {self.config.websocket_port}).")
        return self.config

    def reload(self) -> GatewayConfig:
        logger.info("Reloading configuration...")
        return self.load()

    def _write_defaults(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(GatewayConfig().model_dump_json(by_alias=True, indent=2))
        except OSError as e:
            logger.error(f"CRITICAL: Could not write default config to '{self.path}': {e}")
            raise ConfigurationLoadError(f"could not write {self.path}") from e
