"""Configuration models and YAML loader.

The auth password can be provided via the ``FLEET_AUTH_PASSWORD``
environment variable, and Telegram credentials via ``TELEGRAM_BOT_TOKEN`` and
``TELEGRAM_CHAT_ID``.  Values in the YAML file are used as fallback — env
vars always take precedence.
"""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class TelegramConfig(BaseModel):
    bot_token: str = ""
    chat_id: str = ""

    @model_validator(mode="before")
    @classmethod
    def _resolve_env_vars(cls, values: dict) -> dict:  # type: ignore[override]
        """Override token / chat_id from env vars if set."""
        values = dict(values or {})
        env_token = os.environ.get("TELEGRAM_BOT_TOKEN")
        env_chat = os.environ.get("TELEGRAM_CHAT_ID")
        if env_token:
            values["bot_token"] = env_token
        if env_chat:
            values["chat_id"] = env_chat
        return values

    @model_validator(mode="after")
    def _check_required(self) -> "TelegramConfig":
        """Ensure both fields are present (from YAML or env)."""
        if not self.bot_token:
            raise ValueError(
                "bot_token is required — set TELEGRAM_BOT_TOKEN env var "
                "or provide it in the YAML config"
            )
        if not self.chat_id:
            raise ValueError(
                "chat_id is required — set TELEGRAM_CHAT_ID env var "
                "or provide it in the YAML config"
            )
        return self


class ServerConfig(BaseModel):
    host: str
    port: int = Field(default=25565, gt=0, lt=65536)
    version: str = "1.20.1"


class BridgeConfig(BaseModel):
    url: str = "ws://localhost:3001"

    @field_validator("url")
    @classmethod
    def normalize_ws_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("ws://", "wss://")):
            v = f"ws://{v}"
        return v


class AuthConfig(BaseModel):
    password: str = ""
    register_delay_seconds: float = Field(default=1.0, ge=0)
    login_delay_seconds: float = Field(default=1.0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _resolve_env_password(cls, values: dict) -> dict:  # type: ignore[override]
        values = dict(values or {})
        env_password = os.environ.get("FLEET_AUTH_PASSWORD")
        if env_password:
            values["password"] = env_password
        return values


class FleetSettings(BaseModel):
    operator: str = "rabbit0009"
    spawn_on_start: int = Field(default=0, ge=0)
    usernames: list[str] = []


class TimingConfig(BaseModel):
    reconnect_delay_seconds: float = Field(default=30.0, gt=0)
    attack_interval_seconds: float = Field(default=0.5, gt=0)
    attack_range: float = Field(default=4.0, gt=0)
    follow_radius: int = Field(default=3, ge=0)
    follow_refresh_seconds: float = Field(default=2.0, gt=0)
    anti_idle_interval_seconds: float = Field(default=60.0, gt=0)
    anti_idle_probability: float = Field(default=0.5, ge=0, le=1)
    anti_idle_pulse_seconds: float = Field(default=0.1, ge=0)


class LogsConfig(BaseModel):
    retention: int = Field(default=1000, gt=0)
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class BroadcastConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8765


class FleetConfig(BaseModel):
    server: ServerConfig
    bridge: BridgeConfig = BridgeConfig()
    # Built per instance so FLEET_AUTH_PASSWORD is read at load time
    auth: AuthConfig = Field(default_factory=AuthConfig)
    fleet: FleetSettings = FleetSettings()
    timing: TimingConfig = Field(default_factory=TimingConfig)
    logs: LogsConfig = LogsConfig()
    broadcast: BroadcastConfig = BroadcastConfig()
    telegram: TelegramConfig | None = None


def load_config(path: str | Path) -> FleetConfig:
    """Load and validate fleet configuration from a YAML file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return FleetConfig(**raw)
