import os
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

_CONFIG_PATH = os.getenv("MC_PRESENCE_CONFIG", "config.toml")
_ENV_PATH = os.getenv("MC_PRESENCE_ENV", ".env")


class TrackerSettings(BaseModel):
    """Session tracker, heartbeat and watchdog timings."""

    heartbeat_interval_ms: Annotated[
        int,
        Field(description="Interval between heartbeat ticks", ge=1000),
    ] = 60_000

    session_timeout_ms: Annotated[
        int,
        Field(
            description="Open sessions whose last-seen is older than this are force-closed",
            ge=1000,
        ),
    ] = 180_000

    poll_interval_ms: Annotated[
        int,
        Field(description="Interval between RCON player list polls", ge=1000),
    ] = 60_000

    max_consecutive_failures: Annotated[
        int,
        Field(
            description="Poller is unreliable once this many polls in a row have failed",
            ge=1,
        ),
    ] = 3

    crash_threshold_ms: Annotated[
        int,
        Field(
            description="A last heartbeat older than this at startup is treated as a crash",
            ge=1000,
        ),
    ] = 300_000


class RconSettings(BaseModel):
    host: str = "minecraft-server"
    port: Annotated[int, Field(ge=1, le=65535)] = 25575
    password: str = ""
    reconnect_interval_seconds: Annotated[float, Field(gt=0)] = 10.0
    command_timeout_seconds: Annotated[float, Field(gt=0)] = 5.0
    list_command: str = "list"
    list_pattern: str = r"There are (\d+) of a max of (\d+) players online:(.*)$"


class IdentitySettings(BaseModel):
    api_url: str = "https://api.mojang.com/users/profiles/minecraft/{name}"
    timeout_seconds: Annotated[float, Field(gt=0)] = 5.0
    cache_ttl_seconds: Annotated[float, Field(ge=0)] = 300.0
    # Derive a deterministic identifier when the API is unreachable
    offline_fallback: bool = False


class LogMonitorSettings(BaseModel):
    enabled: bool = False
    log_path: Path = Field(default=Path("logs/latest.log"))
    join_pattern: str = r"^(?!.*<).*\]: (\S+) joined the game"
    leave_pattern: str = r"^(?!.*<).*\]: (\S+) (?:left the game|lost connection: (.*))"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MC_PRESENCE_",
        env_nested_delimiter="__",
        toml_file=_CONFIG_PATH,
        env_file=_ENV_PATH,
    )

    database_url: str = "sqlite:///presence.db"
    logs_dir: Path = Field(default=Path("logs"))

    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    rcon: RconSettings = Field(default_factory=RconSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    log_monitor: LogMonitorSettings = Field(default_factory=LogMonitorSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Source order: init args > OS env > .env > config.toml > secrets
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


settings = Settings()
