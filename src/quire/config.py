"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Settings live in quire.toml. Environment variables override it using the
``QUIRE_`` prefix and ``__`` as the nested delimiter (e.g.
``QUIRE_SANDBOX__CALL_TIMEOUT=2``).

Priority (highest wins): init args > env vars > .env > quire.toml

Usage::

    from quire.config import get_settings

    s = get_settings()
    print(s.sandbox.call_timeout)
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in quire.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models; reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class SandboxConfig(_StrictModel):
    """Budget applied to every call into plugin code."""

    call_timeout: float = 5.0  # seconds of wall clock per boundary call
    max_broker_calls: int = 10_000  # editor calls allowed per boundary call

    @field_validator("call_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("call_timeout must be positive")
        return v

    @field_validator("max_broker_calls")
    @classmethod
    def validate_max_calls(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_broker_calls must be a positive integer")
        return v


class CommandsConfig(_StrictModel):
    # first-wins: a later registrant's command is dropped with a warning
    # last-wins: the holder's command is replaced with a warning
    duplicate_policy: Literal["first-wins", "last-wins"] = "first-wins"
    # What a RANGE command receives when invoked without an explicit range
    range_default: Literal["line", "buffer", "reject"] = "line"


class PluginConfig(_StrictModel):
    enabled: bool = True


class PluginsConfig(_StrictModel):
    entry_point_group: str = "quire"
    modules: list[str] = []  # "package.module:attr" specs loaded after built-ins
    builtins: bool = True
    # Per-plugin switches keyed by built-in config key or plugin name
    overrides: dict[str, PluginConfig] = {}

    def is_enabled(self, key: str) -> bool:
        cfg = self.overrides.get(key)
        return cfg is None or cfg.enabled


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="quire.toml",
        env_file=".env",
        env_prefix="QUIRE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    logging: LoggingConfig = LoggingConfig()
    sandbox: SandboxConfig = SandboxConfig()
    commands: CommandsConfig = CommandsConfig()
    plugins: PluginsConfig = PluginsConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > quire.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
