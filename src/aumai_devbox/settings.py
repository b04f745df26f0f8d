"""Tool-level settings for aumai-devbox, read from ``AUMAI_DEVBOX_*`` variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

APP_NAME = "aumai-devbox"
APP_VERSION = "0.1.0"
ENV_PREFIX = "AUMAI_DEVBOX_"

EngineChoice = Literal["auto", "podman", "docker"]


def _default_app_dir() -> Path:
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    return base / APP_NAME


class DevboxSettings(BaseSettings):
    """Engine selection, storage locations and defaults shared by every command."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
    )

    engine: EngineChoice = Field(default="auto")
    app_dir: Path = Field(default_factory=_default_app_dir, alias="AUMAI_DEVBOX_DIR")
    container_suffix: str = Field(default="devbox")
    default_capabilities: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Lowest-priority capability entries, comma separated in the environment",
    )
    data_volume: str = Field(default=f"{APP_NAME}-data")
    data_volume_enabled: bool = Field(default=True)
    data_volume_path: str = Field(default="/devbox")
    log_level: str = Field(default="WARNING")

    @field_validator("default_capabilities", mode="before")
    @classmethod
    def split_capabilities(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def profiles_dir(self) -> Path:
        """Directory scanned for named profiles (``@name`` references)."""
        return self.app_dir / "profiles"


__all__ = ["APP_NAME", "APP_VERSION", "DevboxSettings", "ENV_PREFIX", "EngineChoice"]
