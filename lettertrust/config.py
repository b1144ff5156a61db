"""Configuration management with Pydantic and XDG base directory support."""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_config_home() -> Path:
    """Get XDG_CONFIG_HOME directory, defaulting to ~/.config."""
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config)
    return Path.home() / ".config"


TrustPolicyName = Literal["any", "public_key", "ca"]


class Settings(BaseSettings):
    """lettertrust configuration settings.

    Precedence: CLI flag > environment variable > .env file > defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="LETTERTRUST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Network control
    offline: bool = Field(
        default=False,
        description="Refuse network fetches; only file:// and local paths are read",
    )

    config_dir: Path | None = Field(
        default=None,
        description="Override config directory (defaults to XDG_CONFIG_HOME/lettertrust)",
    )

    # Trust material
    blacklist_path: Path | None = Field(
        default=None,
        description="Local certificate blacklist (defaults to <config_dir>/blacklist)",
    )

    trust_policy: TrustPolicyName = Field(
        default="any",
        description="Whitelist signature policy: public key, CA chain, or either",
    )

    whitelist_filename: str = Field(
        default=".cvmfswhitelist",
        min_length=1,
        description="Name of the whitelist document below the repository URL",
    )

    refresh_window_seconds: int = Field(
        default=3 * 24 * 3600,
        ge=0,
        description="Reload the whitelist when it expires within this many seconds",
    )

    # Fetching
    fetch_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Timeout for a single whitelist download attempt (seconds)",
    )

    fetch_retries: int = Field(
        default=1,
        ge=0,
        description="Retries per mirror before failing over to the next one",
    )

    # Signing
    default_hash_algorithm: str = Field(
        default="sha256",
        description="Hash algorithm used for signing when -a is not given",
    )

    password_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Interactive password prompts before signing gives up",
    )

    def get_config_dir(self) -> Path:
        """Get the config directory (not created; nothing is written there)."""
        if self.config_dir:
            config_dir = self.config_dir
        else:
            config_dir = get_xdg_config_home() / "lettertrust"

        return config_dir

    def get_blacklist_path(self) -> Path:
        """Return the blacklist location; the file itself is optional."""
        if self.blacklist_path is not None:
            return self.blacklist_path
        return self.get_config_dir() / "blacklist"


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set the global settings instance (useful for testing)."""
    global _settings
    _settings = settings
