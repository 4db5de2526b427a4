"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation.
A `config.yaml` file can provide defaults; environment variables override it.
"""

import os
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "PASTEVAULT_"


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get(f"{ENV_PREFIX}CONFIG")

    if config_path is None:
        config_path = "config.yaml"

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class StorageSettings(BaseSettings):
    """Paste repository configuration."""

    database_path: Optional[Path] = Field(
        default=None,
        description="SQLite database file, in-memory database when unset"
    )
    purge_interval_seconds: float = Field(
        default=60,
        ge=0,
        description="Seconds between expired-paste sweeps, 0 disables the sweeper"
    )
    purge_batch_size: int = Field(default=500, ge=1, description="Rows deleted per purge transaction")
    max_insert_retries: int = Field(default=10, ge=1, description="ID collision retries on insert")
    busy_timeout_seconds: float = Field(default=5.0, gt=0, description="SQLite lock wait")

    model_config = SettingsConfigDict(env_prefix=f"{ENV_PREFIX}STORAGE_")


class CryptoSettings(BaseSettings):
    """Key derivation and owner-token configuration."""

    password_salt: str = Field(default="somesalt", description="Server-wide password hash salt")
    signing_key: str = Field(
        default_factory=lambda: secrets.token_hex(32),
        description="Secret for owner token digests, random per process when unset"
    )
    argon2_time_cost: int = Field(default=3, ge=1, description="Argon2 iterations")
    argon2_memory_cost_kib: int = Field(default=65536, ge=8, description="Argon2 memory in KiB")
    argon2_parallelism: int = Field(default=4, ge=1, description="Argon2 lanes")

    @field_validator("password_salt")
    def validate_salt(cls, v: str) -> str:
        """Argon2 refuses salts shorter than 8 bytes."""
        if len(v.encode("utf-8")) < 8:
            raise ValueError("password_salt must be at least 8 bytes")
        return v

    @field_validator("signing_key")
    def validate_signing_key(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("signing_key must be at least 32 characters")
        return v

    model_config = SettingsConfigDict(env_prefix=f"{ENV_PREFIX}CRYPTO_")


class CacheSettings(BaseSettings):
    """Render cache configuration."""

    capacity: int = Field(default=128, ge=0, description="Cached rendered entries, 0 disables")

    model_config = SettingsConfigDict(env_prefix=f"{ENV_PREFIX}CACHE_")


class LimitSettings(BaseSettings):
    """Input limits and request handling."""

    max_body_size: int = Field(default=1024 * 1024, ge=1, description="Maximum paste size in bytes")
    max_title_length: int = Field(default=256, ge=1, description="Maximum title length")
    max_extension_length: int = Field(default=32, ge=1, description="Maximum extension length")
    max_expiration_seconds: int = Field(
        default=4294967295,
        ge=1,
        description="Longest accepted expiration"
    )
    request_timeout_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Per-operation timeout, 0 disables"
    )

    model_config = SettingsConfigDict(env_prefix=f"{ENV_PREFIX}LIMITS_")


class Settings(BaseSettings):
    """Main application settings."""

    log_level: str = Field(default="INFO", description="Log level")
    worker_threads: int = Field(default=4, ge=1, description="Blocking executor size")

    storage: StorageSettings = Field(default_factory=StorageSettings)
    crypto: CryptoSettings = Field(default_factory=CryptoSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    for section, values in config_data.items():
        if isinstance(values, dict):
            for key, value in values.items():
                env_var = f"{ENV_PREFIX}{section}_{key}".upper()
                if env_var not in os.environ and value is not None:
                    os.environ[env_var] = str(value)
        elif values is not None:
            env_var = f"{ENV_PREFIX}{section}".upper()
            if env_var not in os.environ:
                os.environ[env_var] = str(values)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
