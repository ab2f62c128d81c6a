"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Pump.fun Creator Tracker, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_API_KEY_PARAM = re.compile(r"api-key=([^&]+)")


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string"
            )
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (social lookup cache, optional)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class PumpFunSettings(BaseSettings):
    """Upstream token-launch API settings."""

    model_config = SettingsConfigDict(env_prefix="PUMPFUN_", extra="ignore")

    api_url: str = Field(
        default="https://frontend-api-v3.pump.fun",
        alias="PUMPFUN_API_URL",
        description="Base URL of the pump.fun frontend API",
    )
    requests_per_second: float = Field(
        default=5.0,
        alias="PUMPFUN_REQUESTS_PER_SECOND",
        gt=0.0,
        le=100.0,
        description="Client-side rate limit for feed requests",
    )
    max_retries: int = Field(
        default=3,
        alias="PUMPFUN_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries on 429/5xx/transport errors",
    )
    timeout_seconds: float = Field(
        default=15.0,
        alias="PUMPFUN_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="HTTP request timeout",
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("PUMPFUN_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class SolanaSettings(BaseSettings):
    """Solana RPC and transaction-stream settings."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        validation_alias=AliasChoices("SOLANA_RPC_URL", "HELIUS_RPC_URL"),
        description="Solana JSON-RPC endpoint used for token metadata lookups",
    )
    ws_url: str | None = Field(
        default=None,
        alias="HELIUS_WS_URL",
        description="Enhanced transaction WebSocket (derived from the RPC api-key when unset)",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("SOLANA_RPC_URL must be an HTTP(S) endpoint")
        return v

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("HELIUS_WS_URL must start with ws:// or wss://")
        return v

    @property
    def stream_url(self) -> str | None:
        """Push-listener endpoint, explicit or derived from the RPC api-key."""
        if self.ws_url:
            return self.ws_url
        match = _API_KEY_PARAM.search(self.rpc_url)
        if not match:
            return None
        return f"wss://atlas-mainnet.helius-rpc.com/?api-key={match.group(1)}"


class SocialSettings(BaseSettings):
    """Social-graph API settings (social identity mode)."""

    model_config = SettingsConfigDict(env_prefix="TWITTER_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="TWITTER_API_KEY",
        description="Bearer token for the social-graph API",
    )
    api_url: str = Field(
        default="https://api.twitterapi.io",
        alias="TWITTER_API_URL",
        description="Social-graph API base URL",
    )
    cache_ttl_seconds: int = Field(
        default=3600,
        alias="SOCIAL_CACHE_TTL_SECONDS",
        ge=0,
        le=30 * 24 * 3600,
        description="Redis TTL for cached identity lookups",
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("TWITTER_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @property
    def enabled(self) -> bool:
        return self.api_key is not None


class ScanSettings(BaseSettings):
    """Backfill and polling-loop settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    identity_mode: Literal["wallet", "social"] = Field(
        default="wallet",
        alias="IDENTITY_MODE",
        description="How coins are attributed to creators",
    )
    historical_enabled: bool = Field(
        default=True,
        alias="HISTORICAL_SCAN_ENABLED",
        description="Run the historical backfill once at startup",
    )
    historical_limit: int = Field(
        default=10_000,
        alias="HISTORICAL_SCAN_LIMIT",
        ge=1,
        le=1_000_000,
        description="Maximum migrated coins to page through during backfill",
    )
    historical_page_size: int = Field(
        default=100,
        alias="HISTORICAL_PAGE_SIZE",
        ge=1,
        le=1000,
        description="Page size for the migrated-coins listing",
    )
    realtime_enabled: bool = Field(
        default=True,
        alias="REALTIME_MONITOR_ENABLED",
        description="Run the new-coin and migration polling loops",
    )
    new_coin_interval_ms: int = Field(
        default=10_000,
        alias="SCAN_INTERVAL_MS",
        ge=100,
        le=3_600_000,
        description="New-coin loop interval (milliseconds)",
    )
    migration_interval_ms: int = Field(
        default=60_000,
        alias="MIGRATION_SCAN_INTERVAL_MS",
        ge=100,
        le=3_600_000,
        description="Migration loop interval (milliseconds)",
    )
    new_coin_batch_size: int = Field(
        default=50,
        alias="NEW_COIN_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Recent coins fetched per new-coin tick",
    )
    migration_batch_size: int = Field(
        default=50,
        alias="MIGRATION_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Recent migrated coins fetched per migration tick",
    )
    item_delay_ms: int = Field(
        default=500,
        alias="ITEM_DELAY_MS",
        ge=0,
        le=60_000,
        description="Throttle between items inside one scan (milliseconds)",
    )
    seen_cache_size: int = Field(
        default=1000,
        alias="SEEN_CACHE_SIZE",
        ge=1,
        le=1_000_000,
        description="Bound of the in-memory seen-coin cache",
    )


class WalletTrackerSettings(BaseSettings):
    """Push listener settings."""

    model_config = SettingsConfigDict(env_prefix="WALLET_TRACKER_", extra="ignore")

    enabled: bool = Field(
        default=False,
        alias="WALLET_TRACKER_ENABLED",
        description="Subscribe to transactions of known migrator wallets",
    )
    refresh_seconds: int = Field(
        default=600,
        alias="WALLET_TRACKER_REFRESH_SECONDS",
        ge=10,
        le=86_400,
        description="How often the tracked wallet set is reloaded from storage",
    )
    freshness_seconds: int = Field(
        default=30,
        alias="WALLET_TRACKER_FRESHNESS_SECONDS",
        ge=1,
        le=3600,
        description="Maximum coin age for a push-triggered alert",
    )
    max_reconnects: int = Field(
        default=10,
        alias="WALLET_TRACKER_MAX_RECONNECTS",
        ge=0,
        le=1000,
        description="Reconnect attempts before the listener gives up",
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        alias="WALLET_TRACKER_RECONNECT_DELAY_SECONDS",
        ge=0.0,
        le=600.0,
        description="Linear backoff step between reconnect attempts",
    )


class ApiSettings(BaseSettings):
    """REST facade settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="API_ENABLED",
        description="Serve the REST facade",
    )
    host: str = Field(
        default="0.0.0.0",
        alias="API_HOST",
        description="Bind address",
    )
    port: int = Field(
        default=3001,
        alias="PORT",
        ge=1,
        le=65535,
        description="HTTP port",
    )
    cors_origin: str = Field(
        default="*",
        alias="CORS_ORIGIN",
        description="Allowed CORS origins (comma-separated)",
    )

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origin.split(",") if o.strip()]


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from pumpfun_creator_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.scan.identity_mode)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pumpfun: PumpFunSettings = Field(
        default_factory=lambda: PumpFunSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    solana: SolanaSettings = Field(
        default_factory=lambda: SolanaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    social: SocialSettings = Field(
        default_factory=lambda: SocialSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scan: ScanSettings = Field(
        default_factory=lambda: ScanSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    wallet_tracker: WalletTrackerSettings = Field(
        default_factory=lambda: WalletTrackerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    api: ApiSettings = Field(
        default_factory=lambda: ApiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "pumpfun": {
                "api_url": self.pumpfun.api_url,
                "requests_per_second": str(self.pumpfun.requests_per_second),
            },
            "solana": {
                "rpc_url": self._redact_api_key(self.solana.rpc_url),
                "stream_url": (
                    self._redact_api_key(self.solana.stream_url)
                    if self.solana.stream_url
                    else "(not set)"
                ),
            },
            "social": {
                "api_url": self.social.api_url,
                "api_key": "(set)" if self.social.api_key else "(not set)",
            },
            "scan": {
                "identity_mode": self.scan.identity_mode,
                "historical_enabled": str(self.scan.historical_enabled),
                "historical_limit": str(self.scan.historical_limit),
                "realtime_enabled": str(self.scan.realtime_enabled),
                "new_coin_interval_ms": str(self.scan.new_coin_interval_ms),
                "migration_interval_ms": str(self.scan.migration_interval_ms),
            },
            "wallet_tracker_enabled": str(self.wallet_tracker.enabled),
            "api": {
                "enabled": str(self.api.enabled),
                "bind": f"{self.api.host}:{self.api.port}",
            },
            "log_level": self.log_level,
        }

    def validate_requirements(self) -> None:
        """Validate mode-specific requirements.

        A capability that is switched on but not configured is a startup
        error, not a degraded run.
        """
        if self.scan.identity_mode == "social" and not self.social.enabled:
            raise ValueError("TWITTER_API_KEY is required when IDENTITY_MODE=social")
        if self.wallet_tracker.enabled:
            if self.scan.identity_mode != "wallet":
                raise ValueError("WALLET_TRACKER_ENABLED requires IDENTITY_MODE=wallet")
            if not self.solana.stream_url:
                raise ValueError(
                    "HELIUS_WS_URL (or an api-key in SOLANA_RPC_URL) is required for the wallet tracker"
                )

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url

    @staticmethod
    def _redact_api_key(url: str) -> str:
        return _API_KEY_PARAM.sub("api-key=***", url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
