"""Client settings for stdio-rpc.

All values can be overridden from the environment with the ``STDIO_RPC_``
prefix, e.g. ``STDIO_RPC_DEFAULT_TIMEOUT=5``.
"""

from typing import TYPE_CHECKING, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from stdio_rpc.protocols import LoggerProtocol

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Settings for sessions, transports and logging."""

    # =========================================================================
    # TIMEOUTS
    # =========================================================================
    # Per-call timeout in seconds, used unless a call overrides it
    default_timeout: float = Field(default=30.0, gt=0, le=3600)
    # Grace period between SIGTERM and SIGKILL when closing the child
    kill_timeout: float = Field(default=5.0, ge=0, le=300)

    # =========================================================================
    # HANDSHAKE
    # =========================================================================
    protocol_version: str = "2024-11-05"
    client_name: str = "stdio-rpc"
    client_version: str = "0.1.0"

    # =========================================================================
    # TRANSPORT
    # =========================================================================
    read_chunk_size: int = Field(default=65536, ge=1, le=16 * 1024 * 1024)

    # =========================================================================
    # LOGGING
    # =========================================================================
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("log_level", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {sorted(_LOG_LEVELS)}")
        return level

    model_config = SettingsConfigDict(
        env_prefix="STDIO_RPC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def client_info(self) -> dict:
        """Return the ``clientInfo`` block sent in the initialize request."""
        return {"name": self.client_name, "version": self.client_version}

    def log_config(self, logger: "LoggerProtocol") -> None:
        """Log the effective client configuration."""
        logger.info(
            "stdio_rpc_config",
            default_timeout=self.default_timeout,
            kill_timeout=self.kill_timeout,
            protocol_version=self.protocol_version,
            client_name=self.client_name,
        )


# =============================================================================
# GLOBAL SETTINGS (Lazy Initialization)
# =============================================================================

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance.

    Creates a new Settings instance lazily if none exists.
    Prefer passing settings explicitly to Session/StdioTransport in tests.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings_instance: Settings) -> None:
    """Set the global settings instance."""
    global _settings
    _settings = settings_instance


def reset_settings() -> None:
    """Reset the global settings instance.

    Forces re-creation on next get_settings() call.
    """
    global _settings
    _settings = None
