"""
Shared configuration management for the FRED web proxy.
"""

from typing import Any, Dict

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env(name: str, field_name: str) -> AliasChoices:
    """Accept either the documented environment variable or the field name."""
    return AliasChoices(name, field_name)


class ProxyConfig(BaseSettings):
    """Immutable process configuration, built once at startup."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Upstream
    fred_api_key: SecretStr = Field(validation_alias=_env("FRED_API_KEY", "fred_api_key"))
    fred_base_url: str = Field(
        default="https://api.stlouisfed.org/fred",
        validation_alias=_env("FRED_BASE_URL", "fred_base_url"),
    )
    upstream_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias=_env("FRED_UPSTREAM_TIMEOUT_SECONDS", "upstream_timeout_seconds"),
    )
    upstream_max_attempts: int = Field(
        default=2,
        ge=1,
        validation_alias=_env("FRED_UPSTREAM_MAX_ATTEMPTS", "upstream_max_attempts"),
    )
    circuit_failure_threshold: int = Field(
        default=5,
        ge=1,
        validation_alias=_env("FRED_CIRCUIT_FAILURE_THRESHOLD", "circuit_failure_threshold"),
    )
    circuit_recovery_seconds: float = Field(
        default=30.0,
        ge=0,
        validation_alias=_env("FRED_CIRCUIT_RECOVERY_SECONDS", "circuit_recovery_seconds"),
    )

    # Local cache
    sqlite_db: str = Field(
        default="fred_cache.sqlite3",
        validation_alias=_env("FRED_OBSERVATIONS_DB", "sqlite_db"),
    )

    # Listener
    host: str = Field(default="0.0.0.0", validation_alias=_env("FRED_PROXY_HOST", "host"))
    port: int = Field(default=9001, validation_alias=_env("FRED_PROXY_PORT", "port"))
    log_level: str = Field(default="info", validation_alias=_env("FRED_PROXY_LOG_LEVEL", "log_level"))

    def redacted(self) -> Dict[str, Any]:
        """Return a loggable view of the configuration without the credential."""
        data = self.model_dump(exclude={"fred_api_key"})
        data["fred_api_key_set"] = bool(self.fred_api_key.get_secret_value())
        return data


def get_config(**overrides: Any) -> ProxyConfig:
    """Build the proxy configuration from the environment plus explicit overrides."""
    cleaned = {key: value for key, value in overrides.items() if value is not None}
    return ProxyConfig(**cleaned)
