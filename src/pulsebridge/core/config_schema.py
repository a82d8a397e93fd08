"""Pydantic models for config validation.

``PluginConfig`` is the structure every device plugin receives at
``initialize()``; unknown keys are kept (plugins may read their own) but
never treated as errors.  ``Config.validated()`` returns a typed
``PulseBridgeConfig`` for the application-level settings.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Environment = Literal["development", "staging", "production"]


class RateLimits(BaseModel):
    """Outbound request budget for plugins talking to vendor APIs."""

    requests: int = Field(gt=0)
    window_seconds: float = Field(gt=0)


class PluginConfig(BaseModel):
    """Configuration handed to a device plugin.

    ``features`` holds boolean switches (``mock_data``, ``real_time_sync``,
    ``simulate_errors``, ``fast_mode`` and plugin-specific flags).
    """

    model_config = ConfigDict(extra="allow")

    environment: Environment
    features: dict[str, bool] = {}
    api_endpoint: str | None = None
    api_key: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    region: str | None = None
    rate_limits: RateLimits | None = None
    delay_scale: float = Field(default=1.0, ge=0.0)
    error_rate: float = Field(default=0.1, ge=0.0, le=1.0)

    def feature(self, name: str, default: bool = False) -> bool:
        return self.features.get(name, default)


class RegistryConfig(BaseModel):
    """Plugin registry settings for one environment."""

    environment: Environment = "development"
    enabled_plugins: list[str] = ["mock-bp", "mock-glucose"]
    max_retries: int = Field(default=3, ge=0)
    health_check_interval: float = Field(default=30.0, ge=0)
    enable_hot_reload: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @field_validator("enabled_plugins", mode="before")
    @classmethod
    def _split_csv(cls, v: object) -> object:
        # env-var overrides arrive as "mock-bp,mock-glucose"
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v


class SyncSettings(BaseModel):
    """Defaults for scheduled device synchronization."""

    interval_seconds: float = Field(default=300.0, gt=0)
    include_historical: bool = False
    historical_days: int = Field(default=7, ge=1)
    concurrency: int = Field(default=1, ge=1)


class LoggingConfig(BaseModel):
    level: str = "WARNING"
    file: str | None = None
    serialize: bool = False  # JSON lines in the log file


class PulseBridgeConfig(BaseModel):
    """Root configuration model.

    Uses ``extra="allow"`` so consumers can bolt on custom sections
    (e.g. per-plugin overrides under ``plugins``) without touching this schema.
    """

    model_config = ConfigDict(extra="allow")

    environment: Environment = "development"
    logging: LoggingConfig = LoggingConfig()
    registry: RegistryConfig = RegistryConfig()
    sync: SyncSettings = SyncSettings()
    plugins: dict[str, dict] = {}
