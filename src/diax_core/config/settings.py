"""Application settings using pydantic-settings."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the DiaX client cache runtime."""

    model_config = SettingsConfigDict(env_prefix="DIAX_", env_file=".env")

    # --- Backend ---
    api_base_url: str = Field(
        default="https://diax.fileish.com/api",
        description="Base origin + path prefix of the DiaX REST API",
    )
    api_token: SecretStr | None = Field(
        default=None,
        description="Bearer token used by the CLI (the app supplies its own provider)",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="Hard wall-clock timeout per backend call",
    )
    metrics_timeout_seconds: float = Field(
        default=15.0,
        description="Timeout for potentially large health metric listings",
    )

    # --- Cache ---
    prefetch_max_age_seconds: float = Field(
        default=30.0,
        description="Freshness window for prefetched entries",
    )
    deduping_interval_seconds: float = Field(
        default=5.0,
        description="Window in which identical fetches for one key are shared",
    )
    prefetch_single_flight: bool = Field(
        default=True,
        description="Share one pending prefetch between concurrent callers of a key",
    )
    hover_prefetch_delay_seconds: float = Field(
        default=0.1,
        description="Debounce before a link hover warms the target page's data",
    )

    # --- Retry ---
    retry_budget: int = Field(
        default=2,
        description="Retries after the first attempt for transient failures",
    )
    retry_wait_seconds: float = Field(
        default=1.0,
        description="Fixed wait between retry attempts",
    )

    # --- Logging ---
    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        description="Log renderer: 'console' for humans, 'json' for shipping",
    )

    @model_validator(mode="after")
    def validate_durations(self) -> Settings:
        """Reject non-positive durations and negative retry budgets."""
        durations = {
            "request_timeout_seconds": self.request_timeout_seconds,
            "metrics_timeout_seconds": self.metrics_timeout_seconds,
            "prefetch_max_age_seconds": self.prefetch_max_age_seconds,
            "deduping_interval_seconds": self.deduping_interval_seconds,
        }
        for name, value in durations.items():
            if value <= 0:
                msg = f"{name} must be positive, got {value}"
                raise ValueError(msg)
        if self.retry_budget < 0:
            msg = f"retry_budget must be >= 0, got {self.retry_budget}"
            raise ValueError(msg)
        if self.retry_wait_seconds < 0 or self.hover_prefetch_delay_seconds < 0:
            msg = "retry_wait_seconds and hover_prefetch_delay_seconds must be >= 0"
            raise ValueError(msg)
        self.api_base_url = self.api_base_url.rstrip("/")
        return self
