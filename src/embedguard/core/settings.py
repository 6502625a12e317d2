"""
Centralized settings for embedguard.

One validated, cached settings object configures every component of the
resilience layer. Values come from ``EMBEDGUARD_*`` environment variables
or a ``.env`` file; everything is optional and defaulted.

Examples:
    >>> from embedguard.core.settings import ResilienceSettings
    >>> settings = ResilienceSettings(cache_capacity=25, max_retries=5)
    >>> settings.cache_capacity
    25

    Environment override::

        EMBEDGUARD_RATE_LIMIT_COOLDOWN_SECONDS=120 embedguard config show

Tags:
    configuration, settings, pydantic, embedguard

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResilienceSettings(BaseSettings):
    """embedguard configuration surface.

    All fields can be set via ``EMBEDGUARD_*`` environment variables (e.g.
    ``EMBEDGUARD_CACHE_CAPACITY=20``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="EMBEDGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Resource cache ───────────────────────────────────────────
    cache_capacity: int = Field(default=10, ge=0, description="Maximum cached resources (0 retains nothing)")
    cache_ttl_hours: float = Field(default=2.0, gt=0, description="Entries idle longer than this are swept")
    cache_sweep_interval_seconds: float = Field(default=1800.0, gt=0)

    # ── Retry / backoff ──────────────────────────────────────────
    max_retries: int = Field(default=3, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    jitter_seconds: float = Field(default=1.0, ge=0, description="Upper bound of uniform jitter added to each delay")
    query_error_min_delay_seconds: float = Field(default=3.0, ge=0)
    rate_limit_min_delay_seconds: float = Field(default=10.0, ge=0)
    rate_limit_cooldown_seconds: float = Field(default=60.0, gt=0, description="Default rate-limit window")

    # ── Lifecycle tracking ───────────────────────────────────────
    synthetic_interaction_delay_seconds: float | None = Field(
        default=0.1,
        ge=0,
        description="Delay before a synthetic firstInteraction follows 'rendered' (None disables)",
    )

    # ── Load queue ───────────────────────────────────────────────
    max_concurrent_loads: int = Field(default=3, ge=1)
    load_timeout_seconds: float = Field(default=30.0, gt=0)
    load_timeout_check_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="How often in-flight loads are checked against load_timeout_seconds",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")

    @model_validator(mode="after")
    def _validate_delays(self) -> ResilienceSettings:
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )
        return self


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, ResilienceSettings] = {}


def get_settings(*, _force_reload: bool = False) -> ResilienceSettings:
    """Load, validate, and cache a :class:`ResilienceSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = ResilienceSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["ResilienceSettings", "clear_settings_cache", "get_settings"]
