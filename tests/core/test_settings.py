"""Tests for embedguard.core.settings."""

import pytest
from pydantic import ValidationError

from embedguard.core.settings import ResilienceSettings, clear_settings_cache, get_settings


class TestDefaults:
    def test_defaults(self):
        settings = ResilienceSettings()
        assert settings.cache_capacity == 10
        assert settings.cache_ttl_hours == 2.0
        assert settings.cache_sweep_interval_seconds == 1800.0
        assert settings.max_retries == 3
        assert settings.base_delay_seconds == 1.0
        assert settings.max_delay_seconds == 30.0
        assert settings.backoff_multiplier == 2.0
        assert settings.rate_limit_cooldown_seconds == 60.0
        assert settings.synthetic_interaction_delay_seconds == 0.1
        assert settings.max_concurrent_loads == 3
        assert settings.load_timeout_seconds == 30.0
        assert settings.load_timeout_check_interval_seconds == 1.0
        assert settings.log_format == "console"


class TestEnvironment:
    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("EMBEDGUARD_CACHE_CAPACITY", "25")
        monkeypatch.setenv("EMBEDGUARD_MAX_RETRIES", "5")
        settings = ResilienceSettings()
        assert settings.cache_capacity == 25
        assert settings.max_retries == 5

    def test_get_settings_is_cached(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("EMBEDGUARD_CACHE_CAPACITY", "99")
        assert get_settings() is first

        clear_settings_cache()
        assert get_settings().cache_capacity == 99

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("EMBEDGUARD_MAX_RETRIES", "7")
        reloaded = get_settings(_force_reload=True)
        assert reloaded is not first
        assert reloaded.max_retries == 7


class TestValidation:
    def test_negative_capacity_rejected(self):
        with pytest.raises(ValidationError):
            ResilienceSettings(cache_capacity=-1)

    def test_max_delay_below_base_rejected(self):
        with pytest.raises(ValidationError):
            ResilienceSettings(base_delay_seconds=10, max_delay_seconds=5)

    def test_multiplier_below_one_rejected(self):
        with pytest.raises(ValidationError):
            ResilienceSettings(backoff_multiplier=0.5)

    def test_log_format_restricted(self):
        with pytest.raises(ValidationError):
            ResilienceSettings(log_format="xml")

    def test_synthetic_interaction_can_be_disabled(self):
        assert ResilienceSettings(synthetic_interaction_delay_seconds=None).synthetic_interaction_delay_seconds is None
