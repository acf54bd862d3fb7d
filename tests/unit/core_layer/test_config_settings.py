"""
Unit Tests for Configuration Settings

Tests the settings loading, validation, and default values.
"""

from unittest.mock import patch

import pytest

from hapi_canvas.core.config import constants
from hapi_canvas.core.config.constants import CanvasEndpoints, CanvasOAuthEndpoints, RequestPriority
from hapi_canvas.core.config.settings import Settings, get_settings, reload_settings


@pytest.mark.unit
class TestSettingsDefaults:
    def test_sections_mirror_root_fields(self):
        settings = Settings()

        assert settings.rate_limit.RATE_LIMIT_PER_HOUR == settings.RATE_LIMIT_PER_HOUR
        assert settings.circuit_breaker.CB_FAILURE_THRESHOLD == settings.CB_FAILURE_THRESHOLD
        assert settings.cache.CACHE_MAX_ENTRIES == settings.CACHE_MAX_ENTRIES
        assert settings.canvas.CANVAS_MAX_PAGES == settings.CANVAS_MAX_PAGES

    def test_resilience_defaults(self, monkeypatch):
        for name in ("RATE_LIMIT_PER_HOUR", "CB_FAILURE_THRESHOLD", "CB_RECOVERY_TIMEOUT", "RATE_LIMIT_MAX_RETRIES"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)

        assert settings.rate_limit.RATE_LIMIT_PER_HOUR == 600
        assert settings.rate_limit.RATE_LIMIT_MAX_RETRIES == 3
        assert settings.circuit_breaker.CB_FAILURE_THRESHOLD == 5
        assert settings.circuit_breaker.CB_RECOVERY_TIMEOUT == 60
        assert settings.CANVAS_MAX_PAGES == 10


@pytest.mark.unit
class TestSettingsValidation:
    def test_instance_url_trailing_slash_stripped_in_section(self):
        settings = Settings(CANVAS_INSTANCE_URL="https://canvas.school.edu/")
        assert settings.canvas.CANVAS_INSTANCE_URL == "https://canvas.school.edu"
        assert settings.canvas.api_base_url == "https://canvas.school.edu/api/v1"

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValueError):
            Settings(LOG_LEVEL="CHATTY")

    def test_log_level_normalised(self):
        assert Settings(LOG_LEVEL="debug").logging.LOG_LEVEL == "DEBUG"

    def test_environment_overrides(self):
        with patch.dict("os.environ", {"RATE_LIMIT_PER_HOUR": "120", "CACHE_PERSISTENT_ENABLED": "true"}):
            settings = Settings()
        assert settings.rate_limit.RATE_LIMIT_PER_HOUR == 120
        assert settings.cache.CACHE_PERSISTENT_ENABLED is True


@pytest.mark.unit
class TestSettingsSingleton:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reload_settings_replaces_instance(self):
        first = get_settings()
        second = reload_settings()
        assert second is not first
        assert get_settings() is second


@pytest.mark.unit
class TestConstants:
    def test_priority_order(self):
        assert (
            RequestPriority.CRITICAL
            > RequestPriority.USER_INITIATED
            > RequestPriority.NORMAL
            > RequestPriority.BACKGROUND
        )

    def test_endpoints(self):
        assert CanvasEndpoints.course_detail("42") == "/courses/42"
        assert CanvasEndpoints.module_items("42", "7") == "/courses/42/modules/7/items"
        assert CanvasEndpoints.course_analytics("42") == "/courses/42/analytics/student_summaries"
        assert CanvasOAuthEndpoints.token("https://c.edu") == "https://c.edu/login/oauth2/token"

    def test_resource_ttls(self):
        assert constants.RESOURCE_TTLS["user"] == 24 * 60 * 60
        assert constants.RESOURCE_TTLS["submissions"] == 10 * 60
