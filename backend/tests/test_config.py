"""
Tests for application configuration.
"""

import pytest


class TestSettings:
    """Test the Settings configuration class."""

    def test_settings_defaults(self):
        """Test that settings have sensible defaults."""
        from api.config import settings

        assert settings.api_host == "0.0.0.0"
        assert settings.api_port == 8000
        assert settings.api_debug is False
        assert settings.log_level == "INFO"

    def test_scraper_defaults(self):
        """Timeouts and challenge handling default to the documented bounds."""
        from api.config import Settings

        defaults = Settings()
        assert defaults.scraper_navigation_timeout == 60
        assert defaults.scraper_content_timeout == 30
        assert defaults.scraper_content_fallback_timeout == 10
        assert defaults.scraper_hold_min_ms == 3000
        assert defaults.scraper_hold_max_ms == 5000
        assert defaults.scraper_challenge_settle_ms == 2000

    def test_run_and_identity_defaults(self):
        from api.config import Settings

        defaults = Settings()
        assert defaults.run_stale_after_minutes == 30
        assert defaults.identity_retry_attempts == 3
        assert defaults.placeholder_email_domain == "example.com"

    def test_environment_overrides(self, monkeypatch):
        """Test that environment variables override defaults."""
        from api.config import Settings

        monkeypatch.setenv("CRON_API_KEY", "from-env")
        monkeypatch.setenv("SCRAPER_HEADLESS", "false")
        monkeypatch.setenv("EMAIL_SERVER", "smtp://smtp.mail.test:587")

        overridden = Settings()
        assert overridden.cron_api_key == "from-env"
        assert overridden.scraper_headless is False
        assert overridden.email_server == "smtp://smtp.mail.test:587"

    def test_settings_database_url(self):
        """Test that database URL is set."""
        from api.config import Settings

        assert "property_finder.db" in Settings().database_url

    def test_settings_cors_origins(self):
        """Test that CORS origins are configured."""
        from api.config import settings

        assert isinstance(settings.cors_origins, list)
        assert len(settings.cors_origins) > 0

    def test_settings_log_paths(self):
        """Test that log paths are valid."""
        from api.config import settings

        assert settings.log_dir is not None
        assert settings.log_file.name == "backend.log"
        assert settings.screenshot_dir.parent == settings.log_dir

    def test_settings_data_dir(self):
        """Test that data directory path is valid."""
        from api.config import settings

        assert settings.data_dir is not None
        assert "data" in str(settings.data_dir)
