"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from fintrack.config import (
    AppSettings,
    DatabaseSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Run every test away from any local .env and FINTRACK_ variables."""
    monkeypatch.chdir(tmp_path)
    for name in ("FINTRACK_DB_URL", "FINTRACK_LEDGER_DUE_SOON_WINDOW_DAYS", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestDefaults:
    """Tests for default values."""

    def test_ledger_defaults(self):
        """Test the policy defaults."""
        settings = LedgerSettings()
        assert settings.due_soon_window_days == 7
        assert settings.fees_category_id == "tuition-fees"
        assert settings.aggregate_description_prefix == "Monthly Tuition Fees Aggregate"
        assert settings.note_separator == "; "
        assert settings.min_period_year == 2020

    def test_database_defaults(self):
        """Test the default database URL."""
        settings = DatabaseSettings()
        assert settings.url == "sqlite:///fintrack.db"
        assert settings.connect_retries == 3

    def test_app_defaults(self):
        """Test the default log level."""
        assert AppSettings().log_level == "INFO"


class TestEnvironment:
    """Tests for environment overrides."""

    def test_env_overrides_database_url(self, monkeypatch):
        """Test the FINTRACK_DB_ prefix."""
        monkeypatch.setenv("FINTRACK_DB_URL", "postgresql+psycopg://localhost/fintrack")
        assert Settings().database.url == "postgresql+psycopg://localhost/fintrack"

    def test_env_overrides_window(self, monkeypatch):
        """Test the FINTRACK_LEDGER_ prefix."""
        monkeypatch.setenv("FINTRACK_LEDGER_DUE_SOON_WINDOW_DAYS", "14")
        assert Settings().ledger.due_soon_window_days == 14

    def test_rejects_malformed_url(self):
        """Test URL validation."""
        with pytest.raises(ValidationError, match="Not a database URL"):
            DatabaseSettings(url="fintrack.db")

    def test_rejects_unknown_log_level(self):
        """Test the log level pattern."""
        with pytest.raises(ValidationError):
            AppSettings(log_level="LOUD")


class TestHelpers:
    """Tests for get_settings and validate_all_settings."""

    def test_get_settings_is_cached(self):
        """Test that the same instance is returned until cache_clear."""
        first = get_settings()
        assert get_settings() is first

        get_settings.cache_clear()
        assert get_settings() is not first

    def test_validate_all_settings_ok(self):
        """Test a fully valid configuration."""
        assert validate_all_settings(Settings()) == {"database": True, "ledger": True, "app": True}

    def test_validate_all_settings_reports_errors(self, monkeypatch):
        """Test that a broken sub-setting is reported, not raised."""
        monkeypatch.setenv("FINTRACK_DB_URL", "not-a-url")

        results = validate_all_settings(Settings())

        assert results["database"] is False
        assert "Not a database URL" in results["database_error"]
        assert results["ledger"] is True
