"""
Unit tests for proxy configuration.
"""

import pytest
from pydantic import ValidationError as SettingsError

from shared.config import ProxyConfig, get_config


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep the developer's environment and .env file out of these tests."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "FRED_API_KEY",
        "FRED_OBSERVATIONS_DB",
        "FRED_BASE_URL",
        "FRED_PROXY_HOST",
        "FRED_PROXY_PORT",
        "FRED_PROXY_LOG_LEVEL",
        "FRED_UPSTREAM_TIMEOUT_SECONDS",
        "FRED_UPSTREAM_MAX_ATTEMPTS",
        "HOST",
        "PORT",
        "SQLITE_DB",
    ):
        monkeypatch.delenv(name, raising=False)


class TestProxyConfig:
    """Test cases for ProxyConfig."""

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("FRED_API_KEY", "abc")

        config = get_config()

        assert config.port == 9001
        assert config.host == "0.0.0.0"
        assert config.sqlite_db == "fred_cache.sqlite3"
        assert config.fred_base_url == "https://api.stlouisfed.org/fred"
        assert config.upstream_max_attempts == 2

    def test_api_key_required(self):
        with pytest.raises(SettingsError):
            get_config()

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("FRED_API_KEY", "abc")
        monkeypatch.setenv("FRED_OBSERVATIONS_DB", "/var/lib/fred/cache.sqlite3")
        monkeypatch.setenv("FRED_PROXY_PORT", "8080")
        monkeypatch.setenv("FRED_UPSTREAM_TIMEOUT_SECONDS", "5")

        config = get_config()

        assert config.sqlite_db == "/var/lib/fred/cache.sqlite3"
        assert config.port == 8080
        assert config.upstream_timeout_seconds == 5.0

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("FRED_API_KEY=from-dotenv\nFRED_PROXY_PORT=9002\n")

        config = get_config()

        assert config.fred_api_key.get_secret_value() == "from-dotenv"
        assert config.port == 9002

    def test_overrides_skip_none(self, monkeypatch):
        monkeypatch.setenv("FRED_API_KEY", "abc")
        monkeypatch.setenv("FRED_PROXY_PORT", "8080")

        config = get_config(port=None, sqlite_db="override.sqlite3")

        assert config.port == 8080
        assert config.sqlite_db == "override.sqlite3"

    def test_key_hidden_from_repr_and_redacted_view(self):
        config = ProxyConfig(fred_api_key="super-secret")

        assert "super-secret" not in repr(config)
        redacted = config.redacted()
        assert "fred_api_key" not in redacted
        assert redacted["fred_api_key_set"] is True
        assert "super-secret" not in str(redacted)

    def test_config_is_frozen(self):
        config = ProxyConfig(fred_api_key="abc")

        with pytest.raises(SettingsError):
            config.port = 1

    def test_invalid_attempts_rejected(self):
        with pytest.raises(SettingsError):
            ProxyConfig(fred_api_key="abc", upstream_max_attempts=0)
