"""Tests for environment-driven settings."""

import pytest

from voltlink.config import Settings


@pytest.mark.unit
class TestSettings:
    """Test reading VOLTLINK_* variables."""

    def test_defaults(self, monkeypatch):
        for name in ("VOLTLINK_PORT", "VOLTLINK_RATE_PER_KWH", "VOLTLINK_PING_INTERVAL"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env(load_file=False)

        assert settings.port == 9000
        assert settings.rate_per_kwh == 0.30
        assert settings.offline_timeout == 90.0
        assert settings.ping_interval == 20

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("VOLTLINK_PORT", "9100")
        monkeypatch.setenv("VOLTLINK_RATE_PER_KWH", "0.42")
        monkeypatch.setenv("VOLTLINK_LOG_LEVEL", "debug")
        monkeypatch.setenv("VOLTLINK_PAYMENTS_URL", "http://payments:8000")

        settings = Settings.from_env(load_file=False)

        assert settings.port == 9100
        assert settings.rate_per_kwh == 0.42
        assert settings.log_level == "DEBUG"
        assert settings.payments_url == "http://payments:8000"

    @pytest.mark.parametrize("value", ["0", "off", "none"])
    def test_ping_can_be_disabled(self, monkeypatch, value):
        monkeypatch.setenv("VOLTLINK_PING_INTERVAL", value)

        assert Settings.from_env(load_file=False).ping_interval is None

    def test_empty_value_uses_default(self, monkeypatch):
        monkeypatch.setenv("VOLTLINK_DB_PATH", "")

        assert Settings.from_env(load_file=False).db_path == "voltlink.db"
