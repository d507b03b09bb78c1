"""
Unit tests for environment-driven settings.
"""
import pytest
from pydantic import ValidationError

from devtopo.settings import Settings

VARIABLES = (
    "DEVTOPO_NETWORK",
    "DEVTOPO_HEALTH_TIMEOUT_S",
    "DEVTOPO_HEALTH_INTERVAL_S",
    "DEVTOPO_STOP_GRACE_PERIOD_S",
    "DEVTOPO_LOG_QUEUE_SIZE",
    "DEVTOPO_LOG_LEVEL",
    "DEVTOPO_COLOR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in VARIABLES:
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Tests for Settings.from_env."""

    def test_defaults(self):
        settings = Settings.from_env(load_env_file=False)
        assert settings.network_name == "devtopo"
        assert settings.health_timeout_s == 120.0
        assert settings.health_interval_s == 1.0
        assert settings.stop_grace_period_s == 10
        assert settings.log_queue_size == 1000
        assert settings.log_level == "INFO"
        assert settings.color is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("DEVTOPO_NETWORK", "shop")
        monkeypatch.setenv("DEVTOPO_HEALTH_TIMEOUT_S", "30")
        monkeypatch.setenv("DEVTOPO_HEALTH_INTERVAL_S", "0.5")
        monkeypatch.setenv("DEVTOPO_STOP_GRACE_PERIOD_S", "3")
        monkeypatch.setenv("DEVTOPO_LOG_LEVEL", "debug")
        monkeypatch.setenv("DEVTOPO_COLOR", "yes")
        settings = Settings.from_env(load_env_file=False)
        assert settings.network_name == "shop"
        assert settings.health_timeout_s == 30.0
        assert settings.health_interval_s == 0.5
        assert settings.stop_grace_period_s == 3
        assert settings.log_level == "DEBUG"
        assert settings.use_color is True

    def test_unparseable_values_fall_back(self, monkeypatch):
        monkeypatch.setenv("DEVTOPO_HEALTH_TIMEOUT_S", "soon")
        monkeypatch.setenv("DEVTOPO_LOG_QUEUE_SIZE", "many")
        settings = Settings.from_env(load_env_file=False)
        assert settings.health_timeout_s == 120.0
        assert settings.log_queue_size == 1000

    def test_env_file_is_loaded(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("DEVTOPO_NETWORK=from-dotenv\n")
        monkeypatch.chdir(tmp_path)
        assert Settings.from_env().network_name == "from-dotenv"

    def test_color_off(self, monkeypatch):
        monkeypatch.setenv("DEVTOPO_COLOR", "0")
        assert Settings.from_env(load_env_file=False).use_color is False

    def test_frozen(self):
        settings = Settings()
        with pytest.raises(ValidationError):
            settings.network_name = "other"
