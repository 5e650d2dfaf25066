# tests/test_config.py
import pytest

from backend.config import Settings, load_settings

ENV_VARS = [
    "USE_DYNAMODB", "AWS_REGION", "DEVICES_TABLE_NAME", "HISTORY_TABLE_NAME", "CHECKPOINT_PATH",
    "TZ_NAME", "TICK_INTERVAL_MINUTES", "TARIFF_RATE_PER_KWH", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    assert load_settings(dotenv=False) == Settings()


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("USE_DYNAMODB", "true")
    monkeypatch.setenv("HISTORY_TABLE_NAME", "History-prod")
    monkeypatch.setenv("TZ_NAME", "Europe/Dublin")
    monkeypatch.setenv("TARIFF_RATE_PER_KWH", "0.31")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = load_settings(dotenv=False)

    assert settings.use_dynamodb is True
    assert settings.history_table_name == "History-prod"
    assert settings.tz_name == "Europe/Dublin"
    assert settings.tariff_rate_per_kwh == 0.31
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("raw", ["abc", "0", "-5"])
def test_bad_interval_falls_back(monkeypatch, raw):
    monkeypatch.setenv("TICK_INTERVAL_MINUTES", raw)
    assert load_settings(dotenv=False).tick_interval_minutes == 5.0
