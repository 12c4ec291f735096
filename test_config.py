"""Tests for configuration loading and validation."""
import pytest

from bot.config import Config


def test_from_env(monkeypatch):
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    monkeypatch.setenv("OWNER_ID", "42")
    monkeypatch.setenv("WEBHOOK_SECRET", "Relay_Secret_2024")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("WEBHOOK_URL", raising=False)

    config = Config.from_env()

    assert config.owner_id == 42
    assert config.webhook_path == "/webhook"
    assert not config.has_kv_store
    assert not config.is_production


def test_missing_required_variables(monkeypatch):
    monkeypatch.delenv("BOT_TOKEN", raising=False)
    with pytest.raises(RuntimeError):
        Config.from_env()

    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    monkeypatch.delenv("OWNER_ID", raising=False)
    with pytest.raises(RuntimeError):
        Config.from_env()

    monkeypatch.setenv("OWNER_ID", "not-a-number")
    with pytest.raises(ValueError):
        Config.from_env()


@pytest.mark.parametrize("secret", ["short1A", "alllowercase12345", "ALLUPPERCASE12345", "NoDigitsInThisOne", "Has spaces 12345Ab"])
def test_weak_webhook_secret_is_rejected(secret):
    with pytest.raises(ValueError):
        Config(bot_token="123:abc", owner_id=42, webhook_secret=secret)


def test_owner_id_must_be_set():
    with pytest.raises(ValueError):
        Config(bot_token="123:abc", owner_id=0)
