from __future__ import annotations

import pytest

from aafeed.core.config import AAFeedConfig, load_config_from_env

_VARS = (
    "AAFEED_DATABASE_URL",
    "AAFEED_PROVIDER",
    "AAFEED_PROVIDER_BASE_URL",
    "AAFEED_PROVIDER_API_KEY",
    "AAFEED_PROVIDER_TIMEOUT_SECONDS",
    "AAFEED_CONSENT_VALIDITY_DAYS",
    "AAFEED_WEBHOOK_SECRET",
    "AAFEED_HASH_LOOKBACK",
    "AAFEED_SYNTHETIC_READY_DELAY_SECONDS",
    "AAFEED_SYNTHETIC_SEED",
    "AAFEED_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    # act
    config = load_config_from_env()

    # expected
    expected = AAFeedConfig()

    # assert
    assert config == expected
    assert config.provider_timeout_seconds == 20.0
    assert config.consent_validity_days == 30
    assert config.hash_lookback == 1000


def test_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    # setup
    monkeypatch.setenv("AAFEED_DATABASE_URL", "sqlite:///other.db")
    monkeypatch.setenv("AAFEED_PROVIDER_TIMEOUT_SECONDS", "5.5")
    monkeypatch.setenv("AAFEED_CONSENT_VALIDITY_DAYS", "90")
    monkeypatch.setenv("AAFEED_SYNTHETIC_READY_DELAY_SECONDS", "0")
    monkeypatch.setenv("AAFEED_LOG_LEVEL", "debug")
    monkeypatch.setenv("AAFEED_WEBHOOK_SECRET", "s3cret")

    # act
    config = load_config_from_env()

    # assert
    assert config.database_url == "sqlite:///other.db"
    assert config.provider_timeout_seconds == 5.5
    assert config.consent_validity_days == 90
    assert config.synthetic_ready_delay_seconds == 0.0
    assert config.log_level == "DEBUG"
    assert config.webhook_secret == "s3cret"


def test_http_provider_requires_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    # setup
    monkeypatch.setenv("AAFEED_PROVIDER", "http")
    monkeypatch.setenv("AAFEED_PROVIDER_BASE_URL", "https://aa.example")

    # act / assert
    with pytest.raises(ValueError, match="AAFEED_PROVIDER_API_KEY"):
        load_config_from_env()


def test_http_provider_with_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    # setup
    monkeypatch.setenv("AAFEED_PROVIDER", "HTTP")
    monkeypatch.setenv("AAFEED_PROVIDER_BASE_URL", "https://aa.example")
    monkeypatch.setenv("AAFEED_PROVIDER_API_KEY", "key-123")

    # act
    config = load_config_from_env()

    # assert
    assert config.provider == "http"
    assert config.provider_api_key == "key-123"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("AAFEED_PROVIDER", "ftp"),
        ("AAFEED_LOG_LEVEL", "LOUD"),
        ("AAFEED_PROVIDER_TIMEOUT_SECONDS", "0"),
        ("AAFEED_PROVIDER_TIMEOUT_SECONDS", "-1"),
        ("AAFEED_PROVIDER_TIMEOUT_SECONDS", "soon"),
        ("AAFEED_HASH_LOOKBACK", "0"),
        ("AAFEED_CONSENT_VALIDITY_DAYS", "thirty"),
    ],
)
def test_invalid_values_fail_fast(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        load_config_from_env()
