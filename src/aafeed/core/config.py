from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Literal

ProviderKind = Literal["synthetic", "http"]
LogLevel = Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"]

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 20.0
DEFAULT_CONSENT_VALIDITY_DAYS = 30
DEFAULT_HASH_LOOKBACK = 1000


@dataclass(frozen=True, slots=True)
class AAFeedConfig:
    """Process configuration loaded at startup."""

    database_url: str = "sqlite:///aafeed.db"
    provider: ProviderKind = "synthetic"
    provider_base_url: str = ""
    provider_api_key: str = ""
    provider_timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS
    consent_validity_days: int = DEFAULT_CONSENT_VALIDITY_DAYS
    webhook_secret: str = ""
    hash_lookback: int = DEFAULT_HASH_LOOKBACK
    synthetic_ready_delay_seconds: float = 2.0
    synthetic_seed: str = "aafeed"
    log_level: LogLevel = "INFO"


def _require_env(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def load_config_from_env() -> AAFeedConfig:
    """Load configuration from AAFEED_* variables and validate it."""
    provider_value = os.environ.get("AAFEED_PROVIDER", "synthetic").strip().lower()
    if provider_value not in {"synthetic", "http"}:
        raise ValueError("AAFEED_PROVIDER must be one of: synthetic, http")
    provider: ProviderKind = provider_value  # type: ignore[assignment]

    log_level = os.environ.get("AAFEED_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"}:
        raise ValueError(
            "AAFEED_LOG_LEVEL must be one of: "
            "TRACE, DEBUG, INFO, SUCCESS, WARNING, ERROR"
        )

    provider_base_url = os.environ.get("AAFEED_PROVIDER_BASE_URL", "").strip()
    provider_api_key = os.environ.get("AAFEED_PROVIDER_API_KEY", "").strip()

    # Fail fast on missing credentials for a real provider.
    if provider == "http":
        provider_base_url = _require_env("AAFEED_PROVIDER_BASE_URL")
        provider_api_key = _require_env("AAFEED_PROVIDER_API_KEY")

    timeout = _float_env(
        "AAFEED_PROVIDER_TIMEOUT_SECONDS", DEFAULT_PROVIDER_TIMEOUT_SECONDS
    )
    if timeout == 0:
        raise ValueError("AAFEED_PROVIDER_TIMEOUT_SECONDS must be greater than 0")

    return AAFeedConfig(
        database_url=os.environ.get(
            "AAFEED_DATABASE_URL", "sqlite:///aafeed.db"
        ).strip(),
        provider=provider,
        provider_base_url=provider_base_url,
        provider_api_key=provider_api_key,
        provider_timeout_seconds=timeout,
        consent_validity_days=_int_env(
            "AAFEED_CONSENT_VALIDITY_DAYS", DEFAULT_CONSENT_VALIDITY_DAYS
        ),
        webhook_secret=os.environ.get("AAFEED_WEBHOOK_SECRET", "").strip(),
        hash_lookback=_int_env("AAFEED_HASH_LOOKBACK", DEFAULT_HASH_LOOKBACK),
        synthetic_ready_delay_seconds=_float_env(
            "AAFEED_SYNTHETIC_READY_DELAY_SECONDS", 2.0
        ),
        synthetic_seed=os.environ.get("AAFEED_SYNTHETIC_SEED", "aafeed").strip()
        or "aafeed",
        log_level=log_level,  # type: ignore[arg-type]
    )
