"""ChartScope — application configuration.

Loads .env variables into a typed config object.
Validates numeric and log-level variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_PLACEHOLDER_KEYS = {"", "your_api_key_here"}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    coingecko_api_key: str
    coingecko_base_url: str
    vs_currency: str
    min_request_interval_ms: int
    db_path: str
    log_level: str
    health_port: int

    @property
    def has_valid_api_key(self) -> bool:
        """Return ``True`` when the API key looks like a real key."""
        key = self.coingecko_api_key.strip()
        return key not in _PLACEHOLDER_KEYS and "placeholder" not in key


def _int_var(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(
            f"Environment variable {name} must be an integer, got '{raw}'"
        ) from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when
    a value cannot be parsed.
    """
    load_dotenv(dotenv_path=env_path)

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if log_level not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Environment variable LOG_LEVEL must be one of "
            f"{', '.join(sorted(_VALID_LOG_LEVELS))}, got '{log_level}'"
        )

    return Config(
        coingecko_api_key=os.environ.get("COINGECKO_API_KEY", ""),
        coingecko_base_url=os.environ.get(
            "COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3"
        ),
        vs_currency=os.environ.get("VS_CURRENCY", "usd"),
        min_request_interval_ms=_int_var("MIN_REQUEST_INTERVAL_MS", "1000"),
        db_path=os.environ.get("DB_PATH", "data/chartscope.db"),
        log_level=log_level,
        health_port=_int_var("HEALTH_PORT", "8080"),
    )
