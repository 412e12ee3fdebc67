# =============================================================================
# market_core/config.py
# Runtime Configuration for the Marketplace Client Core
# =============================================================================
"""
CoreConfig - immutable configuration consumed by the client core.

Values come from the bootstrap layer, usually via ``CoreConfig.from_env()``
which reads ``MARKET_*`` variables (and a local ``.env`` file if present).
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from market_core.errors import ConfigurationError


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast=float):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", config_key=name) from e


@dataclass(frozen=True)
class CoreConfig:
    """Configuration surface of the data-access layer."""

    base_url: str = "http://localhost:8000"
    enable_http_logs: bool = False

    # Request pipeline
    request_timeout: float = 30.0
    retry_count: int = 2
    retry_backoff: float = 0.2
    cache_max_stale: timedelta = field(default_factory=lambda: timedelta(days=7))

    # Telemetry
    telemetry_flush_threshold: int = 20
    telemetry_batch_size: int = 50
    telemetry_flush_interval: float = 15.0
    telemetry_max_events: int = 5000
    telemetry_max_age_days: int = 7

    # Connectivity
    connectivity_check_interval: float = 30.0
    connectivity_offline_interval: float = 10.0
    connectivity_timeout: float = 5.0

    # Local state
    data_dir: Path = Path("local_data")
    token_key: Optional[str] = None

    @property
    def database_path(self) -> Path:
        return self.data_dir / "marketplace.db"

    @property
    def token_path(self) -> Path:
        return self.data_dir / "session.bin"

    @property
    def token_key_path(self) -> Path:
        return self.data_dir / "session.key"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> CoreConfig:
        """Build a validated configuration from MARKET_* environment variables."""
        load_dotenv(dotenv_path)

        defaults = cls()
        config = cls(
            base_url=os.getenv("MARKET_BASE_URL", defaults.base_url).rstrip("/"),
            enable_http_logs=_env_bool("MARKET_ENABLE_HTTP_LOGS", defaults.enable_http_logs),
            request_timeout=_env_number("MARKET_REQUEST_TIMEOUT", defaults.request_timeout),
            retry_count=_env_number("MARKET_RETRY_COUNT", defaults.retry_count, int),
            cache_max_stale=timedelta(
                days=_env_number("MARKET_CACHE_MAX_STALE_DAYS", defaults.cache_max_stale.days, float)
            ),
            telemetry_flush_threshold=_env_number(
                "MARKET_TELEMETRY_FLUSH_THRESHOLD", defaults.telemetry_flush_threshold, int
            ),
            telemetry_batch_size=_env_number("MARKET_TELEMETRY_BATCH_SIZE", defaults.telemetry_batch_size, int),
            telemetry_flush_interval=_env_number(
                "MARKET_TELEMETRY_FLUSH_INTERVAL", defaults.telemetry_flush_interval
            ),
            telemetry_max_events=_env_number("MARKET_TELEMETRY_MAX_EVENTS", defaults.telemetry_max_events, int),
            data_dir=Path(os.getenv("MARKET_DATA_DIR", str(defaults.data_dir))),
            token_key=os.getenv("MARKET_TOKEN_KEY") or None,
        )
        config.validate()
        return config

    def with_overrides(self, **changes) -> CoreConfig:
        """Return a validated copy with some fields replaced."""
        config = replace(self, **changes)
        config.validate()
        return config

    def validate(self) -> None:
        parsed = urlparse(self.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Invalid base URL: {self.base_url!r}", config_key="base_url")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive", config_key="request_timeout")
        if self.retry_count < 0:
            raise ConfigurationError("retry_count cannot be negative", config_key="retry_count")
        if self.cache_max_stale <= timedelta(0):
            raise ConfigurationError("cache_max_stale must be positive", config_key="cache_max_stale")
        if self.telemetry_batch_size < 1 or self.telemetry_flush_threshold < 1:
            raise ConfigurationError("Telemetry batch sizes must be at least 1", config_key="telemetry_batch_size")
        if self.telemetry_max_events < self.telemetry_batch_size:
            raise ConfigurationError(
                "telemetry_max_events must hold at least one batch",
                config_key="telemetry_max_events",
            )
