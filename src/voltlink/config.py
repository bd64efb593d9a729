"""Runtime settings, read from the environment (and a .env file)."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "VOLTLINK_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value == "":
        return default
    return value


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = _env(name)
    return int(value) if value is not None else default


def _env_float(name: str, default: float) -> float:
    value = _env(name)
    return float(value) if value is not None else default


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 9000
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    db_path: str = "voltlink.db"
    log_level: str = "INFO"
    log_file: Optional[str] = "voltlink.log"

    # Interval handed to chargers in BootNotification
    heartbeat_interval: int = 40
    offline_timeout: float = 90.0
    offline_check_interval: float = 30.0
    ping_interval: Optional[int] = 20

    command_timeout: float = 5.0
    command_attempts: int = 1
    command_retry_backoff: float = 1.0

    rate_per_kwh: float = 0.30
    preauth_amount: float = 20.0
    payments_url: Optional[str] = None

    auto_stop_min_elapsed: float = 60.0
    auto_stop_zero_samples: int = 4

    metrics_port: Optional[int] = None
    fluentd_endpoint: Optional[str] = None
    fluentd_tag: str = "ocpp"

    @classmethod
    def from_env(cls, load_file: bool = True) -> "Settings":
        """Build settings from VOLTLINK_* environment variables."""
        if load_file:
            load_dotenv()
        defaults = cls()
        ping = _env("PING_INTERVAL")
        return cls(
            host=_env("HOST", defaults.host),
            port=_env_int("PORT", defaults.port),
            api_host=_env("API_HOST", defaults.api_host),
            api_port=_env_int("API_PORT", defaults.api_port),
            db_path=_env("DB_PATH", defaults.db_path),
            log_level=_env("LOG_LEVEL", defaults.log_level).upper(),
            log_file=_env("LOG_FILE", defaults.log_file),
            heartbeat_interval=_env_int("HEARTBEAT_INTERVAL", defaults.heartbeat_interval),
            offline_timeout=_env_float("OFFLINE_TIMEOUT", defaults.offline_timeout),
            offline_check_interval=_env_float(
                "OFFLINE_CHECK_INTERVAL", defaults.offline_check_interval
            ),
            ping_interval=(
                None if ping in ("0", "off", "none") else int(ping) if ping else defaults.ping_interval
            ),
            command_timeout=_env_float("COMMAND_TIMEOUT", defaults.command_timeout),
            command_attempts=_env_int("COMMAND_ATTEMPTS", defaults.command_attempts),
            command_retry_backoff=_env_float(
                "COMMAND_RETRY_BACKOFF", defaults.command_retry_backoff
            ),
            rate_per_kwh=_env_float("RATE_PER_KWH", defaults.rate_per_kwh),
            preauth_amount=_env_float("PREAUTH_AMOUNT", defaults.preauth_amount),
            payments_url=_env("PAYMENTS_URL", defaults.payments_url),
            auto_stop_min_elapsed=_env_float(
                "AUTO_STOP_MIN_ELAPSED", defaults.auto_stop_min_elapsed
            ),
            auto_stop_zero_samples=_env_int(
                "AUTO_STOP_ZERO_SAMPLES", defaults.auto_stop_zero_samples
            ),
            metrics_port=_env_int("METRICS_PORT", defaults.metrics_port),
            fluentd_endpoint=_env("FLUENTD_ENDPOINT", defaults.fluentd_endpoint),
            fluentd_tag=_env("FLUENTD_TAG", defaults.fluentd_tag),
        )
