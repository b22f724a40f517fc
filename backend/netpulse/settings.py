"""Environment driven configuration for the NetPulse backend."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

TRUTHY_VALUES = {"1", "true", "yes", "on"}


def read_bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY_VALUES


def read_int_env(name: str, default: int, *, minimum: int | None = None) -> int:
    """Read an integer variable, falling back to ``default`` on malformed values."""

    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        LOGGER.warning("Invalid value for %s=%s; using %s", name, raw, default)
        return default
    if minimum is not None and value < minimum:
        LOGGER.warning("%s must be >= %s; using %s", name, minimum, default)
        return default
    return value


def read_float_env(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        LOGGER.warning("Invalid value for %s=%s; using %.1f", name, raw, default)
        return default
    if minimum is not None and value < minimum:
        LOGGER.warning("%s must be >= %s; using %.1f", name, minimum, default)
        return default
    return value


@dataclass(frozen=True)
class MonitorSettings:
    """Polling policy used while confirming a mobile-money charge."""

    initial_delay: float = 3.0
    poll_interval: float = 5.0
    max_attempts: int = 60
    timeout: float = 300.0

    @classmethod
    def from_env(cls) -> "MonitorSettings":
        return cls(
            initial_delay=read_float_env("PAYMENT_MONITOR_INITIAL_DELAY", 3.0, minimum=0.0),
            poll_interval=read_float_env("PAYMENT_MONITOR_POLL_INTERVAL", 5.0, minimum=0.01),
            max_attempts=read_int_env("PAYMENT_MONITOR_MAX_ATTEMPTS", 60, minimum=1),
            timeout=read_float_env("PAYMENT_MONITOR_TIMEOUT", 300.0, minimum=0.01),
        )


@dataclass(frozen=True)
class AccessServerSettings:
    webhook_url: str | None = None
    api_key: str | None = None
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "AccessServerSettings":
        return cls(
            webhook_url=os.getenv("ACCESS_SERVER_WEBHOOK_URL") or None,
            api_key=os.getenv("ACCESS_SERVER_API_KEY") or None,
            timeout=read_float_env("ACCESS_SERVER_TIMEOUT", 10.0, minimum=0.1),
        )


@dataclass(frozen=True)
class MpesaSettings:
    """Credentials for the Safaricom Daraja API."""

    environment: str = "sandbox"
    consumer_key: str | None = None
    consumer_secret: str | None = None
    shortcode: str | None = None
    passkey: str | None = None
    callback_url: str | None = None
    timeout: float = 30.0

    @property
    def base_url(self) -> str:
        if self.environment == "production":
            return "https://api.safaricom.co.ke"
        return "https://sandbox.safaricom.co.ke"

    @classmethod
    def from_env(cls) -> "MpesaSettings":
        return cls(
            environment=os.getenv("MPESA_ENVIRONMENT", "sandbox").strip().lower(),
            consumer_key=os.getenv("MPESA_CONSUMER_KEY") or None,
            consumer_secret=os.getenv("MPESA_CONSUMER_SECRET") or None,
            shortcode=os.getenv("MPESA_SHORTCODE") or None,
            passkey=os.getenv("MPESA_PASSKEY") or None,
            callback_url=os.getenv("MPESA_CALLBACK_URL") or None,
            timeout=read_float_env("MPESA_TIMEOUT", 30.0, minimum=1.0),
        )


@dataclass(frozen=True)
class RenewalSettings:
    interval_minutes: int = 60
    run_on_start: bool = True

    @classmethod
    def from_env(cls) -> "RenewalSettings":
        return cls(
            interval_minutes=read_int_env("RENEWAL_INTERVAL_MINUTES", 60, minimum=1),
            run_on_start=read_bool_env("RENEWAL_RUN_ON_START", True),
        )
