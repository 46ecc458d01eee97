"""Presale policy settings.

Constants that shape checkout and capture behaviour. The handful that
operators need to tune are read from the environment at call time so tests
and deployments can override them without reloading modules.
"""

import os
from datetime import timedelta
from enum import Enum

MAX_CAPTURE_ATTEMPTS = 5
CAPTURE_RETRY_WINDOW = timedelta(days=3)
SUCCESS_RATE_THRESHOLD = 0.90
PLATFORM_FEE_RATE = 0.15
DEFAULT_CURRENCY = "GBP"

# Bound on transparent retries when a pledge loses the counter race
MAX_RECORD_RETRIES = 10


class CaptureTrigger(Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


def capture_trigger() -> CaptureTrigger:
    """Whether reaching the target starts capture on its own or waits for an operator."""
    value = os.environ.get("PRESALE_CAPTURE_TRIGGER", CaptureTrigger.AUTOMATIC.value).lower()
    return CaptureTrigger(value)


def capture_retry_interval() -> timedelta:
    """Minimum spacing between two capture attempts for the same presale."""
    return timedelta(hours=float(os.environ.get("PRESALE_CAPTURE_RETRY_HOURS", "12")))


def sweep_interval_minutes() -> int:
    return int(os.environ.get("PRESALE_SWEEP_INTERVAL_MINUTES", "15"))


def stale_claim_after() -> timedelta:
    """How long an attempt may hold its claim before another worker may take it over."""
    return timedelta(minutes=float(os.environ.get("PRESALE_STALE_CLAIM_MINUTES", "30")))
