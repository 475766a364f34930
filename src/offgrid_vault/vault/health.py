# Vault - Server Health Checks
#
# One HTTP GET against a server's health-check URL:
#   expected status          -> healthy
#   5xx / connection failure -> down
#   anything else, or slow   -> degraded

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .models import HealthStatus, now_ms

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 8.0
SLOW_RESPONSE_MS = 3000


@dataclass(frozen=True)
class HealthResult:
    status: HealthStatus
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    checked_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "responseTime": self.response_time_ms,
            "statusCode": self.status_code,
            "error": self.error,
            "lastCheck": self.checked_at,
        }


def classify(status_code: int, expected_status: int, response_time_ms: int) -> HealthStatus:
    if status_code >= 500:
        return HealthStatus.DOWN
    if status_code != expected_status:
        return HealthStatus.DEGRADED
    if response_time_ms > SLOW_RESPONSE_MS:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def check_health(url: str, expected_status: int = 200, timeout: float = DEFAULT_TIMEOUT) -> HealthResult:
    """Probe a URL. Never raises; failures come back as a ``down`` result."""
    start = time.monotonic()
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
    except httpx.TimeoutException:
        logger.info("Health check timed out: %s", url)
        return HealthResult(HealthStatus.DOWN, error="timeout", checked_at=now_ms())
    except httpx.HTTPError as exc:
        logger.info("Health check failed for %s: %s", url, exc)
        elapsed = int((time.monotonic() - start) * 1000)
        return HealthResult(HealthStatus.DOWN, response_time_ms=elapsed, error=str(exc), checked_at=now_ms())

    elapsed = int((time.monotonic() - start) * 1000)
    return HealthResult(
        status=classify(response.status_code, expected_status, elapsed),
        response_time_ms=elapsed,
        status_code=response.status_code,
        checked_at=now_ms(),
    )
