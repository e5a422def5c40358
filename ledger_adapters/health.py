"""
Adapter Health Tracker - Status from consecutive failures plus an incident log.

    HEALTHY ──(3 consecutive failures)──> DEGRADED ──(5)──> UNAVAILABLE
       ^                                                        │
       └──────────────────── any success ───────────────────────┘

A 429 moves the adapter to RATE_LIMITED immediately. The incident log
keeps the most recent failures only.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Optional

from ledger_adapters.exceptions import LedgerAdapterError, RateLimitError
from ledger_adapters.models import AdapterHealth, AdapterIncident, AdapterStatus


logger = logging.getLogger(__name__)


class HealthTracker:
    """Health state of one adapter."""

    def __init__(
        self,
        adapter_name: str,
        degraded_after: int = 3,
        unavailable_after: int = 5,
        max_incidents: int = 100,
    ) -> None:
        self.adapter_name = adapter_name
        self.degraded_after = degraded_after
        self.unavailable_after = unavailable_after
        self.health = AdapterHealth(status=AdapterStatus.UNKNOWN, last_check=datetime.now(timezone.utc))
        self.last_success: Optional[datetime] = None
        self._incidents: deque[AdapterIncident] = deque(maxlen=max_incidents)

    def record_request(self, latency_ms: float) -> None:
        self.health.requests_total += 1
        self.health.latency_ms = latency_ms

    def record_rate_limit_remaining(self, remaining: Optional[str]) -> None:
        if remaining and remaining.isdigit():
            self.health.rate_limit_remaining = int(remaining)

    def record_success(self) -> None:
        self.last_success = datetime.now(timezone.utc)
        self.health.consecutive_failures = 0
        previous = self.health.status
        self.health.status = AdapterStatus.HEALTHY
        if previous not in (AdapterStatus.HEALTHY, AdapterStatus.UNKNOWN):
            logger.info(f"[{self.adapter_name}] Recovered from {previous.value}")

    def record_failure(
        self,
        error: LedgerAdapterError,
        endpoint: Optional[str] = None,
        request_params: Optional[dict[str, Any]] = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        self.health.error_count += 1
        self.health.consecutive_failures += 1
        self.health.last_error = str(error)
        self.health.last_error_time = now

        new_status = self._status_after_failure(error)
        if new_status != self.health.status:
            log = logger.error if new_status == AdapterStatus.UNAVAILABLE else logger.warning
            log(f"[{self.adapter_name}] Marked {new_status.value.upper()}")
            self.health.status = new_status

        self._incidents.append(AdapterIncident(
            adapter_name=self.adapter_name,
            incident_type=type(error).__name__,
            timestamp=now,
            error_message=str(error),
            endpoint=endpoint,
            request_params=request_params,
        ))
        logger.warning(f"[{self.adapter_name}] Incident: {error}")

    def _status_after_failure(self, error: LedgerAdapterError) -> AdapterStatus:
        if isinstance(error, RateLimitError):
            return AdapterStatus.RATE_LIMITED
        failures = self.health.consecutive_failures
        if failures >= self.unavailable_after:
            return AdapterStatus.UNAVAILABLE
        if failures >= self.degraded_after:
            return AdapterStatus.DEGRADED
        return self.health.status

    def record_check(self, error: Optional[Exception], latency_ms: float) -> AdapterHealth:
        """Result of an explicit health check."""
        now = datetime.now(timezone.utc)
        if error is None:
            self.health.status = AdapterStatus.HEALTHY
            logger.debug(f"[{self.adapter_name}] Health check OK")
        else:
            self.health.status = AdapterStatus.UNAVAILABLE
            self.health.last_error = str(error)
            self.health.last_error_time = now
            logger.warning(f"[{self.adapter_name}] Health check FAILED: {error}")
        self.health.last_check = now
        self.health.latency_ms = latency_ms
        return self.health

    def incidents(self, limit: int = 10) -> list[AdapterIncident]:
        return list(self._incidents)[-limit:]
