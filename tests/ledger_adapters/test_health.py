"""
Tests for adapter health tracking.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from ledger_adapters.exceptions import RateLimitError, TransportError
from ledger_adapters.health import HealthTracker
from ledger_adapters.models import AdapterStatus
from ledger_adapters.providers.coingecko import CoinGeckoAdapter


class TestHealthTracker:
    """Tests for HealthTracker."""

    def test_starts_unknown_and_usable(self):
        tracker = HealthTracker("node")

        assert tracker.health.status == AdapterStatus.UNKNOWN
        assert tracker.health.is_usable()

    def test_failure_thresholds(self):
        tracker = HealthTracker("node", degraded_after=2, unavailable_after=4)
        error = TransportError("HTTP 502")

        tracker.record_failure(error)
        assert tracker.health.status == AdapterStatus.UNKNOWN
        tracker.record_failure(error)
        assert tracker.health.status == AdapterStatus.DEGRADED
        tracker.record_failure(error)
        tracker.record_failure(error)
        assert tracker.health.status == AdapterStatus.UNAVAILABLE
        assert tracker.health.error_count == 4

    def test_success_resets(self):
        tracker = HealthTracker("node", degraded_after=1)
        tracker.record_failure(TransportError("HTTP 500"))

        tracker.record_success()

        assert tracker.health.status == AdapterStatus.HEALTHY
        assert tracker.health.consecutive_failures == 0
        assert tracker.last_success is not None

    def test_timestamps_are_aware_utc(self):
        tracker = HealthTracker("node")
        error = TransportError("HTTP 502")

        tracker.record_failure(error)
        tracker.record_success()

        assert tracker.health.last_check.tzinfo is not None
        assert tracker.health.last_error_time.utcoffset() == timedelta(0)
        assert tracker.last_success.tzinfo is not None
        assert tracker.incidents()[0].timestamp.tzinfo is not None
        assert error.timestamp.tzinfo is not None
        assert error.to_dict()["timestamp"].endswith("+00:00")

    def test_rate_limit_is_immediate(self):
        tracker = HealthTracker("node")

        tracker.record_failure(RateLimitError("Rate limit exceeded", retry_after_seconds=5))

        assert tracker.health.status == AdapterStatus.RATE_LIMITED
        assert not tracker.health.is_usable()

    def test_incident_log_is_bounded(self):
        tracker = HealthTracker("node", max_incidents=3)

        for i in range(5):
            tracker.record_failure(TransportError(f"HTTP 50{i}"), endpoint=f"ep{i}")

        incidents = tracker.incidents(limit=10)
        assert [i.endpoint for i in incidents] == ["ep2", "ep3", "ep4"]
        assert incidents[-1].to_dict()["incident_type"] == "TransportError"

    def test_rate_limit_header(self):
        tracker = HealthTracker("node")

        tracker.record_rate_limit_remaining("42")
        tracker.record_rate_limit_remaining(None)

        assert tracker.health.rate_limit_remaining == 42


class TestHealthCheck:
    """Tests for BaseLedgerAdapter.health_check."""

    @pytest.mark.asyncio
    async def test_health_check_success(self):
        adapter = CoinGeckoAdapter()
        adapter.get_usd_prices = AsyncMock(return_value={})

        health = await adapter.health_check()

        assert health.status == AdapterStatus.HEALTHY
        assert health.to_dict()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        adapter = CoinGeckoAdapter()
        adapter.get_usd_prices = AsyncMock(side_effect=TransportError("HTTP 503"))

        health = await adapter.health_check()

        assert health.status == AdapterStatus.UNAVAILABLE
        assert "HTTP 503" in health.last_error
        assert not adapter.is_usable()
