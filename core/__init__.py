"""
Core Module Package.

Infrastructure shared by the ledger adapters and the circulation engine.

Components:
- clock: Time source (system clock, mock clock for tests)
"""

from .clock import ClockProtocol, MockClock, SystemClock

__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
]
