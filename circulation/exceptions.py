"""
Circulation Exceptions - Error hierarchy for the reconciliation engine.

Fetch failures never surface here: the collector turns them into
FetchIssue records. These exceptions cover bad configuration, bad raw
amounts at the ingestion boundary, store I/O and the explicit
conservation check.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class CirculationError(Exception):
    """Base exception for all circulation module errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class MalformedAmountError(CirculationError):
    """Raw amount could not be parsed as an integer, decimal or hex string."""

    def __init__(
        self,
        raw_value: Any,
        symbol: Optional[str] = None,
        reason: str = "unparseable amount",
    ) -> None:
        super().__init__(
            f"Malformed amount {raw_value!r} for {symbol or 'unknown token'}: {reason}",
            {"raw_value": repr(raw_value), "symbol": symbol},
        )
        self.raw_value = raw_value
        self.symbol = symbol


class RosterError(CirculationError):
    """Invalid roster configuration. Raised at startup."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, {"path": path, "account_id": account_id})
        self.path = path
        self.account_id = account_id


class SnapshotStoreError(CirculationError):
    """Snapshot store read or write failed."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            message,
            {"key": key, "original_error": str(original_error) if original_error else None},
        )
        self.key = key
        self.original_error = original_error


class ConservationError(CirculationError):
    """A tree node's amount differs from the sum of its children."""

    def __init__(
        self,
        path: str,
        amount: Any,
        children_sum: Any,
    ) -> None:
        super().__init__(
            f"Node '{path}' amount {amount} != sum of children {children_sum}",
            {"path": path, "amount": str(amount), "children_sum": str(children_sum)},
        )
        self.path = path
        self.amount = amount
        self.children_sum = children_sum
