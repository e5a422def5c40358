"""
Ledger Adapter Models - Health, metadata and incident records.

Wire payloads are decoded by the pydantic schemas in
ledger_adapters.schemas; these dataclasses describe the adapters
themselves and the canonical raw records they return.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union


T = TypeVar("T")


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class _Serializable:
    """to_dict() for flat dataclasses: enums by value, datetimes as ISO strings."""

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _jsonable(getattr(self, f.name)) for f in fields(self)}


class AdapterStatus(Enum):
    """Health status of a ledger adapter."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


# Statuses under which the collector still calls the adapter
USABLE_STATUSES = frozenset({AdapterStatus.HEALTHY, AdapterStatus.DEGRADED, AdapterStatus.UNKNOWN})


@dataclass
class AdapterHealth(_Serializable):
    """Running health of one adapter."""
    status: AdapterStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    rate_limit_remaining: Optional[int] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    requests_total: int = 0

    def is_healthy(self) -> bool:
        return self.status == AdapterStatus.HEALTHY

    def is_usable(self) -> bool:
        return self.status in USABLE_STATUSES


@dataclass
class AdapterMetadata(_Serializable):
    """Static description of an upstream API."""
    name: str
    display_name: str
    version: str
    base_url: str = ""
    documentation_url: str = ""
    requires_api_key: bool = False
    page_size: Optional[int] = None
    tags: list[str] = field(default_factory=list)


@dataclass
class AdapterIncident(_Serializable):
    """One failed request, kept in the adapter's bounded incident log."""
    adapter_name: str
    incident_type: str
    timestamp: datetime
    error_message: str
    endpoint: Optional[str] = None
    request_params: Optional[dict[str, Any]] = None


# ─────────────────────────────────────────────────────────────
# Canonical raw records
# ─────────────────────────────────────────────────────────────

# Fixed-point integer, decimal string, or big-integer hex string as sent upstream
RawAmount = Union[int, str]


@dataclass(frozen=True)
class ResolvedProfile:
    """Username resolved to its ledger public key."""
    username: str
    public_key: str


@dataclass(frozen=True)
class RawUserBalance:
    """Native coin balance of one public key, in nanos."""
    public_key: str
    spendable_nanos: int
    locked_nanos: Optional[int] = None


@dataclass(frozen=True)
class RawStakePosition:
    """One stake entry as reported upstream, amount still in raw units."""
    staker_public_key: str
    validator_public_key: str
    raw_amount: RawAmount
    staker_username: Optional[str] = None
    validator_username: Optional[str] = None
    validator_total_raw: Optional[RawAmount] = None
    is_hex: bool = False  # raw_amount is a uint256 hex string, prefix optional


@dataclass(frozen=True)
class RawHolder:
    """One holder row of a token holder list."""
    public_key: str
    raw_amount: RawAmount
    username: Optional[str] = None
    is_hex: bool = False


@dataclass
class Page(Generic[T]):
    """One page of a cursor-paginated listing."""
    items: list[T]
    next_cursor: Optional[str] = None
    has_next: bool = False
