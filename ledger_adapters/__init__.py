"""
Ledger Adapters Package - Async HTTP access to the DeSo ledger and price feeds.

Every adapter decodes its wire payloads through pydantic schemas and returns
canonical raw records. Amounts stay in raw upstream units (nanos, hex
strings); the circulation package normalizes them.

Features:
- One adapter per upstream API
- Bounded retry with exponential backoff
- Health tracking and incident log
- Typed exception hierarchy

Quick Start:
    from ledger_adapters import DesoNodeAdapter

    async def lookup(username):
        async with DesoNodeAdapter() as node:
            profile = await node.resolve_profile(username)
            if profile:
                balances = await node.get_user_balances([profile.public_key])
                stake = await node.get_stake_entries(profile.public_key)
"""

from ledger_adapters.base import BaseLedgerAdapter
from ledger_adapters.exceptions import (
    ConfigurationError,
    LedgerAdapterError,
    MalformedResponseError,
    RateLimitError,
    TransportError,
)
from ledger_adapters.health import HealthTracker
from ledger_adapters.models import (
    AdapterHealth,
    AdapterIncident,
    AdapterMetadata,
    AdapterStatus,
    Page,
    RawAmount,
    RawHolder,
    RawStakePosition,
    RawUserBalance,
    ResolvedProfile,
)
from ledger_adapters.providers import (
    CoinGeckoAdapter,
    DesoGraphqlAdapter,
    DesoNodeAdapter,
)

__all__ = [
    # Base
    "BaseLedgerAdapter",
    "HealthTracker",
    # Exceptions
    "LedgerAdapterError",
    "TransportError",
    "RateLimitError",
    "MalformedResponseError",
    "ConfigurationError",
    # Models
    "AdapterHealth",
    "AdapterIncident",
    "AdapterMetadata",
    "AdapterStatus",
    "Page",
    "RawAmount",
    "RawHolder",
    "RawStakePosition",
    "RawUserBalance",
    "ResolvedProfile",
    # Providers
    "CoinGeckoAdapter",
    "DesoGraphqlAdapter",
    "DesoNodeAdapter",
]
