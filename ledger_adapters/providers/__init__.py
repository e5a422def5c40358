"""Ledger data providers."""

from ledger_adapters.providers.coingecko import CoinGeckoAdapter
from ledger_adapters.providers.deso_graphql import DesoGraphqlAdapter
from ledger_adapters.providers.deso_node import DesoNodeAdapter

__all__ = [
    "CoinGeckoAdapter",
    "DesoGraphqlAdapter",
    "DesoNodeAdapter",
]
