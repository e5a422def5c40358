"""
CoinGecko Price Adapter - USD spot prices for the native coin and wrapped assets.

Wrapped tokens on the ledger are priced from their underlying asset:
dBTC <- bitcoin, dETH <- ethereum, dSOL <- solana. DESO itself is
decentralized-social.
"""

import logging
from decimal import Decimal
from typing import Optional

import aiohttp

from ledger_adapters.base import BaseLedgerAdapter
from ledger_adapters.models import AdapterMetadata
from ledger_adapters.schemas import CoinGeckoPricesResponse


logger = logging.getLogger(__name__)


# Token symbol -> CoinGecko response field
TOKEN_PRICE_IDS = {
    "DESO": "decentralized_social",
    "dBTC": "bitcoin",
    "dETH": "ethereum",
    "dSOL": "solana",
}


class CoinGeckoAdapter(BaseLedgerAdapter):
    """Adapter for the public CoinGecko simple price endpoint."""

    DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        super().__init__(base_url, timeout, session, max_retries)

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "coingecko"

    def metadata(self) -> AdapterMetadata:
        """Return adapter metadata."""
        return AdapterMetadata(
            name=self.name,
            display_name="CoinGecko",
            version="1.0.0",
            base_url=self._base_url,
            documentation_url="https://docs.coingecko.com/reference/simple-price",
            requires_api_key=False,
            tags=["price", "usd"],
        )

    async def get_usd_prices(self) -> dict[str, Decimal]:
        """
        Fetch USD prices keyed by ledger token symbol.

        Tokens the feed did not quote are absent from the result; the
        merge step fills them from cached or static prices.
        """
        response = await self._request(
            "GET",
            "simple/price",
            CoinGeckoPricesResponse,
            params={
                "ids": "bitcoin,ethereum,solana,decentralized-social",
                "vs_currencies": "usd",
            },
        )

        prices: dict[str, Decimal] = {}
        for symbol, field_name in TOKEN_PRICE_IDS.items():
            quote = getattr(response, field_name)
            if quote is not None and quote.usd > 0:
                prices[symbol] = Decimal(str(quote.usd))
        logger.debug(f"[{self.name}] Quoted {sorted(prices)}")
        return prices

    async def _ping(self) -> None:
        await self.get_usd_prices()
