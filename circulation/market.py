"""
Market Metrics - Valuation figures derived from the reconciled supply.

    market_cap        = total_issued x DESO price
    float_market_cap  = free_float x DESO price
    treasury_value    = BTC x price(BTC) + ETH x price(ETH) + SOL x price(SOL)
    backing_ratio     = treasury_value / market_cap   (0 when market_cap is 0)

Treasury holdings are configured amounts of the external-chain reserves.
They are priced through the wrapped-asset prices the price feed already
fetches (dBTC follows bitcoin, and so on).
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from .models import MarketMetrics, SupplyTotals
from .units import usd_value


logger = logging.getLogger(__name__)

ZERO = Decimal(0)

# Treasury asset -> symbol whose price values it
TREASURY_PRICE_SYMBOLS: dict[str, str] = {
    "BTC": "dBTC",
    "ETH": "dETH",
    "SOL": "dSOL",
}

# Summed per chain across the foundation's reserve addresses
DEFAULT_TREASURY_HOLDINGS: dict[str, str] = {
    "BTC": "2100",
    "ETH": "10.26",
    "SOL": "0",
}


def parse_treasury_holdings(raw: Optional[dict[str, Any]]) -> dict[str, Decimal]:
    """
    Validate treasury holdings from a roster file or the defaults.

    Raises:
        ValueError: on an unknown asset or a negative amount
    """
    if raw is None:
        raw = DEFAULT_TREASURY_HOLDINGS
    if not isinstance(raw, dict):
        raise ValueError("treasury holdings must be an object of asset -> amount")

    holdings: dict[str, Decimal] = {}
    for asset, amount in raw.items():
        if asset not in TREASURY_PRICE_SYMBOLS:
            raise ValueError(f"Unknown treasury asset {asset!r}")
        value = Decimal(str(amount))
        if not value.is_finite() or value < 0:
            raise ValueError(f"Invalid treasury amount {amount!r} for {asset}")
        holdings[asset] = value
    return holdings


def treasury_value(holdings: dict[str, Decimal], prices: dict[str, Decimal]) -> Decimal:
    total = ZERO
    for asset, amount in holdings.items():
        price = prices.get(TREASURY_PRICE_SYMBOLS.get(asset, asset))
        if price is None:
            logger.debug(f"No price for treasury asset {asset}, valued at zero")
        total += usd_value(amount, price)
    return total


def compute_market_metrics(
    supply: SupplyTotals,
    deso_price: Decimal,
    prices: dict[str, Decimal],
    treasury: dict[str, Decimal],
) -> MarketMetrics:
    market_cap = usd_value(supply.total_issued, deso_price)
    treasury_usd = treasury_value(treasury, prices)
    return MarketMetrics(
        deso_price=deso_price,
        market_cap=market_cap,
        float_market_cap=usd_value(supply.free_float, deso_price),
        treasury_value=treasury_usd,
        backing_ratio=treasury_usd / market_cap if market_cap > 0 else ZERO,
        treasury_holdings=dict(treasury),
    )
