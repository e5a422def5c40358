"""
Unit Normalizer - Raw ledger amounts to Decimal token units.

The native coin is denominated in nanos (1e9). DAO, project and wrapped
tokens use 18 decimals. Upstream sends fixed-point integers, decimal
strings or big-integer hex strings; hex is exact, the numeric fields lose
precision above 2**53.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from .exceptions import MalformedAmountError


ZERO = Decimal(0)


class TokenKind(Enum):
    """How a token enters the circulation breakdown."""
    NATIVE = "native"
    PROJECT = "project"
    WRAPPED = "wrapped"


@dataclass(frozen=True)
class TokenSpec:
    """Static description of a tracked token."""
    symbol: str
    decimals: int
    kind: TokenKind
    issuer_username: Optional[str] = None  # profile whose holder list is the token's

    @property
    def scale(self) -> Decimal:
        return Decimal(10) ** self.decimals


DESO = "DESO"

TOKENS: dict[str, TokenSpec] = {
    "DESO": TokenSpec("DESO", 9, TokenKind.NATIVE),
    "Openfund": TokenSpec("Openfund", 18, TokenKind.PROJECT, "openfund"),
    "Focus": TokenSpec("Focus", 18, TokenKind.PROJECT, "focus"),
    "dUSDC": TokenSpec("dUSDC", 18, TokenKind.WRAPPED, "dUSDC_"),
    "dBTC": TokenSpec("dBTC", 18, TokenKind.WRAPPED, "dBTC"),
    "dETH": TokenSpec("dETH", 18, TokenKind.WRAPPED, "dETH"),
    "dSOL": TokenSpec("dSOL", 18, TokenKind.WRAPPED, "dSOL"),
}

PROJECT_TOKENS = tuple(s for s, t in TOKENS.items() if t.kind == TokenKind.PROJECT)
WRAPPED_TOKENS = ("dBTC", "dETH", "dSOL", "dUSDC")
HOLDER_TOKENS = tuple(s for s, t in TOKENS.items() if t.issuer_username)

NANOS_PER_DESO = TOKENS[DESO].scale


def parse_raw_amount(raw: Any, symbol: Optional[str] = None, is_hex: bool = False) -> Decimal:
    """
    Parse a raw upstream amount into an integer-valued Decimal of base units.

    Accepts int, finite float, decimal string, or hex string ("0x" prefix,
    or no prefix when is_hex is set).

    Raises:
        MalformedAmountError: if the value cannot be parsed
    """
    if isinstance(raw, bool) or raw is None:
        raise MalformedAmountError(raw, symbol, "not a number")

    if isinstance(raw, int):
        return Decimal(raw)

    if isinstance(raw, float):
        value = Decimal(str(raw))
        if not value.is_finite():
            raise MalformedAmountError(raw, symbol, "not finite")
        return value

    if isinstance(raw, Decimal):
        if not raw.is_finite():
            raise MalformedAmountError(raw, symbol, "not finite")
        return raw

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise MalformedAmountError(raw, symbol, "empty string")

        negative = text.startswith("-")
        digits = text[1:] if negative else text
        if digits[:2].lower() == "0x" or is_hex:
            if digits[:2].lower() == "0x":
                digits = digits[2:]
            try:
                value = Decimal(int(digits, 16))
            except ValueError:
                raise MalformedAmountError(raw, symbol, "invalid hex")
            return -value if negative else value

        try:
            value = Decimal(text)
        except InvalidOperation:
            raise MalformedAmountError(raw, symbol, "invalid decimal")
        if not value.is_finite():
            raise MalformedAmountError(raw, symbol, "not finite")
        return value

    raise MalformedAmountError(raw, symbol, f"unsupported type {type(raw).__name__}")


def normalize(raw: Any, symbol: str, is_hex: bool = False) -> Decimal:
    """
    Convert a raw amount to token units using the token's scaling factor.

    Negative amounts normalize to zero.
    """
    token = TOKENS.get(symbol)
    if token is None:
        raise MalformedAmountError(raw, symbol, "unknown token")

    base_units = parse_raw_amount(raw, symbol, is_hex)
    if base_units <= 0:
        return ZERO
    return base_units / token.scale


def nanos_to_deso(raw: Any) -> Decimal:
    """Shortcut for native coin amounts."""
    return normalize(raw, DESO)


def usd_value(amount: Decimal, price: Optional[Decimal]) -> Decimal:
    """amount x price; missing price values at zero."""
    if price is None or amount <= 0:
        return ZERO
    return amount * price
