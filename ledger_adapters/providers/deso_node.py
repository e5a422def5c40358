"""
DeSo Node Adapter - Ledger account API.

Endpoints used (all POST JSON under /api/v0):
- get-single-profile: username -> public key
- get-users-stateless: native coin balances for a set of public keys
- get-stake-entries-for-public-key: stake positions of one staker
- get-hodlers-for-public-key: one page of holders of a DAO/project token
- get-exchange-rate: DESO/USD spot price
"""

import logging
from decimal import Decimal
from typing import Optional

import aiohttp

from ledger_adapters.base import BaseLedgerAdapter
from ledger_adapters.models import (
    AdapterMetadata,
    Page,
    RawHolder,
    RawStakePosition,
    RawUserBalance,
    ResolvedProfile,
)
from ledger_adapters.schemas import (
    ExchangeRateResponse,
    HodlersPageResponse,
    SingleProfileResponse,
    StakeEntriesResponse,
    UsersStatelessResponse,
)


logger = logging.getLogger(__name__)


class DesoNodeAdapter(BaseLedgerAdapter):
    """
    Adapter for a public DeSo node.

    The hodlers endpoint is served by block producers; it can live on a
    different host than the rest of the API, so it has its own base URL.
    """

    DEFAULT_BASE_URL = "https://node.deso.org/api/v0"
    DEFAULT_HODLERS_URL = "https://blockproducer.deso.org/api/v0"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        hodlers_url: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        super().__init__(base_url, timeout, session, max_retries)
        self._hodlers_url = (hodlers_url or self.DEFAULT_HODLERS_URL).rstrip("/")

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "deso_node"

    def metadata(self) -> AdapterMetadata:
        """Return adapter metadata."""
        return AdapterMetadata(
            name=self.name,
            display_name="DeSo Node API",
            version="1.0.0",
            base_url=self._base_url,
            documentation_url="https://docs.deso.org/deso-backend/api",
            requires_api_key=False,
            tags=["deso", "ledger", "balances", "stake"],
        )

    # ─────────────────────────────────────────────────────────────
    # Identity
    # ─────────────────────────────────────────────────────────────

    async def resolve_profile(self, username: str) -> Optional[ResolvedProfile]:
        """Resolve a username to its public key. None if the profile does not exist."""
        response = await self._request(
            "POST",
            "get-single-profile",
            SingleProfileResponse,
            json_body={"Username": username},
        )
        if response.profile is None or not response.profile.public_key:
            return None
        return ResolvedProfile(username=username, public_key=response.profile.public_key)

    # ─────────────────────────────────────────────────────────────
    # Balances & stake
    # ─────────────────────────────────────────────────────────────

    async def get_user_balances(self, public_keys: list[str]) -> dict[str, RawUserBalance]:
        """Fetch native coin balances for a set of public keys."""
        if not public_keys:
            return {}

        response = await self._request(
            "POST",
            "get-users-stateless",
            UsersStatelessResponse,
            json_body={
                "PublicKeysBase58Check": public_keys,
                "SkipForLeaderboard": False,
                "IncludeBalance": True,
            },
        )

        balances: dict[str, RawUserBalance] = {}
        for user in response.user_list:
            if not user.public_key:
                continue
            balances[user.public_key] = RawUserBalance(
                public_key=user.public_key,
                spendable_nanos=user.spendable_nanos,
                locked_nanos=user.locked_balance_nanos,
            )
        return balances

    async def get_stake_entries(self, public_key: str) -> list[RawStakePosition]:
        """Fetch every stake position held by one staker."""
        response = await self._request(
            "POST",
            "get-stake-entries-for-public-key",
            StakeEntriesResponse,
            json_body={"PublicKeyBase58Check": public_key},
        )

        positions = []
        for entry in response.stake_entries:
            # StakeAmountNanos is a uint256 hex string; StakeNanos is the lossy numeric form
            is_hex = bool(entry.stake_amount_nanos)
            raw = entry.stake_amount_nanos if is_hex else entry.stake_nanos
            if raw is None:
                continue
            positions.append(RawStakePosition(
                staker_public_key=public_key,
                validator_public_key=entry.validator_public_key or "",
                raw_amount=raw,
                is_hex=is_hex,
            ))
        return positions

    async def get_holders_page(
        self,
        token_username: str,
        cursor: str = "",
        page_size: int = 200,
    ) -> Page[RawHolder]:
        """
        Fetch one page of holders of a DAO/project token.

        LastPublicKeyBase58Check is only a pagination cursor; it is the last
        holder of the previous page, not an account being queried.
        """
        response = await self._request(
            "POST",
            f"{self._hodlers_url}/get-hodlers-for-public-key",
            HodlersPageResponse,
            json_body={
                "Username": token_username,
                "LastPublicKeyBase58Check": cursor,
                "NumToFetch": page_size,
                "FetchAll": False,
                "IsDAOCoin": True,
            },
        )

        holders = []
        for hodler in response.hodlers:
            if not hodler.holder_public_key:
                continue
            # Prefer the uint256 hex form; BalanceNanos loses precision above 2**53
            is_hex = bool(hodler.balance_nanos_uint256)
            raw = hodler.balance_nanos_uint256 if is_hex else hodler.balance_nanos
            if raw is None:
                continue
            holders.append(RawHolder(
                public_key=hodler.holder_public_key,
                raw_amount=raw,
                username=hodler.profile.username if hodler.profile else None,
                is_hex=is_hex,
            ))

        logger.debug(f"[{self.name}] {token_username} holders page: {len(holders)} rows after {cursor or 'start'}")
        next_cursor = response.last_public_key or None
        return Page(
            items=holders,
            next_cursor=next_cursor,
            has_next=bool(next_cursor) and len(response.hodlers) >= page_size,
        )

    # ─────────────────────────────────────────────────────────────
    # Price
    # ─────────────────────────────────────────────────────────────

    async def get_exchange_rate(self) -> Decimal:
        """DESO spot price in USD as reported by the node."""
        response = await self._request(
            "POST",
            "get-exchange-rate",
            ExchangeRateResponse,
            json_body={},
        )
        return Decimal(str(response.usd_cents_per_deso)) / Decimal(100)

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return super()._url(endpoint)

    async def _ping(self) -> None:
        await self.get_exchange_rate()
