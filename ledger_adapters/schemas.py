"""
Pydantic Schemas for ledger, indexer and price feed wire payloads.

Every response is validated here before any merge/classify logic sees it.
Fields the upstream APIs omit on some node builds are Optional; the
adapters fail closed to empty records.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for wire payloads: ignore unknown keys, accept field names or aliases."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# =============================================================
# LEDGER NODE API
# =============================================================

class ProfileEntry(WireModel):
    public_key: Optional[str] = Field(default=None, alias="PublicKeyBase58Check")
    username: Optional[str] = Field(default=None, alias="Username")


class SingleProfileResponse(WireModel):
    """get-single-profile"""
    profile: Optional[ProfileEntry] = Field(default=None, alias="Profile")


class UserBalanceEntry(WireModel):
    public_key: Optional[str] = Field(default=None, alias="PublicKeyBase58Check")
    balance_nanos: Optional[int] = Field(default=None, alias="BalanceNanos")
    deso_balance_nanos: Optional[int] = Field(default=None, alias="DESOBalanceNanos")
    locked_balance_nanos: Optional[int] = Field(default=None, alias="LockedBalanceNanos")

    @property
    def spendable_nanos(self) -> int:
        """DESOBalanceNanos is the liquid balance; older builds only send BalanceNanos."""
        if self.deso_balance_nanos is not None:
            return self.deso_balance_nanos
        return self.balance_nanos or 0


class UsersStatelessResponse(WireModel):
    """get-users-stateless"""
    user_list: List[UserBalanceEntry] = Field(default_factory=list, alias="UserList")


class NodeStakeEntry(WireModel):
    validator_public_key: Optional[str] = Field(default=None, alias="ValidatorPublicKeyBase58Check")
    stake_nanos: Optional[int] = Field(default=None, alias="StakeNanos")
    stake_amount_nanos: Optional[str] = Field(default=None, alias="StakeAmountNanos")


class StakeEntriesResponse(WireModel):
    """get-stake-entries-for-public-key"""
    stake_entries: List[NodeStakeEntry] = Field(default_factory=list, alias="StakeEntries")


class HodlerProfile(WireModel):
    username: Optional[str] = Field(default=None, alias="Username")


class HodlerEntry(WireModel):
    holder_public_key: Optional[str] = Field(default=None, alias="HODLerPublicKeyBase58Check")
    balance_nanos: Optional[int] = Field(default=None, alias="BalanceNanos")
    balance_nanos_uint256: Optional[str] = Field(default=None, alias="BalanceNanosUint256")
    profile: Optional[HodlerProfile] = Field(default=None, alias="ProfileEntryResponse")


class HodlersPageResponse(WireModel):
    """get-hodlers-for-public-key"""
    hodlers: List[HodlerEntry] = Field(default_factory=list, alias="Hodlers")
    last_public_key: Optional[str] = Field(default=None, alias="LastPublicKeyBase58Check")


class ExchangeRateResponse(WireModel):
    """get-exchange-rate"""
    usd_cents_per_deso: float = Field(alias="USDCentsPerDeSoExchangeRate")
    usd_cents_per_bitcoin: Optional[float] = Field(default=None, alias="USDCentsPerBitcoinExchangeRate")


# =============================================================
# GRAPHQL INDEXING API
# =============================================================

class PageInfo(WireModel):
    has_next_page: bool = Field(default=False, alias="hasNextPage")
    end_cursor: Optional[str] = Field(default=None, alias="endCursor")


class GraphqlAccount(WireModel):
    public_key: Optional[str] = Field(default=None, alias="publicKey")
    username: Optional[str] = None


class GraphqlValidatorEntry(WireModel):
    total_stake_amount_nanos: Optional[Union[str, int]] = Field(default=None, alias="totalStakeAmountNanos")
    account: Optional[GraphqlAccount] = None


class GraphqlStakeNode(WireModel):
    stake_amount_nanos: Optional[Union[str, int]] = Field(default=None, alias="stakeAmountNanos")
    staker: Optional[GraphqlAccount] = None
    validator_entry: Optional[GraphqlValidatorEntry] = Field(default=None, alias="validatorEntry")


class StakeEntriesConnection(WireModel):
    nodes: List[GraphqlStakeNode] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo, alias="pageInfo")


class CreatorCoinBalanceNode(WireModel):
    total_value_nanos: Optional[Union[str, int]] = Field(default=None, alias="totalValueNanos")


class CreatorCoinBalancesConnection(WireModel):
    nodes: List[CreatorCoinBalanceNode] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo, alias="pageInfo")


class StakeEntriesData(WireModel):
    stake_entries: StakeEntriesConnection = Field(alias="stakeEntries")


class CreatorCoinBalancesData(WireModel):
    creator_coin_balances: CreatorCoinBalancesConnection = Field(alias="creatorCoinBalances")


# =============================================================
# PRICE FEED
# =============================================================

class UsdQuote(WireModel):
    usd: float


class CoinGeckoPricesResponse(WireModel):
    """simple/price?ids=bitcoin,ethereum,solana,decentralized-social&vs_currencies=usd"""
    bitcoin: Optional[UsdQuote] = None
    ethereum: Optional[UsdQuote] = None
    solana: Optional[UsdQuote] = None
    decentralized_social: Optional[UsdQuote] = Field(default=None, alias="decentralized-social")
