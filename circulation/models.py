"""
Circulation Data Models - Snapshots, roster records and report structures.

All amounts are Decimal token units (DESO-equivalent for tree nodes).
Persisted models serialize Decimals as strings so a snapshot round-trips
through JSON without precision loss.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional


ZERO = Decimal(0)


def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value))


def _opt_dec(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Category(Enum):
    """Holder category of a roster account."""
    FOUNDATION = "foundation"
    MARKET_MAKER = "market_maker"
    CORE_TEAM = "core_team"
    COMMUNITY_INFLUENCER = "community_influencer"
    COMMUNITY = "community"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS: dict[Category, str] = {
    Category.FOUNDATION: "Foundation",
    Category.MARKET_MAKER: "Market Maker",
    Category.CORE_TEAM: "Core Team",
    Category.COMMUNITY_INFLUENCER: "Community Influencers",
    Category.COMMUNITY: "Community",
}

# Categories whose unstaked balances are taken out of free float
CLASSIFIED_CATEGORIES = (
    Category.FOUNDATION,
    Category.MARKET_MAKER,
    Category.CORE_TEAM,
    Category.COMMUNITY_INFLUENCER,
)


class DataSource(Enum):
    """Where a value came from, finest first."""
    LIVE = "live"
    CACHED = "cached"
    STATIC = "static"

    @property
    def rank(self) -> int:
        return _SOURCE_RANK[self]


_SOURCE_RANK = {DataSource.LIVE: 0, DataSource.CACHED: 1, DataSource.STATIC: 2}


def coarsest(sources: Iterable[DataSource], default: DataSource = DataSource.LIVE) -> DataSource:
    """Return the coarsest of the given sources."""
    result = default
    seen = False
    for source in sources:
        if not seen or source.rank > result.rank:
            result = source
            seen = True
    return result


class ValidatorType(Enum):
    CORE = "core"
    COMMUNITY = "community"


class IssueKind(Enum):
    """Failure taxonomy of a fetch cycle."""
    TRANSPORT_FAILURE = "transport_failure"
    MALFORMED_RESPONSE = "malformed_response"
    PARTIAL_DATA = "partial_data"
    STALE_FALLBACK = "stale_fallback"


# =============================================================
# PROVENANCE & ISSUES
# =============================================================

@dataclass
class Provenance:
    """Source and observation time of a merged value."""
    source: DataSource
    observed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "observed_at": _ts(self.observed_at),
        }


@dataclass
class FetchIssue:
    """A failure recorded at the smallest scope it affected."""
    kind: IssueKind
    scope: str          # account id, token symbol, page cursor or aggregate name
    message: str
    occurred_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "scope": self.scope,
            "message": self.message,
            "occurred_at": self.occurred_at.isoformat(),
        }


# =============================================================
# ROSTER
# =============================================================

@dataclass
class RosterEntry:
    """Static configuration of one tracked account."""
    account_id: str                       # ledger username
    category: Category
    display_name: str = ""
    merge_key: str = ""                   # aliases sharing a key are one holder
    pair_token: Optional[str] = None      # market makers: token traded against DESO
    exclude_tokens: tuple[str, ...] = ()  # self-minted balances that are not counted

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.account_id
        if not self.merge_key:
            self.merge_key = self.account_id
        self.exclude_tokens = tuple(self.exclude_tokens)

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "display_name": self.display_name,
            "merge_key": self.merge_key,
            "category": self.category.value,
            "pair_token": self.pair_token,
            "exclude_tokens": list(self.exclude_tokens),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RosterEntry":
        return cls(
            account_id=data["account_id"],
            category=Category(data["category"]),
            display_name=data.get("display_name") or "",
            merge_key=data.get("merge_key") or "",
            pair_token=data.get("pair_token"),
            exclude_tokens=tuple(data.get("exclude_tokens") or ()),
        )


# =============================================================
# SNAPSHOTS
# =============================================================

@dataclass
class StakeEntry:
    """One staker's position with one validator."""
    staker_id: str
    validator_id: str
    staked_amount: Decimal
    staker_name: Optional[str] = None
    validator_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "staker_id": self.staker_id,
            "validator_id": self.validator_id,
            "staked_amount": str(self.staked_amount),
            "staker_name": self.staker_name,
            "validator_name": self.validator_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StakeEntry":
        return cls(
            staker_id=data["staker_id"],
            validator_id=data["validator_id"],
            staked_amount=_dec(data.get("staked_amount")),
            staker_name=data.get("staker_name"),
            validator_name=data.get("validator_name"),
        )


@dataclass
class HolderBalance:
    """One row of a token's holder list, normalized."""
    public_key: str
    amount: Decimal
    username: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "public_key": self.public_key,
            "amount": str(self.amount),
            "username": self.username,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HolderBalance":
        return cls(
            public_key=data["public_key"],
            amount=_dec(data.get("amount")),
            username=data.get("username"),
        )


@dataclass
class AccountSnapshot:
    """
    Fields fetched for one roster account.

    balances["DESO"] is the total native balance (spendable + staked).
    staked is None when stake data was not obtained.
    """
    account_id: str
    public_key: Optional[str] = None
    balances: dict[str, Decimal] = field(default_factory=dict)
    staked: Optional[Decimal] = None
    stake_entries: list[StakeEntry] = field(default_factory=list)
    raw_balances: dict[str, Any] = field(default_factory=dict)
    observed_at: Optional[datetime] = None

    @property
    def stake_total(self) -> Decimal:
        if self.staked is not None:
            return self.staked
        return sum((e.staked_amount for e in self.stake_entries), ZERO)

    def has_data(self) -> bool:
        return any(v > 0 for v in self.balances.values()) or self.stake_total > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "public_key": self.public_key,
            "balances": {k: str(v) for k, v in self.balances.items()},
            "staked": str(self.staked) if self.staked is not None else None,
            "stake_entries": [e.to_dict() for e in self.stake_entries],
            "raw_balances": {k: str(v) for k, v in self.raw_balances.items()},
            "observed_at": _ts(self.observed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccountSnapshot":
        return cls(
            account_id=data["account_id"],
            public_key=data.get("public_key"),
            balances={k: _dec(v) for k, v in (data.get("balances") or {}).items()},
            staked=_opt_dec(data.get("staked")),
            stake_entries=[StakeEntry.from_dict(e) for e in data.get("stake_entries") or []],
            raw_balances=dict(data.get("raw_balances") or {}),
            observed_at=_parse_ts(data.get("observed_at")),
        )


@dataclass
class Snapshot:
    """Everything one source knows about the roster and the network."""
    source: DataSource
    taken_at: Optional[datetime] = None
    accounts: dict[str, AccountSnapshot] = field(default_factory=dict)
    stake_entries: list[StakeEntry] = field(default_factory=list)      # network-wide
    validator_totals: dict[str, Decimal] = field(default_factory=dict)
    locked_aggregates: dict[str, Decimal] = field(default_factory=dict)
    token_holders: dict[str, list[HolderBalance]] = field(default_factory=dict)
    prices: dict[str, Decimal] = field(default_factory=dict)
    total_issued: Optional[Decimal] = None

    def has_meaningful_data(self) -> bool:
        """True iff any balance field across the whole roster is nonzero."""
        return any(account.has_data() for account in self.accounts.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "taken_at": _ts(self.taken_at),
            "accounts": {k: v.to_dict() for k, v in self.accounts.items()},
            "stake_entries": [e.to_dict() for e in self.stake_entries],
            "validator_totals": {k: str(v) for k, v in self.validator_totals.items()},
            "locked_aggregates": {k: str(v) for k, v in self.locked_aggregates.items()},
            "token_holders": {
                symbol: [h.to_dict() for h in holders]
                for symbol, holders in self.token_holders.items()
            },
            "prices": {k: str(v) for k, v in self.prices.items()},
            "total_issued": str(self.total_issued) if self.total_issued is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        return cls(
            source=DataSource(data.get("source", DataSource.CACHED.value)),
            taken_at=_parse_ts(data.get("taken_at")),
            accounts={
                k: AccountSnapshot.from_dict(v)
                for k, v in (data.get("accounts") or {}).items()
            },
            stake_entries=[StakeEntry.from_dict(e) for e in data.get("stake_entries") or []],
            validator_totals={k: _dec(v) for k, v in (data.get("validator_totals") or {}).items()},
            locked_aggregates={k: _dec(v) for k, v in (data.get("locked_aggregates") or {}).items()},
            token_holders={
                symbol: [HolderBalance.from_dict(h) for h in holders]
                for symbol, holders in (data.get("token_holders") or {}).items()
            },
            prices={k: _dec(v) for k, v in (data.get("prices") or {}).items()},
            total_issued=_opt_dec(data.get("total_issued")),
        )


# =============================================================
# MERGED STATE
# =============================================================

@dataclass
class TrackedAccount:
    """A roster account after fallback merge."""
    account_id: str
    display_name: str
    merge_key: str
    category: Category
    provenance: Provenance
    balances: dict[str, Decimal] = field(default_factory=dict)
    staked: Decimal = ZERO
    stake_entries: list[StakeEntry] = field(default_factory=list)
    raw_balances: dict[str, Any] = field(default_factory=dict)
    public_key: Optional[str] = None
    pair_token: Optional[str] = None
    stake_source: Optional[DataSource] = None  # None when no source reported stake

    def balance(self, symbol: str) -> Decimal:
        return self.balances.get(symbol, ZERO)

    @property
    def unstaked_deso(self) -> Decimal:
        """Total native balance minus stake, never negative."""
        return max(ZERO, self.balance("DESO") - self.staked)

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "display_name": self.display_name,
            "merge_key": self.merge_key,
            "category": self.category.value,
            "provenance": self.provenance.to_dict(),
            "balances": {k: str(v) for k, v in self.balances.items()},
            "staked": str(self.staked),
            "unstaked_deso": str(self.unstaked_deso),
            "public_key": self.public_key,
            "pair_token": self.pair_token,
            "stake_source": self.stake_source.value if self.stake_source else None,
        }


@dataclass
class Validator:
    """Stake aggregated per validator."""
    validator_id: str
    display_name: str
    type: ValidatorType
    members: list[StakeEntry] = field(default_factory=list)
    reported_total: Optional[Decimal] = None

    @property
    def attributed_total(self) -> Decimal:
        return sum((m.staked_amount for m in self.members), ZERO)

    @property
    def unattributed(self) -> Decimal:
        """Reported stake no known member accounts for."""
        if self.reported_total is None:
            return ZERO
        return max(ZERO, self.reported_total - self.attributed_total)

    @property
    def total_staked(self) -> Decimal:
        return self.attributed_total + self.unattributed

    def to_dict(self) -> dict[str, Any]:
        return {
            "validator_id": self.validator_id,
            "display_name": self.display_name,
            "type": self.type.value,
            "member_count": len(self.members),
            "attributed_total": str(self.attributed_total),
            "unattributed": str(self.unattributed),
            "total_staked": str(self.total_staked),
            "reported_total": str(self.reported_total) if self.reported_total is not None else None,
        }


# =============================================================
# REPORT
# =============================================================

@dataclass
class TokenBalance:
    symbol: str
    amount: Decimal
    usd_value: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "amount": str(self.amount),
            "usd_value": str(self.usd_value),
        }


@dataclass
class CirculationNode:
    """
    One node of the circulation tree.

    Interior node amounts are the sum of their children. The plug leaf
    absorbs the residual of its subtree and is floored at zero.
    """
    label: str
    amount: Decimal = ZERO
    usd_value: Decimal = ZERO
    children: list["CirculationNode"] = field(default_factory=list)
    is_plug: bool = False

    def child(self, label: str) -> Optional["CirculationNode"]:
        for node in self.children:
            if node.label == label:
                return node
        return None

    def find(self, *path: str) -> Optional["CirculationNode"]:
        """Walk down by child labels."""
        node: Optional[CirculationNode] = self
        for label in path:
            if node is None:
                return None
            node = node.child(label)
        return node

    def walk(self, prefix: str = ""):
        """Yield (path, node) for this node and all descendants."""
        path = f"{prefix}/{self.label}" if prefix else self.label
        yield path, self
        for node in self.children:
            yield from node.walk(path)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "label": self.label,
            "amount": str(self.amount),
            "usd_value": str(self.usd_value),
        }
        if self.is_plug:
            data["is_plug"] = True
        if self.children:
            data["children"] = [c.to_dict() for c in self.children]
        return data


@dataclass
class RankedEntry:
    label: str
    amount: Decimal
    usd_value: Decimal = ZERO
    category: Optional[Category] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "amount": str(self.amount),
            "usd_value": str(self.usd_value),
            "category": self.category.value if self.category else None,
        }


@dataclass
class RankedBucket:
    """Top-N entries plus the exact residual of everything else."""
    top_entries: list[RankedEntry] = field(default_factory=list)
    others_count: int = 0
    others_amount: Decimal = ZERO
    others_usd: Decimal = ZERO

    @property
    def total_amount(self) -> Decimal:
        return sum((e.amount for e in self.top_entries), ZERO) + self.others_amount

    @property
    def total_usd(self) -> Decimal:
        return sum((e.usd_value for e in self.top_entries), ZERO) + self.others_usd

    def to_dict(self) -> dict[str, Any]:
        return {
            "top_entries": [e.to_dict() for e in self.top_entries],
            "others": {
                "count": self.others_count,
                "amount": str(self.others_amount),
                "usd_value": str(self.others_usd),
            },
            "total_amount": str(self.total_amount),
            "total_usd": str(self.total_usd),
        }


@dataclass
class SupplyTotals:
    total_issued: Decimal
    total_staked: Decimal
    classified_unstaked: Decimal
    locked_aggregates: Decimal
    free_float: Decimal
    overallocation: Decimal = ZERO

    @property
    def total_unstaked(self) -> Decimal:
        return self.classified_unstaked + self.locked_aggregates + self.free_float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_issued": str(self.total_issued),
            "total_staked": str(self.total_staked),
            "classified_unstaked": str(self.classified_unstaked),
            "locked_aggregates": str(self.locked_aggregates),
            "free_float": str(self.free_float),
            "overallocation": str(self.overallocation),
        }


@dataclass
class MarketMetrics:
    """Valuation of the reconciled supply in USD."""
    deso_price: Decimal = ZERO
    market_cap: Decimal = ZERO
    float_market_cap: Decimal = ZERO
    treasury_value: Decimal = ZERO
    backing_ratio: Decimal = ZERO
    treasury_holdings: dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "deso_price": str(self.deso_price),
            "market_cap": str(self.market_cap),
            "float_market_cap": str(self.float_market_cap),
            "treasury_value": str(self.treasury_value),
            "backing_ratio": str(self.backing_ratio),
            "treasury_holdings": {k: str(v) for k, v in self.treasury_holdings.items()},
        }


@dataclass
class ValidatorSection:
    """Presentation data for one validator."""
    validator_id: str
    display_name: str
    type: ValidatorType
    total: Decimal
    usd_value: Decimal
    unattributed: Decimal
    stakers: RankedBucket

    def to_dict(self) -> dict[str, Any]:
        return {
            "validator_id": self.validator_id,
            "display_name": self.display_name,
            "type": self.type.value,
            "total": str(self.total),
            "usd_value": str(self.usd_value),
            "unattributed": str(self.unattributed),
            "stakers": self.stakers.to_dict(),
        }


@dataclass
class TokenSection:
    """Presentation data for one token: by category and by holder."""
    symbol: str
    price: Decimal
    by_category: dict[Category, TokenBalance]
    holders: RankedBucket

    @property
    def amount(self) -> Decimal:
        return sum((b.amount for b in self.by_category.values()), ZERO)

    @property
    def usd_value(self) -> Decimal:
        return sum((b.usd_value for b in self.by_category.values()), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": str(self.price),
            "amount": str(self.amount),
            "usd_value": str(self.usd_value),
            "by_category": {c.value: b.to_dict() for c, b in self.by_category.items()},
            "holders": self.holders.to_dict(),
        }


@dataclass
class ReportProvenance:
    source: DataSource
    accounts: dict[str, Provenance] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "accounts": {k: v.to_dict() for k, v in self.accounts.items()},
        }


@dataclass
class CirculationReport:
    tree: CirculationNode
    supply: SupplyTotals
    provenance: ReportProvenance
    generated_at: datetime
    validators: list[ValidatorSection] = field(default_factory=list)
    token_sections: list[TokenSection] = field(default_factory=list)
    community_holders: RankedBucket = field(default_factory=RankedBucket)
    issues: list[FetchIssue] = field(default_factory=list)
    market: MarketMetrics = field(default_factory=MarketMetrics)

    @property
    def is_degraded(self) -> bool:
        return bool(self.issues)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tree": self.tree.to_dict(),
            "supply": self.supply.to_dict(),
            "market": self.market.to_dict(),
            "validators": [v.to_dict() for v in self.validators],
            "token_sections": [s.to_dict() for s in self.token_sections],
            "community_holders": self.community_holders.to_dict(),
            "provenance": self.provenance.to_dict(),
            "issues": [i.to_dict() for i in self.issues],
            "is_degraded": self.is_degraded,
            "generated_at": self.generated_at.isoformat(),
        }
