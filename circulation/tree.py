"""
Circulation Tree Builder & Free-Float Calculator.

    DESO Supply
    ├── Staked
    │   ├── Core Validators       -> Foundation, Market Maker, Core Team,
    │   └── Community Validators     Community Influencers, Free Float, Unattributed
    └── Not Staked
        ├── Creator Coins v1
        ├── Project Tokens bought using DESO   -> Openfund, Focus
        ├── Wrapped Assets bought using DESO   -> dBTC, dETH, dSOL, dUSDC
        └── DESO -> Foundation, Market Maker, Core Team, Community Influencers,
                    Free Float (plug)

Every interior node is the sum of its children; nothing is derived top
down. The single plug leaf absorbs upstream measurement error and is
floored at zero. When it would go negative the excess is reported as
overallocation instead.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from .exceptions import ConservationError
from .models import (
    CATEGORY_LABELS,
    CLASSIFIED_CATEGORIES,
    Category,
    CirculationNode,
    SupplyTotals,
    TrackedAccount,
    ValidatorType,
)
from .staking import FREE_FLOAT_LABEL, STAKE_BUCKETS
from .units import PROJECT_TOKENS, TOKENS, WRAPPED_TOKENS, TokenKind, usd_value


logger = logging.getLogger(__name__)

ZERO = Decimal(0)

ROOT_LABEL = "DESO Supply"
STAKED_LABEL = "Staked"
NOT_STAKED_LABEL = "Not Staked"
CORE_VALIDATORS_LABEL = "Core Validators"
COMMUNITY_VALIDATORS_LABEL = "Community Validators"
PROJECT_TOKENS_LABEL = "Project Tokens bought using DESO"
WRAPPED_ASSETS_LABEL = "Wrapped Assets bought using DESO"
DESO_LABEL = "DESO"

CCV1 = "CCv1"
LOCKED_LABELS = {CCV1: "Creator Coins v1"}

VALIDATOR_TYPE_LABELS = {
    ValidatorType.CORE: CORE_VALIDATORS_LABEL,
    ValidatorType.COMMUNITY: COMMUNITY_VALIDATORS_LABEL,
}


@dataclass
class UnstakedBreakdown:
    """Unstaked DESO of classified (non-Community) roster accounts."""
    by_category: dict[Category, Decimal] = field(
        default_factory=lambda: {c: ZERO for c in CLASSIFIED_CATEGORIES}
    )
    # Market-maker DESO held against a project or wrapped token
    project: dict[str, Decimal] = field(default_factory=lambda: {s: ZERO for s in PROJECT_TOKENS})
    wrapped: dict[str, Decimal] = field(default_factory=lambda: {s: ZERO for s in WRAPPED_TOKENS})

    @property
    def total(self) -> Decimal:
        return (
            sum(self.by_category.values(), ZERO)
            + sum(self.project.values(), ZERO)
            + sum(self.wrapped.values(), ZERO)
        )

    def category_total(self, category: Category) -> Decimal:
        """Category total including market-maker DESO paired to tokens."""
        amount = self.by_category.get(category, ZERO)
        if category == Category.MARKET_MAKER:
            amount += sum(self.project.values(), ZERO) + sum(self.wrapped.values(), ZERO)
        return amount


def unstaked_breakdown(accounts: Iterable[TrackedAccount]) -> UnstakedBreakdown:
    """Split classified unstaked DESO into the Not Staked sections."""
    breakdown = UnstakedBreakdown()
    for account in accounts:
        if account.category == Category.COMMUNITY:
            continue
        amount = account.unstaked_deso
        if amount <= 0:
            continue

        pair = TOKENS.get(account.pair_token) if account.pair_token else None
        if account.category == Category.MARKET_MAKER and pair is not None:
            if pair.kind == TokenKind.PROJECT:
                breakdown.project[pair.symbol] = breakdown.project.get(pair.symbol, ZERO) + amount
                continue
            if pair.kind == TokenKind.WRAPPED:
                breakdown.wrapped[pair.symbol] = breakdown.wrapped.get(pair.symbol, ZERO) + amount
                continue
        breakdown.by_category[account.category] += amount
    return breakdown


def compute_supply_totals(
    total_issued: Decimal,
    total_staked: Decimal,
    classified_unstaked: Decimal,
    locked_aggregates: Decimal,
) -> SupplyTotals:
    """
    Global free float = issued - staked - classified unstaked - locked.

    Floored at zero; any shortfall is overallocation.
    """
    residual = total_issued - total_staked - classified_unstaked - locked_aggregates
    return SupplyTotals(
        total_issued=total_issued,
        total_staked=total_staked,
        classified_unstaked=classified_unstaked,
        locked_aggregates=locked_aggregates,
        free_float=max(ZERO, residual),
        overallocation=max(ZERO, -residual),
    )


# =============================================================
# NODE HELPERS
# =============================================================

def leaf(label: str, amount: Decimal, price: Decimal, is_plug: bool = False) -> CirculationNode:
    amount = max(ZERO, amount)
    return CirculationNode(
        label=label,
        amount=amount,
        usd_value=usd_value(amount, price),
        is_plug=is_plug,
    )


def branch(label: str, children: list[CirculationNode]) -> CirculationNode:
    return CirculationNode(
        label=label,
        amount=sum((c.amount for c in children), ZERO),
        usd_value=sum((c.usd_value for c in children), ZERO),
        children=children,
    )


# =============================================================
# BUILDER
# =============================================================

def build_staked_branch(
    stake_buckets: dict[ValidatorType, dict[str, Decimal]],
    deso_price: Decimal,
) -> CirculationNode:
    children = []
    for vtype in (ValidatorType.CORE, ValidatorType.COMMUNITY):
        buckets = stake_buckets.get(vtype, {})
        children.append(branch(
            VALIDATOR_TYPE_LABELS[vtype],
            [leaf(label, buckets.get(label, ZERO), deso_price) for label in STAKE_BUCKETS],
        ))
    return branch(STAKED_LABEL, children)


def build_tree(
    stake_buckets: dict[ValidatorType, dict[str, Decimal]],
    unstaked: UnstakedBreakdown,
    locked_aggregates: dict[str, Decimal],
    total_issued: Decimal,
    deso_price: Decimal,
) -> tuple[CirculationNode, SupplyTotals]:
    """
    Build the circulation tree and the supply totals it closes against.

    All leaves are DESO amounts valued at the DESO price.
    """
    staked = build_staked_branch(stake_buckets, deso_price)

    locked_leaves = [
        leaf(LOCKED_LABELS.get(name, name), amount, deso_price)
        for name, amount in sorted(
            {CCV1: ZERO, **locked_aggregates}.items(),
            key=lambda kv: (kv[0] != CCV1, kv[0]),
        )
    ]
    locked_total = sum((n.amount for n in locked_leaves), ZERO)

    project = branch(
        PROJECT_TOKENS_LABEL,
        [leaf(symbol, unstaked.project.get(symbol, ZERO), deso_price) for symbol in PROJECT_TOKENS],
    )
    wrapped = branch(
        WRAPPED_ASSETS_LABEL,
        [leaf(symbol, unstaked.wrapped.get(symbol, ZERO), deso_price) for symbol in WRAPPED_TOKENS],
    )

    supply = compute_supply_totals(
        total_issued=total_issued,
        total_staked=staked.amount,
        classified_unstaked=unstaked.total,
        locked_aggregates=locked_total,
    )
    if supply.overallocation > 0:
        logger.warning(
            f"Upstream figures over-allocate supply by {supply.overallocation} DESO; "
            f"free float floored at zero"
        )

    deso_children = [
        leaf(CATEGORY_LABELS[category], unstaked.by_category.get(category, ZERO), deso_price)
        for category in CLASSIFIED_CATEGORIES
    ]
    deso_children.append(leaf(FREE_FLOAT_LABEL, supply.free_float, deso_price, is_plug=True))
    deso = branch(DESO_LABEL, deso_children)

    not_staked = branch(NOT_STAKED_LABEL, locked_leaves + [project, wrapped, deso])
    root = branch(ROOT_LABEL, [staked, not_staked])
    return root, supply


def verify_conservation(node: CirculationNode) -> None:
    """
    Check every node: non-negative, and equal to the sum of its children.

    Raises:
        ConservationError: on the first node that does not close
    """
    for path, current in node.walk():
        if current.amount < 0:
            raise ConservationError(path, current.amount, ZERO)
        if current.children:
            children_sum = sum((c.amount for c in current.children), ZERO)
            if current.amount != children_sum:
                raise ConservationError(path, current.amount, children_sum)
