"""
Report Sections - Per-validator and per-token presentation data.

Sections are plain data: by-category amounts with USD values and a
Top-N + Others holder ranking. Community holders are demoted before
ranking.
"""

from decimal import Decimal

from .classifier import Classifier, MergedHolder, combine_entries
from .merge import MergedSnapshot
from .models import (
    CLASSIFIED_CATEGORIES,
    Category,
    RankedBucket,
    RankedEntry,
    SupplyTotals,
    TokenBalance,
    TokenSection,
    Validator,
    ValidatorSection,
)
from .ranking import top_n
from .staking import FREE_FLOAT_LABEL, UNATTRIBUTED_LABEL
from .tree import UnstakedBreakdown
from .units import DESO, HOLDER_TOKENS, usd_value


ZERO = Decimal(0)


def _deso_equivalent_fn(deso_price: Decimal, symbol: str):
    """Value an entry in DESO for the materiality threshold."""
    def deso_equivalent(entry: RankedEntry) -> Decimal:
        if symbol == DESO:
            return entry.amount
        if deso_price > 0:
            return entry.usd_value / deso_price
        return entry.amount
    return deso_equivalent


# =============================================================
# VALIDATORS
# =============================================================

def _staker_entries(
    validator: Validator,
    classifier: Classifier,
    deso_price: Decimal,
) -> list[RankedEntry]:
    entries = []
    for member in validator.members:
        identity = classifier.identify(member.staker_id, member.staker_name)
        entries.append(RankedEntry(
            label=identity.label or "",
            amount=member.staked_amount,
            usd_value=usd_value(member.staked_amount, deso_price),
            category=identity.category,
        ))
    return combine_entries(entries)


def build_validator_sections(
    validators: list[Validator],
    classifier: Classifier,
    deso_price: Decimal,
    n: int,
) -> list[ValidatorSection]:
    sections = []
    demote_value = _deso_equivalent_fn(deso_price, DESO)
    for validator in validators:
        entries = classifier.demote_community(
            _staker_entries(validator, classifier, deso_price),
            demote_value,
        )
        if validator.unattributed > 0:
            entries.append(RankedEntry(
                label=UNATTRIBUTED_LABEL,
                amount=validator.unattributed,
                usd_value=usd_value(validator.unattributed, deso_price),
            ))
        sections.append(ValidatorSection(
            validator_id=validator.validator_id,
            display_name=validator.display_name,
            type=validator.type,
            total=validator.total_staked,
            usd_value=usd_value(validator.total_staked, deso_price),
            unattributed=validator.unattributed,
            stakers=top_n(entries, n),
        ))
    return sections


def build_community_holders(
    validators: list[Validator],
    classifier: Classifier,
    deso_price: Decimal,
    n: int,
) -> RankedBucket:
    """Community stake across all validators: the staked free float by holder."""
    entries = []
    for validator in validators:
        entries.extend(
            e for e in _staker_entries(validator, classifier, deso_price)
            if e.category == Category.COMMUNITY
        )
    demoted = classifier.demote_community(
        combine_entries(entries),
        _deso_equivalent_fn(deso_price, DESO),
    )
    return top_n(demoted, n)


# =============================================================
# TOKENS
# =============================================================

def _balance(amount: Decimal, price: Decimal, symbol: str) -> TokenBalance:
    return TokenBalance(symbol=symbol, amount=amount, usd_value=usd_value(amount, price))


def build_deso_section(
    holders: list[MergedHolder],
    unstaked: UnstakedBreakdown,
    supply: SupplyTotals,
    deso_price: Decimal,
    n: int,
) -> TokenSection:
    """Unstaked DESO by category; Community is the free float."""
    by_category = {
        category: _balance(unstaked.category_total(category), deso_price, DESO)
        for category in CLASSIFIED_CATEGORIES
    }
    by_category[Category.COMMUNITY] = _balance(supply.free_float, deso_price, DESO)

    entries = [
        RankedEntry(
            label=h.label,
            amount=h.unstaked_deso,
            usd_value=usd_value(h.unstaked_deso, deso_price),
            category=h.category,
        )
        for h in holders
        if h.category != Category.COMMUNITY and h.unstaked_deso > 0
    ]
    entries.append(RankedEntry(
        label=FREE_FLOAT_LABEL,
        amount=supply.free_float,
        usd_value=usd_value(supply.free_float, deso_price),
        category=Category.COMMUNITY,
    ))
    return TokenSection(symbol=DESO, price=deso_price, by_category=by_category, holders=top_n(entries, n))


def build_token_section(
    symbol: str,
    merged: MergedSnapshot,
    holders: list[MergedHolder],
    classifier: Classifier,
    n: int,
) -> TokenSection:
    """
    One project or wrapped token: roster holders from merged balances,
    everyone else from the token's holder list.
    """
    price = merged.price(symbol)
    deso_price = merged.price(DESO)
    amounts = {category: ZERO for category in list(CLASSIFIED_CATEGORIES) + [Category.COMMUNITY]}
    entries: list[RankedEntry] = []

    for holder in holders:
        amount = holder.balance(symbol)
        if amount <= 0:
            continue
        amounts[holder.category] += amount
        entries.append(RankedEntry(holder.label, amount, usd_value(amount, price), holder.category))

    for row in merged.token_holders.get(symbol, []):
        if row.amount <= 0:
            continue
        identity = classifier.identify(row.public_key, row.username)
        if identity.merge_key is not None:
            # Roster accounts are counted from their merged balances
            continue
        amounts[Category.COMMUNITY] += row.amount
        entries.append(RankedEntry(
            label=identity.label or "",
            amount=row.amount,
            usd_value=usd_value(row.amount, price),
            category=Category.COMMUNITY,
        ))

    demoted = classifier.demote_community(
        combine_entries(entries),
        _deso_equivalent_fn(deso_price, symbol),
    )
    return TokenSection(
        symbol=symbol,
        price=price,
        by_category={c: _balance(a, price, symbol) for c, a in amounts.items()},
        holders=top_n(demoted, n),
    )


def build_token_sections(
    merged: MergedSnapshot,
    holders: list[MergedHolder],
    classifier: Classifier,
    unstaked: UnstakedBreakdown,
    supply: SupplyTotals,
    n: int,
) -> list[TokenSection]:
    sections = [build_deso_section(holders, unstaked, supply, merged.price(DESO), n)]
    for symbol in HOLDER_TOKENS:
        sections.append(build_token_section(symbol, merged, holders, classifier, n))
    return sections
