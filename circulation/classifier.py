"""
Classifier - Roster categories, alias merging and community demotion.

A community of many thousands of holders cannot be listed individually,
so Community entries are reduced in two tiers before ranking:
named holders below the materiality threshold become "Other (named)",
holders without a display name become "Unnamed".
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, Optional

from .models import Category, RankedEntry, RosterEntry, TrackedAccount
from .roster import Roster


logger = logging.getLogger(__name__)

ZERO = Decimal(0)

OTHER_NAMED_LABEL = "Other (named)"
UNNAMED_LABEL = "Unnamed"


@dataclass
class MergedHolder:
    """One logical holder: all roster accounts sharing a merge key."""
    merge_key: str
    label: str
    category: Category
    balances: dict[str, Decimal] = field(default_factory=dict)
    staked: Decimal = ZERO
    unstaked_deso: Decimal = ZERO
    account_ids: list[str] = field(default_factory=list)

    def balance(self, symbol: str) -> Decimal:
        return self.balances.get(symbol, ZERO)


@dataclass(frozen=True)
class Identity:
    """Who a public key or username belongs to, as far as the roster knows."""
    label: Optional[str]
    category: Category
    merge_key: Optional[str] = None

    @property
    def is_named(self) -> bool:
        return bool(self.label)


class Classifier:
    """Maps accounts to categories and reduces the community long tail."""

    def __init__(self, roster: Roster, materiality_threshold: Decimal) -> None:
        self._roster = roster
        self._threshold = materiality_threshold
        self._by_public_key: dict[str, RosterEntry] = {}

    @property
    def materiality_threshold(self) -> Decimal:
        return self._threshold

    def bind_public_keys(self, accounts: Iterable[TrackedAccount]) -> None:
        """Register resolved public keys so network rows can be matched to the roster."""
        for account in accounts:
            entry = self._roster.get(account.account_id)
            if entry is not None and account.public_key:
                self._by_public_key[account.public_key] = entry

    def category_of(self, account_id: Optional[str]) -> Category:
        return self._roster.category_of(account_id)

    def is_roster_key(self, public_key: Optional[str]) -> bool:
        return bool(public_key) and public_key in self._by_public_key

    def identify(self, public_key: Optional[str], username: Optional[str]) -> Identity:
        """
        Resolve a ledger identity against the roster.

        Roster members are labeled with their merge group's display name.
        Everyone else is Community, labeled by username when one exists.
        """
        entry = None
        if public_key:
            entry = self._by_public_key.get(public_key)
        if entry is None and username:
            entry = self._roster.get(username)

        if entry is not None:
            primary = self._roster.primary(entry.merge_key) or entry
            return Identity(primary.display_name, entry.category, entry.merge_key)
        return Identity(username or None, Category.COMMUNITY, None)

    # ─────────────────────────────────────────────────────────────
    # Alias merging
    # ─────────────────────────────────────────────────────────────

    def merge_holders(self, accounts: dict[str, TrackedAccount]) -> list[MergedHolder]:
        """
        Sum accounts sharing a merge key into one holder, in roster order.

        The first roster entry of a group supplies label and category.
        """
        holders: dict[str, MergedHolder] = {}
        for merge_key, entries in self._roster.merge_groups().items():
            primary = entries[0]
            holder = MergedHolder(
                merge_key=merge_key,
                label=primary.display_name,
                category=primary.category,
            )
            for entry in entries:
                account = accounts.get(entry.account_id)
                if account is None:
                    continue
                holder.account_ids.append(account.account_id)
                for symbol, amount in account.balances.items():
                    holder.balances[symbol] = holder.balance(symbol) + amount
                holder.staked += account.staked
                holder.unstaked_deso += account.unstaked_deso
            holders[merge_key] = holder
        return list(holders.values())

    # ─────────────────────────────────────────────────────────────
    # Community demotion
    # ─────────────────────────────────────────────────────────────

    def demote_community(
        self,
        entries: list[RankedEntry],
        deso_equivalent: Callable[[RankedEntry], Decimal],
    ) -> list[RankedEntry]:
        """
        Collapse small and unnamed Community entries.

        Non-community entries pass through untouched. Named community
        entries at or above the threshold (in DESO-equivalent) stay;
        smaller named ones sum into "Other (named)" and unnamed ones into
        "Unnamed". Amount totals are preserved.
        """
        kept: list[RankedEntry] = []
        other_named = RankedEntry(OTHER_NAMED_LABEL, ZERO, ZERO, Category.COMMUNITY)
        unnamed = RankedEntry(UNNAMED_LABEL, ZERO, ZERO, Category.COMMUNITY)

        for entry in entries:
            if entry.category != Category.COMMUNITY:
                kept.append(entry)
                continue
            if not entry.label:
                unnamed.amount += entry.amount
                unnamed.usd_value += entry.usd_value
            elif deso_equivalent(entry) < self._threshold:
                other_named.amount += entry.amount
                other_named.usd_value += entry.usd_value
            else:
                kept.append(entry)

        if other_named.amount > 0:
            kept.append(other_named)
        if unnamed.amount > 0:
            kept.append(unnamed)
        return kept


def combine_entries(entries: Iterable[RankedEntry]) -> list[RankedEntry]:
    """Sum entries sharing a label and category, keeping first-seen order."""
    combined: dict[tuple[str, Optional[Category]], RankedEntry] = {}
    for entry in entries:
        key = (entry.label, entry.category)
        existing = combined.get(key)
        if existing is None:
            combined[key] = RankedEntry(entry.label, entry.amount, entry.usd_value, entry.category)
        else:
            existing.amount += entry.amount
            existing.usd_value += entry.usd_value
    return list(combined.values())
