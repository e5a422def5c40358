"""
Fallback Merge Resolver - Live, Cached and Static snapshots to one view.

Precedence is per field, not per record:

    merged[f] = live[f] if live[f] > 0
                else cached[f] if cached[f] > 0
                else static[f]

Some tokens are legitimately zero while others are simply hard to fetch,
so a record is never taken or dropped as a whole. The resolver is pure:
same inputs, same output.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, TypeVar

from .models import (
    AccountSnapshot,
    DataSource,
    FetchIssue,
    HolderBalance,
    IssueKind,
    Provenance,
    RosterEntry,
    Snapshot,
    StakeEntry,
    TrackedAccount,
    coarsest,
)
from .roster import Roster


logger = logging.getLogger(__name__)

ZERO = Decimal(0)

K = TypeVar("K")


@dataclass
class MergedSnapshot:
    """Result of merging the three sources over one roster."""
    accounts: dict[str, TrackedAccount]
    stake_entries: list[StakeEntry]
    validator_totals: dict[str, Decimal]
    locked_aggregates: dict[str, Decimal]
    token_holders: dict[str, list[HolderBalance]]
    prices: dict[str, Decimal]
    total_issued: Decimal
    source: DataSource
    network_sources: dict[str, DataSource] = field(default_factory=dict)
    issues: list[FetchIssue] = field(default_factory=list)

    def price(self, symbol: str) -> Decimal:
        return self.prices.get(symbol, ZERO)


def resolve_field(
    live: Optional[Decimal],
    cached: Optional[Decimal],
    static: Optional[Decimal],
) -> tuple[Decimal, Optional[DataSource]]:
    """
    Pick one field value by precedence.

    Returns the value and the source it came from. The source is None when
    every candidate is zero or missing.
    """
    if live is not None and live > 0:
        return live, DataSource.LIVE
    if cached is not None and cached > 0:
        return cached, DataSource.CACHED
    if static is not None and static > 0:
        return static, DataSource.STATIC
    return ZERO, None


def _resolve_map(
    live: Optional[dict[K, Decimal]],
    cached: Optional[dict[K, Decimal]],
    static: Optional[dict[K, Decimal]],
) -> tuple[dict[K, Decimal], dict[K, DataSource]]:
    live = live or {}
    cached = cached or {}
    static = static or {}

    keys: list[K] = []
    for source in (live, cached, static):
        for key in source:
            if key not in keys:
                keys.append(key)

    values: dict[K, Decimal] = {}
    sources: dict[K, DataSource] = {}
    for key in keys:
        value, source = resolve_field(live.get(key), cached.get(key), static.get(key))
        values[key] = value
        if source is not None:
            sources[key] = source
    return values, sources


def _resolve_list(
    live: Optional[list[Any]],
    cached: Optional[list[Any]],
    static: Optional[list[Any]],
) -> tuple[list[Any], Optional[DataSource]]:
    """Whole-list precedence for network-wide listings: first non-empty wins."""
    if live:
        return list(live), DataSource.LIVE
    if cached:
        return list(cached), DataSource.CACHED
    if static:
        return list(static), DataSource.STATIC
    return [], None


class FallbackMergeResolver:
    """Merges Live, Cached and Static snapshots over a roster."""

    def __init__(self, roster: Roster) -> None:
        self._roster = roster

    def merge(
        self,
        live: Optional[Snapshot],
        cached: Optional[Snapshot],
        static: Snapshot,
        now: datetime,
    ) -> MergedSnapshot:
        issues: list[FetchIssue] = []

        usable_live = live if live is not None and live.has_meaningful_data() else None
        if usable_live is None and cached is None:
            issues.append(FetchIssue(
                kind=IssueKind.STALE_FALLBACK,
                scope="snapshot",
                message="No live data and no usable cached snapshot; using static defaults",
                occurred_at=now,
            ))
            logger.warning("No live data and no usable cached snapshot, falling back to static defaults")

        accounts: dict[str, TrackedAccount] = {}
        for entry in self._roster:
            accounts[entry.account_id] = self._merge_account(
                entry,
                self._account(live, entry.account_id),
                self._account(cached, entry.account_id),
                self._account(static, entry.account_id),
            )

        stake_entries, stake_source = _resolve_list(
            live.stake_entries if live else None,
            cached.stake_entries if cached else None,
            static.stake_entries,
        )
        validator_totals, _ = _resolve_map(
            live.validator_totals if live else None,
            cached.validator_totals if cached else None,
            static.validator_totals,
        )
        locked, locked_sources = _resolve_map(
            live.locked_aggregates if live else None,
            cached.locked_aggregates if cached else None,
            static.locked_aggregates,
        )
        prices, _ = _resolve_map(
            live.prices if live else None,
            cached.prices if cached else None,
            static.prices,
        )

        token_holders: dict[str, list[HolderBalance]] = {}
        holder_sources: dict[str, DataSource] = {}
        symbols: list[str] = []
        for snap in (live, cached, static):
            if snap is None:
                continue
            for symbol in snap.token_holders:
                if symbol not in symbols:
                    symbols.append(symbol)
        for symbol in symbols:
            holders, source = _resolve_list(
                live.token_holders.get(symbol) if live else None,
                cached.token_holders.get(symbol) if cached else None,
                static.token_holders.get(symbol),
            )
            token_holders[symbol] = holders
            if source is not None:
                holder_sources[symbol] = source

        for account in accounts.values():
            if account.stake_source is None and stake_source is not None:
                self._adopt_network_stake(account, stake_entries, stake_source, now, issues)

        total_issued, _ = resolve_field(
            live.total_issued if live else None,
            cached.total_issued if cached else None,
            static.total_issued,
        )

        network_sources: dict[str, DataSource] = {}
        if stake_source is not None:
            network_sources["stake_entries"] = stake_source
        for name, source in locked_sources.items():
            network_sources[f"locked:{name}"] = source
        for symbol, source in holder_sources.items():
            network_sources[f"holders:{symbol}"] = source

        overall = coarsest(
            [a.provenance.source for a in accounts.values()]
            + list(network_sources.values())
        )
        if any(i.kind == IssueKind.STALE_FALLBACK for i in issues):
            overall = DataSource.STATIC

        return MergedSnapshot(
            accounts=accounts,
            stake_entries=stake_entries,
            validator_totals=validator_totals,
            locked_aggregates=locked,
            token_holders=token_holders,
            prices=prices,
            total_issued=total_issued,
            source=overall,
            network_sources=network_sources,
            issues=issues,
        )

    def _adopt_network_stake(
        self,
        account: TrackedAccount,
        stake_entries: list[StakeEntry],
        source: DataSource,
        now: datetime,
        issues: list[FetchIssue],
    ) -> None:
        """
        Use the network listing rows of an account that has no per-account stake.

        The stake splitter otherwise drops a roster staker's network rows.
        """
        rows = [
            e for e in stake_entries
            if e.staked_amount > 0 and self._is_staker(account, e)
        ]
        if not rows:
            return

        account.stake_entries = rows
        account.staked = sum((e.staked_amount for e in rows), ZERO)
        account.stake_source = source
        account.provenance.source = coarsest([account.provenance.source, source])
        issues.append(FetchIssue(
            kind=IssueKind.PARTIAL_DATA,
            scope=f"stake:{account.account_id}",
            message=f"No per-account stake; using {len(rows)} network listing rows ({account.staked} DESO)",
            occurred_at=now,
        ))
        logger.info(f"{account.account_id}: stake taken from network listing ({account.staked} DESO)")

    def _is_staker(self, account: TrackedAccount, entry: StakeEntry) -> bool:
        if account.public_key and entry.staker_id == account.public_key:
            return True
        named = self._roster.get(entry.staker_name)
        return named is not None and named.account_id == account.account_id

    @staticmethod
    def _account(snapshot: Optional[Snapshot], account_id: str) -> Optional[AccountSnapshot]:
        if snapshot is None:
            return None
        return snapshot.accounts.get(account_id)

    def _merge_account(
        self,
        entry: RosterEntry,
        live: Optional[AccountSnapshot],
        cached: Optional[AccountSnapshot],
        static: Optional[AccountSnapshot],
    ) -> TrackedAccount:
        balances, balance_sources = _resolve_map(
            live.balances if live else None,
            cached.balances if cached else None,
            static.balances if static else None,
        )
        for symbol in entry.exclude_tokens:
            balances.pop(symbol, None)
            balance_sources.pop(symbol, None)

        # Stake follows the same precedence on the stake total
        staked = ZERO
        stake_entries: list[StakeEntry] = []
        stake_source: Optional[DataSource] = None
        for candidate, source in (
            (live, DataSource.LIVE),
            (cached, DataSource.CACHED),
            (static, DataSource.STATIC),
        ):
            if candidate is not None and candidate.stake_total > 0:
                staked = candidate.stake_total
                stake_entries = list(candidate.stake_entries)
                stake_source = source
                break

        by_source = {
            DataSource.LIVE: live,
            DataSource.CACHED: cached,
            DataSource.STATIC: static,
        }
        raw_balances: dict[str, Any] = {}
        for symbol, source in balance_sources.items():
            origin = by_source[source]
            if origin is not None and symbol in origin.raw_balances:
                raw_balances[symbol] = origin.raw_balances[symbol]

        used = list(balance_sources.values())
        if stake_source is not None:
            used.append(stake_source)

        if used:
            source = coarsest(used)
        elif live is not None:
            source = DataSource.LIVE
        elif cached is not None:
            source = DataSource.CACHED
        else:
            source = DataSource.STATIC

        origin = by_source[source]
        public_key = next(
            (s.public_key for s in (live, cached, static) if s is not None and s.public_key),
            None,
        )

        return TrackedAccount(
            account_id=entry.account_id,
            display_name=entry.display_name,
            merge_key=entry.merge_key,
            category=entry.category,
            provenance=Provenance(
                source=source,
                observed_at=origin.observed_at if origin is not None else None,
            ),
            balances=balances,
            staked=staked,
            stake_entries=stake_entries,
            raw_balances=raw_balances,
            public_key=public_key,
            pair_token=entry.pair_token,
            stake_source=stake_source,
        )
