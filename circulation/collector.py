"""
Snapshot Collector - One fetch cycle against the ledger adapters.

Ordering:
- Per account, the username is resolved to a public key before its
  balance and stake are fetched.
- Across accounts, work runs in batches of max_concurrency; the next
  batch starts only after every task of the current one has settled.
- A token's holder list is paged sequentially (each cursor comes from
  the previous page); different tokens are paged concurrently.

Failures are caught at the smallest scope (one account, one page, one
token, one aggregate), recorded as FetchIssues, and contribute nothing.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from core.clock import ClockProtocol
from ledger_adapters.exceptions import MalformedResponseError, TransportError
from ledger_adapters.models import RawUserBalance, ResolvedProfile
from ledger_adapters.providers.coingecko import CoinGeckoAdapter
from ledger_adapters.providers.deso_graphql import DesoGraphqlAdapter
from ledger_adapters.providers.deso_node import DesoNodeAdapter

from .config import CirculationConfig
from .exceptions import MalformedAmountError
from .models import (
    AccountSnapshot,
    DataSource,
    FetchIssue,
    HolderBalance,
    IssueKind,
    RosterEntry,
    Snapshot,
    StakeEntry,
)
from .roster import Roster
from .tree import CCV1
from .units import DESO, HOLDER_TOKENS, TOKENS, normalize, usd_value


logger = logging.getLogger(__name__)

ZERO = Decimal(0)

T = TypeVar("T")
R = TypeVar("R")

BALANCE_REQUEST_SIZE = 100


def issue_kind(error: BaseException) -> IssueKind:
    """Map an exception to the fetch failure taxonomy."""
    if isinstance(error, (MalformedResponseError, MalformedAmountError)):
        return IssueKind.MALFORMED_RESPONSE
    return IssueKind.TRANSPORT_FAILURE


@dataclass
class CollectionResult:
    """Live snapshot of one cycle plus everything that went wrong."""
    snapshot: Snapshot
    issues: list[FetchIssue] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.issues)


class SnapshotCollector:
    """Builds the Live snapshot from the ledger adapters."""

    def __init__(
        self,
        node: DesoNodeAdapter,
        graphql: Optional[DesoGraphqlAdapter],
        roster: Roster,
        config: CirculationConfig,
        clock: ClockProtocol,
        price_feed: Optional[CoinGeckoAdapter] = None,
        fallback_prices: Optional[dict[str, Decimal]] = None,
    ) -> None:
        self._node = node
        self._graphql = graphql
        self._price_feed = price_feed
        self._roster = roster
        self._config = config
        self._clock = clock
        self._fallback_prices = dict(fallback_prices or {})

    # ─────────────────────────────────────────────────────────────
    # Cycle
    # ─────────────────────────────────────────────────────────────

    async def collect(self) -> CollectionResult:
        """Run one fetch cycle. Never raises for upstream failures."""
        issues: list[FetchIssue] = []
        now = self._clock.now()

        prices = await self._collect_prices(issues)

        entries = self._roster.entries
        profiles = await self._resolve_profiles(entries, issues)

        public_keys = [pk for pk in profiles.values() if pk]
        balances_task = self._collect_balances(public_keys, issues)
        stakes_task = self._collect_account_stakes(profiles, issues)
        holders_task = self._collect_all_holders(prices, issues)
        network_task = self._collect_network_stake(issues)
        locked_task = self._collect_locked_aggregates(issues)

        balances, stakes, token_holders, (stake_entries, validator_totals), locked = (
            await asyncio.gather(balances_task, stakes_task, holders_task, network_task, locked_task)
        )

        accounts = {
            entry.account_id: self._build_account(
                entry, profiles.get(entry.account_id), balances, stakes, token_holders, now
            )
            for entry in entries
        }

        snapshot = Snapshot(
            source=DataSource.LIVE,
            taken_at=now,
            accounts=accounts,
            stake_entries=stake_entries,
            validator_totals=validator_totals,
            locked_aggregates=locked,
            token_holders=token_holders,
            prices=prices,
        )

        fetched = sum(1 for a in accounts.values() if a.has_data())
        logger.info(
            f"Collected live snapshot: {fetched}/{len(accounts)} accounts with data, "
            f"{len(stake_entries)} stake entries, {len(issues)} issues"
        )
        return CollectionResult(snapshot=snapshot, issues=issues)

    # ─────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────

    def _issue(self, issues: list[FetchIssue], kind: IssueKind, scope: str, message: str) -> None:
        issues.append(FetchIssue(kind=kind, scope=scope, message=message, occurred_at=self._clock.now()))

    def _record_failure(self, issues: list[FetchIssue], scope: str, error: BaseException) -> None:
        logger.warning(f"Fetch failed for {scope}: {error}")
        self._issue(issues, issue_kind(error), scope, str(error))

    async def _run_batched(
        self,
        items: list[T],
        fn: Callable[[T], Awaitable[R]],
    ) -> list[Union[R, BaseException]]:
        """Run fn over items, max_concurrency at a time; each batch settles before the next."""
        size = self._config.max_concurrency
        results: list[Union[R, BaseException]] = []
        for start in range(0, len(items), size):
            batch = items[start:start + size]
            results.extend(await asyncio.gather(*(fn(item) for item in batch), return_exceptions=True))
        return results

    def _normalize(
        self,
        raw: Any,
        symbol: str,
        scope: str,
        issues: list[FetchIssue],
        is_hex: bool = False,
    ) -> Optional[Decimal]:
        try:
            return normalize(raw, symbol, is_hex)
        except MalformedAmountError as e:
            self._record_failure(issues, scope, e)
            return None

    # ─────────────────────────────────────────────────────────────
    # Prices
    # ─────────────────────────────────────────────────────────────

    async def _collect_prices(self, issues: list[FetchIssue]) -> dict[str, Decimal]:
        prices: dict[str, Decimal] = {}
        if self._price_feed is not None:
            try:
                prices.update(await self._price_feed.get_usd_prices())
            except Exception as e:
                self._record_failure(issues, "prices", e)

        try:
            rate = await self._node.get_exchange_rate()
            if rate > 0:
                prices[DESO] = rate
        except Exception as e:
            self._record_failure(issues, "prices:DESO", e)
        return prices

    def _price_for(self, symbol: str, prices: dict[str, Decimal]) -> Optional[Decimal]:
        price = prices.get(symbol) or self._fallback_prices.get(symbol)
        return price if price and price > 0 else None

    # ─────────────────────────────────────────────────────────────
    # Accounts
    # ─────────────────────────────────────────────────────────────

    async def _resolve_profiles(
        self,
        entries: list[RosterEntry],
        issues: list[FetchIssue],
    ) -> dict[str, Optional[str]]:
        """username -> public key; None when resolution failed."""
        results = await self._run_batched(entries, lambda e: self._node.resolve_profile(e.account_id))

        profiles: dict[str, Optional[str]] = {}
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                self._record_failure(issues, entry.account_id, result)
                profiles[entry.account_id] = None
            elif isinstance(result, ResolvedProfile):
                profiles[entry.account_id] = result.public_key
            else:
                self._issue(
                    issues, IssueKind.PARTIAL_DATA, entry.account_id,
                    f"Profile '{entry.account_id}' not found",
                )
                profiles[entry.account_id] = None
        return profiles

    async def _collect_balances(
        self,
        public_keys: list[str],
        issues: list[FetchIssue],
    ) -> dict[str, RawUserBalance]:
        balances: dict[str, RawUserBalance] = {}
        for start in range(0, len(public_keys), BALANCE_REQUEST_SIZE):
            chunk = public_keys[start:start + BALANCE_REQUEST_SIZE]
            try:
                balances.update(await self._node.get_user_balances(chunk))
            except Exception as e:
                self._record_failure(issues, f"balances[{start}:{start + len(chunk)}]", e)
        return balances

    async def _collect_account_stakes(
        self,
        profiles: dict[str, Optional[str]],
        issues: list[FetchIssue],
    ) -> dict[str, list[StakeEntry]]:
        """public key -> stake rows. Accounts whose fetch failed are absent."""
        targets = [(aid, pk) for aid, pk in profiles.items() if pk]
        results = await self._run_batched(targets, lambda t: self._node.get_stake_entries(t[1]))

        stakes: dict[str, list[StakeEntry]] = {}
        for (account_id, public_key), result in zip(targets, results):
            if isinstance(result, BaseException):
                self._record_failure(issues, f"stake:{account_id}", result)
                continue
            rows = []
            for position in result:
                amount = self._normalize(
                    position.raw_amount, DESO, f"stake:{account_id}", issues, position.is_hex
                )
                if amount is None or amount <= 0:
                    continue
                rows.append(StakeEntry(
                    staker_id=public_key,
                    validator_id=position.validator_public_key,
                    staked_amount=amount,
                    staker_name=account_id,
                ))
            stakes[public_key] = rows
        return stakes

    def _build_account(
        self,
        entry: RosterEntry,
        public_key: Optional[str],
        balances: dict[str, RawUserBalance],
        stakes: dict[str, list[StakeEntry]],
        token_holders: dict[str, list[HolderBalance]],
        now: datetime,
    ) -> AccountSnapshot:
        """Assemble one account. A failed fetch leaves an empty record."""
        snap = AccountSnapshot(account_id=entry.account_id, public_key=public_key, observed_at=now)
        if not public_key:
            return snap

        stake_rows = stakes.get(public_key)
        balance = balances.get(public_key)
        if stake_rows is not None:
            snap.stake_entries = stake_rows
            snap.staked = sum((r.staked_amount for r in stake_rows), ZERO)
        elif balance is not None and balance.locked_nanos:
            # Stake endpoint failed; the node's locked balance approximates it
            snap.staked = self._normalize(balance.locked_nanos, DESO, entry.account_id, [])

        # DESO is total balance; without a stake figure it would be understated
        if balance is not None and snap.staked is not None:
            spendable = self._normalize(balance.spendable_nanos, DESO, entry.account_id, []) or ZERO
            snap.balances[DESO] = spendable + snap.staked
            snap.raw_balances[DESO] = balance.spendable_nanos

        for symbol, rows in token_holders.items():
            held = sum((r.amount for r in rows if r.public_key == public_key), ZERO)
            if held > 0:
                snap.balances[symbol] = held
        return snap

    # ─────────────────────────────────────────────────────────────
    # Token holders
    # ─────────────────────────────────────────────────────────────

    async def _collect_all_holders(
        self,
        prices: dict[str, Decimal],
        issues: list[FetchIssue],
    ) -> dict[str, list[HolderBalance]]:
        symbols = list(HOLDER_TOKENS)
        results = await asyncio.gather(
            *(self._collect_holders(symbol, prices, issues) for symbol in symbols),
            return_exceptions=True,
        )
        holders: dict[str, list[HolderBalance]] = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                self._record_failure(issues, f"holders:{symbol}", result)
                continue
            if result:
                holders[symbol] = result
        return holders

    async def _collect_holders(
        self,
        symbol: str,
        prices: dict[str, Decimal],
        issues: list[FetchIssue],
    ) -> list[HolderBalance]:
        """
        Page through one token's holders, largest first.

        Stops on a short page, an empty cursor, a page whose smallest
        holding is worth less than min_holding_usd, or a failed page.
        """
        token = TOKENS[symbol]
        page_size = self._config.holders_page_size
        price = self._price_for(symbol, prices)

        holders: list[HolderBalance] = []
        cursor = ""
        page_number = 0
        while True:
            scope = f"holders:{symbol}:page{page_number}"
            try:
                page = await self._node.get_holders_page(token.issuer_username, cursor, page_size)
            except Exception as e:
                self._record_failure(issues, scope, e)
                break

            rows = []
            for raw in page.items:
                amount = self._normalize(raw.raw_amount, symbol, scope, issues, raw.is_hex)
                if amount is None or amount <= 0:
                    continue
                rows.append(HolderBalance(public_key=raw.public_key, amount=amount, username=raw.username))
            holders.extend(rows)
            logger.debug(f"{symbol} holders page {page_number}: {len(rows)} rows")

            if len(page.items) < page_size or not page.next_cursor:
                break
            if price is not None and rows:
                smallest = min(r.amount for r in rows)
                if usd_value(smallest, price) < self._config.min_holding_usd:
                    break
            cursor = page.next_cursor
            page_number += 1

        return holders

    # ─────────────────────────────────────────────────────────────
    # Network aggregates
    # ─────────────────────────────────────────────────────────────

    async def _collect_network_stake(
        self,
        issues: list[FetchIssue],
    ) -> tuple[list[StakeEntry], dict[str, Decimal]]:
        """Every stake position on the network, with validator reported totals."""
        entries: list[StakeEntry] = []
        totals: dict[str, Decimal] = {}
        if self._graphql is None:
            return entries, totals

        cursor: Optional[str] = None
        for page_number in range(self._config.graphql_max_pages):
            scope = f"stake_entries:page{page_number}"
            try:
                page = await self._graphql.get_stake_entries_page(cursor, self._config.graphql_page_size)
            except Exception as e:
                self._record_failure(issues, scope, e)
                if entries:
                    self._issue(
                        issues, IssueKind.PARTIAL_DATA, "stake_entries",
                        f"Stake listing incomplete after {page_number} pages",
                    )
                break

            for position in page.items:
                amount = self._normalize(position.raw_amount, DESO, scope, issues, position.is_hex)
                if amount is None or amount <= 0:
                    continue
                entries.append(StakeEntry(
                    staker_id=position.staker_public_key,
                    validator_id=position.validator_public_key,
                    staked_amount=amount,
                    staker_name=position.staker_username,
                    validator_name=position.validator_username,
                ))
                if position.validator_total_raw is not None and position.validator_public_key not in totals:
                    total = self._normalize(position.validator_total_raw, DESO, scope, issues)
                    if total is not None:
                        totals[position.validator_public_key] = total

            if not page.has_next or not page.next_cursor:
                break
            cursor = page.next_cursor
        else:
            self._issue(
                issues, IssueKind.PARTIAL_DATA, "stake_entries",
                f"Stake listing truncated at {self._config.graphql_max_pages} pages",
            )

        return entries, totals

    async def _collect_locked_aggregates(self, issues: list[FetchIssue]) -> dict[str, Decimal]:
        """
        DESO locked in legacy creator coins (CCv1).

        A partial sum would understate the aggregate, so a failed page or a
        listing cut off at graphql_max_pages drops it and the merge falls
        back to the cached figure.
        """
        if self._graphql is None:
            return {}

        total = ZERO
        cursor: Optional[str] = None
        for page_number in range(self._config.graphql_max_pages):
            scope = f"{CCV1}:page{page_number}"
            try:
                page = await self._graphql.get_creator_coin_balances_page(
                    cursor, self._config.graphql_page_size
                )
            except Exception as e:
                self._record_failure(issues, scope, e)
                return {}

            for raw in page.items:
                amount = self._normalize(raw, DESO, scope, issues)
                if amount is not None:
                    total += amount

            if not page.has_next or not page.next_cursor:
                break
            cursor = page.next_cursor
        else:
            self._issue(
                issues, IssueKind.PARTIAL_DATA, CCV1,
                f"{CCV1} listing truncated at {self._config.graphql_max_pages} pages",
            )
            return {}

        return {CCV1: total}
