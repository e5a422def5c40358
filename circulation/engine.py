"""
Reconciliation Engine - One polling cycle end to end.

============================================================
CYCLE
============================================================
1. Read the Cached snapshot (absent or unreadable is fine)
2. Collect the Live snapshot
3. Reconcile Live, Cached and Static into a report (pure)
4. Promote Live to Cached only if it carries meaningful data
5. Publish the report, unless a newer cycle already published

Each cycle gets an increasing id; a cycle that finishes after a newer
one has published is discarded, so the last fetch started wins.
============================================================
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable, Optional

import aiohttp

from core.clock import ClockProtocol, SystemClock
from ledger_adapters.providers.coingecko import CoinGeckoAdapter
from ledger_adapters.providers.deso_graphql import DesoGraphqlAdapter
from ledger_adapters.providers.deso_node import DesoNodeAdapter

from .classifier import Classifier
from .collector import CollectionResult, SnapshotCollector
from .config import CirculationConfig, get_config
from .exceptions import SnapshotStoreError
from .market import compute_market_metrics
from .merge import FallbackMergeResolver
from .models import (
    CirculationReport,
    FetchIssue,
    IssueKind,
    ReportProvenance,
    Snapshot,
)
from .roster import Roster, roster_from_config, static_defaults_from_config, treasury_from_config
from .sections import build_community_holders, build_token_sections, build_validator_sections
from .staking import aggregate_validators, effective_stake_entries, staked_by_bucket
from .store import SnapshotStore
from .tree import build_tree, unstaked_breakdown
from .units import DESO


logger = logging.getLogger(__name__)


@dataclass
class ReconciliationContext:
    """Everything one reconciliation needs; nothing is looked up globally."""
    roster: Roster
    static_defaults: Snapshot
    config: CirculationConfig
    clock: ClockProtocol
    live: Optional[Snapshot] = None
    cached: Optional[Snapshot] = None
    fetch_issues: list[FetchIssue] = field(default_factory=list)
    treasury: dict[str, Decimal] = field(default_factory=dict)


def reconcile(ctx: ReconciliationContext) -> CirculationReport:
    """
    Merge the three snapshots and reduce them to a circulation report.

    Pure over its inputs: the same context always yields the same report.
    """
    now = ctx.clock.now()
    merged = FallbackMergeResolver(ctx.roster).merge(ctx.live, ctx.cached, ctx.static_defaults, now)

    classifier = Classifier(ctx.roster, ctx.config.materiality_threshold)
    classifier.bind_public_keys(merged.accounts.values())

    entries = effective_stake_entries(merged, classifier, ctx.roster)
    validators = aggregate_validators(entries, merged.validator_totals, ctx.roster)
    buckets = staked_by_bucket(validators, classifier)
    unstaked = unstaked_breakdown(merged.accounts.values())

    deso_price = merged.price(DESO)
    tree, supply = build_tree(buckets, unstaked, merged.locked_aggregates, merged.total_issued, deso_price)

    issues = list(ctx.fetch_issues) + list(merged.issues)
    if supply.overallocation > 0:
        issues.append(FetchIssue(
            kind=IssueKind.PARTIAL_DATA,
            scope="free_float",
            message=f"Classified balances exceed issued supply by {supply.overallocation} DESO",
            occurred_at=now,
        ))

    holders = classifier.merge_holders(merged.accounts)
    n = ctx.config.top_n
    market = compute_market_metrics(supply, deso_price, merged.prices, ctx.treasury)

    return CirculationReport(
        tree=tree,
        supply=supply,
        provenance=ReportProvenance(
            source=merged.source,
            accounts={aid: account.provenance for aid, account in merged.accounts.items()},
        ),
        generated_at=now,
        validators=build_validator_sections(validators, classifier, deso_price, n),
        token_sections=build_token_sections(merged, holders, classifier, unstaked, supply, n),
        community_holders=build_community_holders(validators, classifier, deso_price, n),
        issues=issues,
        market=market,
    )


# =============================================================
# ENGINE
# =============================================================

ReportCallback = Callable[[CirculationReport], Awaitable[None]]


class CirculationEngine:
    """Runs polling cycles and publishes the latest report."""

    def __init__(
        self,
        collector: SnapshotCollector,
        store: SnapshotStore,
        roster: Roster,
        static_defaults: Snapshot,
        config: CirculationConfig,
        clock: Optional[ClockProtocol] = None,
        on_report: Optional[ReportCallback] = None,
        closeables: Optional[list] = None,
        treasury: Optional[dict[str, Decimal]] = None,
    ) -> None:
        self._collector = collector
        self._store = store
        self._roster = roster
        self._static_defaults = static_defaults
        self._config = config
        self._clock = clock or SystemClock()
        self._on_report = on_report
        self._closeables = list(closeables or [])
        self._treasury = dict(treasury or {})

        self._cycle_ids = itertools.count(1)
        self._published_cycle = 0
        self._latest_report: Optional[CirculationReport] = None
        self._running = False
        self._poll_task: Optional[asyncio.Task] = None
        self._store_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: Optional[CirculationConfig] = None,
        clock: Optional[ClockProtocol] = None,
        session: Optional[aiohttp.ClientSession] = None,
        on_report: Optional[ReportCallback] = None,
    ) -> "CirculationEngine":
        """Wire adapters, store, roster and static defaults from configuration."""
        config = config or get_config()
        clock = clock or SystemClock()

        roster = roster_from_config(config.roster_path)
        static_defaults = static_defaults_from_config(config.roster_path, config.total_supply)
        treasury = treasury_from_config(config.roster_path)

        node = DesoNodeAdapter(
            base_url=config.deso_node_url,
            hodlers_url=config.deso_hodlers_url,
            timeout=config.request_timeout,
            session=session,
            max_retries=config.max_retries,
        )
        graphql = DesoGraphqlAdapter(
            base_url=config.deso_graphql_url,
            timeout=config.request_timeout,
            session=session,
            max_retries=config.max_retries,
            page_size=config.graphql_page_size,
        )
        price_feed = CoinGeckoAdapter(
            base_url=config.coingecko_url,
            timeout=config.request_timeout,
            session=session,
            max_retries=config.max_retries,
        )
        collector = SnapshotCollector(
            node=node,
            graphql=graphql,
            roster=roster,
            config=config,
            clock=clock,
            price_feed=price_feed,
            fallback_prices=static_defaults.prices,
        )
        store = SnapshotStore(config.database_url, config.schema_version, config.snapshot_key)

        return cls(
            collector=collector,
            store=store,
            roster=roster,
            static_defaults=static_defaults,
            config=config,
            clock=clock,
            on_report=on_report,
            closeables=[node, graphql, price_feed],
            treasury=treasury,
        )

    # ─────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────

    @property
    def latest_report(self) -> Optional[CirculationReport]:
        return self._latest_report

    @property
    def is_running(self) -> bool:
        return self._running

    # ─────────────────────────────────────────────────────────────
    # Cycle
    # ─────────────────────────────────────────────────────────────

    async def run_cycle(self) -> CirculationReport:
        """
        Run one polling cycle and return its report.

        Never raises for upstream failures; they surface as report issues.
        A superseded cycle still returns its report but neither promotes
        its snapshot nor publishes.
        """
        cycle_id = next(self._cycle_ids)
        logger.info(f"Cycle {cycle_id} started")

        cached = await self._load_cached()
        result: CollectionResult = await self._collector.collect()

        report = reconcile(ReconciliationContext(
            roster=self._roster,
            static_defaults=self._static_defaults,
            config=self._config,
            clock=self._clock,
            live=result.snapshot,
            cached=cached,
            fetch_issues=result.issues,
            treasury=self._treasury,
        ))

        if cycle_id < self._published_cycle:
            logger.info(f"Cycle {cycle_id} superseded by cycle {self._published_cycle}, discarding")
            return report

        # Claim the slot before the first await so an older cycle cannot publish over it
        self._published_cycle = cycle_id
        self._latest_report = report
        await self._promote(result.snapshot)

        logger.info(
            f"Cycle {cycle_id} done: free float {report.supply.free_float} DESO, "
            f"source {report.provenance.source.value}, {len(report.issues)} issues"
        )
        if self._on_report is not None:
            await self._on_report(report)
        return report

    async def _load_cached(self) -> Optional[Snapshot]:
        # SQLAlchemy is synchronous; keep it off the event loop
        async with self._store_lock:
            return await asyncio.to_thread(self._store.load)

    async def _promote(self, live: Snapshot) -> None:
        if not live.has_meaningful_data():
            logger.warning("Live snapshot has no meaningful data, keeping the cached snapshot")
            return
        try:
            async with self._store_lock:
                await asyncio.to_thread(self._store.save, live)
        except SnapshotStoreError as e:
            logger.error(f"Failed to promote live snapshot: {e}")

    # ─────────────────────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────────────────────

    async def poll(self, max_cycles: Optional[int] = None) -> None:
        """Run cycles every poll_interval_seconds until stopped."""
        self._running = True
        completed = 0
        try:
            while self._running:
                try:
                    await self.run_cycle()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Polling cycle failed: {e}", exc_info=True)

                completed += 1
                if max_cycles is not None and completed >= max_cycles:
                    break
                if not self._running:
                    break
                await self._clock.sleep(self._config.poll_interval_seconds)
        finally:
            self._running = False

    def start(self) -> asyncio.Task:
        """Start polling in a background task."""
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self.poll())
            logger.info("Circulation engine started")
        return self._poll_task

    async def stop(self) -> None:
        """Stop polling and release adapters and the store."""
        logger.info("Stopping circulation engine...")
        self._running = False

        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        for closeable in self._closeables:
            await closeable.close()
        self._store.close()
        logger.info("Circulation engine stopped")
