"""
Circulation Module - DESO supply reconciliation.

Tracks a roster of known accounts, merges their Live, Cached and Static
figures field by field, and reduces everything to a conserved
circulation tree with per-validator and per-token sections.

The free float is the residual:

    free_float = total_issued - staked - classified_unstaked - locked

Usage:
    from circulation import CirculationEngine

    engine = CirculationEngine.from_config()
    report = await engine.run_cycle()

    print(f"Free float: {report.supply.free_float} DESO")
    print(f"Backing ratio: {report.market.backing_ratio}")
    print(f"Source: {report.provenance.source.value}")
    for path, node in report.tree.walk():
        print(path, node.amount)

    await engine.stop()

Pure reconciliation (no network):
    from circulation import ReconciliationContext, reconcile

    report = reconcile(ReconciliationContext(
        roster=roster,
        static_defaults=static,
        config=config,
        clock=clock,
        live=live_snapshot,
        cached=cached_snapshot,
    ))
"""

from .classifier import Classifier, Identity, MergedHolder
from .collector import CollectionResult, SnapshotCollector
from .config import (
    CirculationConfig,
    get_config,
    set_config,
)
from .engine import (
    CirculationEngine,
    ReconciliationContext,
    reconcile,
)
from .exceptions import (
    CirculationError,
    ConservationError,
    MalformedAmountError,
    RosterError,
    SnapshotStoreError,
)
from .market import compute_market_metrics
from .merge import FallbackMergeResolver, MergedSnapshot, resolve_field
from .models import (
    AccountSnapshot,
    Category,
    CirculationNode,
    CirculationReport,
    DataSource,
    FetchIssue,
    HolderBalance,
    IssueKind,
    MarketMetrics,
    Provenance,
    RankedBucket,
    RankedEntry,
    RosterEntry,
    Snapshot,
    StakeEntry,
    SupplyTotals,
    TokenSection,
    TrackedAccount,
    Validator,
    ValidatorSection,
    ValidatorType,
)
from .ranking import top_n
from .roster import (
    Roster,
    default_roster,
    default_static_snapshot,
    load_roster,
    load_static_defaults,
)
from .store import SnapshotStore
from .tree import build_tree, verify_conservation
from .units import normalize, parse_raw_amount


__all__ = [
    # Config
    "CirculationConfig",
    "get_config",
    "set_config",
    # Engine
    "CirculationEngine",
    "ReconciliationContext",
    "reconcile",
    "SnapshotCollector",
    "CollectionResult",
    # Reconciliation
    "FallbackMergeResolver",
    "MergedSnapshot",
    "resolve_field",
    "Classifier",
    "Identity",
    "MergedHolder",
    "build_tree",
    "verify_conservation",
    "top_n",
    "compute_market_metrics",
    # Roster
    "Roster",
    "default_roster",
    "default_static_snapshot",
    "load_roster",
    "load_static_defaults",
    # Storage
    "SnapshotStore",
    # Units
    "normalize",
    "parse_raw_amount",
    # Models
    "AccountSnapshot",
    "Category",
    "CirculationNode",
    "CirculationReport",
    "DataSource",
    "FetchIssue",
    "HolderBalance",
    "IssueKind",
    "MarketMetrics",
    "Provenance",
    "RankedBucket",
    "RankedEntry",
    "RosterEntry",
    "Snapshot",
    "StakeEntry",
    "SupplyTotals",
    "TokenSection",
    "TrackedAccount",
    "Validator",
    "ValidatorSection",
    "ValidatorType",
    # Exceptions
    "CirculationError",
    "ConservationError",
    "MalformedAmountError",
    "RosterError",
    "SnapshotStoreError",
]
