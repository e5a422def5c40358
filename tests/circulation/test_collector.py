"""
Tests for the snapshot collector.

============================================================
PURPOSE
============================================================
The collector drives the ledger adapters for one cycle:
1. Profiles resolve before balances and stake
2. Batches never exceed max_concurrency
3. Holder lists page sequentially and stop early
4. Every failure becomes a FetchIssue, never an exception

All adapters are mocked; no network access.
============================================================
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.clock import MockClock
from circulation.collector import SnapshotCollector, issue_kind
from circulation.config import CirculationConfig
from circulation.exceptions import MalformedAmountError
from circulation.models import Category, DataSource, IssueKind, RosterEntry
from circulation.roster import Roster
from ledger_adapters.exceptions import MalformedResponseError, TransportError
from ledger_adapters.models import (
    Page,
    RawHolder,
    RawStakePosition,
    RawUserBalance,
    ResolvedProfile,
)


NANOS = 10 ** 9
WEI = 10 ** 18


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return MockClock(datetime(2026, 5, 1, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return CirculationConfig(
        max_concurrency=2,
        holders_page_size=2,
        graphql_page_size=2,
        graphql_max_pages=5,
    )


@pytest.fixture
def roster():
    return Roster([
        RosterEntry("alice", Category.FOUNDATION),
        RosterEntry("bob", Category.MARKET_MAKER, pair_token="dUSDC"),
        RosterEntry("carol", Category.CORE_TEAM),
    ])


def make_node(failing_profiles=(), holders=None):
    """Mock node: every username resolves to pk_<username>."""
    node = MagicMock()

    async def resolve_profile(username):
        if username in failing_profiles:
            raise TransportError(message="connection reset", adapter_name="deso_node")
        return ResolvedProfile(username=username, public_key=f"pk_{username}")

    async def get_user_balances(public_keys):
        spendable = {"pk_alice": 600, "pk_bob": 100, "pk_carol": 50}
        return {
            pk: RawUserBalance(pk, spendable.get(pk, 0) * NANOS)
            for pk in public_keys
        }

    async def get_stake_entries(public_key):
        if public_key == "pk_alice":
            return [RawStakePosition("pk_alice", "pk_core", 400 * NANOS)]
        return []

    pages = holders or {}

    async def get_holders_page(username, cursor, page_size):
        return pages.get((username, cursor), Page(items=[]))

    node.resolve_profile = AsyncMock(side_effect=resolve_profile)
    node.get_user_balances = AsyncMock(side_effect=get_user_balances)
    node.get_stake_entries = AsyncMock(side_effect=get_stake_entries)
    node.get_holders_page = AsyncMock(side_effect=get_holders_page)
    node.get_exchange_rate = AsyncMock(return_value=Decimal("5.50"))
    return node


def make_graphql(stake_pages=None, ccv1_pages=None):
    graphql = MagicMock()
    graphql.get_stake_entries_page = AsyncMock(side_effect=stake_pages or [Page(items=[])])
    graphql.get_creator_coin_balances_page = AsyncMock(side_effect=ccv1_pages or [Page(items=[])])
    return graphql


def make_collector(roster, config, clock, node=None, graphql=None, price_feed=None, fallback_prices=None):
    return SnapshotCollector(
        node=node or make_node(),
        graphql=graphql if graphql is not None else make_graphql(),
        roster=roster,
        config=config,
        clock=clock,
        price_feed=price_feed,
        fallback_prices=fallback_prices,
    )


# ============================================================
# ACCOUNTS
# ============================================================

class TestAccountCollection:
    """Tests for per-account fetching."""

    @pytest.mark.asyncio
    async def test_collects_live_snapshot(self, roster, config, clock):
        collector = make_collector(roster, config, clock)

        result = await collector.collect()
        snapshot = result.snapshot

        assert snapshot.source == DataSource.LIVE
        assert snapshot.taken_at == clock.now()
        assert result.issues == []

        alice = snapshot.accounts["alice"]
        assert alice.public_key == "pk_alice"
        assert alice.staked == Decimal(400)
        assert alice.balances["DESO"] == Decimal(1000)
        assert alice.stake_entries[0].validator_id == "pk_core"
        assert snapshot.accounts["bob"].staked == Decimal(0)
        assert snapshot.accounts["bob"].balances["DESO"] == Decimal(100)

    @pytest.mark.asyncio
    async def test_failed_account_is_empty_record(self, roster, config, clock):
        collector = make_collector(roster, config, clock, node=make_node(failing_profiles={"carol"}))

        result = await collector.collect()

        carol = result.snapshot.accounts["carol"]
        assert carol.public_key is None
        assert not carol.has_data()
        assert [(i.kind, i.scope) for i in result.issues] == [(IssueKind.TRANSPORT_FAILURE, "carol")]
        # The others are unaffected
        assert result.snapshot.accounts["alice"].balances["DESO"] == Decimal(1000)
        assert result.is_partial

    @pytest.mark.asyncio
    async def test_missing_profile_is_partial_data(self, roster, config, clock):
        node = make_node()
        node.resolve_profile = AsyncMock(return_value=None)
        collector = make_collector(roster, config, clock, node=node)

        result = await collector.collect()

        assert {i.kind for i in result.issues} == {IssueKind.PARTIAL_DATA}
        assert not result.snapshot.has_meaningful_data()

    @pytest.mark.asyncio
    async def test_stake_failure_leaves_deso_unknown(self, roster, config, clock):
        node = make_node()
        node.get_stake_entries = AsyncMock(side_effect=TransportError(message="HTTP 502"))
        collector = make_collector(roster, config, clock, node=node)

        result = await collector.collect()

        alice = result.snapshot.accounts["alice"]
        assert alice.staked is None
        assert "DESO" not in alice.balances
        assert all(i.scope.startswith("stake:") for i in result.issues)

    @pytest.mark.asyncio
    async def test_locked_balance_stands_in_for_stake(self, roster, config, clock):
        node = make_node()
        node.get_stake_entries = AsyncMock(side_effect=TransportError(message="HTTP 502"))
        node.get_user_balances = AsyncMock(return_value={
            "pk_alice": RawUserBalance("pk_alice", 600 * NANOS, 400 * NANOS),
        })
        collector = make_collector(roster, config, clock, node=node)

        result = await collector.collect()

        alice = result.snapshot.accounts["alice"]
        assert alice.staked == Decimal(400)
        assert alice.balances["DESO"] == Decimal(1000)

    @pytest.mark.asyncio
    async def test_malformed_stake_amount(self, roster, config, clock):
        node = make_node()
        node.get_stake_entries = AsyncMock(return_value=[
            RawStakePosition("pk_x", "pk_core", "not-a-number"),
        ])
        collector = make_collector(roster, config, clock, node=node)

        result = await collector.collect()

        assert result.issues
        assert all(i.kind == IssueKind.MALFORMED_RESPONSE for i in result.issues)
        assert result.snapshot.accounts["alice"].staked == Decimal(0)

    @pytest.mark.asyncio
    async def test_unprefixed_hex_stake_amount(self, roster, config, clock):
        node = make_node()
        # 0x174876e800 nanos = 100 DESO
        node.get_stake_entries = AsyncMock(return_value=[
            RawStakePosition("pk_x", "pk_core", "174876e800", is_hex=True),
        ])
        collector = make_collector(roster, config, clock, node=node)

        result = await collector.collect()

        assert result.issues == []
        assert result.snapshot.accounts["alice"].staked == Decimal(100)

    @pytest.mark.asyncio
    async def test_batches_respect_max_concurrency(self, config, clock):
        roster = Roster([RosterEntry(f"user{i}", Category.CORE_TEAM) for i in range(5)])
        in_flight = 0
        peak = 0

        async def resolve_profile(username):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return ResolvedProfile(username, f"pk_{username}")

        node = make_node()
        node.resolve_profile = AsyncMock(side_effect=resolve_profile)
        collector = make_collector(roster, config, clock, node=node)

        await collector.collect()

        assert node.resolve_profile.await_count == 5
        assert peak <= config.max_concurrency


# ============================================================
# TOKEN HOLDERS
# ============================================================

class TestHolderCollection:
    """Tests for holder list pagination."""

    @pytest.mark.asyncio
    async def test_pages_until_short_page(self, roster, config, clock):
        pages = {
            ("focus", ""): Page(
                items=[RawHolder("pk_alice", hex(1000 * WEI)), RawHolder("pk_h2", hex(900 * WEI), "h2")],
                next_cursor="pk_h2",
                has_next=True,
            ),
            ("focus", "pk_h2"): Page(items=[RawHolder("pk_h3", hex(800 * WEI))], next_cursor="pk_h3"),
        }
        node = make_node(holders=pages)
        collector = make_collector(roster, config, clock, node=node)

        result = await collector.collect()

        focus_calls = [c.args for c in node.get_holders_page.await_args_list if c.args[0] == "focus"]
        assert [args[1] for args in focus_calls] == ["", "pk_h2"]
        holders = result.snapshot.token_holders["Focus"]
        assert [h.public_key for h in holders] == ["pk_alice", "pk_h2", "pk_h3"]
        assert holders[1].username == "h2"
        # Roster account picks up its token balance
        assert result.snapshot.accounts["alice"].balances["Focus"] == Decimal(1000)

    @pytest.mark.asyncio
    async def test_stops_below_min_holding(self, roster, config, clock):
        pages = {
            ("focus", ""): Page(
                items=[RawHolder("pk_1", hex(1000 * WEI)), RawHolder("pk_2", hex(1000 * WEI))],
                next_cursor="pk_2",
                has_next=True,
            ),
            ("focus", "pk_2"): Page(items=[RawHolder("pk_3", hex(1 * WEI))]),
        }
        node = make_node(holders=pages)
        # 1000 Focus at $0.001 is $1, below the $10 floor
        collector = make_collector(
            roster, config, clock, node=node, fallback_prices={"Focus": Decimal("0.001")}
        )

        result = await collector.collect()

        assert len(result.snapshot.token_holders["Focus"]) == 2

    @pytest.mark.asyncio
    async def test_unprefixed_hex_balances(self, roster, config, clock):
        pages = {
            ("openfund", ""): Page(items=[
                RawHolder("pk_h1", "4563918244f40000", is_hex=True),
                RawHolder("pk_h2", "1000", is_hex=True),
            ]),
            ("focus", ""): Page(items=[RawHolder("pk_h3", "1000")]),
        }
        node = make_node(holders=pages)
        collector = make_collector(roster, config, clock, node=node)

        result = await collector.collect()

        assert result.issues == []
        openfund = {h.public_key: h.amount for h in result.snapshot.token_holders["Openfund"]}
        assert openfund == {"pk_h1": Decimal(5), "pk_h2": Decimal(4096) / WEI}
        # Without the flag a digit-only string stays decimal
        focus = result.snapshot.token_holders["Focus"]
        assert focus[0].amount == Decimal(1000) / WEI

    @pytest.mark.asyncio
    async def test_failed_page_keeps_earlier_rows(self, roster, config, clock):
        node = make_node()

        async def get_holders_page(username, cursor, page_size):
            if username != "openfund":
                return Page(items=[])
            if cursor == "":
                return Page(
                    items=[RawHolder("pk_1", str(5 * WEI)), RawHolder("pk_2", str(4 * WEI))],
                    next_cursor="pk_2",
                )
            raise TransportError(message="HTTP 500")

        node.get_holders_page = AsyncMock(side_effect=get_holders_page)
        collector = make_collector(roster, config, clock, node=node)

        result = await collector.collect()

        assert len(result.snapshot.token_holders["Openfund"]) == 2
        assert [i.scope for i in result.issues] == ["holders:Openfund:page1"]


# ============================================================
# NETWORK AGGREGATES & PRICES
# ============================================================

class TestNetworkCollection:
    """Tests for network-wide stake, CCv1 and prices."""

    @pytest.mark.asyncio
    async def test_network_stake_pages(self, roster, config, clock):
        stake_pages = [
            Page(
                items=[
                    RawStakePosition("pk_a", "pk_v1", hex(10 * NANOS), "a", "V1", hex(30 * NANOS)),
                    RawStakePosition("pk_b", "pk_v1", str(20 * NANOS), "b", "V1", hex(30 * NANOS)),
                ],
                next_cursor="g1",
                has_next=True,
            ),
            Page(items=[RawStakePosition("pk_c", "pk_v2", 5 * NANOS, None, "V2", 5 * NANOS)]),
        ]
        graphql = make_graphql(stake_pages=stake_pages)
        collector = make_collector(roster, config, clock, graphql=graphql)

        result = await collector.collect()

        entries = result.snapshot.stake_entries
        assert [e.staked_amount for e in entries] == [Decimal(10), Decimal(20), Decimal(5)]
        assert entries[0].validator_name == "V1"
        assert result.snapshot.validator_totals == {"pk_v1": Decimal(30), "pk_v2": Decimal(5)}
        assert graphql.get_stake_entries_page.await_args_list[1].args == ("g1", 2)

    @pytest.mark.asyncio
    async def test_ccv1_sum(self, roster, config, clock):
        ccv1_pages = [
            Page(items=[3 * NANOS, str(2 * NANOS)], next_cursor="c1", has_next=True),
            Page(items=[hex(NANOS)]),
        ]
        collector = make_collector(roster, config, clock, graphql=make_graphql(ccv1_pages=ccv1_pages))

        result = await collector.collect()

        assert result.snapshot.locked_aggregates == {"CCv1": Decimal(6)}

    @pytest.mark.asyncio
    async def test_ccv1_failure_drops_aggregate(self, roster, config, clock):
        ccv1_pages = [
            Page(items=[3 * NANOS], next_cursor="c1", has_next=True),
            MalformedResponseError(message="GraphQL error: timeout"),
        ]
        collector = make_collector(roster, config, clock, graphql=make_graphql(ccv1_pages=ccv1_pages))

        result = await collector.collect()

        assert result.snapshot.locked_aggregates == {}
        assert [i.kind for i in result.issues] == [IssueKind.MALFORMED_RESPONSE]

    @pytest.mark.asyncio
    async def test_ccv1_truncation_drops_aggregate(self, roster, config, clock):
        ccv1_pages = [
            Page(items=[NANOS], next_cursor=f"c{n}", has_next=True)
            for n in range(config.graphql_max_pages)
        ]
        graphql = make_graphql(ccv1_pages=ccv1_pages)
        collector = make_collector(roster, config, clock, graphql=graphql)

        result = await collector.collect()

        assert result.snapshot.locked_aggregates == {}
        assert graphql.get_creator_coin_balances_page.await_count == config.graphql_max_pages
        assert [(i.kind, i.scope) for i in result.issues] == [(IssueKind.PARTIAL_DATA, "CCv1")]

    @pytest.mark.asyncio
    async def test_without_graphql(self, roster, config, clock):
        collector = SnapshotCollector(make_node(), None, roster, config, clock)

        result = await collector.collect()

        assert result.snapshot.stake_entries == []
        assert result.snapshot.locked_aggregates == {}

    @pytest.mark.asyncio
    async def test_prices(self, roster, config, clock):
        price_feed = MagicMock()
        price_feed.get_usd_prices = AsyncMock(return_value={"DESO": Decimal(5), "dBTC": Decimal(90000)})
        collector = make_collector(roster, config, clock, price_feed=price_feed)

        result = await collector.collect()

        # The node's exchange rate is preferred for the native coin
        assert result.snapshot.prices == {"DESO": Decimal("5.50"), "dBTC": Decimal(90000)}

    @pytest.mark.asyncio
    async def test_price_failure_is_an_issue(self, roster, config, clock):
        price_feed = MagicMock()
        price_feed.get_usd_prices = AsyncMock(side_effect=TransportError(message="HTTP 429"))
        collector = make_collector(roster, config, clock, price_feed=price_feed)

        result = await collector.collect()

        assert result.snapshot.prices == {"DESO": Decimal("5.50")}
        assert [i.scope for i in result.issues] == ["prices"]


class TestIssueKind:
    """Tests for the failure taxonomy mapping."""

    def test_mapping(self):
        assert issue_kind(TransportError(message="x")) == IssueKind.TRANSPORT_FAILURE
        assert issue_kind(MalformedResponseError(message="x")) == IssueKind.MALFORMED_RESPONSE
        assert issue_kind(MalformedAmountError("x", "DESO")) == IssueKind.MALFORMED_RESPONSE
        assert issue_kind(RuntimeError("x")) == IssueKind.TRANSPORT_FAILURE
