"""
Tests for the snapshot store.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from circulation.models import AccountSnapshot, DataSource, HolderBalance, Snapshot, StakeEntry
from circulation.store import SnapshotRecord, SnapshotStore


TAKEN_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    store = SnapshotStore("sqlite://", schema_version=1)
    yield store
    store.close()


@pytest.fixture
def live_snapshot():
    return Snapshot(
        source=DataSource.LIVE,
        taken_at=TAKEN_AT,
        accounts={
            "Nader": AccountSnapshot(
                account_id="Nader",
                public_key="BC1YLnader",
                balances={"DESO": Decimal("12.5"), "Openfund": Decimal("1000000.123456789012345678")},
                staked=Decimal("2.5"),
                stake_entries=[StakeEntry("BC1YLnader", "BC1YLval", Decimal("2.5"))],
                raw_balances={"DESO": 10_000_000_000},
                observed_at=TAKEN_AT,
            ),
        },
        stake_entries=[StakeEntry("BC1YLother", "BC1YLval", Decimal(40), "other", "Validator")],
        validator_totals={"BC1YLval": Decimal("42.5")},
        locked_aggregates={"CCv1": Decimal(77)},
        token_holders={"Focus": [HolderBalance("BC1YLh", Decimal(9), "holder")]},
        prices={"DESO": Decimal("5.78")},
    )


class TestSnapshotStore:
    """Tests for SnapshotStore."""

    def test_empty_store_returns_none(self, store):
        assert store.load() is None

    def test_save_and_load(self, store, live_snapshot):
        store.save(live_snapshot)

        loaded = store.load()

        assert loaded is not None
        assert loaded.source == DataSource.CACHED
        assert loaded.accounts["Nader"].balances == live_snapshot.accounts["Nader"].balances
        assert loaded.accounts["Nader"].staked == Decimal("2.5")
        assert loaded.accounts["Nader"].stake_entries == live_snapshot.accounts["Nader"].stake_entries
        assert loaded.stake_entries == live_snapshot.stake_entries
        assert loaded.validator_totals == live_snapshot.validator_totals
        assert loaded.locked_aggregates == {"CCv1": Decimal(77)}
        assert loaded.token_holders == live_snapshot.token_holders
        assert loaded.taken_at == TAKEN_AT

    def test_save_replaces(self, store, live_snapshot):
        store.save(live_snapshot)
        live_snapshot.prices = {"DESO": Decimal(9)}
        store.save(live_snapshot)

        assert store.load().prices == {"DESO": Decimal(9)}
        with store.transaction_scope() as session:
            assert session.query(SnapshotRecord).count() == 1

    def test_schema_version_mismatch_is_absent(self, tmp_path, live_snapshot):
        url = f"sqlite:///{tmp_path / 'circulation.db'}"
        old = SnapshotStore(url, schema_version=1)
        old.save(live_snapshot)
        old.close()

        newer = SnapshotStore(url, schema_version=2)
        assert newer.load() is None

        # The next promotion overwrites under the new version
        newer.save(live_snapshot)
        assert newer.load() is not None
        newer.close()

    def test_corrupt_payload_is_absent(self, store):
        with store.transaction_scope() as session:
            session.add(SnapshotRecord(
                key="circulation_snapshot",
                payload="{not json",
                timestamp=datetime.now(timezone.utc),
                schema_version=1,
            ))
        assert store.load() is None

    def test_separate_keys(self, store, live_snapshot):
        store.save(live_snapshot, key="other")
        assert store.load() is None
        assert store.load("other") is not None

    def test_file_database(self, tmp_path, live_snapshot):
        url = f"sqlite:///{tmp_path / 'nested' / 'circulation.db'}"
        first = SnapshotStore(url, schema_version=1)
        first.save(live_snapshot)
        first.close()

        second = SnapshotStore(url, schema_version=1)
        assert second.load().accounts["Nader"].public_key == "BC1YLnader"
        second.close()
