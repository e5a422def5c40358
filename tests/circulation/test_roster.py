"""
Tests for the account roster and static defaults.
"""

import json
from decimal import Decimal

import pytest

from circulation.exceptions import RosterError
from circulation.models import Category, DataSource, RosterEntry, ValidatorType
from circulation.roster import (
    CORE_VALIDATORS,
    Roster,
    default_roster,
    default_static_snapshot,
    load_roster,
    load_static_defaults,
    roster_from_config,
)


# ============================================================
# DEFAULT ROSTER
# ============================================================

class TestDefaultRoster:
    """Tests for the built-in roster."""

    def test_loads(self):
        roster = default_roster()
        assert len(roster) > 0
        assert "Gringotts_Wizarding_Bank" in roster

    def test_market_maker_pairs(self):
        roster = default_roster()
        assert roster.get("AMM_DESO_24_PlAEU").pair_token == "dUSDC"
        assert roster.get("AMM_focus_12_nzWku").pair_token == "Focus"
        assert roster.get("AMM_DESO_23_GrYpe").pair_token is None

    def test_focus_self_minted_tokens_excluded(self):
        assert default_roster().get("focus").exclude_tokens == ("Focus",)

    def test_alias_groups(self):
        groups = default_roster().merge_groups()
        assert [e.account_id for e in groups["HighKey"]][:2] == ["HighKey", "JordanLintz"]

    def test_core_validators(self):
        roster = default_roster()
        for name in CORE_VALIDATORS:
            assert roster.validator_type("some_key", name) == ValidatorType.CORE
        assert roster.validator_type("some_key", "anybody") == ValidatorType.COMMUNITY


class TestRosterValidation:
    """Tests for Roster invariants."""

    def test_lookup_case_insensitive(self):
        roster = Roster([RosterEntry("Nader", Category.CORE_TEAM)])
        assert roster.category_of("nader") == Category.CORE_TEAM
        assert roster.category_of("stranger") == Category.COMMUNITY

    def test_duplicate_rejected(self):
        with pytest.raises(RosterError):
            Roster([RosterEntry("a", Category.FOUNDATION), RosterEntry("A", Category.CORE_TEAM)])

    def test_pair_token_requires_market_maker(self):
        with pytest.raises(RosterError):
            Roster([RosterEntry("a", Category.FOUNDATION, pair_token="dUSDC")])

    def test_unknown_pair_token(self):
        with pytest.raises(RosterError):
            Roster([RosterEntry("a", Category.MARKET_MAKER, pair_token="DOGE")])

    def test_native_pair_token_rejected(self):
        with pytest.raises(RosterError):
            Roster([RosterEntry("a", Category.MARKET_MAKER, pair_token="DESO")])

    def test_unknown_excluded_token(self):
        with pytest.raises(RosterError):
            Roster([RosterEntry("a", Category.FOUNDATION, exclude_tokens=("NOPE",))])


# ============================================================
# STATIC DEFAULTS
# ============================================================

class TestStaticDefaults:
    """Tests for the static fallback snapshot."""

    def test_default_static_snapshot(self):
        static = default_static_snapshot(Decimal(12200000))

        assert static.source == DataSource.STATIC
        assert static.total_issued == Decimal(12200000)
        assert static.prices["dUSDC"] == Decimal(1)
        assert static.accounts["FOCUS_COLD_000"].staked == Decimal(800000)

    def test_static_accounts_are_in_roster(self):
        roster = default_roster()
        static = default_static_snapshot(Decimal(1))
        assert all(account_id in roster for account_id in static.accounts)


# ============================================================
# FILE LOADING
# ============================================================

class TestLoadRoster:
    """Tests for loading a roster file."""

    def test_load(self, tmp_path):
        path = tmp_path / "roster.json"
        path.write_text(json.dumps({
            "accounts": [
                {"account_id": "alice", "category": "foundation"},
                {"account_id": "bob", "category": "market_maker", "pair_token": "dBTC"},
            ],
            "core_validators": ["val1"],
            "static_prices": {"DESO": "7"},
        }))

        roster = load_roster(str(path))
        static = load_static_defaults(str(path), Decimal(100))

        assert roster.account_ids == ["alice", "bob"]
        assert roster.validator_type("val1") == ValidatorType.CORE
        assert static.prices == {"DESO": Decimal(7)}
        # No static_balances section: built-in defaults apply
        assert "FOCUS_COLD_000" in static.accounts

    def test_missing_file(self, tmp_path):
        with pytest.raises(RosterError):
            load_roster(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "roster.json"
        path.write_text("{not json")
        with pytest.raises(RosterError):
            load_roster(str(path))

    def test_bad_category(self, tmp_path):
        path = tmp_path / "roster.json"
        path.write_text(json.dumps({"accounts": [{"account_id": "a", "category": "whale"}]}))
        with pytest.raises(RosterError):
            load_roster(str(path))

    def test_roster_from_config_default(self):
        assert len(roster_from_config(None)) == len(default_roster())
