"""
Tests for the DeSo GraphQL indexer adapter.
"""

from unittest.mock import AsyncMock

import pytest

from ledger_adapters.exceptions import MalformedResponseError
from ledger_adapters.models import RawStakePosition
from ledger_adapters.providers.deso_graphql import DesoGraphqlAdapter


def adapter_returning(payload):
    adapter = DesoGraphqlAdapter(page_size=50)
    adapter._make_request = AsyncMock(return_value=payload)
    return adapter


def stake_node(staker, validator, amount, total="0x64"):
    return {
        "stakeAmountNanos": amount,
        "staker": {"publicKey": staker, "username": f"{staker}_name"} if staker else None,
        "validatorEntry": {
            "totalStakeAmountNanos": total,
            "account": {"publicKey": validator, "username": "Validator"} if validator else None,
        },
    }


class TestStakeEntriesPage:
    """Tests for get_stake_entries_page."""

    @pytest.mark.asyncio
    async def test_maps_nodes(self):
        adapter = adapter_returning({"data": {"stakeEntries": {
            "nodes": [
                stake_node("pk_a", "pk_val", "0x3b9aca00"),
                stake_node(None, "pk_val", "0x1"),
                stake_node("pk_b", None, "0x1"),
                stake_node("pk_c", "pk_val", None),
            ],
            "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
        }}})

        page = await adapter.get_stake_entries_page()

        assert page.items == [
            RawStakePosition(
                staker_public_key="pk_a",
                validator_public_key="pk_val",
                raw_amount="0x3b9aca00",
                staker_username="pk_a_name",
                validator_username="Validator",
                validator_total_raw="0x64",
            ),
        ]
        assert page.has_next
        assert page.next_cursor == "c1"

    @pytest.mark.asyncio
    async def test_sends_cursor_and_page_size(self):
        adapter = adapter_returning({"data": {"stakeEntries": {"nodes": []}}})

        page = await adapter.get_stake_entries_page("c7")

        method, endpoint, body, params = adapter._make_request.call_args.args
        assert (method, endpoint) == ("POST", "")
        assert body["variables"] == {"first": 50, "after": "c7"}
        assert "stakeEntries" in body["query"]
        assert page.items == []
        assert not page.has_next


class TestCreatorCoinBalancesPage:
    """Tests for get_creator_coin_balances_page."""

    @pytest.mark.asyncio
    async def test_collects_values(self):
        adapter = adapter_returning({"data": {"creatorCoinBalances": {
            "nodes": [{"totalValueNanos": "0x10"}, {"totalValueNanos": None}, {"totalValueNanos": 7}],
            "pageInfo": {"hasNextPage": False, "endCursor": None},
        }}})

        page = await adapter.get_creator_coin_balances_page(first=3)

        assert page.items == ["0x10", 7]
        assert adapter._make_request.call_args.args[2]["variables"]["first"] == 3


class TestEnvelope:
    """Tests for GraphQL envelope handling."""

    @pytest.mark.asyncio
    async def test_errors_are_malformed(self):
        adapter = adapter_returning({
            "errors": [{"message": "query too complex"}],
            "data": {"stakeEntries": {"nodes": []}},
        })

        with pytest.raises(MalformedResponseError, match="query too complex"):
            await adapter.get_stake_entries_page()

        assert adapter.get_incidents()[-1].incident_type == "MalformedResponseError"

    @pytest.mark.asyncio
    async def test_missing_data_is_malformed(self):
        adapter = adapter_returning({"data": None})

        with pytest.raises(MalformedResponseError) as exc_info:
            await adapter.get_creator_coin_balances_page()

        assert exc_info.value.field_name == "data"

    @pytest.mark.asyncio
    async def test_missing_connection_is_malformed(self):
        adapter = adapter_returning({"data": {}})

        with pytest.raises(MalformedResponseError):
            await adapter.get_stake_entries_page()
