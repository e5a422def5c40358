"""
DeSo GraphQL Adapter - Indexed network aggregates.

Queries:
- stakeEntries: network-wide stake positions with validator totals
- creatorCoinBalances: legacy creator coin (CCv1) holdings, summed as DESO locked

Both connections are cursor paginated through pageInfo { hasNextPage endCursor }.
"""

import logging
from typing import Any, Optional, Type

import aiohttp

from ledger_adapters.base import BaseLedgerAdapter, SchemaT
from ledger_adapters.exceptions import LedgerAdapterError, MalformedResponseError
from ledger_adapters.models import (
    AdapterMetadata,
    Page,
    RawAmount,
    RawStakePosition,
)
from ledger_adapters.schemas import CreatorCoinBalancesData, StakeEntriesData


logger = logging.getLogger(__name__)


STAKE_ENTRIES_QUERY = """
query StakeEntries($first: Int!, $after: Cursor) {
  stakeEntries(first: $first, after: $after) {
    nodes {
      stakeAmountNanos
      staker { publicKey username }
      validatorEntry {
        totalStakeAmountNanos
        account { publicKey username }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

CREATOR_COIN_BALANCES_QUERY = """
query CreatorCoinBalances($first: Int!, $after: Cursor) {
  creatorCoinBalances(first: $first, after: $after) {
    nodes { totalValueNanos }
    pageInfo { hasNextPage endCursor }
  }
}
"""


class DesoGraphqlAdapter(BaseLedgerAdapter):
    """
    Adapter for the DeSo GraphQL indexer.

    A response carrying a top-level "errors" list is treated as malformed
    even when a partial "data" object is present.
    """

    DEFAULT_BASE_URL = "https://graphql-prod.deso.com/graphql"
    DEFAULT_PAGE_SIZE = 100

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: Optional[int] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        super().__init__(base_url, timeout, session, max_retries)
        self._page_size = page_size

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "deso_graphql"

    def metadata(self) -> AdapterMetadata:
        """Return adapter metadata."""
        return AdapterMetadata(
            name=self.name,
            display_name="DeSo GraphQL Indexer",
            version="1.0.0",
            base_url=self._base_url,
            documentation_url="https://docs.deso.org/deso-backend/graphql",
            requires_api_key=False,
            page_size=self._page_size,
            tags=["deso", "graphql", "stake", "ccv1"],
        )

    # ─────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────

    async def get_stake_entries_page(
        self,
        cursor: Optional[str] = None,
        first: Optional[int] = None,
    ) -> Page[RawStakePosition]:
        """Fetch one page of network-wide stake entries."""
        data = await self._query(
            STAKE_ENTRIES_QUERY,
            {"first": first or self._page_size, "after": cursor},
            StakeEntriesData,
        )
        connection = data.stake_entries

        positions = []
        for node in connection.nodes:
            staker = node.staker
            validator = node.validator_entry
            if staker is None or not staker.public_key:
                continue
            if validator is None or validator.account is None or not validator.account.public_key:
                continue
            if node.stake_amount_nanos is None:
                continue
            positions.append(RawStakePosition(
                staker_public_key=staker.public_key,
                validator_public_key=validator.account.public_key,
                raw_amount=node.stake_amount_nanos,
                staker_username=staker.username,
                validator_username=validator.account.username,
                validator_total_raw=validator.total_stake_amount_nanos,
            ))

        return Page(
            items=positions,
            next_cursor=connection.page_info.end_cursor,
            has_next=connection.page_info.has_next_page,
        )

    async def get_creator_coin_balances_page(
        self,
        cursor: Optional[str] = None,
        first: Optional[int] = None,
    ) -> Page[RawAmount]:
        """Fetch one page of CCv1 holdings; items are raw totalValueNanos."""
        data = await self._query(
            CREATOR_COIN_BALANCES_QUERY,
            {"first": first or self._page_size, "after": cursor},
            CreatorCoinBalancesData,
        )
        connection = data.creator_coin_balances

        values = [
            node.total_value_nanos
            for node in connection.nodes
            if node.total_value_nanos is not None
        ]
        return Page(
            items=values,
            next_cursor=connection.page_info.end_cursor,
            has_next=connection.page_info.has_next_page,
        )

    # ─────────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────────

    async def _query(
        self,
        query: str,
        variables: dict[str, Any],
        schema: Type[SchemaT],
    ) -> SchemaT:
        """Run a GraphQL query and decode its data object."""
        body = {"query": query, "variables": variables}
        try:
            payload = await self._fetch_with_retry("POST", "", json_body=body)
            data = self._unwrap(payload)
            decoded = self._decode(schema, data, schema.__name__)
        except LedgerAdapterError as e:
            self._tracker.record_failure(e, schema.__name__, variables)
            raise
        self._tracker.record_success()
        logger.debug(f"[{self.name}] {schema.__name__} page decoded")
        return decoded

    def _unwrap(self, payload: Any) -> Any:
        """Extract the data object from a GraphQL envelope."""
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                message=f"Expected GraphQL envelope, got {type(payload).__name__}",
                adapter_name=self.name,
                raw_data=payload,
            )

        errors = payload.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else errors
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise MalformedResponseError(
                message=f"GraphQL error: {message}",
                adapter_name=self.name,
                raw_data=errors,
            )

        data = payload.get("data")
        if data is None:
            raise MalformedResponseError(
                message="GraphQL response has no data",
                adapter_name=self.name,
                raw_data=payload,
                field_name="data",
            )
        return data

    async def _ping(self) -> None:
        await self.get_creator_coin_balances_page(first=1)
