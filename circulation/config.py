"""
Circulation Configuration - Endpoints, thresholds and storage settings.

Values come from environment variables (a .env file is honored).
"""

import os
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Optional

from dotenv import load_dotenv


load_dotenv()


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name) or default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal(os.environ.get(name) or default)


@dataclass
class CirculationConfig:
    """Master configuration for the reconciliation engine."""

    # Upstream endpoints
    deso_node_url: str = "https://node.deso.org/api/v0"
    deso_hodlers_url: str = "https://blockproducer.deso.org/api/v0"
    deso_graphql_url: str = "https://graphql-prod.deso.com/graphql"
    coingecko_url: str = "https://api.coingecko.com/api/v3"

    # Supply
    total_supply: Decimal = Decimal("12200000")

    # Reduction
    top_n: int = 15
    materiality_threshold: Decimal = Decimal("1000")  # DESO-equivalent

    # Fetching
    max_concurrency: int = 5
    holders_page_size: int = 200
    graphql_page_size: int = 100
    graphql_max_pages: int = 200
    min_holding_usd: Decimal = Decimal("10")
    request_timeout: float = 30.0
    max_retries: int = 2
    poll_interval_seconds: float = 120.0

    # Storage
    database_url: str = "sqlite:///storage/circulation.db"
    snapshot_key: str = "circulation_snapshot"
    schema_version: int = 1

    # Roster override
    roster_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.top_n < 0:
            raise ValueError(f"top_n must be >= 0, got {self.top_n}")
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if self.holders_page_size < 1:
            raise ValueError(f"holders_page_size must be >= 1, got {self.holders_page_size}")

    @classmethod
    def from_env(cls) -> "CirculationConfig":
        """Build configuration from environment variables."""
        return cls(
            deso_node_url=_env_str("DESO_NODE_URL", cls.deso_node_url),
            deso_hodlers_url=_env_str("DESO_HODLERS_URL", cls.deso_hodlers_url),
            deso_graphql_url=_env_str("DESO_GRAPHQL_URL", cls.deso_graphql_url),
            coingecko_url=_env_str("COINGECKO_URL", cls.coingecko_url),
            total_supply=_env_decimal("CIRCULATION_TOTAL_SUPPLY", "12200000"),
            top_n=_env_int("CIRCULATION_TOP_N", cls.top_n),
            materiality_threshold=_env_decimal("CIRCULATION_MATERIALITY_THRESHOLD", "1000"),
            max_concurrency=_env_int("CIRCULATION_MAX_CONCURRENCY", cls.max_concurrency),
            holders_page_size=_env_int("CIRCULATION_HOLDERS_PAGE_SIZE", cls.holders_page_size),
            min_holding_usd=_env_decimal("CIRCULATION_MIN_HOLDING_USD", "10"),
            request_timeout=_env_float("CIRCULATION_REQUEST_TIMEOUT", cls.request_timeout),
            max_retries=_env_int("CIRCULATION_MAX_RETRIES", cls.max_retries),
            poll_interval_seconds=_env_float(
                "CIRCULATION_POLL_INTERVAL_SECONDS", cls.poll_interval_seconds
            ),
            database_url=_env_str("CIRCULATION_DATABASE_URL", cls.database_url),
            schema_version=_env_int("CIRCULATION_SCHEMA_VERSION", cls.schema_version),
            roster_path=os.environ.get("CIRCULATION_ROSTER_PATH") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            f.name: str(getattr(self, f.name)) if isinstance(getattr(self, f.name), Decimal)
            else getattr(self, f.name)
            for f in fields(self)
        }


# Default configuration instance
_default_config: Optional[CirculationConfig] = None


def get_config() -> CirculationConfig:
    """Get the default configuration instance."""
    global _default_config
    if _default_config is None:
        _default_config = CirculationConfig.from_env()
    return _default_config


def set_config(config: CirculationConfig) -> None:
    """Set the default configuration instance."""
    global _default_config
    _default_config = config
