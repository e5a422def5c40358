"""
Account Roster - Static classification of known ledger accounts.

The roster is loaded once at startup, from the Python defaults below or
from a JSON file:

    {
        "accounts": [
            {"account_id": "openfund", "category": "foundation"},
            {"account_id": "AMM_openfund_12_gOR1b", "category": "market_maker",
             "pair_token": "Openfund"},
            {"account_id": "RandhirStakingWallet", "category": "community_influencer",
             "display_name": "Randhir", "merge_key": "Randhir"}
        ],
        "core_validators": ["LazyNina", "NOT_AN_AGI"],
        "static_balances": {"openfund": {"balances": {"DESO": "25000"}, "staked": "0"}},
        "static_prices": {"DESO": "5.78"},
        "treasury_holdings": {"BTC": "2100", "ETH": "10.26", "SOL": "0"}
    }

Static balances and prices are the last-resort fallback when neither a
live fetch nor a cached snapshot has a value. Treasury holdings back the
report's backing ratio.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterator, Optional

from .exceptions import RosterError
from .market import parse_treasury_holdings
from .models import (
    AccountSnapshot,
    Category,
    DataSource,
    RosterEntry,
    Snapshot,
    ValidatorType,
)
from .units import TOKENS, TokenKind


logger = logging.getLogger(__name__)


# Validators run by known infrastructure operators. Everything else is Community.
CORE_VALIDATORS: tuple[str, ...] = (
    "LazyNina",
    "NOT_AN_AGI",
    "STAKE_TO_ME_OR_ELSE",
    "REVOLUTIONARY_STAKING",
    "simple_man_staking",
    "respect_for_yield",
    "AmericanStakers",
    "UtopianCondition",
    "yumyumstake",
    "DesoSpaceStation",
    "SAFU_Stake",
)


def _entry(account_id: str, category: Category, **kwargs: Any) -> RosterEntry:
    return RosterEntry(account_id=account_id, category=category, **kwargs)


_F = Category.FOUNDATION
_MM = Category.MARKET_MAKER
_CT = Category.CORE_TEAM
_CI = Category.COMMUNITY_INFLUENCER

DEFAULT_ENTRIES: tuple[RosterEntry, ...] = (
    # Foundation
    _entry("Gringotts_Wizarding_Bank", _F),
    _entry("FOCUS_COLD_000", _F),
    _entry("focus", _F, exclude_tokens=("Focus",)),
    _entry("openfund", _F),
    _entry("Deso", _F),
    # Market makers
    _entry("AMM_DESO_24_PlAEU", _MM, pair_token="dUSDC"),
    _entry("AMM_DESO_23_GrYpe", _MM),
    _entry("AMM_DESO_19_W5vn0", _MM),
    _entry("AMM_focus_12_nzWku", _MM, pair_token="Focus"),
    _entry("AMM_openfund_12_gOR1b", _MM, pair_token="Openfund"),
    _entry("AMM_openfund_13_1gbih", _MM, pair_token="Openfund"),
    # Core team
    _entry("Whoami", _CT),
    _entry("Nader", _CT),
    _entry("Mossified", _CT),
    _entry("LazyNina", _CT),
    # Community influencers, aliases grouped by merge key
    _entry("Randhir", _CI, merge_key="Randhir"),
    _entry("RandhirStakingWallet", _CI, display_name="Randhir", merge_key="Randhir"),
    _entry("HighKey", _CI, merge_key="HighKey"),
    _entry("JordanLintz", _CI, display_name="HighKey", merge_key="HighKey"),
    _entry("LukeLintz", _CI, display_name="HighKey", merge_key="HighKey"),
    _entry("HighKeyValidator", _CI, display_name="HighKey", merge_key="HighKey"),
    _entry("StarGeezer", _CI, merge_key="StarGeezer"),
    _entry("SG_Vault", _CI, display_name="StarGeezer", merge_key="StarGeezer"),
    _entry("BeyondSocialValidator", _CI, display_name="StarGeezer", merge_key="StarGeezer"),
    _entry("DesocialWorld", _CI, merge_key="DesocialWorld"),
    _entry("Edokoevoet", _CI, display_name="DesocialWorld", merge_key="DesocialWorld"),
    _entry("0xAustin", _CI, merge_key="0xAustin"),
    _entry("0xVault", _CI, display_name="0xAustin", merge_key="0xAustin"),
    _entry("Krassenstein", _CI, merge_key="Krassenstein"),
    _entry("Kra_Wallet", _CI, display_name="Krassenstein", merge_key="Krassenstein"),
    _entry("HKrassenstein", _CI, display_name="Krassenstein", merge_key="Krassenstein"),
    _entry("FedeDM", _CI, merge_key="FedeDM"),
    _entry("FedeDM_Guardian", _CI, display_name="FedeDM", merge_key="FedeDM"),
    _entry("ThisDayInMusicHistory", _CI, merge_key="ThisDayInMusicHistory"),
    _entry("MusicHeals", _CI, display_name="ThisDayInMusicHistory", merge_key="ThisDayInMusicHistory"),
    _entry("EileenCoyle", _CI, merge_key="EileenCoyle"),
    _entry("EileenVault", _CI, display_name="EileenCoyle", merge_key="EileenCoyle"),
    _entry("WhaleDShark", _CI, merge_key="WhaleDShark"),
    _entry("WhaleDVault", _CI, display_name="WhaleDShark", merge_key="WhaleDShark"),
    _entry("mcMarsh", _CI, merge_key="mcMarsh"),
    _entry("mcMarshstaking", _CI, display_name="mcMarsh", merge_key="mcMarsh"),
    _entry("jemarsh", _CI, display_name="mcMarsh", merge_key="mcMarsh"),
    _entry("ImJigarShah", _CI, merge_key="ImJigarShah"),
    _entry("thesarcasm", _CI, display_name="ImJigarShah", merge_key="ImJigarShah"),
    _entry("VishalGulia", _CI, merge_key="VishalGulia"),
    _entry("VishalWallet", _CI, display_name="VishalGulia", merge_key="VishalGulia"),
    _entry("Crowd33", _CI, merge_key="Crowd33"),
    _entry("CrowdWallet", _CI, display_name="Crowd33", merge_key="Crowd33"),
    _entry("Gabrielist", _CI),
    _entry("RobertGraham", _CI),
    _entry("BenErsing", _CI),
    _entry("Darian_Parrish", _CI),
    _entry("ZeroToOne", _CI),
    _entry("whoisanku", _CI),
    _entry("fllwthrvr", _CI),
    _entry("PremierNS", _CI),
)

# Last-resort balances when no live or cached value exists
DEFAULT_STATIC_BALANCES: dict[str, dict[str, Any]] = {
    "Gringotts_Wizarding_Bank": {
        "balances": {
            "DESO": "76000", "dUSDC": "6590000", "Focus": "1520000000",
            "Openfund": "4000000", "dBTC": "21.46", "dETH": "197", "dSOL": "2610",
        },
    },
    "FOCUS_COLD_000": {"balances": {"DESO": "1000000"}, "staked": "800000"},
    "focus": {"balances": {"DESO": "12000", "Openfund": "1500000"}},
    "openfund": {
        "balances": {"Openfund": "8000000", "DESO": "25000", "Focus": "500000000", "dUSDC": "120000"},
    },
    "Deso": {
        "balances": {"DESO": "95000", "Openfund": "2000000", "Focus": "200000000", "dUSDC": "80000"},
    },
    "AMM_DESO_24_PlAEU": {"balances": {"dUSDC": "1410000", "DESO": "96500"}},
    "AMM_DESO_23_GrYpe": {"balances": {"DESO": "1440000", "dUSDC": "3000"}},
    "AMM_focus_12_nzWku": {"balances": {"Focus": "1770000000"}},
    "AMM_openfund_12_gOR1b": {"balances": {"Openfund": "5046000"}},
    "AMM_DESO_19_W5vn0": {"balances": {"DESO": "74048"}},
    "AMM_openfund_13_1gbih": {"balances": {"Openfund": "1207000"}},
    "Whoami": {"balances": {"Openfund": "5150000", "dUSDC": "35000", "Focus": "3650", "dBTC": "0.176"}},
    "Nader": {"balances": {"Openfund": "12500000"}},
    "Mossified": {"balances": {"Openfund": "2800000"}},
    "LazyNina": {"balances": {"DESO": "2.93"}},
}

DEFAULT_STATIC_PRICES: dict[str, str] = {
    "DESO": "5.78",
    "dBTC": "100000",
    "dETH": "2640",
    "dSOL": "196",
    "dUSDC": "1",
    "Focus": "0.00034",
    "Openfund": "0.087",
}


class Roster:
    """
    Static account roster.

    Lookups are case-insensitive; ledger usernames are.
    """

    def __init__(
        self,
        entries: list[RosterEntry],
        core_validators: tuple[str, ...] = CORE_VALIDATORS,
    ) -> None:
        self._entries: list[RosterEntry] = []
        self._by_id: dict[str, RosterEntry] = {}
        for entry in entries:
            self._add(entry)
        self._core_validators = frozenset(v.lower() for v in core_validators)

    def _add(self, entry: RosterEntry) -> None:
        key = entry.account_id.lower()
        if not key:
            raise RosterError("Roster entry has an empty account_id")
        if key in self._by_id:
            raise RosterError(f"Duplicate roster account '{entry.account_id}'", account_id=entry.account_id)
        if entry.pair_token is not None:
            if entry.category != Category.MARKET_MAKER:
                raise RosterError(
                    f"pair_token is only valid for market makers ('{entry.account_id}')",
                    account_id=entry.account_id,
                )
            token = TOKENS.get(entry.pair_token)
            if token is None or token.kind == TokenKind.NATIVE:
                raise RosterError(
                    f"Unknown pair_token '{entry.pair_token}' for '{entry.account_id}'",
                    account_id=entry.account_id,
                )
        for symbol in entry.exclude_tokens:
            if symbol not in TOKENS:
                raise RosterError(
                    f"Unknown excluded token '{symbol}' for '{entry.account_id}'",
                    account_id=entry.account_id,
                )
        self._entries.append(entry)
        self._by_id[key] = entry

    # ─────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────

    def get(self, account_id: Optional[str]) -> Optional[RosterEntry]:
        if not account_id:
            return None
        return self._by_id.get(account_id.lower())

    def category_of(self, account_id: Optional[str]) -> Category:
        """Roster category; unrecognized accounts are Community."""
        entry = self.get(account_id)
        return entry.category if entry else Category.COMMUNITY

    def merge_groups(self) -> dict[str, list[RosterEntry]]:
        """Entries grouped by merge key, in roster order."""
        groups: dict[str, list[RosterEntry]] = {}
        for entry in self._entries:
            groups.setdefault(entry.merge_key, []).append(entry)
        return groups

    def primary(self, merge_key: str) -> Optional[RosterEntry]:
        """First roster entry of a merge group; its display name labels the group."""
        for entry in self._entries:
            if entry.merge_key == merge_key:
                return entry
        return None

    def validator_type(self, validator_id: str, validator_name: Optional[str] = None) -> ValidatorType:
        if validator_id.lower() in self._core_validators:
            return ValidatorType.CORE
        if validator_name and validator_name.lower() in self._core_validators:
            return ValidatorType.CORE
        return ValidatorType.COMMUNITY

    @property
    def entries(self) -> list[RosterEntry]:
        return list(self._entries)

    @property
    def account_ids(self) -> list[str]:
        return [e.account_id for e in self._entries]

    def __iter__(self) -> Iterator[RosterEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, account_id: object) -> bool:
        return isinstance(account_id, str) and account_id.lower() in self._by_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "accounts": [e.to_dict() for e in self._entries],
            "core_validators": sorted(self._core_validators),
        }


# =============================================================
# LOADING
# =============================================================

def default_roster() -> Roster:
    return Roster(list(DEFAULT_ENTRIES), CORE_VALIDATORS)


def _to_decimal(value: Any, where: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise RosterError(f"Invalid amount {value!r} in {where}")


def build_static_snapshot(
    static_balances: dict[str, dict[str, Any]],
    static_prices: dict[str, Any],
    total_supply: Decimal,
) -> Snapshot:
    """Build the Static fallback snapshot."""
    accounts = {}
    for account_id, data in static_balances.items():
        balances = {
            symbol: _to_decimal(amount, f"static balance {account_id}.{symbol}")
            for symbol, amount in (data.get("balances") or {}).items()
        }
        staked = data.get("staked")
        accounts[account_id] = AccountSnapshot(
            account_id=account_id,
            balances=balances,
            staked=_to_decimal(staked, f"static stake {account_id}") if staked is not None else None,
        )

    return Snapshot(
        source=DataSource.STATIC,
        accounts=accounts,
        prices={
            symbol: _to_decimal(price, f"static price {symbol}")
            for symbol, price in static_prices.items()
        },
        total_issued=total_supply,
    )


def default_static_snapshot(total_supply: Decimal) -> Snapshot:
    return build_static_snapshot(DEFAULT_STATIC_BALANCES, DEFAULT_STATIC_PRICES, total_supply)


def _read_json(path: str) -> dict[str, Any]:
    file_path = Path(path)
    try:
        with file_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise RosterError(f"Roster file not found: {path}", path=path)
    except json.JSONDecodeError as e:
        raise RosterError(f"Roster file is not valid JSON: {e}", path=path)
    if not isinstance(data, dict):
        raise RosterError("Roster file must contain a JSON object", path=path)
    return data


def load_roster(path: str) -> Roster:
    """
    Load a roster from a JSON file.

    Raises:
        RosterError: if the file is missing, unparseable or inconsistent
    """
    data = _read_json(path)
    raw_entries = data.get("accounts")
    if not isinstance(raw_entries, list) or not raw_entries:
        raise RosterError("Roster file needs a non-empty 'accounts' list", path=path)

    entries = []
    for raw in raw_entries:
        try:
            entries.append(RosterEntry.from_dict(raw))
        except (KeyError, ValueError, TypeError) as e:
            raise RosterError(f"Invalid roster entry {raw!r}: {e}", path=path)

    core = tuple(data.get("core_validators") or CORE_VALIDATORS)
    roster = Roster(entries, core)
    logger.info(f"Loaded roster with {len(roster)} accounts from {path}")
    return roster


def load_static_defaults(path: str, total_supply: Decimal) -> Snapshot:
    """Load static fallbacks from a roster file; missing sections use the built-in defaults."""
    data = _read_json(path)
    return build_static_snapshot(
        data.get("static_balances") or DEFAULT_STATIC_BALANCES,
        data.get("static_prices") or DEFAULT_STATIC_PRICES,
        total_supply,
    )


def roster_from_config(roster_path: Optional[str]) -> Roster:
    if roster_path:
        return load_roster(roster_path)
    return default_roster()


def static_defaults_from_config(roster_path: Optional[str], total_supply: Decimal) -> Snapshot:
    if roster_path:
        return load_static_defaults(roster_path, total_supply)
    return default_static_snapshot(total_supply)


def load_treasury_holdings(path: str) -> dict[str, Decimal]:
    """
    Treasury reserves from a roster file's "treasury_holdings" section.

    Raises:
        RosterError: on an unknown asset or an invalid amount
    """
    try:
        return parse_treasury_holdings(_read_json(path).get("treasury_holdings"))
    except (ValueError, ArithmeticError) as e:
        raise RosterError(f"Invalid treasury holdings: {e}", path=path)


def treasury_from_config(roster_path: Optional[str]) -> dict[str, Decimal]:
    if roster_path:
        return load_treasury_holdings(roster_path)
    return parse_treasury_holdings(None)
