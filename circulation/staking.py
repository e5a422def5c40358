"""
Stake Splitter & Validator Aggregator.

Stake entries come from two places: the network-wide indexer listing
(every staker) and the per-account node endpoint (roster accounts only).
Roster accounts are taken from their merged per-account data and their
rows in the network listing are dropped, so no stake is counted twice.
"""

import logging
from decimal import Decimal
from typing import Optional

from .classifier import Classifier
from .merge import MergedSnapshot
from .models import (
    CATEGORY_LABELS,
    Category,
    StakeEntry,
    TrackedAccount,
    Validator,
    ValidatorType,
)
from .roster import Roster


logger = logging.getLogger(__name__)

ZERO = Decimal(0)

UNKNOWN_VALIDATOR_ID = "unknown"
UNKNOWN_VALIDATOR_NAME = "Unknown validator"

FREE_FLOAT_LABEL = "Free Float"
UNATTRIBUTED_LABEL = "Unattributed"

# Bucket order under each validator type
STAKE_BUCKETS: tuple[str, ...] = (
    CATEGORY_LABELS[Category.FOUNDATION],
    CATEGORY_LABELS[Category.MARKET_MAKER],
    CATEGORY_LABELS[Category.CORE_TEAM],
    CATEGORY_LABELS[Category.COMMUNITY_INFLUENCER],
    FREE_FLOAT_LABEL,
    UNATTRIBUTED_LABEL,
)


def unstaked(total_balance: Decimal, staked: Decimal) -> Decimal:
    """Balance not locked in stake. Zero is valid for a fully staked holder."""
    return max(ZERO, total_balance - staked)


def bucket_label(category: Category) -> str:
    """Stake bucket for a staker category; community stake is free float."""
    if category == Category.COMMUNITY:
        return FREE_FLOAT_LABEL
    return CATEGORY_LABELS[category]


def _account_entries(
    account: TrackedAccount,
    validator_names: dict[str, str],
) -> list[StakeEntry]:
    """Stake rows of one roster account, with any unlisted residual made explicit."""
    staker_id = account.public_key or account.account_id
    entries = [
        StakeEntry(
            staker_id=staker_id,
            validator_id=e.validator_id or UNKNOWN_VALIDATOR_ID,
            staked_amount=e.staked_amount,
            staker_name=account.account_id,
            validator_name=e.validator_name or validator_names.get(e.validator_id),
        )
        for e in account.stake_entries
        if e.staked_amount > 0
    ]

    listed = sum((e.staked_amount for e in entries), ZERO)
    residual = account.staked - listed
    if residual > 0:
        entries.append(StakeEntry(
            staker_id=staker_id,
            validator_id=UNKNOWN_VALIDATOR_ID,
            staked_amount=residual,
            staker_name=account.account_id,
            validator_name=UNKNOWN_VALIDATOR_NAME,
        ))
    return entries


def effective_stake_entries(
    merged: MergedSnapshot,
    classifier: Classifier,
    roster: Roster,
) -> list[StakeEntry]:
    """
    All stake rows used for aggregation.

    Network rows of roster stakers are replaced by the roster account's
    merged rows.
    """
    validator_names: dict[str, str] = {}
    for entry in merged.stake_entries:
        if entry.validator_name and entry.validator_id not in validator_names:
            validator_names[entry.validator_id] = entry.validator_name

    result: list[StakeEntry] = []
    for entry in merged.stake_entries:
        if entry.staked_amount <= 0:
            continue
        if classifier.is_roster_key(entry.staker_id):
            continue
        if entry.staker_name and entry.staker_name in roster:
            continue
        result.append(entry)

    for account in merged.accounts.values():
        result.extend(_account_entries(account, validator_names))
    return result


def aggregate_validators(
    entries: list[StakeEntry],
    validator_totals: dict[str, Decimal],
    roster: Roster,
) -> list[Validator]:
    """
    Group stake rows by validator.

    Validators with a reported total but no known members still appear,
    fully unattributed. Ordered by total stake descending, then name.
    """
    validators: dict[str, Validator] = {}

    def get(validator_id: str, name: Optional[str]) -> Validator:
        validator = validators.get(validator_id)
        if validator is None:
            validator = Validator(
                validator_id=validator_id,
                display_name=name or validator_id,
                type=roster.validator_type(validator_id, name),
                reported_total=validator_totals.get(validator_id),
            )
            validators[validator_id] = validator
        elif name and validator.display_name == validator_id:
            validator.display_name = name
            validator.type = roster.validator_type(validator_id, name)
        return validator

    for entry in entries:
        get(entry.validator_id, entry.validator_name).members.append(entry)

    for validator_id, total in validator_totals.items():
        if total > 0:
            get(validator_id, None)

    return sorted(
        validators.values(),
        key=lambda v: (-v.total_staked, v.display_name.lower(), v.validator_id),
    )


def staked_by_bucket(
    validators: list[Validator],
    classifier: Classifier,
) -> dict[ValidatorType, dict[str, Decimal]]:
    """Stake per validator type per bucket; unattributed gaps get their own bucket."""
    buckets: dict[ValidatorType, dict[str, Decimal]] = {
        vtype: {label: ZERO for label in STAKE_BUCKETS}
        for vtype in (ValidatorType.CORE, ValidatorType.COMMUNITY)
    }
    for validator in validators:
        target = buckets[validator.type]
        for member in validator.members:
            identity = classifier.identify(member.staker_id, member.staker_name)
            label = bucket_label(identity.category)
            target[label] += member.staked_amount
        target[UNATTRIBUTED_LABEL] += validator.unattributed
    return buckets
