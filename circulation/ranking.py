"""
Top-N Reducer - Deterministic ranking with an exact "Others" residual.

Ordering: usd_value descending, then amount descending, then label
ascending. Others is the sum of the entries after the first N, never a
figure re-derived from another source, so top + others always equals
the input total.
"""

from decimal import Decimal
from typing import Iterable

from .models import RankedBucket, RankedEntry


ZERO = Decimal(0)

OTHERS_LABEL = "Others"


def rank_key(entry: RankedEntry) -> tuple:
    return (-entry.usd_value, -entry.amount, entry.label)


def top_n(entries: Iterable[RankedEntry], n: int) -> RankedBucket:
    """
    Reduce entries to the top n plus Others.

    Raises:
        ValueError: if n is negative
    """
    if n < 0:
        raise ValueError(f"n must be >= 0, got {n}")

    ranked = sorted(entries, key=rank_key)
    top = ranked[:n]
    rest = ranked[n:]

    return RankedBucket(
        top_entries=top,
        others_count=len(rest),
        others_amount=sum((e.amount for e in rest), ZERO),
        others_usd=sum((e.usd_value for e in rest), ZERO),
    )
