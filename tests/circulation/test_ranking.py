"""
Tests for the Top-N reducer.
"""

from decimal import Decimal

import pytest

from circulation.models import RankedEntry
from circulation.ranking import top_n


def entries(*amounts):
    return [RankedEntry(f"holder{i}", Decimal(a), Decimal(a)) for i, a in enumerate(amounts)]


class TestTopN:
    """Tests for top_n."""

    def test_top_two(self):
        bucket = top_n(entries(50, 30, 10, 5), 2)

        assert [e.amount for e in bucket.top_entries] == [Decimal(50), Decimal(30)]
        assert bucket.others_count == 2
        assert bucket.others_amount == Decimal(15)

    def test_total_preserved(self):
        items = entries(7, 3, 99, 1, 42)
        bucket = top_n(items, 3)
        assert bucket.total_amount == sum(e.amount for e in items)
        assert bucket.total_usd == sum(e.usd_value for e in items)

    def test_n_zero_puts_everything_in_others(self):
        bucket = top_n(entries(5, 4), 0)
        assert bucket.top_entries == []
        assert bucket.others_count == 2
        assert bucket.others_amount == Decimal(9)

    def test_n_larger_than_input(self):
        bucket = top_n(entries(5, 4), 10)
        assert len(bucket.top_entries) == 2
        assert bucket.others_count == 0
        assert bucket.others_amount == Decimal(0)

    def test_empty_input(self):
        bucket = top_n([], 15)
        assert bucket.top_entries == []
        assert bucket.total_amount == Decimal(0)

    def test_negative_n_raises(self):
        with pytest.raises(ValueError):
            top_n(entries(1), -1)

    def test_ordering_is_deterministic(self):
        items = [
            RankedEntry("b", Decimal(10), Decimal(100)),
            RankedEntry("a", Decimal(10), Decimal(100)),
            RankedEntry("c", Decimal(20), Decimal(100)),
            RankedEntry("d", Decimal(1), Decimal(500)),
        ]
        bucket = top_n(items, 4)
        # usd desc, then amount desc, then label asc
        assert [e.label for e in bucket.top_entries] == ["d", "c", "a", "b"]
        assert top_n(list(reversed(items)), 4) == bucket


def generated(count):
    """Deterministic spread of amounts, with ties, valued at mixed prices."""
    items = []
    for i in range(count):
        amount = Decimal((i * 37) % 11 + 1) / 4
        price = Decimal(3 if i % 3 else 2)
        items.append(RankedEntry(f"acct{i:02d}", amount, amount * price))
    return items


class TestTopNClosure:
    """Closure of top_n across input sizes and thresholds."""

    @pytest.mark.parametrize("m", [0, 1, 2, 7, 15, 16, 40])
    @pytest.mark.parametrize("n", [0, 1, 5, 15, 16, 50])
    def test_sizes_and_sums(self, m, n):
        items = generated(m)

        bucket = top_n(items, n)

        assert len(bucket.top_entries) == min(n, m)
        assert bucket.others_count == max(0, m - n)
        assert sum((e.amount for e in bucket.top_entries), Decimal(0)) + bucket.others_amount == sum(
            (e.amount for e in items), Decimal(0)
        )
        assert bucket.total_usd == sum((e.usd_value for e in items), Decimal(0))

    @pytest.mark.parametrize("n", [1, 5, 15])
    def test_top_outranks_others(self, n):
        items = generated(30)

        bucket = top_n(items, n)

        kept = {e.label for e in bucket.top_entries}
        rest = [e for e in items if e.label not in kept]
        weakest = bucket.top_entries[-1]
        assert all(
            (weakest.usd_value, weakest.amount) >= (e.usd_value, e.amount) for e in rest
        )
        assert bucket.others_usd == sum((e.usd_value for e in rest), Decimal(0))
