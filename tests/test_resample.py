"""Deterministic tests for time bucketing.

Fixed sample fixtures; same input = same output, always.
"""

import random

import pytest

from chartscope.market.models import OHLCPoint, PricePoint
from chartscope.series.resample import (
    D1, H1, H4, H12, W1,
    bucket_key, resample_ohlc, resample_prices_to_ohlc,
)

MIN = 60 * 1000
T0 = 1_700_000_000_000 // D1 * D1  # midnight UTC


def _hourly_rows(count: int, start: int = T0) -> list[OHLCPoint]:
    """*count* hourly candles oscillating around 100."""
    rows = []
    for i in range(count):
        base = 100.0 + (i % 7) - 3
        rows.append(OHLCPoint(start + i * H1, base, base + 2.0, base - 1.5, base + 0.5))
    return rows


class TestBucketWidths:
    def test_widths_are_integer_ms(self):
        assert H1 == 3_600_000
        assert H4 == 4 * H1
        assert H12 == 12 * H1
        assert D1 == 86_400_000
        assert W1 == 7 * D1
        assert all(isinstance(w, int) for w in (H1, H4, H12, D1, W1))

    def test_bucket_key_floors(self):
        assert bucket_key(T0 + 59 * MIN, H1) == T0
        assert bucket_key(T0 + 60 * MIN, H1) == T0 + H1
        assert bucket_key(T0 + 5 * H1, H4) == T0 + H4


class TestResampleOHLC:
    def test_empty_input(self):
        assert resample_ohlc([], H1) == []

    def test_groups_rows_into_buckets(self):
        rows = [
            OHLCPoint(T0, 10.0, 12.0, 9.0, 11.0),
            OHLCPoint(T0 + 30 * MIN, 11.0, 15.0, 10.5, 14.0),
            OHLCPoint(T0 + 59 * MIN, 14.0, 14.5, 8.0, 9.5),
            OHLCPoint(T0 + H1, 9.5, 10.0, 9.0, 9.8),
        ]
        out = resample_ohlc(rows, H1)
        assert out == [
            OHLCPoint(T0, 10.0, 15.0, 8.0, 9.5),
            OHLCPoint(T0 + H1, 9.5, 10.0, 9.0, 9.8),
        ]

    def test_open_is_first_row_encountered(self):
        """Open/close follow input order, not timestamp order."""
        late = OHLCPoint(T0 + 40 * MIN, 20.0, 21.0, 19.0, 20.5)
        early = OHLCPoint(T0 + 10 * MIN, 10.0, 11.0, 9.0, 10.5)
        out = resample_ohlc([late, early], H1)
        assert out[0].open == 20.0
        assert out[0].close == 10.5

    def test_output_ascending_with_unique_keys(self):
        rows = _hourly_rows(100)
        random.Random(7).shuffle(rows)
        out = resample_ohlc(rows, H4)
        keys = [r.timestamp for r in out]
        assert keys == sorted(set(keys))
        assert len(out) == 25

    def test_bucket_invariant(self):
        for width in (H1, H4, H12, D1, W1):
            for b in resample_ohlc(_hourly_rows(500), width):
                assert b.low <= b.high
                assert b.low <= b.open <= b.high
                assert b.low <= b.close <= b.high

    def test_reapplying_same_width_is_idempotent(self):
        once = resample_ohlc(_hourly_rows(200), H4)
        assert resample_ohlc(once, H4) == once

    def test_coarser_from_finer_matches_direct(self):
        rows = _hourly_rows(24 * 14)
        via_daily = resample_ohlc(resample_ohlc(rows, D1), W1)
        direct = resample_ohlc(rows, W1)
        assert via_daily == direct

    def test_duplicates_allowed(self):
        row = OHLCPoint(T0, 5.0, 6.0, 4.0, 5.5)
        assert resample_ohlc([row, row, row], H1) == [row]

    @pytest.mark.parametrize("width", [0, -H1, 1.5])
    def test_rejects_bad_width(self, width):
        with pytest.raises(ValueError, match="bucket_ms"):
            resample_ohlc(_hourly_rows(3), width)


class TestResamplePrices:
    def test_empty_input(self):
        assert resample_prices_to_ohlc([], H1) == []

    def test_single_price_seeds_all_fields(self):
        out = resample_prices_to_ohlc([PricePoint(T0 + 5 * MIN, 42.0)], H1)
        assert out == [OHLCPoint(T0, 42.0, 42.0, 42.0, 42.0)]

    def test_prices_widen_bucket(self):
        prices = [
            PricePoint(T0, 100.0),
            PricePoint(T0 + 15 * MIN, 104.0),
            PricePoint(T0 + 30 * MIN, 97.0),
            PricePoint(T0 + 45 * MIN, 101.0),
            PricePoint(T0 + H1 + MIN, 102.0),
        ]
        out = resample_prices_to_ohlc(prices, H1)
        assert out == [
            OHLCPoint(T0, 100.0, 104.0, 97.0, 101.0),
            OHLCPoint(T0 + H1, 102.0, 102.0, 102.0, 102.0),
        ]

    def test_shuffled_prices_keep_invariants(self):
        prices = [PricePoint(T0 + i * 5 * MIN, 100.0 + (i * 37 % 11)) for i in range(300)]
        random.Random(3).shuffle(prices)
        out = resample_prices_to_ohlc(prices, H1)
        keys = [b.timestamp for b in out]
        assert keys == sorted(set(keys))
        for b in out:
            assert b.low <= b.open <= b.high
            assert b.low <= b.close <= b.high
