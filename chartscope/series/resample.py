"""Time bucketing — pure functions, no I/O.

Groups timestamped samples into fixed-width buckets keyed by
``floor(timestamp / width) * width`` and aggregates open/high/low/close.

- **open**: first sample seen for the bucket (input order matters, so
  callers pre-sort ascending by timestamp for a deterministic open)
- **high / low**: running max / min
- **close**: last sample seen for the bucket

Output is always sorted ascending by bucket key, one bucket per key.
"""

from chartscope.market.models import OHLCPoint, PricePoint

# Bucket widths in integer milliseconds
H1 = 60 * 60 * 1000
H4 = 4 * H1
H12 = 12 * H1
D1 = 24 * H1
W1 = 7 * D1


def bucket_key(timestamp: int, bucket_ms: int) -> int:
    """Return the start of the bucket containing *timestamp*."""
    return (int(timestamp) // bucket_ms) * bucket_ms


def _check_width(bucket_ms: int) -> None:
    if not isinstance(bucket_ms, int) or bucket_ms <= 0:
        raise ValueError(f"bucket_ms must be a positive integer, got {bucket_ms!r}")


def resample_ohlc(rows: list[OHLCPoint], bucket_ms: int) -> list[OHLCPoint]:
    """Aggregate OHLC points into buckets of *bucket_ms*.

    Args:
        rows: OHLC points in any order; duplicates and overlaps allowed.
        bucket_ms: Bucket width in milliseconds.

    Returns:
        One ``OHLCPoint`` per bucket, ascending by timestamp.  Empty input
        yields an empty list.
    """
    _check_width(bucket_ms)
    buckets: dict[int, list[float]] = {}

    for row in rows:
        key = bucket_key(row.timestamp, bucket_ms)
        b = buckets.get(key)
        if b is None:
            buckets[key] = [row.open, row.high, row.low, row.close]
        else:
            b[1] = max(b[1], row.high)
            b[2] = min(b[2], row.low)
            b[3] = row.close

    return [
        OHLCPoint(timestamp=key, open=o, high=h, low=l, close=c)
        for key, (o, h, l, c) in sorted(buckets.items())
    ]


def resample_prices_to_ohlc(prices: list[PricePoint], bucket_ms: int) -> list[OHLCPoint]:
    """Build OHLC buckets from raw price samples.

    The first price in a bucket seeds open, high, low and close; later
    prices widen high/low and replace close.
    """
    _check_width(bucket_ms)
    buckets: dict[int, list[float]] = {}

    for point in prices:
        key = bucket_key(point.timestamp, bucket_ms)
        p = point.price
        b = buckets.get(key)
        if b is None:
            buckets[key] = [p, p, p, p]
        else:
            b[1] = max(b[1], p)
            b[2] = min(b[2], p)
            b[3] = p

    return [
        OHLCPoint(timestamp=key, open=o, high=h, low=l, close=c)
        for key, (o, h, l, c) in sorted(buckets.items())
    ]
