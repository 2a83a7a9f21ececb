"""Chart series pipeline — raw market data → OHLC at five resolutions.

Intraday source (30 days) feeds 1H / 4H / 12H; daily source (365 days)
feeds Daily / Weekly.  Each source degrades native OHLC → resampled
prices → deterministic placeholder, so the result never has a missing
window.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from chartscope.market.coingecko_client import CoinGeckoClient, DataUnavailable
from chartscope.market.models import OHLCPoint
from chartscope.series.resample import (
    D1, H1, H4, H12, W1,
    bucket_key, resample_ohlc, resample_prices_to_ohlc,
)

logger = logging.getLogger("chartscope")

INTRADAY_DAYS = 30
DAILY_DAYS = 365

# Trailing bucket counts kept per resolution
WINDOW_LENGTHS: dict[str, int] = {
    "1H": 720,
    "4H": 360,
    "12H": 240,
    "D": 180,
    "W": 120,
}

SOURCE_OHLC = "ohlc"
SOURCE_PRICES = "prices"
SOURCE_PLACEHOLDER = "placeholder"


@dataclass
class ChartSeries:
    """OHLC series for one coin at the five chart resolutions."""

    coin_id: str
    h1: list[OHLCPoint] = field(default_factory=list)
    h4: list[OHLCPoint] = field(default_factory=list)
    h12: list[OHLCPoint] = field(default_factory=list)
    d1: list[OHLCPoint] = field(default_factory=list)
    w1: list[OHLCPoint] = field(default_factory=list)
    sources: dict[str, str] = field(default_factory=dict)

    @property
    def is_placeholder(self) -> bool:
        """``True`` when any window is built from placeholder data."""
        return SOURCE_PLACEHOLDER in self.sources.values()

    def by_timeframe(self) -> dict[str, list[OHLCPoint]]:
        return {"W": self.w1, "D": self.d1, "12H": self.h12, "4H": self.h4, "1H": self.h1}


def placeholder_ohlc(count: int, interval_ms: int, end_ms: int) -> list[OHLCPoint]:
    """Build a deterministic sine-wave OHLC series ending at *end_ms*.

    Used when every market source has failed; the same arguments always
    produce the same series.
    """
    if count <= 0:
        return []
    end = bucket_key(end_ms, interval_ms)
    idx = np.arange(count)
    # Oldest first: index 0 is count-1 intervals before *end*
    base = 50_000.0 + np.sin((count - 1 - idx) * 0.1) * 10_000.0
    opens = base
    closes = base * (1.0 + 0.01 * np.sin(idx * 0.3))
    highs = np.maximum(opens, closes) * 1.005
    lows = np.minimum(opens, closes) * 0.995
    return [
        OHLCPoint(
            timestamp=int(end - (count - 1 - i) * interval_ms),
            open=float(opens[i]),
            high=float(highs[i]),
            low=float(lows[i]),
            close=float(closes[i]),
        )
        for i in range(count)
    ]


async def _load_source(
    client: Optional[CoinGeckoClient],
    coin_id: str,
    days: int,
    bucket_ms: int,
    price_interval: Optional[str],
    now_ms: int,
) -> tuple[list[OHLCPoint], str]:
    """Return ``(ohlc, source)`` for one lookback window."""
    if client is not None:
        try:
            rows = await client.fetch_ohlc(coin_id, days)
            if rows:
                return sorted(rows, key=lambda r: r.timestamp), SOURCE_OHLC
            logger.warning("Empty OHLC for %s (%d days), falling back to prices", coin_id, days)
        except DataUnavailable as exc:
            logger.error("OHLC fetch failed for %s (%d days): %s", coin_id, days, exc)

        try:
            prices = await client.fetch_prices(coin_id, days, price_interval)
            if prices:
                prices = sorted(prices, key=lambda p: p.timestamp)
                return resample_prices_to_ohlc(prices, bucket_ms), SOURCE_PRICES
            logger.warning("Empty prices for %s (%d days)", coin_id, days)
        except DataUnavailable as exc:
            logger.error("Price fetch failed for %s (%d days): %s", coin_id, days, exc)

    logger.warning("Using placeholder series for %s (%d days)", coin_id, days)
    count = min(days * 24, 1000) if bucket_ms == H1 else days
    return placeholder_ohlc(count, bucket_ms, now_ms), SOURCE_PLACEHOLDER


async def generate_chart_series(
    client: Optional[CoinGeckoClient],
    coin_id: str,
    now_ms: Optional[int] = None,
) -> ChartSeries:
    """Fetch and resample a coin's market data into five OHLC series.

    Never raises on market data failure; see module docstring.

    Args:
        client: Market data client, or ``None`` to force placeholders.
        coin_id: CoinGecko coin id.
        now_ms: Anchor for placeholder series (defaults to wall clock).
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    logger.info("Building chart series for %s", coin_id)
    intraday, intraday_source = await _load_source(
        client, coin_id, INTRADAY_DAYS, H1, None, now_ms,
    )
    daily, daily_source = await _load_source(
        client, coin_id, DAILY_DAYS, D1, "daily", now_ms,
    )

    series = ChartSeries(
        coin_id=coin_id,
        h1=resample_ohlc(intraday, H1)[-WINDOW_LENGTHS["1H"]:],
        h4=resample_ohlc(intraday, H4)[-WINDOW_LENGTHS["4H"]:],
        h12=resample_ohlc(intraday, H12)[-WINDOW_LENGTHS["12H"]:],
        d1=resample_ohlc(daily, D1)[-WINDOW_LENGTHS["D"]:],
        w1=resample_ohlc(daily, W1)[-WINDOW_LENGTHS["W"]:],
        sources={"intraday": intraday_source, "daily": daily_source},
    )
    logger.info(
        "Chart series for %s: 1H=%d 4H=%d 12H=%d D=%d W=%d (sources: %s)",
        coin_id, len(series.h1), len(series.h4), len(series.h12),
        len(series.d1), len(series.w1), series.sources,
    )
    return series
