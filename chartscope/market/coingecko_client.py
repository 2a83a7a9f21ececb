"""CoinGecko REST API async client.

Fetches native OHLC candles and raw price series for a coin.  Every
failure (HTTP error, transport error, missing key, malformed payload) is
raised as ``DataUnavailable`` so callers can tell it apart from an empty
but well-formed response.
"""

import asyncio
import logging
import time
from typing import Optional

import httpx

from chartscope.config import Config
from chartscope.market.models import OHLCPoint, PricePoint

logger = logging.getLogger("chartscope")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class DataUnavailable(Exception):
    """Market data could not be fetched or parsed."""


class RateLimiter:
    """Enforces a minimum interval between requests to the same endpoint."""

    def __init__(self, min_interval_ms: int = 1000) -> None:
        self._min_interval = min_interval_ms / 1000.0
        self._last_request: dict[str, float] = {}

    async def wait(self, endpoint: str) -> None:
        last = self._last_request.get(endpoint)
        if last is not None:
            elapsed = time.monotonic() - last
            if elapsed < self._min_interval:
                wait_for = self._min_interval - elapsed
                logger.debug("Rate limiting %s: waiting %.3fs", endpoint, wait_for)
                await asyncio.sleep(wait_for)
        self._last_request[endpoint] = time.monotonic()


class CoinGeckoClient:
    """Async client wrapping the CoinGecko v3 market endpoints.

    Args:
        config: Application configuration.
        retry_base_delay: First backoff delay in seconds (doubles per retry).
    """

    def __init__(self, config: Config, retry_base_delay: float = _RETRY_BASE_DELAY) -> None:
        self._config = config
        self._base_url = config.coingecko_base_url.rstrip("/")
        self._retry_base_delay = retry_base_delay
        self._rate_limiter = RateLimiter(config.min_request_interval_ms)
        self._headers = {
            "Accept": "application/json",
            "User-Agent": "ChartScope/0.1",
            "x-cg-demo-api-key": config.coingecko_api_key,
        }

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _get_with_retry(self, url: str, params: dict) -> httpx.Response:
        """GET with exponential-backoff retry.

        Retries on rate limits (429), server errors (5xx) and transport
        errors.  A 401, any other client error, or a non-transport request
        failure (decoding, invalid URL) fails immediately as
        ``DataUnavailable``.
        """
        last_error: Optional[str] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(
                        url,
                        headers=self._headers,
                        params=params,
                        timeout=30.0,
                    )
            except httpx.TransportError as exc:
                last_error = f"transport error: {exc}"
            except (httpx.RequestError, httpx.InvalidURL) as exc:
                raise DataUnavailable(f"Request to {url} failed: {exc}") from exc
            else:
                if resp.status_code < 400:
                    return resp
                if resp.status_code == 401:
                    raise DataUnavailable(f"API key rejected (401) for {url}")
                if resp.status_code not in _RETRYABLE_STATUS_CODES:
                    raise DataUnavailable(f"HTTP {resp.status_code} for {url}")
                last_error = f"HTTP {resp.status_code}"

            if attempt + 1 < _MAX_RETRIES:
                delay = self._retry_base_delay * (2 ** attempt)
                logger.warning(
                    "CoinGecko GET %s failed (%s), retry %d/%d in %.1fs",
                    url, last_error, attempt + 1, _MAX_RETRIES - 1, delay,
                )
                await asyncio.sleep(delay)

        raise DataUnavailable(f"{url}: {last_error} after {_MAX_RETRIES} attempts")

    def _ensure_api_key(self) -> None:
        if not self._config.has_valid_api_key:
            raise DataUnavailable("CoinGecko API key missing or placeholder")

    # ── Series ───────────────────────────────────────────────────────────

    async def fetch_ohlc(self, coin_id: str, days: int) -> list[OHLCPoint]:
        """Fetch native OHLC candles.

        Args:
            coin_id: CoinGecko coin id, e.g. ``"bitcoin"``.
            days: Lookback window in days.

        Returns:
            List of ``OHLCPoint`` in the order returned by the API.

        Raises:
            DataUnavailable: on any fetch failure or malformed payload.
        """
        self._ensure_api_key()
        await self._rate_limiter.wait(f"ohlc-{coin_id}-{days}")

        url = f"{self._base_url}/coins/{coin_id}/ohlc"
        params = {"vs_currency": self._config.vs_currency, "days": str(days)}
        logger.info("Fetching OHLC for %s (%d days)", coin_id, days)
        resp = await self._get_with_retry(url, params)

        try:
            raw = resp.json()
            if not isinstance(raw, list):
                raise TypeError("expected a list of candles")
            return [
                OHLCPoint(
                    timestamp=int(row[0]),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                )
                for row in raw
            ]
        except (ValueError, TypeError, IndexError) as exc:
            raise DataUnavailable(f"Malformed OHLC payload for {coin_id}: {exc}") from exc

    async def fetch_prices(
        self,
        coin_id: str,
        days: int,
        interval: Optional[str] = None,
    ) -> list[PricePoint]:
        """Fetch a raw ``[timestamp, price]`` series.

        Args:
            coin_id: CoinGecko coin id.
            days: Lookback window in days.
            interval: Optional granularity hint, e.g. ``"daily"``.

        Raises:
            DataUnavailable: on any fetch failure or malformed payload.
        """
        self._ensure_api_key()
        await self._rate_limiter.wait(f"prices-{coin_id}-{days}-{interval or 'auto'}")

        url = f"{self._base_url}/coins/{coin_id}/market_chart"
        params = {"vs_currency": self._config.vs_currency, "days": str(days)}
        if interval:
            params["interval"] = interval
        logger.info("Fetching prices for %s (%d days, interval=%s)", coin_id, days, interval)
        resp = await self._get_with_retry(url, params)

        try:
            prices = resp.json()["prices"]
            if not isinstance(prices, list):
                raise TypeError("expected a list of prices")
            return [
                PricePoint(timestamp=int(row[0]), price=float(row[1]))
                for row in prices
            ]
        except (KeyError, ValueError, TypeError, IndexError) as exc:
            raise DataUnavailable(f"Malformed price payload for {coin_id}: {exc}") from exc
