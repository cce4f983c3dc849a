"""
Adapter: last-known-price oracle.

CachedPriceOracle keeps the most recent positive price per asset. When
the cache is older than its TTL, one caller refreshes it from the
PriceSource while concurrent callers keep reading the cached values.
A failing or partial feed degrades to the last known price, then to the
reference table. A zero or negative price is never returned.

CoinGeckoPriceSource is the optional upstream feed (httpx).
"""

import logging
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import httpx

from coinvault.domain.accounts.entities import SUPPORTED_ASSETS, ZERO, Asset, PriceQuote
from coinvault.domain.accounts.errors import PriceUnavailableError
from coinvault.domain.accounts.ports import PriceOracle, PriceSource

logger = logging.getLogger(__name__)

REFERENCE_PRICES: dict[Asset, Decimal] = {
    Asset.BTC: Decimal("45000"),
    Asset.ETH: Decimal("2500"),
    Asset.USDT: Decimal("1"),
    Asset.USDC: Decimal("1"),
    Asset.XRP: Decimal("2.5"),
    Asset.ADA: Decimal("0.8"),
}

COINGECKO_IDS: dict[Asset, str] = {
    Asset.BTC: "bitcoin",
    Asset.ETH: "ethereum",
    Asset.USDT: "tether",
    Asset.USDC: "usd-coin",
    Asset.XRP: "ripple",
    Asset.ADA: "cardano",
}


class CoinGeckoPriceSource(PriceSource):
    """Fetches USD prices from the CoinGecko simple/price endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def fetch_prices(self, assets: tuple[Asset, ...]) -> dict[Asset, Decimal]:
        ids = {COINGECKO_IDS[asset]: asset for asset in assets if asset in COINGECKO_IDS}
        response = self._client.get(
            f"{self._base_url}/simple/price",
            params={"ids": ",".join(ids), "vs_currencies": "usd"},
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        body = response.json()

        prices: dict[Asset, Decimal] = {}
        for coin_id, asset in ids.items():
            usd = body.get(coin_id, {}).get("usd")
            if usd is None:
                continue
            price = Decimal(str(usd))
            if price > ZERO:
                prices[asset] = price
        return prices

    def close(self) -> None:
        self._client.close()


class CachedPriceOracle(PriceOracle):
    """Thread-safe last-known-price cache in front of an optional feed."""

    def __init__(
        self,
        source: Optional[PriceSource] = None,
        ttl_seconds: float = 300.0,
        reference_prices: Optional[dict[Asset, Decimal]] = None,
    ) -> None:
        self._source = source
        self._ttl = ttl_seconds
        self._reference = dict(reference_prices or REFERENCE_PRICES)
        self._cache: dict[Asset, PriceQuote] = {}
        self._fetched_at: Optional[float] = None
        self._lock = threading.Lock()
        self._refreshing = threading.Lock()

    def get_price(self, asset: Asset) -> PriceQuote:
        self._maybe_refresh()
        with self._lock:
            cached = self._cache.get(asset)
        if cached is not None:
            return cached

        reference = self._reference.get(asset)
        if reference is None or reference <= ZERO:
            raise PriceUnavailableError(asset.value)
        return PriceQuote(asset=asset, price=reference, as_of=None, stale=True)

    def refresh(self) -> int:
        """Pull prices from the source now. Returns how many were updated."""
        if self._source is None:
            return 0
        try:
            fetched = self._source.fetch_prices(SUPPORTED_ASSETS)
        except Exception as exc:
            logger.warning("Price refresh failed, keeping last known prices: %s", exc)
            self._mark_stale()
            return 0
        finally:
            self._fetched_at = time.monotonic()

        now = datetime.now(timezone.utc)
        updated = 0
        with self._lock:
            for asset, price in fetched.items():
                if price is None or price <= ZERO:
                    continue
                self._cache[asset] = PriceQuote(asset=asset, price=price, as_of=now)
                updated += 1
        logger.info("Refreshed %d asset prices", updated)
        return updated

    def _maybe_refresh(self) -> None:
        if self._source is None:
            return
        fetched_at = self._fetched_at
        if fetched_at is not None and time.monotonic() - fetched_at < self._ttl:
            return
        # Another thread is already refreshing: serve the cache.
        if not self._refreshing.acquire(blocking=False):
            return
        try:
            self.refresh()
        finally:
            self._refreshing.release()

    def _mark_stale(self) -> None:
        with self._lock:
            for asset, quote in list(self._cache.items()):
                if not quote.stale:
                    self._cache[asset] = PriceQuote(
                        asset=asset, price=quote.price, as_of=quote.as_of, stale=True
                    )
