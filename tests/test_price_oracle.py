"""
Tests for the price oracle adapters.

The CoinGecko source is exercised through httpx.MockTransport; no network.
"""

from decimal import Decimal

import httpx
import pytest

from coinvault.domain.accounts.entities import Asset
from coinvault.domain.accounts.errors import PriceUnavailableError
from coinvault.domain.accounts.ports import PriceSource
from coinvault.infrastructure.accounts.price_oracle import (
    REFERENCE_PRICES,
    CachedPriceOracle,
    CoinGeckoPriceSource,
)


class StubSource(PriceSource):
    def __init__(self, prices=None, error=None):
        self.prices = prices or {}
        self.error = error
        self.calls = 0

    def fetch_prices(self, assets):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.prices)


class TestCachedPriceOracle:
    """Tests for CachedPriceOracle."""

    def test_reference_prices_without_source(self) -> None:
        oracle = CachedPriceOracle()
        quote = oracle.get_price(Asset.BTC)

        assert quote.price == REFERENCE_PRICES[Asset.BTC]
        assert quote.stale is True

    def test_fresh_prices_from_source(self) -> None:
        source = StubSource({Asset.BTC: Decimal("61000")})
        oracle = CachedPriceOracle(source=source, ttl_seconds=300)

        quote = oracle.get_price(Asset.BTC)

        assert quote.price == Decimal("61000")
        assert quote.stale is False
        assert quote.as_of is not None

    def test_cache_respects_ttl(self) -> None:
        source = StubSource({Asset.ETH: Decimal("3000")})
        oracle = CachedPriceOracle(source=source, ttl_seconds=300)

        oracle.get_price(Asset.ETH)
        oracle.get_price(Asset.ETH)

        assert source.calls == 1

    def test_failed_refresh_keeps_last_known_price(self) -> None:
        source = StubSource({Asset.ETH: Decimal("3000")})
        oracle = CachedPriceOracle(source=source, ttl_seconds=0)
        oracle.get_price(Asset.ETH)

        source.error = httpx.ConnectError("down")
        quote = oracle.get_price(Asset.ETH)

        assert quote.price == Decimal("3000")
        assert quote.stale is True

    def test_non_positive_prices_ignored(self) -> None:
        source = StubSource({Asset.ADA: Decimal("0")})
        oracle = CachedPriceOracle(source=source)

        assert oracle.get_price(Asset.ADA).price == REFERENCE_PRICES[Asset.ADA]

    def test_no_price_at_all(self) -> None:
        oracle = CachedPriceOracle(reference_prices={Asset.BTC: Decimal("1")})

        with pytest.raises(PriceUnavailableError):
            oracle.get_price(Asset.XRP)

    def test_get_prices(self) -> None:
        prices = CachedPriceOracle().get_prices((Asset.USDT, Asset.USDC))
        assert prices == {Asset.USDT: Decimal("1"), Asset.USDC: Decimal("1")}


class TestCoinGeckoPriceSource:
    def _client(self, handler) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_parses_simple_price(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            return httpx.Response(
                200,
                json={"bitcoin": {"usd": 61234.5}, "ripple": {"usd": 0.52}, "cardano": {}},
            )

        source = CoinGeckoPriceSource("https://prices.test/api/v3", client=self._client(handler))
        prices = source.fetch_prices((Asset.BTC, Asset.XRP, Asset.ADA))

        assert "/simple/price" in seen["url"]
        assert "vs_currencies=usd" in seen["url"]
        assert prices == {Asset.BTC: Decimal("61234.5"), Asset.XRP: Decimal("0.52")}

    def test_http_error_raises(self) -> None:
        source = CoinGeckoPriceSource(
            "https://prices.test/api/v3",
            client=self._client(lambda request: httpx.Response(429)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            source.fetch_prices((Asset.BTC,))
