"""
Service: Portfolio Allocator.

Spreads a balance across the weighted assets at oracle prices.
Called only from inside BalanceMutator so the holdings, the portfolio
valuation and the account balance are written in one transaction.

Prices are read with current_prices() before the mutator takes its
locks; allocate() itself never touches the oracle.
"""

import logging
from decimal import Decimal
from typing import Optional

from coinvault.domain.accounts.allocation import (
    ALLOCATION_WEIGHTS,
    Allocation,
    compute_allocation,
)
from coinvault.domain.accounts.entities import SUPPORTED_ASSETS, Asset
from coinvault.domain.accounts.errors import PriceUnavailableError
from coinvault.domain.accounts.ports import PriceOracle

logger = logging.getLogger(__name__)


class PortfolioAllocator:
    def __init__(self, price_oracle: PriceOracle) -> None:
        self._prices = price_oracle

    def current_prices(self) -> dict[Asset, Decimal]:
        """Snapshot the price of every supported asset.

        An asset the oracle cannot price is left out; allocate() then
        raises for it, so only reallocating changes fail.
        """
        prices: dict[Asset, Decimal] = {}
        for asset in SUPPORTED_ASSETS:
            try:
                prices[asset] = self._prices.get_price(asset).price
            except PriceUnavailableError:
                logger.warning("No usable price for %s", asset.value)
        return prices

    def allocate(
        self, balance: Decimal, prices: Optional[dict[Asset, Decimal]] = None
    ) -> Allocation:
        """Return the allocation of `balance`.

        Raises:
            PriceUnavailableError: If any weighted asset has no usable price.
        """
        if prices is None:
            prices = self.current_prices()
        allocation = compute_allocation(
            balance, {asset: prices[asset] for asset in ALLOCATION_WEIGHTS if asset in prices}
        )
        logger.debug(
            "Allocated balance=%s valuation=%s", balance, allocation.valuation
        )
        return allocation
