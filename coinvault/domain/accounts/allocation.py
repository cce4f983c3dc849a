"""
Portfolio allocation rules.

A balance is spread across the supported assets by fixed weights and
converted to quantities at the current unit prices. Quantities round
down; the rounding residual is parked in the USDT line so the holdings
value the balance exactly whenever the USDT price is 1.

Pure functions only. Prices are supplied by the caller.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from coinvault.domain.accounts.entities import (
    MONEY_QUANTUM,
    ZERO,
    Asset,
    quantize_money,
)
from coinvault.domain.accounts.errors import InvalidAmountError, PriceUnavailableError

ALLOCATION_WEIGHTS: dict[Asset, Decimal] = {
    Asset.BTC: Decimal("0.30"),
    Asset.ETH: Decimal("0.25"),
    Asset.USDT: Decimal("0.15"),
    Asset.USDC: Decimal("0.10"),
    Asset.XRP: Decimal("0.10"),
    Asset.ADA: Decimal("0.10"),
}

RESIDUAL_ASSET = Asset.USDT

if sum(ALLOCATION_WEIGHTS.values()) != Decimal("1"):
    raise ValueError("Allocation weights must sum to 1")


@dataclass(frozen=True)
class AllocationLine:
    asset: Asset
    weight: Decimal
    usd: Decimal
    price: Decimal
    quantity: Decimal


@dataclass(frozen=True)
class Allocation:
    """Holdings produced for one balance, with their recomputed valuation."""

    lines: dict[Asset, AllocationLine]
    valuation: Decimal

    @property
    def holdings(self) -> dict[Asset, Decimal]:
        return {asset: line.quantity for asset, line in self.lines.items()}


def compute_allocation(balance: Decimal, prices: dict[Asset, Decimal]) -> Allocation:
    """Split `balance` across the weighted assets.

    Args:
        balance: Non-negative USD amount to allocate.
        prices: Unit price per asset. Every weighted asset must be present
            and strictly positive.

    Returns:
        The per-asset lines and the valuation sum(quantity * price), which
        never exceeds the balance.

    Raises:
        InvalidAmountError: If the balance is negative.
        PriceUnavailableError: If a price is missing or not positive.
    """
    if balance < ZERO:
        raise InvalidAmountError(balance)

    lines: dict[Asset, AllocationLine] = {}
    valuation = ZERO
    for asset, weight in ALLOCATION_WEIGHTS.items():
        price = prices.get(asset)
        if price is None or price <= ZERO:
            raise PriceUnavailableError(asset.value)

        usd = quantize_money(balance * weight)
        quantity = (usd / price).quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)
        lines[asset] = AllocationLine(
            asset=asset, weight=weight, usd=usd, price=price, quantity=quantity
        )
        valuation += quantity * price

    residual = quantize_money(balance) - quantize_money(valuation)
    if residual > ZERO:
        line = lines[RESIDUAL_ASSET]
        extra = (residual / line.price).quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)
        lines[RESIDUAL_ASSET] = AllocationLine(
            asset=line.asset,
            weight=line.weight,
            usd=line.usd + residual,
            price=line.price,
            quantity=line.quantity + extra,
        )
        valuation += extra * line.price

    return Allocation(lines=lines, valuation=quantize_money(valuation))


def scale_holding(
    holdings: dict[Asset, Decimal], asset: Asset, ratio: Decimal
) -> dict[Asset, Decimal]:
    """Return a copy of `holdings` with one asset's quantity multiplied by `ratio`."""
    scaled = dict(holdings)
    scaled[asset] = (scaled.get(asset, ZERO) * ratio).quantize(
        MONEY_QUANTUM, rounding=ROUND_DOWN
    )
    return scaled
