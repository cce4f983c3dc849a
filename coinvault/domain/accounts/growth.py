"""
Growth policies for simulated account activity.

random_boost draws a per-tick boost uniformly from a percentage range,
rounded to four decimals of a percent. fixed_rate always applies the same
rate. Both return the boost as a fraction (0.0123 for 1.23%).
"""

import random
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from coinvault.domain.accounts.entities import quantize_money

_DAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
_HUNDRED = Decimal("100")


class GrowthPolicy(ABC):
    """Strategy deciding how much a growth tick adds."""

    name: str = ""

    @abstractmethod
    def next_boost(self, rng: random.Random) -> Decimal:
        raise NotImplementedError


class RandomBoostPolicy(GrowthPolicy):
    """Uniform boost between `min_percent` and `max_percent`."""

    name = "random_boost"

    def __init__(self, min_percent: Decimal, max_percent: Decimal) -> None:
        if min_percent < 0 or max_percent < min_percent:
            raise ValueError(
                f"Invalid boost range: {min_percent}..{max_percent}"
            )
        self._min = min_percent
        self._max = max_percent

    def next_boost(self, rng: random.Random) -> Decimal:
        drawn = rng.uniform(float(self._min), float(self._max))
        percent = Decimal(str(round(drawn, 4)))
        percent = min(max(percent, self._min), self._max)
        return percent / _HUNDRED


class FixedRatePolicy(GrowthPolicy):
    name = "fixed_rate"

    def __init__(self, rate: Decimal) -> None:
        if rate < 0:
            raise ValueError(f"Invalid fixed growth rate: {rate}")
        self._rate = rate

    def next_boost(self, rng: random.Random) -> Decimal:
        return self._rate


def apply_growth(balance: Decimal, rate: Decimal) -> Decimal:
    """Compound `balance` by `rate` once."""
    return quantize_money(balance * (Decimal("1") + rate))


def parse_trading_days(expression: str) -> frozenset[int]:
    """Parse a cron-style day list such as "mon-fri" or "mon,wed,fri".

    Returns weekday numbers (Monday is 0).

    Raises:
        ValueError: On an unknown day name.
    """
    days: set[int] = set()
    for part in expression.lower().split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = (p.strip() for p in part.split("-", 1))
            first, last = _DAY_NAMES.index(start), _DAY_NAMES.index(end)
            if first <= last:
                days.update(range(first, last + 1))
            else:
                days.update(range(first, 7))
                days.update(range(0, last + 1))
        else:
            days.add(_DAY_NAMES.index(part))
    return frozenset(days)


def is_trading_day(moment: datetime, trading_days: str, timezone_name: str) -> bool:
    """True when `moment`, seen in `timezone_name`, falls on a trading day."""
    local = moment.astimezone(ZoneInfo(timezone_name))
    return local.weekday() in parse_trading_days(trading_days)


def build_growth_policy(
    name: str,
    min_percent: Decimal,
    max_percent: Decimal,
    fixed_rate: Decimal,
) -> GrowthPolicy:
    if name == RandomBoostPolicy.name:
        return RandomBoostPolicy(min_percent, max_percent)
    if name == FixedRatePolicy.name:
        return FixedRatePolicy(fixed_rate)
    raise ValueError(f"Unknown growth policy: {name}")
