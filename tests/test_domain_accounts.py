"""
Tests for the accounts domain layer.

Pure rules only: allocation, growth policies, trading-day gate and
withdrawal validation/transitions. No infrastructure involved.
"""

import random
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from coinvault.domain.accounts.allocation import (
    ALLOCATION_WEIGHTS,
    compute_allocation,
    scale_holding,
)
from coinvault.domain.accounts.entities import (
    Asset,
    FeeStatus,
    Withdrawal,
    WithdrawalStatus,
    quantize_money,
)
from coinvault.domain.accounts.errors import (
    InvalidAmountError,
    InvalidWithdrawalRequestError,
    InvalidWithdrawalStateError,
    PriceUnavailableError,
)
from coinvault.domain.accounts.growth import (
    FixedRatePolicy,
    RandomBoostPolicy,
    apply_growth,
    build_growth_policy,
    is_trading_day,
    parse_trading_days,
)
from coinvault.domain.accounts import withdrawal_rules
from coinvault.infrastructure.accounts.price_oracle import REFERENCE_PRICES

from tests.conftest import ADDRESS, MONDAY, SATURDAY, TEST_PRICES


def _withdrawal(status: WithdrawalStatus, fee_status: FeeStatus) -> Withdrawal:
    return Withdrawal(
        id=1,
        account_id=1,
        amount=Decimal("100"),
        fee_amount=Decimal("30"),
        fee_rate=Decimal("0.30"),
        fee_currency="USDT",
        fee_status=fee_status,
        status=status,
        crypto_type="BTC",
        crypto_address=ADDRESS,
        balance_snapshot=Decimal("200"),
    )


class TestAllocation:
    """Tests for compute_allocation."""

    def test_weights_sum_to_one(self) -> None:
        assert sum(ALLOCATION_WEIGHTS.values()) == Decimal("1")

    def test_valuation_matches_balance_for_even_prices(self) -> None:
        allocation = compute_allocation(Decimal("1000"), TEST_PRICES)

        assert allocation.valuation == Decimal("1000")
        assert allocation.holdings[Asset.BTC] == Decimal("0.006")
        assert allocation.holdings[Asset.ETH] == Decimal("0.1")
        assert allocation.holdings[Asset.USDT] == Decimal("150")
        assert allocation.holdings[Asset.ADA] == Decimal("125")

    def test_quantities_round_down_into_usdt(self) -> None:
        prices = dict(TEST_PRICES)
        prices[Asset.BTC] = Decimal("7")
        allocation = compute_allocation(Decimal("1"), prices)

        assert allocation.holdings[Asset.BTC] == Decimal("0.04285714")
        assert allocation.holdings[Asset.USDT] == Decimal("0.15000002")
        assert allocation.valuation == Decimal("1")

    def test_reference_prices_value_the_balance_exactly(self) -> None:
        allocation = compute_allocation(Decimal("1000"), REFERENCE_PRICES)

        assert allocation.holdings[Asset.BTC] == Decimal("0.00666666")
        assert allocation.holdings[Asset.USDT] == Decimal("150.0003")
        assert allocation.valuation == Decimal("1000")

    def test_valuation_never_exceeds_balance_off_peg(self) -> None:
        prices = dict(REFERENCE_PRICES)
        prices[Asset.USDT] = Decimal("1.0003")
        allocation = compute_allocation(Decimal("1000"), prices)

        assert Decimal("999.999") < allocation.valuation <= Decimal("1000")

    def test_zero_balance_gives_empty_holdings(self) -> None:
        allocation = compute_allocation(Decimal("0"), TEST_PRICES)

        assert allocation.valuation == Decimal("0")
        assert all(q == 0 for q in allocation.holdings.values())

    def test_negative_balance_rejected(self) -> None:
        with pytest.raises(InvalidAmountError):
            compute_allocation(Decimal("-1"), TEST_PRICES)

    def test_missing_price_rejected(self) -> None:
        prices = {a: p for a, p in TEST_PRICES.items() if a is not Asset.XRP}
        with pytest.raises(PriceUnavailableError) as exc_info:
            compute_allocation(Decimal("100"), prices)
        assert exc_info.value.symbol == "XRP"

    def test_zero_price_rejected(self) -> None:
        prices = dict(TEST_PRICES)
        prices[Asset.ETH] = Decimal("0")
        with pytest.raises(PriceUnavailableError):
            compute_allocation(Decimal("100"), prices)

    def test_scale_holding_touches_one_asset(self) -> None:
        holdings = {Asset.BTC: Decimal("1"), Asset.ETH: Decimal("2")}
        scaled = scale_holding(holdings, Asset.ETH, Decimal("1.5"))

        assert scaled[Asset.ETH] == Decimal("3")
        assert scaled[Asset.BTC] == Decimal("1")
        assert holdings[Asset.ETH] == Decimal("2")


class TestGrowthPolicies:
    """Tests for the growth policies and helpers."""

    def test_random_boost_within_range(self) -> None:
        policy = RandomBoostPolicy(Decimal("0.5"), Decimal("2.5"))
        rng = random.Random(1)
        for _ in range(200):
            boost = policy.next_boost(rng)
            assert Decimal("0.005") <= boost <= Decimal("0.025")
            # four decimals of a percent -> six decimals as a fraction
            assert boost == boost.quantize(Decimal("0.000001"))

    def test_random_boost_is_reproducible_with_seed(self) -> None:
        policy = RandomBoostPolicy(Decimal("0.5"), Decimal("2.5"))
        first = [policy.next_boost(random.Random(42)) for _ in range(3)]
        second = [policy.next_boost(random.Random(42)) for _ in range(3)]
        assert first == second

    def test_invalid_boost_range(self) -> None:
        with pytest.raises(ValueError):
            RandomBoostPolicy(Decimal("3"), Decimal("1"))

    def test_fixed_rate(self) -> None:
        policy = FixedRatePolicy(Decimal("0.0222"))
        assert policy.next_boost(random.Random()) == Decimal("0.0222")

    def test_apply_growth(self) -> None:
        assert apply_growth(Decimal("1000"), Decimal("0.0222")) == Decimal("1022.2")
        assert apply_growth(Decimal("1000"), Decimal("0.095")) == Decimal("1095")

    def test_build_growth_policy(self) -> None:
        assert build_growth_policy(
            "fixed_rate", Decimal("0.5"), Decimal("2.5"), Decimal("0.0222")
        ).name == "fixed_rate"
        assert build_growth_policy(
            "random_boost", Decimal("0.5"), Decimal("2.5"), Decimal("0.0222")
        ).name == "random_boost"
        with pytest.raises(ValueError):
            build_growth_policy("moonshot", Decimal("0"), Decimal("1"), Decimal("0"))


class TestTradingDays:
    """Tests for the trading-day gate."""

    def test_parse_range_and_list(self) -> None:
        assert parse_trading_days("mon-fri") == frozenset({0, 1, 2, 3, 4})
        assert parse_trading_days("mon,wed,fri") == frozenset({0, 2, 4})
        assert parse_trading_days("fri-mon") == frozenset({4, 5, 6, 0})

    def test_unknown_day_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_trading_days("mon-funday")

    def test_weekday_vs_weekend(self) -> None:
        assert is_trading_day(MONDAY, "mon-fri", "UTC") is True
        assert is_trading_day(SATURDAY, "mon-fri", "UTC") is False

    def test_timezone_shifts_the_day(self) -> None:
        # Monday 02:00 UTC is still Sunday evening in New York.
        moment = datetime(2026, 10, 19, 2, 0, tzinfo=timezone.utc)
        assert is_trading_day(moment, "mon-fri", "UTC") is True
        assert is_trading_day(moment, "mon-fri", "America/New_York") is False


class TestWithdrawalRules:
    """Tests for withdrawal validation and transition checks."""

    def test_fee_is_thirty_percent(self) -> None:
        assert withdrawal_rules.compute_fee(Decimal("100"), Decimal("0.30")) == Decimal("30")

    def test_valid_request_returns_asset(self) -> None:
        assert withdrawal_rules.validate_request(Decimal("10"), "btc", ADDRESS) is Asset.BTC

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_amount_rejected(self, amount) -> None:
        with pytest.raises(InvalidAmountError):
            withdrawal_rules.validate_request(amount, "BTC", ADDRESS)

    def test_unknown_asset_rejected(self) -> None:
        with pytest.raises(InvalidWithdrawalRequestError):
            withdrawal_rules.validate_request(Decimal("10"), "DOGE", ADDRESS)

    @pytest.mark.parametrize("address", ["short", "x" * 19, "bad-address-with-dashes!!", ""])
    def test_malformed_address_rejected(self, address) -> None:
        with pytest.raises(InvalidWithdrawalRequestError):
            withdrawal_rules.validate_request(Decimal("10"), "ETH", address)

    def test_acknowledge_requires_pending_required(self) -> None:
        withdrawal_rules.check_acknowledge(
            _withdrawal(WithdrawalStatus.PENDING, FeeStatus.REQUIRED)
        )
        with pytest.raises(InvalidWithdrawalStateError):
            withdrawal_rules.check_acknowledge(
                _withdrawal(WithdrawalStatus.PENDING, FeeStatus.SUBMITTED)
            )

    def test_confirm_fee_requires_submitted(self) -> None:
        with pytest.raises(InvalidWithdrawalStateError):
            withdrawal_rules.check_confirm_fee(
                _withdrawal(WithdrawalStatus.PENDING, FeeStatus.REQUIRED)
            )
        withdrawal_rules.check_confirm_fee(
            _withdrawal(WithdrawalStatus.PENDING, FeeStatus.SUBMITTED)
        )

    def test_approve_is_noop_when_completed(self) -> None:
        assert withdrawal_rules.check_approve(
            _withdrawal(WithdrawalStatus.COMPLETED, FeeStatus.CONFIRMED)
        ) is False
        assert withdrawal_rules.check_approve(
            _withdrawal(WithdrawalStatus.PROCESSING, FeeStatus.CONFIRMED)
        ) is True
        with pytest.raises(InvalidWithdrawalStateError):
            withdrawal_rules.check_approve(
                _withdrawal(WithdrawalStatus.PENDING, FeeStatus.REQUIRED)
            )

    def test_fail_is_noop_when_failed(self) -> None:
        assert withdrawal_rules.check_fail(
            _withdrawal(WithdrawalStatus.FAILED, FeeStatus.REQUIRED)
        ) is False
        with pytest.raises(InvalidWithdrawalStateError):
            withdrawal_rules.check_fail(
                _withdrawal(WithdrawalStatus.COMPLETED, FeeStatus.CONFIRMED)
            )

    def test_refund_on_delete(self) -> None:
        assert withdrawal_rules.refund_on_delete(
            _withdrawal(WithdrawalStatus.PROCESSING, FeeStatus.CONFIRMED)
        )
        assert not withdrawal_rules.refund_on_delete(
            _withdrawal(WithdrawalStatus.COMPLETED, FeeStatus.CONFIRMED)
        )

    def test_quantize_money(self) -> None:
        assert quantize_money(Decimal("1.123456789")) == Decimal("1.12345679")
