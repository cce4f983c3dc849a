"""
Withdrawal validation and state-transition rules.

    pending/required --acknowledge--> pending/submitted
    pending/submitted --confirm fee--> processing/confirmed
    processing --approve--> completed
    pending|processing --fail--> failed (refund)

Deleting a request refunds it only while it is still pending or processing.
"""

import re
from decimal import Decimal

from coinvault.domain.accounts.entities import (
    ZERO,
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
)

ADDRESS_PATTERN = re.compile(r"^[a-zA-Z0-9]{20,255}$")

REFUNDABLE_STATES = frozenset({WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING})


def compute_fee(amount: Decimal, fee_rate: Decimal) -> Decimal:
    return quantize_money(amount * fee_rate)


def validate_request(amount: Decimal, crypto_type: str, address: str) -> Asset:
    """Check a new withdrawal request and return the parsed asset.

    Raises:
        InvalidAmountError: If amount is not strictly positive.
        InvalidWithdrawalRequestError: On unknown asset or malformed address.
    """
    if amount is None or amount <= ZERO:
        raise InvalidAmountError(amount)
    try:
        asset = Asset.parse(crypto_type)
    except ValueError:
        raise InvalidWithdrawalRequestError(
            f"unsupported crypto type {crypto_type!r}"
        ) from None
    if not ADDRESS_PATTERN.match(address or ""):
        raise InvalidWithdrawalRequestError("malformed destination address")
    return asset


def check_acknowledge(withdrawal: Withdrawal) -> None:
    if (
        withdrawal.status is not WithdrawalStatus.PENDING
        or withdrawal.fee_status is not FeeStatus.REQUIRED
    ):
        raise InvalidWithdrawalStateError(
            withdrawal.id, "acknowledge fee for", _state(withdrawal)
        )


def check_confirm_fee(withdrawal: Withdrawal) -> None:
    if (
        withdrawal.status is not WithdrawalStatus.PENDING
        or withdrawal.fee_status is not FeeStatus.SUBMITTED
    ):
        raise InvalidWithdrawalStateError(
            withdrawal.id, "confirm fee for", _state(withdrawal)
        )


def check_approve(withdrawal: Withdrawal) -> bool:
    """Return False when the withdrawal is already completed (no-op)."""
    if withdrawal.status is WithdrawalStatus.COMPLETED:
        return False
    if withdrawal.status is not WithdrawalStatus.PROCESSING:
        raise InvalidWithdrawalStateError(withdrawal.id, "approve", _state(withdrawal))
    return True


def check_fail(withdrawal: Withdrawal) -> bool:
    """Return False when the withdrawal has already failed (no-op)."""
    if withdrawal.status is WithdrawalStatus.FAILED:
        return False
    if withdrawal.status not in REFUNDABLE_STATES:
        raise InvalidWithdrawalStateError(withdrawal.id, "fail", _state(withdrawal))
    return True


def refund_on_delete(withdrawal: Withdrawal) -> bool:
    return withdrawal.status in REFUNDABLE_STATES


def _state(withdrawal: Withdrawal) -> str:
    return f"{withdrawal.status.value}/{withdrawal.fee_status.value}"
