"""
Domain-specific errors for the accounts bounded context.

All errors raised from the domain and application layers are defined here.
They are mapped to HTTP responses at the interface layer.
No framework imports allowed.
"""

from decimal import Decimal


class AccountDomainError(Exception):
    """Base error for all accounts domain errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class AccountNotFoundError(AccountDomainError):
    """Raised when an account id does not exist."""

    def __init__(self, account_id: int) -> None:
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class AccountInactiveError(AccountDomainError):
    """Raised when a user operation targets a disabled account."""

    def __init__(self, account_id: int) -> None:
        super().__init__(f"Account is disabled: {account_id}")
        self.account_id = account_id


class InvalidAmountError(AccountDomainError):
    """Raised when a monetary amount is zero, negative or malformed."""

    def __init__(self, amount: object) -> None:
        super().__init__(f"Invalid amount: {amount}")
        self.amount = amount


class InsufficientFundsError(AccountDomainError):
    """Raised when the balance cannot cover a debit."""

    def __init__(self, required: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Insufficient funds: required {required}, available {available}"
        )
        self.required = required
        self.available = available


class InvalidWithdrawalRequestError(AccountDomainError):
    """Raised when a withdrawal request fails validation."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid withdrawal request: {reason}")
        self.reason = reason


class WithdrawalNotFoundError(AccountDomainError):
    def __init__(self, withdrawal_id: int) -> None:
        super().__init__(f"Withdrawal not found: {withdrawal_id}")
        self.withdrawal_id = withdrawal_id


class InvalidWithdrawalStateError(AccountDomainError):
    """Raised when a withdrawal transition is not allowed from its state."""

    def __init__(self, withdrawal_id: int, action: str, state: str) -> None:
        super().__init__(
            f"Cannot {action} withdrawal {withdrawal_id} in state {state}"
        )
        self.withdrawal_id = withdrawal_id
        self.action = action
        self.state = state


class DepositNotFoundError(AccountDomainError):
    def __init__(self, transaction_id: int) -> None:
        super().__init__(f"Deposit not found: {transaction_id}")
        self.transaction_id = transaction_id


class InvalidDepositStateError(AccountDomainError):
    """Raised when a deposit transition is not allowed from its state."""

    def __init__(self, transaction_id: int, state: str) -> None:
        super().__init__(f"Deposit {transaction_id} is {state}")
        self.transaction_id = transaction_id
        self.state = state


class PriceUnavailableError(AccountDomainError):
    """Raised when no usable (positive) price exists for an asset."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"No price available for {symbol}")
        self.symbol = symbol


class DuplicateAccountError(AccountDomainError):
    """Raised when registering an email that already has an account."""

    def __init__(self, email: str) -> None:
        super().__init__("An account with this email already exists")
        self.email = email
