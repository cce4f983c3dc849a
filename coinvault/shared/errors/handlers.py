"""
Centralized error handlers for FastAPI.

Maps accounts domain errors to HTTP responses.
No stack traces or internal details are exposed to clients.
All error responses use the {"error": ..., "detail": ...} envelope.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from coinvault.domain.accounts.errors import (
    AccountDomainError,
    AccountInactiveError,
    AccountNotFoundError,
    DepositNotFoundError,
    DuplicateAccountError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidDepositStateError,
    InvalidWithdrawalRequestError,
    InvalidWithdrawalStateError,
    PriceUnavailableError,
    WithdrawalNotFoundError,
)

logger = logging.getLogger(__name__)

HTTP_400 = 400
HTTP_404 = 404
HTTP_409 = 409
HTTP_500 = 500
HTTP_503 = 503


def _error_response(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: dict[str, str | None] = {"error": error}
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Register all domain error handlers on the FastAPI application.

    Args:
        app: The FastAPI application instance.
    """

    @app.exception_handler(InvalidAmountError)
    async def handle_invalid_amount(
        _request: Request, exc: InvalidAmountError
    ) -> JSONResponse:
        logger.warning("Invalid amount rejected")
        return _error_response(HTTP_400, "Invalid amount", "Amount must be greater than zero")

    @app.exception_handler(InvalidWithdrawalRequestError)
    async def handle_invalid_withdrawal_request(
        _request: Request, exc: InvalidWithdrawalRequestError
    ) -> JSONResponse:
        logger.warning("Withdrawal request rejected: %s", exc.reason)
        return _error_response(HTTP_400, "Invalid withdrawal request", exc.reason)

    @app.exception_handler(InsufficientFundsError)
    async def handle_insufficient_funds(
        _request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        """Handle insufficient funds errors."""
        logger.warning("Insufficient funds")
        return _error_response(
            HTTP_400,
            "Insufficient funds",
            f"Required {exc.required}, available {exc.available}",
        )

    @app.exception_handler(AccountNotFoundError)
    async def handle_account_not_found(
        _request: Request, exc: AccountNotFoundError
    ) -> JSONResponse:
        logger.warning("Account not found: %s", exc.account_id)
        return _error_response(HTTP_404, "Account not found")

    @app.exception_handler(WithdrawalNotFoundError)
    async def handle_withdrawal_not_found(
        _request: Request, exc: WithdrawalNotFoundError
    ) -> JSONResponse:
        logger.warning("Withdrawal not found: %s", exc.withdrawal_id)
        return _error_response(HTTP_404, "Withdrawal not found")

    @app.exception_handler(DepositNotFoundError)
    async def handle_deposit_not_found(
        _request: Request, exc: DepositNotFoundError
    ) -> JSONResponse:
        logger.warning("Deposit not found: %s", exc.transaction_id)
        return _error_response(HTTP_404, "Deposit not found")

    @app.exception_handler(InvalidWithdrawalStateError)
    async def handle_invalid_withdrawal_state(
        _request: Request, exc: InvalidWithdrawalStateError
    ) -> JSONResponse:
        logger.warning("Rejected withdrawal transition: %s", exc.message)
        return _error_response(HTTP_409, "Invalid withdrawal state", exc.message)

    @app.exception_handler(InvalidDepositStateError)
    async def handle_invalid_deposit_state(
        _request: Request, exc: InvalidDepositStateError
    ) -> JSONResponse:
        logger.warning("Rejected deposit transition: %s", exc.message)
        return _error_response(HTTP_409, "Invalid deposit state", exc.message)

    @app.exception_handler(AccountInactiveError)
    async def handle_account_inactive(
        _request: Request, exc: AccountInactiveError
    ) -> JSONResponse:
        logger.warning("Operation on disabled account %s", exc.account_id)
        return _error_response(HTTP_409, "Account disabled")

    @app.exception_handler(DuplicateAccountError)
    async def handle_duplicate_account(
        _request: Request, exc: DuplicateAccountError
    ) -> JSONResponse:
        logger.warning("Duplicate account registration")
        return _error_response(HTTP_409, "Account already exists")

    @app.exception_handler(PriceUnavailableError)
    async def handle_price_unavailable(
        _request: Request, exc: PriceUnavailableError
    ) -> JSONResponse:
        logger.error("Price unavailable for %s", exc.symbol)
        return _error_response(HTTP_503, "Price unavailable", "Try again later")

    @app.exception_handler(AccountDomainError)
    async def handle_accounts_domain(
        _request: Request, exc: AccountDomainError
    ) -> JSONResponse:
        """Catch-all for unhandled accounts domain errors."""
        logger.error("Unhandled accounts domain error: %s", exc.message)
        return _error_response(HTTP_500, "Internal server error")

    @app.exception_handler(Exception)
    async def handle_unexpected(
        _request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected errors. Never exposes internals."""
        logger.exception("Unexpected error: %s", type(exc).__name__)
        return _error_response(HTTP_500, "Internal server error")
