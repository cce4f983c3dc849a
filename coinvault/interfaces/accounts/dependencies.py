"""
Dependency injection for the accounts bounded context.

Service objects are built once by coinvault.bootstrap and stored on
app.state.services; these functions hand them to the routes.

Authentication is done upstream: the gateway forwards a verified
X-Account-Id header. Admin routes require the shared X-Admin-Key.
"""

import hmac
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from coinvault.application.accounts.account_directory import AccountDirectory
from coinvault.application.accounts.admin_balance import (
    CreditBalanceUseCase,
    SetBalanceUseCase,
)
from coinvault.application.accounts.deposits import DepositWorkflow
from coinvault.application.accounts.simulator_control import SimulatorControl
from coinvault.application.accounts.trade_retention import TradeRetention
from coinvault.application.accounts.withdrawals import WithdrawalWorkflow
from coinvault.bootstrap import Services
from coinvault.realtime.scheduler import SimulationScheduler

DEFAULT_ADMIN_ACTOR = "admin"


def get_services(request: Request) -> Services:
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]


def get_account_id(
    x_account_id: Annotated[Optional[int], Header()] = None,
) -> int:
    """Return the gateway-verified account id or reject with 401."""
    if x_account_id is None or x_account_id < 1:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing account identity",
        )
    return x_account_id


def require_admin(
    services: ServicesDep,
    x_admin_key: Annotated[Optional[str], Header()] = None,
    x_admin_actor: Annotated[Optional[str], Header()] = None,
) -> str:
    """Check the admin key and return the actor name used in audit rows."""
    expected = services.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return (x_admin_actor or DEFAULT_ADMIN_ACTOR)[:255]


AccountIdDep = Annotated[int, Depends(get_account_id)]
AdminActorDep = Annotated[str, Depends(require_admin)]


def get_account_directory(services: ServicesDep) -> AccountDirectory:
    return services.accounts


def get_withdrawal_workflow(services: ServicesDep) -> WithdrawalWorkflow:
    return services.withdrawals


def get_deposit_workflow(services: ServicesDep) -> DepositWorkflow:
    return services.deposits


def get_set_balance_use_case(services: ServicesDep) -> SetBalanceUseCase:
    return services.set_balance


def get_credit_use_case(services: ServicesDep) -> CreditBalanceUseCase:
    return services.credit


def get_simulator_control(services: ServicesDep) -> SimulatorControl:
    return services.simulator_control


def get_trade_retention(services: ServicesDep) -> TradeRetention:
    return services.retention


def get_scheduler(services: ServicesDep) -> SimulationScheduler:
    return services.scheduler
