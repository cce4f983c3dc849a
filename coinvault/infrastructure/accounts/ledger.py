"""
Adapter: SQL account ledger.

Implements the Ledger and LedgerUnitOfWork ports with SQLAlchemy Core.
Row locks use SELECT ... FOR UPDATE (no-op on SQLite, where the engine
serializes writers with BEGIN IMMEDIATE instead).
"""

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterator, Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine, RowMapping
from sqlalchemy.exc import IntegrityError

from coinvault.domain.accounts.entities import (
    ZERO,
    Account,
    Asset,
    FeeStatus,
    GrowthStats,
    Portfolio,
    SimulationState,
    TradeRecord,
    TradeType,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    Withdrawal,
    WithdrawalStatus,
)
from coinvault.domain.accounts.errors import AccountNotFoundError, DuplicateAccountError
from coinvault.domain.accounts.ports import Ledger, LedgerUnitOfWork
from coinvault.infrastructure.db.schema import (
    accounts,
    admin_audit,
    portfolios,
    trades,
    transactions,
    utcnow,
    withdrawals,
)

logger = logging.getLogger(__name__)

_GROWTH_TRADE_TYPES = (TradeType.BUY.value, TradeType.SELL.value, TradeType.SIMULATED.value)


def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _account_from_row(row: RowMapping) -> Account:
    return Account(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        balance=_dec(row["balance"]),
        portfolio_value=_dec(row["portfolio_value"]),
        tax_id=row["tax_id"],
        is_active=bool(row["is_active"]),
        simulation=SimulationState(
            enabled=bool(row["sim_enabled"]),
            paused=bool(row["sim_paused"]),
            next_run_at=row["sim_next_run_at"],
            last_run_at=row["sim_last_run_at"],
            started_at=row["sim_started_at"],
        ),
        created_at=row["created_at"],
    )


def _portfolio_from_row(row: RowMapping) -> Portfolio:
    return Portfolio(
        account_id=row["account_id"],
        holdings={asset: _dec(row[asset.column]) for asset in Asset},
        usd_value=_dec(row["usd_value"]),
        updated_at=row["updated_at"],
    )


def _trade_from_row(row: RowMapping) -> TradeRecord:
    return TradeRecord(
        id=row["id"],
        account_id=row["account_id"],
        trade_type=TradeType(row["type"]),
        asset=row["asset"],
        quantity=_dec(row["quantity"]),
        price=_dec(row["price"]),
        total=_dec(row["total"]),
        balance_before=_dec(row["balance_before"]),
        balance_after=_dec(row["balance_after"]),
        status=row["status"],
        is_simulated=bool(row["is_simulated"]),
        created_at=row["created_at"],
    )


def _transaction_from_row(row: RowMapping) -> TransactionRecord:
    return TransactionRecord(
        id=row["id"],
        account_id=row["account_id"],
        transaction_type=TransactionType(row["type"]),
        amount=_dec(row["amount"]),
        currency=row["currency"],
        status=TransactionStatus(row["status"]),
        reference=row["reference"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _withdrawal_from_row(row: RowMapping) -> Withdrawal:
    return Withdrawal(
        id=row["id"],
        account_id=row["account_id"],
        amount=_dec(row["amount"]),
        fee_amount=_dec(row["fee_amount"]),
        fee_rate=_dec(row["fee_rate"]),
        fee_currency=row["fee_currency"],
        fee_status=FeeStatus(row["fee_status"]),
        status=WithdrawalStatus(row["status"]),
        crypto_type=row["crypto_type"],
        crypto_address=row["crypto_address"],
        balance_snapshot=_dec(row["balance_snapshot"]),
        error_message=row["error_message"],
        fee_confirmed_by=row["fee_confirmed_by"],
        fee_confirmed_at=row["fee_confirmed_at"],
        created_at=row["created_at"],
        processed_at=row["processed_at"],
    )


def _db_value(value: Any) -> Any:
    if isinstance(value, (WithdrawalStatus, FeeStatus, TransactionStatus)):
        return value.value
    return value


class SqlLedgerUnitOfWork(LedgerUnitOfWork):
    """Ledger operations bound to one open connection/transaction."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def lock_account(self, account_id: int) -> Account:
        row = (
            self._conn.execute(
                select(accounts).where(accounts.c.id == account_id).with_for_update()
            )
            .mappings()
            .first()
        )
        if row is None:
            raise AccountNotFoundError(account_id)
        return _account_from_row(row)

    def lock_portfolio(self, account_id: int) -> Portfolio:
        query = (
            select(portfolios)
            .where(portfolios.c.account_id == account_id)
            .with_for_update()
        )
        row = self._conn.execute(query).mappings().first()
        if row is None:
            self._conn.execute(
                insert(portfolios).values(account_id=account_id, updated_at=utcnow())
            )
            row = self._conn.execute(query).mappings().one()
        return _portfolio_from_row(row)

    def write_balance(self, account_id: int, amount: Decimal) -> None:
        self._conn.execute(
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(balance=amount, portfolio_value=amount, updated_at=utcnow())
        )

    def write_portfolio(
        self, account_id: int, holdings: dict[Asset, Decimal], usd_value: Decimal
    ) -> None:
        values: dict[str, Any] = {
            asset.column: holdings.get(asset, ZERO) for asset in Asset
        }
        self._conn.execute(
            update(portfolios)
            .where(portfolios.c.account_id == account_id)
            .values(**values, usd_value=usd_value, updated_at=utcnow())
        )

    def update_tax_id(self, account_id: int, tax_id: Optional[str]) -> None:
        self._conn.execute(
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(tax_id=tax_id, updated_at=utcnow())
        )

    def update_simulation(self, account_id: int, state: SimulationState) -> None:
        self._conn.execute(
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(
                sim_enabled=state.enabled,
                sim_paused=state.paused,
                sim_next_run_at=state.next_run_at,
                sim_last_run_at=state.last_run_at,
                sim_started_at=state.started_at,
                updated_at=utcnow(),
            )
        )

    def set_active(self, account_id: int, active: bool, at: datetime) -> None:
        self._conn.execute(
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(
                is_active=active,
                deleted_at=None if active else at,
                updated_at=at,
            )
        )

    def append_trade(self, trade: TradeRecord) -> TradeRecord:
        created_at = trade.created_at or utcnow()
        result = self._conn.execute(
            insert(trades).values(
                account_id=trade.account_id,
                type=trade.trade_type.value,
                asset=trade.asset,
                quantity=trade.quantity,
                price=trade.price,
                total=trade.total,
                balance_before=trade.balance_before,
                balance_after=trade.balance_after,
                status=trade.status,
                is_simulated=trade.is_simulated,
                created_at=created_at,
            )
        )
        return replace(trade, id=result.inserted_primary_key[0], created_at=created_at)

    def append_transaction(self, record: TransactionRecord) -> TransactionRecord:
        now = utcnow()
        result = self._conn.execute(
            insert(transactions).values(
                account_id=record.account_id,
                type=record.transaction_type.value,
                amount=record.amount,
                currency=record.currency,
                status=record.status.value,
                reference=record.reference,
                created_at=now,
                updated_at=now,
            )
        )
        return replace(
            record,
            id=result.inserted_primary_key[0],
            created_at=now,
            updated_at=now,
        )

    def lock_transaction(self, transaction_id: int) -> Optional[TransactionRecord]:
        row = (
            self._conn.execute(
                select(transactions)
                .where(transactions.c.id == transaction_id)
                .with_for_update()
            )
            .mappings()
            .first()
        )
        return _transaction_from_row(row) if row is not None else None

    def update_transaction_status(
        self, transaction_id: int, status: TransactionStatus
    ) -> None:
        self._conn.execute(
            update(transactions)
            .where(transactions.c.id == transaction_id)
            .values(status=status.value, updated_at=utcnow())
        )

    def update_transaction_status_by_reference(
        self, reference: str, status: TransactionStatus
    ) -> int:
        result = self._conn.execute(
            update(transactions)
            .where(transactions.c.reference == reference)
            .values(status=status.value, updated_at=utcnow())
        )
        return result.rowcount

    def count_completed_deposits(self, account_id: int) -> int:
        return self._conn.execute(
            select(func.count())
            .select_from(transactions)
            .where(
                transactions.c.account_id == account_id,
                transactions.c.type == TransactionType.DEPOSIT.value,
                transactions.c.status == TransactionStatus.COMPLETED.value,
            )
        ).scalar_one()

    def insert_withdrawal(
        self,
        account_id: int,
        amount: Decimal,
        fee_amount: Decimal,
        fee_rate: Decimal,
        fee_currency: str,
        crypto_type: str,
        crypto_address: str,
        balance_snapshot: Decimal,
    ) -> Withdrawal:
        result = self._conn.execute(
            insert(withdrawals).values(
                account_id=account_id,
                amount=amount,
                fee_amount=fee_amount,
                fee_rate=fee_rate,
                fee_currency=fee_currency,
                fee_status=FeeStatus.REQUIRED.value,
                status=WithdrawalStatus.PENDING.value,
                crypto_type=crypto_type,
                crypto_address=crypto_address,
                balance_snapshot=balance_snapshot,
                created_at=utcnow(),
            )
        )
        return self._fetch_withdrawal(result.inserted_primary_key[0])

    def lock_withdrawal(self, withdrawal_id: int) -> Optional[Withdrawal]:
        row = (
            self._conn.execute(
                select(withdrawals)
                .where(withdrawals.c.id == withdrawal_id)
                .with_for_update()
            )
            .mappings()
            .first()
        )
        return _withdrawal_from_row(row) if row is not None else None

    def update_withdrawal(self, withdrawal_id: int, **changes: Any) -> Withdrawal:
        self._conn.execute(
            update(withdrawals)
            .where(withdrawals.c.id == withdrawal_id)
            .values(**{key: _db_value(value) for key, value in changes.items()})
        )
        return self._fetch_withdrawal(withdrawal_id)

    def delete_withdrawal(self, withdrawal_id: int) -> None:
        self._conn.execute(delete(withdrawals).where(withdrawals.c.id == withdrawal_id))

    def record_admin_action(self, action: str, details: dict) -> None:
        self._conn.execute(
            insert(admin_audit).values(
                action=action, details=details, created_at=utcnow()
            )
        )

    def _fetch_withdrawal(self, withdrawal_id: int) -> Withdrawal:
        row = (
            self._conn.execute(
                select(withdrawals).where(withdrawals.c.id == withdrawal_id)
            )
            .mappings()
            .one()
        )
        return _withdrawal_from_row(row)


class SqlLedger(Ledger):
    """SQLAlchemy-backed ledger.

    Reads run in their own short transaction; writes go through
    transaction(), which yields a SqlLedgerUnitOfWork.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @contextmanager
    def transaction(self) -> Iterator[SqlLedgerUnitOfWork]:
        with self._engine.begin() as conn:
            yield SqlLedgerUnitOfWork(conn)

    def create_account(
        self, email: str, name: str, tax_id: Optional[str] = None
    ) -> Account:
        now = utcnow()
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    insert(accounts).values(
                        email=email,
                        name=name,
                        tax_id=tax_id,
                        balance=ZERO,
                        portfolio_value=ZERO,
                        is_active=True,
                        sim_enabled=False,
                        sim_paused=False,
                        created_at=now,
                        updated_at=now,
                    )
                )
                account_id = result.inserted_primary_key[0]
                conn.execute(
                    insert(portfolios).values(account_id=account_id, updated_at=now)
                )
                row = (
                    conn.execute(select(accounts).where(accounts.c.id == account_id))
                    .mappings()
                    .one()
                )
        except IntegrityError as exc:
            raise DuplicateAccountError(email) from exc
        logger.info("Registered account id=%s", account_id)
        return _account_from_row(row)

    def get_account(self, account_id: int) -> Optional[Account]:
        row = self._first(select(accounts).where(accounts.c.id == account_id))
        return _account_from_row(row) if row is not None else None

    def get_portfolio(self, account_id: int) -> Optional[Portfolio]:
        row = self._first(
            select(portfolios).where(portfolios.c.account_id == account_id)
        )
        return _portfolio_from_row(row) if row is not None else None

    def get_transaction(self, transaction_id: int) -> Optional[TransactionRecord]:
        row = self._first(select(transactions).where(transactions.c.id == transaction_id))
        return _transaction_from_row(row) if row is not None else None

    def get_withdrawal(self, withdrawal_id: int) -> Optional[Withdrawal]:
        row = self._first(select(withdrawals).where(withdrawals.c.id == withdrawal_id))
        return _withdrawal_from_row(row) if row is not None else None

    def list_withdrawals(
        self,
        account_id: Optional[int] = None,
        status: Optional[WithdrawalStatus] = None,
        limit: int = 50,
    ) -> list[Withdrawal]:
        query = select(withdrawals)
        if account_id is not None:
            query = query.where(withdrawals.c.account_id == account_id)
        if status is not None:
            query = query.where(withdrawals.c.status == status.value)
        query = query.order_by(withdrawals.c.id.desc()).limit(limit)
        return [_withdrawal_from_row(row) for row in self._all(query)]

    def list_transactions(
        self,
        account_id: Optional[int] = None,
        transaction_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 50,
    ) -> list[TransactionRecord]:
        query = select(transactions)
        if account_id is not None:
            query = query.where(transactions.c.account_id == account_id)
        if transaction_type is not None:
            query = query.where(transactions.c.type == transaction_type.value)
        if status is not None:
            query = query.where(transactions.c.status == status.value)
        query = query.order_by(transactions.c.id.desc()).limit(limit)
        return [_transaction_from_row(row) for row in self._all(query)]

    def list_trades(
        self, account_id: int, simulated_only: bool = False, limit: int = 50
    ) -> list[TradeRecord]:
        query = select(trades).where(trades.c.account_id == account_id)
        if simulated_only:
            query = query.where(trades.c.is_simulated.is_(True))
        query = query.order_by(trades.c.id.desc()).limit(limit)
        return [_trade_from_row(row) for row in self._all(query)]

    def growth_stats(self, account_id: int) -> GrowthStats:
        query = select(
            func.count(trades.c.id),
            func.sum(trades.c.total),
            func.max(trades.c.balance_after),
            func.min(trades.c.balance_after),
        ).where(
            trades.c.account_id == account_id,
            trades.c.is_simulated.is_(True),
            trades.c.type.in_(_GROWTH_TRADE_TYPES),
        )
        with self._engine.connect() as conn:
            count, volume, peak, lowest = conn.execute(query).one()
        count = count or 0
        volume = _dec(volume)
        return GrowthStats(
            account_id=account_id,
            trade_count=count,
            total_volume=volume,
            average_gain=(volume / count) if count else ZERO,
            peak_balance=_dec(peak) if peak is not None else None,
            lowest_balance=_dec(lowest) if lowest is not None else None,
        )

    def list_simulation_accounts(self) -> list[int]:
        query = (
            select(accounts.c.id)
            .where(accounts.c.sim_enabled.is_(True), accounts.c.is_active.is_(True))
            .order_by(accounts.c.id)
        )
        with self._engine.connect() as conn:
            return list(conn.execute(query).scalars())

    def list_due_accounts(self, now: datetime, limit: int) -> list[int]:
        query = (
            select(accounts.c.id)
            .where(
                accounts.c.sim_enabled.is_(True),
                accounts.c.sim_paused.is_(False),
                accounts.c.is_active.is_(True),
                accounts.c.balance > 0,
                accounts.c.sim_next_run_at.is_not(None),
                accounts.c.sim_next_run_at <= now,
            )
            .order_by(accounts.c.sim_next_run_at)
            .limit(limit)
        )
        with self._engine.connect() as conn:
            return list(conn.execute(query).scalars())

    def purge_trades(self, older_than: Optional[datetime] = None) -> int:
        statement = delete(trades)
        if older_than is not None:
            statement = statement.where(
                trades.c.is_simulated.is_(True),
                trades.c.type.in_(_GROWTH_TRADE_TYPES),
                trades.c.created_at < older_than,
            )
        with self._engine.begin() as conn:
            removed = conn.execute(statement).rowcount
        logger.info("Purged %d trade rows (older_than=%s)", removed, older_than)
        return removed

    def _first(self, query) -> Optional[RowMapping]:
        with self._engine.connect() as conn:
            return conn.execute(query).mappings().first()

    def _all(self, query) -> list[RowMapping]:
        with self._engine.connect() as conn:
            return list(conn.execute(query).mappings().all())
