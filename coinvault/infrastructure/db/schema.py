"""SQLAlchemy Core tables for the account ledger."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
)
from sqlalchemy.types import TypeDecorator

metadata = MetaData()

MONEY = Numeric(20, 8)
QUANTITY = Numeric(30, 8)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC datetimes on every backend."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("balance", MONEY, nullable=False, default=0),
    Column("portfolio_value", MONEY, nullable=False, default=0),
    Column("tax_id", String(64), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("deleted_at", UTCDateTime, nullable=True),
    Column("sim_enabled", Boolean, nullable=False, default=False),
    Column("sim_paused", Boolean, nullable=False, default=False),
    Column("sim_next_run_at", UTCDateTime, nullable=True),
    Column("sim_last_run_at", UTCDateTime, nullable=True),
    Column("sim_started_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Column("updated_at", UTCDateTime, nullable=False, default=utcnow),
    CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
)

Index("ix_accounts_sim_due", accounts.c.sim_enabled, accounts.c.sim_next_run_at)

portfolios = Table(
    "portfolios",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "account_id",
        Integer,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column("btc", QUANTITY, nullable=False, default=0),
    Column("eth", QUANTITY, nullable=False, default=0),
    Column("usdt", QUANTITY, nullable=False, default=0),
    Column("usdc", QUANTITY, nullable=False, default=0),
    Column("xrp", QUANTITY, nullable=False, default=0),
    Column("ada", QUANTITY, nullable=False, default=0),
    Column("usd_value", MONEY, nullable=False, default=0),
    Column("updated_at", UTCDateTime, nullable=False, default=utcnow),
)

trades = Table(
    "trades",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "account_id",
        Integer,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("type", String(16), nullable=False),
    Column("asset", String(16), nullable=False),
    Column("quantity", QUANTITY, nullable=False),
    Column("price", MONEY, nullable=False),
    Column("total", MONEY, nullable=False),
    Column("balance_before", MONEY, nullable=False),
    Column("balance_after", MONEY, nullable=False),
    Column("status", String(16), nullable=False, default="completed"),
    Column("is_simulated", Boolean, nullable=False, default=False),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow, index=True),
    CheckConstraint(
        "type IN ('buy', 'sell', 'simulated', 'loss')", name="ck_trades_type"
    ),
    CheckConstraint("quantity > 0", name="ck_trades_quantity_positive"),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "account_id",
        Integer,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("type", String(16), nullable=False),
    Column("amount", MONEY, nullable=False),
    Column("currency", String(10), nullable=False, default="USD"),
    Column("status", String(16), nullable=False, default="pending"),
    Column("reference", String(255), nullable=True, index=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Column("updated_at", UTCDateTime, nullable=False, default=utcnow),
    CheckConstraint(
        "type IN ('deposit', 'withdrawal', 'credit', 'adjustment', 'trade')",
        name="ck_transactions_type",
    ),
    CheckConstraint(
        "status IN ('pending', 'completed', 'failed')",
        name="ck_transactions_status",
    ),
)

withdrawals = Table(
    "withdrawals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "account_id",
        Integer,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("amount", MONEY, nullable=False),
    Column("fee_amount", MONEY, nullable=False),
    Column("fee_rate", Numeric(6, 4), nullable=False),
    Column("fee_currency", String(10), nullable=False),
    Column("fee_status", String(16), nullable=False, default="required"),
    Column("status", String(16), nullable=False, default="pending"),
    Column("crypto_type", String(16), nullable=False),
    Column("crypto_address", String(255), nullable=False),
    Column("balance_snapshot", MONEY, nullable=False),
    Column("error_message", String(500), nullable=True),
    Column("fee_confirmed_by", String(255), nullable=True),
    Column("fee_confirmed_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Column("processed_at", UTCDateTime, nullable=True),
    CheckConstraint("amount > 0", name="ck_withdrawals_amount_positive"),
    CheckConstraint(
        "status IN ('pending', 'processing', 'completed', 'failed')",
        name="ck_withdrawals_status",
    ),
    CheckConstraint(
        "fee_status IN ('required', 'submitted', 'confirmed')",
        name="ck_withdrawals_fee_status",
    ),
)

admin_audit = Table(
    "admin_audit",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("action", String(64), nullable=False),
    Column("details", JSON, nullable=False),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
)
