"""
Engine construction for the ledger database.

PostgreSQL gets row locks from SELECT ... FOR UPDATE. SQLite has no row
locks, so its connections are switched to explicit BEGIN IMMEDIATE
transactions: the write lock is taken when the transaction opens and
concurrent writers queue behind it instead of failing on upgrade.
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from coinvault.infrastructure.db.schema import metadata

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Build a SQLAlchemy engine for `database_url`."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
        )
        _serialize_sqlite_writers(engine)
        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def _serialize_sqlite_writers(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        # Let SQLAlchemy emit BEGIN itself.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_schema(engine: Engine) -> None:
    """Create any missing tables."""
    metadata.create_all(engine)
    logger.info("Ledger schema ready on %s", engine.url.render_as_string(hide_password=True))
