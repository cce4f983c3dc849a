"""
Use case: purge of simulated trade history.

The trade log is append-only except for these bulk purges. Scheduled
purges remove simulated buy/sell/tick trades past the retention window;
loss records and real trades are kept. The administrative purge clears
every trade.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from coinvault.application.accounts.balance_mutator import utcnow
from coinvault.domain.accounts.ports import Ledger

logger = logging.getLogger(__name__)


class TradeRetention:
    task_name = "purge_trades"

    def __init__(
        self,
        ledger: Ledger,
        retention_hours: int = 48,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ledger = ledger
        self._retention = timedelta(hours=retention_hours)
        self._clock = clock

    def purge_expired(self) -> int:
        cutoff = self._clock() - self._retention
        removed = self._ledger.purge_trades(older_than=cutoff)
        logger.info("Removed %d simulated trades older than %s", removed, cutoff)
        return removed

    def purge_all(self, actor: Optional[str] = None) -> int:
        removed = self._ledger.purge_trades(older_than=None)
        with self._ledger.transaction() as uow:
            uow.record_admin_action("purge_trades", {"removed": removed, "actor": actor})
        logger.warning("All trades purged by admin (%d rows)", removed)
        return removed
