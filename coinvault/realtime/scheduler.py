"""
Simulation scheduler.

Uses APScheduler to run the simulated-activity jobs in background threads:
- **Growth** (minute 0 of every hour, trading days): configured growth policy
  over all enabled accounts
- **Tick poll** (every N seconds): per-account compounding for due accounts
- **Trade purge** (every N hours): drop simulated trades past retention
- **On-demand**: run_now() from the admin API, optionally for one account

Jobs never overlap with themselves (max_instances=1) and missed runs are
coalesced. A failing job is recorded as FAILED and its timer keeps firing.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from coinvault.application.accounts.simulators import GrowthSimulator, TickSimulator
from coinvault.application.accounts.trade_retention import TradeRetention

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskResult:
    """Result of a scheduled or on-demand task execution."""

    task_name: str
    status: TaskStatus
    started_at: str
    finished_at: str | None = None
    duration_seconds: float = 0.0
    account_id: int | None = None
    details: dict = field(default_factory=dict)
    error: str | None = None


class SimulationScheduler:
    """Hosts the growth, tick and trade purge jobs.

    Usage:
        scheduler = SimulationScheduler(growth, tick, retention)
        scheduler.start()
        scheduler.run_now("tick", account_id=42)
        scheduler.stop()
    """

    TASKS = ("growth", "tick", "purge_trades")

    def __init__(
        self,
        growth: GrowthSimulator,
        tick: TickSimulator,
        retention: TradeRetention,
        trading_days: str = "mon-fri",
        timezone_name: str = "UTC",
        tick_poll_seconds: int = 60,
        purge_interval_hours: int = 6,
    ) -> None:
        self._growth = growth
        self._tick = tick
        self._retention = retention
        self._trading_days = trading_days
        self._timezone = timezone_name
        self._tick_poll_seconds = tick_poll_seconds
        self._purge_interval_hours = purge_interval_hours
        self._running = False
        self._task_history: list[TaskResult] = []
        self._max_history = 200
        self._lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def task_history(self) -> list[TaskResult]:
        with self._lock:
            return list(self._task_history)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running.")
            return

        self._scheduler = BackgroundScheduler(
            timezone=self._timezone,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self._scheduler.add_job(
            self._task_growth,
            CronTrigger(day_of_week=self._trading_days, minute=0, timezone=self._timezone),
            id="growth",
            name="Hourly growth simulation",
        )
        self._scheduler.add_job(
            self._task_tick,
            IntervalTrigger(seconds=self._tick_poll_seconds),
            id="tick",
            name="Per-account simulation tick poll",
        )
        self._scheduler.add_job(
            self._task_purge_trades,
            IntervalTrigger(hours=self._purge_interval_hours),
            id="purge_trades",
            name="Simulated trade retention purge",
        )
        self._scheduler.start()
        self._running = True
        logger.info("SimulationScheduler started (%s)", self._growth.policy.name)

    def stop(self) -> None:
        """Stop firing new jobs. Running jobs finish their own transaction."""
        self._running = False
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("SimulationScheduler stopped.")

    def run_now(self, task_name: str, account_id: Optional[int] = None) -> TaskResult:
        """Execute a named task immediately (blocking).

        Args:
            task_name: One of 'growth', 'tick', 'purge_trades'.
            account_id: Restrict growth/tick to one account, bypassing the
                trading-day and due-time gates.
        """
        if task_name == "growth":
            if account_id is None:
                return self._execute("growth", lambda: self._growth.run(force=True).as_dict())
            return self._execute(
                "growth",
                lambda: _mutation_details(
                    self._growth.run_for_account(account_id, force=True)
                ),
                account_id,
            )
        if task_name == "tick":
            if account_id is None:
                return self._execute("tick", lambda: self._tick.run().as_dict())
            return self._execute(
                "tick",
                lambda: _mutation_details(
                    self._tick.run_for_account(account_id, force=True)
                ),
                account_id,
            )
        if task_name == "purge_trades":
            return self._task_purge_trades()

        return TaskResult(
            task_name=task_name,
            status=TaskStatus.FAILED,
            started_at=datetime.now(timezone.utc).isoformat(),
            error=f"Unknown task: {task_name}. Available: {list(self.TASKS)}",
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _task_growth(self) -> TaskResult:
        return self._execute("growth", lambda: self._growth.run().as_dict())

    def _task_tick(self) -> TaskResult:
        return self._execute("tick", lambda: self._tick.run().as_dict())

    def _task_purge_trades(self) -> TaskResult:
        return self._execute(
            "purge_trades", lambda: {"removed": self._retention.purge_expired()}
        )

    def _execute(
        self,
        task_name: str,
        fn: Callable[[], dict],
        account_id: Optional[int] = None,
    ) -> TaskResult:
        started = time.monotonic()
        result = TaskResult(
            task_name=task_name,
            status=TaskStatus.RUNNING,
            started_at=datetime.now(timezone.utc).isoformat(),
            account_id=account_id,
        )
        try:
            result.details = fn()
            result.status = TaskStatus.COMPLETED
        except Exception as exc:
            logger.exception("Task %s failed", task_name)
            result.status = TaskStatus.FAILED
            result.error = str(exc)
        result.finished_at = datetime.now(timezone.utc).isoformat()
        result.duration_seconds = round(time.monotonic() - started, 3)
        self._record_result(result)
        return result

    def _record_result(self, result: TaskResult) -> None:
        with self._lock:
            self._task_history.append(result)
            if len(self._task_history) > self._max_history:
                self._task_history = self._task_history[-self._max_history:]

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_scheduled_jobs(self) -> list[dict[str, Any]]:
        if self._scheduler is None:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self._scheduler.get_jobs()
        ]

    def get_status(self) -> dict:
        with self._lock:
            recent = self._task_history[-10:]
        return {
            "running": self._running,
            "growth_policy": self._growth.policy.name,
            "jobs": self.get_scheduled_jobs(),
            "recent_tasks": [
                {
                    "task": r.task_name,
                    "status": r.status.value,
                    "account_id": r.account_id,
                    "duration": r.duration_seconds,
                    "started_at": r.started_at,
                    "error": r.error,
                }
                for r in recent
            ],
        }


def _mutation_details(result: Any) -> dict:
    return {
        "applied": result.applied,
        "balance_before": str(result.balance_before),
        "balance_after": str(result.balance_after),
    }
