"""
Scheduler.

Drives the engine: bootstraps the discovery tracker, then runs cycles of
sync followed by notification dispatch, either once or on an interval
until a shutdown is requested.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from txnwatch.sync.config import SyncConfig
from txnwatch.sync.cycle import SyncCycle
from txnwatch.sync.metrics import CycleRunMetrics, CycleStatus, SyncMetrics
from txnwatch.sync.notifier import Notifier
from txnwatch.sync.shutdown import ShutdownSignal
from txnwatch.sync.tracker import DiscoveryTracker

logger = structlog.get_logger(__name__)


class Scheduler:
    """
    Runs sync cycles and notification dispatch.

    A cycle-level failure (tracker bootstrap, loading or marking pending
    notifications) ends the cycle. In one-shot mode it propagates to the
    caller; in continuous mode the cycle is logged as skipped and the next
    one runs after the usual interval.
    """

    def __init__(
        self,
        config: SyncConfig,
        sync_cycle: SyncCycle,
        notifier: Notifier,
        tracker: DiscoveryTracker,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        shutdown: Optional[ShutdownSignal] = None,
        metrics: Optional[SyncMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.sync_cycle = sync_cycle
        self.notifier = notifier
        self.tracker = tracker
        self.shutdown = shutdown or ShutdownSignal()
        self.metrics = metrics or SyncMetrics()
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._bootstrapped = False

    @property
    def bootstrapped(self) -> bool:
        return self._bootstrapped

    async def bootstrap(self) -> int:
        """Load known identities from the store, once per process."""
        since = self._clock() - self.config.get_bootstrap_window()
        loaded = await asyncio.wait_for(
            self.tracker.bootstrap(since, self._session_factory),
            timeout=self.config.store_timeout_seconds,
        )
        self._bootstrapped = True
        return loaded

    async def run_cycle(self) -> CycleRunMetrics:
        """
        Run one sync cycle followed by one dispatch pass.

        Raises:
            Exception: Any cycle-level failure, after it was recorded
        """
        run_id = self.metrics.start_run()
        bind_contextvars(cycle_id=run_id)
        try:
            logger.info("cycle.started", accounts=len(self.config.accounts))

            if not self._bootstrapped:
                await self.bootstrap()

            sync_report = await self.sync_cycle.run(shutdown=self.shutdown)
            self.metrics.record_sync(sync_report)

            dispatch_report = await self.notifier.dispatch(shutdown=self.shutdown)
            self.metrics.record_dispatch(dispatch_report)
        except Exception as e:
            self.metrics.record_error(f"{type(e).__name__}: {e}")
            self.metrics.end_run(CycleStatus.SKIPPED)
            logger.error(
                "cycle.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            unbind_contextvars("cycle_id")

        run = self.metrics.end_run()
        logger.info(
            "cycle.completed",
            cycle_id=run.run_id,
            status=run.status.value,
            accounts_ok=run.accounts_ok,
            accounts_failed=run.accounts_failed,
            fetched=run.fetched,
            new=run.new,
            duplicate=run.duplicate,
            ignored=run.ignored,
            insert_failed=run.insert_failed,
            delivered=run.delivered,
            delivery_failed=run.delivery_failed,
            duration_seconds=round(run.duration_seconds, 3),
            success_rate_24h=round(self.metrics.get_success_rate(hours=24), 3),
        )
        return run

    async def run_once(self) -> CycleRunMetrics:
        """Run a single cycle; cycle-level failures propagate."""
        return await self.run_cycle()

    async def run_forever(self) -> None:
        """
        Run cycles until shutdown is requested.

        The interval is measured from the end of a cycle, and the wait is
        cut short by the shutdown signal.
        """
        interval = self.config.get_interval_seconds()
        logger.info("scheduler.started", interval_seconds=interval)

        while not self.shutdown.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(
                    "scheduler.cycle_skipped",
                    error=str(e),
                    error_type=type(e).__name__,
                )

            if self.shutdown.is_set():
                break
            logger.debug("scheduler.sleeping", seconds=interval)
            if await self.shutdown.wait(interval):
                break

        logger.info("scheduler.stopped", reason=self.shutdown.reason)

    async def run(self) -> None:
        """Run according to the configured mode."""
        try:
            if self.config.run_mode == "once":
                await self.run_once()
            else:
                await self.run_forever()
        finally:
            logger.info("scheduler.summary", **self.get_status())

    def get_status(self) -> Dict[str, Any]:
        """Current scheduler state and recent metrics."""
        current_run = self.metrics.get_current_run()
        last_run = self.metrics.get_last_run()
        breakers = self.sync_cycle.breakers.snapshot()

        return {
            "mode": self.config.run_mode,
            "bootstrapped": self._bootstrapped,
            "known_identities": len(self.tracker),
            "current_run": current_run.to_dict() if current_run else None,
            "last_run": last_run.to_dict() if last_run else None,
            "recent_runs": [r.status.value for r in self.metrics.get_history(limit=10)],
            "metrics_24h": self.metrics.get_aggregate_metrics(hours=24).to_dict(),
            "success_rate_24h": self.metrics.get_success_rate(hours=24),
            "open_circuits": sorted(
                key for key, state in breakers.items() if state["state"] != "closed"
            ),
        }
