"""
Sync engine metrics.

Tracks per-cycle counts, durations and outcomes, keeps a bounded
history in memory and answers aggregate queries over it.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from txnwatch.sync.cycle import CycleReport
from txnwatch.sync.notifier import DispatchReport


class CycleStatus(str, Enum):
    """Status of a scheduler cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some accounts, inserts or deliveries failed
    FAILED = "failed"
    SKIPPED = "skipped"  # Cycle-level failure, nothing was committed for it


@dataclass
class CycleRunMetrics:
    """Metrics for a single cycle."""

    run_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    status: CycleStatus = CycleStatus.SUCCESS

    # Accounts
    accounts_ok: int = 0
    accounts_failed: int = 0
    accounts_skipped: int = 0

    # Records
    fetched: int = 0
    new: int = 0
    duplicate: int = 0
    ignored: int = 0
    insert_failed: int = 0

    # Notifications
    delivered: int = 0
    delivery_failed: int = 0

    duration_seconds: float = 0.0

    errors: List[str] = field(default_factory=list)
    error_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["ended_at"] = self.ended_at.isoformat() if self.ended_at else None
        data["status"] = self.status.value
        return data


@dataclass
class AggregateMetrics:
    """Aggregated metrics across multiple cycles."""

    total_runs: int = 0
    successful_runs: int = 0
    partial_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0

    total_fetched: int = 0
    total_new: int = 0
    total_delivered: int = 0
    total_errors: int = 0

    avg_duration_seconds: float = 0.0

    last_run: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ["last_run", "last_success", "last_failure"]:
            if data[key]:
                data[key] = data[key].isoformat()
        return data


class SyncMetrics:
    """
    In-memory metrics tracker for the scheduler.

    Tracks the current cycle and keeps the most recent ``history_size``
    completed ones.
    """

    def __init__(self, history_size: int = 100):
        self.history_size = history_size
        self._current_run: Optional[CycleRunMetrics] = None
        self._history: List[CycleRunMetrics] = []
        self._run_counter = 0

    def start_run(self) -> str:
        """Start tracking a new cycle and return its id."""
        self._run_counter += 1
        now = datetime.now(timezone.utc)
        run_id = f"cycle-{now.strftime('%Y%m%d-%H%M%S')}-{self._run_counter}"
        self._current_run = CycleRunMetrics(run_id=run_id, started_at=now)
        return run_id

    def record_sync(self, report: CycleReport) -> None:
        if not self._current_run:
            return
        run = self._current_run
        run.accounts_failed += len(report.failed_accounts)
        run.accounts_ok += len(report.accounts) - len(report.failed_accounts)
        run.accounts_skipped += report.skipped
        run.fetched += report.total("fetched")
        run.new += report.total("new")
        run.duplicate += report.total("duplicate")
        run.ignored += report.total("ignored")
        run.insert_failed += report.total("failed")
        for account in report.failed_accounts:
            self.record_error(f"{account.account}: {account.failure_kind}")

    def record_dispatch(self, report: DispatchReport) -> None:
        if not self._current_run:
            return
        self._current_run.delivered += report.delivered
        self._current_run.delivery_failed += report.failed

    def record_error(self, error: str) -> None:
        if self._current_run:
            self._current_run.errors.append(error)
            self._current_run.error_count += 1

    def end_run(self, status: Optional[CycleStatus] = None) -> Optional[CycleRunMetrics]:
        """
        End the current cycle.

        Args:
            status: Final status; derived from the recorded counts when omitted

        Returns:
            The completed run metrics
        """
        run = self._current_run
        if not run:
            return None

        run.ended_at = datetime.now(timezone.utc)
        run.status = status or self._derive_status(run)
        run.duration_seconds = (run.ended_at - run.started_at).total_seconds()

        self._history.append(run)
        if len(self._history) > self.history_size:
            self._history = self._history[-self.history_size :]

        self._current_run = None
        return run

    @staticmethod
    def _derive_status(run: CycleRunMetrics) -> CycleStatus:
        if run.accounts_failed and not run.accounts_ok:
            return CycleStatus.FAILED
        if run.accounts_failed or run.insert_failed or run.delivery_failed:
            return CycleStatus.PARTIAL
        return CycleStatus.SUCCESS

    def get_current_run(self) -> Optional[CycleRunMetrics]:
        return self._current_run

    def get_last_run(self) -> Optional[CycleRunMetrics]:
        """Get metrics for the most recent completed cycle."""
        return self._history[-1] if self._history else None

    def get_history(self, limit: Optional[int] = None) -> List[CycleRunMetrics]:
        """Recent cycles, newest first."""
        history = list(reversed(self._history))
        if limit:
            history = history[:limit]
        return history

    def get_aggregate_metrics(self, hours: Optional[int] = None) -> AggregateMetrics:
        """
        Get aggregated metrics across recent cycles.

        Args:
            hours: Only include cycles from the last N hours (None = all history)
        """
        runs = self._history
        if hours:
            cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
            runs = [r for r in runs if r.started_at >= cutoff]

        metrics = AggregateMetrics()
        if not runs:
            return metrics

        metrics.total_runs = len(runs)
        for run in runs:
            if run.status == CycleStatus.SUCCESS:
                metrics.successful_runs += 1
            elif run.status == CycleStatus.PARTIAL:
                metrics.partial_runs += 1
            elif run.status == CycleStatus.FAILED:
                metrics.failed_runs += 1
            elif run.status == CycleStatus.SKIPPED:
                metrics.skipped_runs += 1

        metrics.total_fetched = sum(r.fetched for r in runs)
        metrics.total_new = sum(r.new for r in runs)
        metrics.total_delivered = sum(r.delivered for r in runs)
        metrics.total_errors = sum(r.error_count for r in runs)
        metrics.avg_duration_seconds = (
            sum(r.duration_seconds for r in runs) / metrics.total_runs
        )

        metrics.last_run = runs[-1].started_at
        for run in reversed(runs):
            if run.status == CycleStatus.SUCCESS and not metrics.last_success:
                metrics.last_success = run.started_at
            if run.status in (CycleStatus.FAILED, CycleStatus.SKIPPED) and not metrics.last_failure:
                metrics.last_failure = run.started_at
            if metrics.last_success and metrics.last_failure:
                break

        return metrics

    def get_success_rate(self, hours: Optional[int] = None) -> float:
        """Share of successful cycles (0.0 to 1.0)."""
        agg = self.get_aggregate_metrics(hours)
        if agg.total_runs == 0:
            return 0.0
        return agg.successful_runs / agg.total_runs
