"""Tests for scheduler metrics collection."""

from datetime import timedelta

from txnwatch.sync.cycle import AccountReport, AccountStatus, CycleReport
from txnwatch.sync.metrics import CycleStatus, SyncMetrics
from txnwatch.sync.notifier import DispatchReport


def cycle_report(failed_accounts=0, ok_accounts=1, new=2, insert_failed=0):
    accounts = [
        AccountReport(account=f"ok{i}", fetched=new, new=new, failed=insert_failed)
        for i in range(ok_accounts)
    ]
    accounts += [
        AccountReport(account=f"bad{i}", status=AccountStatus.FAILED, failure_kind="TIMEOUT")
        for i in range(failed_accounts)
    ]
    return CycleReport(accounts=accounts)


class TestSyncMetrics:
    """Tests for SyncMetrics."""

    def test_successful_cycle(self):
        metrics = SyncMetrics()
        run_id = metrics.start_run()
        metrics.record_sync(cycle_report())
        metrics.record_dispatch(DispatchReport(selected=2, delivered=2))

        run = metrics.end_run()

        assert run.run_id == run_id
        assert run.status == CycleStatus.SUCCESS
        assert run.new == 2
        assert run.delivered == 2
        assert run.duration_seconds >= 0
        assert metrics.get_last_run() is run
        assert run.to_dict()["status"] == "success"

    def test_partial_when_some_account_fails(self):
        metrics = SyncMetrics()
        metrics.start_run()
        metrics.record_sync(cycle_report(failed_accounts=1))

        run = metrics.end_run()

        assert run.status == CycleStatus.PARTIAL
        assert run.error_count == 1
        assert run.errors == ["bad0: TIMEOUT"]

    def test_partial_when_delivery_fails(self):
        metrics = SyncMetrics()
        metrics.start_run()
        metrics.record_sync(cycle_report())
        metrics.record_dispatch(DispatchReport(selected=1, failed=1))

        assert metrics.end_run().status == CycleStatus.PARTIAL

    def test_failed_when_every_account_fails(self):
        metrics = SyncMetrics()
        metrics.start_run()
        metrics.record_sync(cycle_report(failed_accounts=2, ok_accounts=0))

        assert metrics.end_run().status == CycleStatus.FAILED

    def test_explicit_status_wins(self):
        metrics = SyncMetrics()
        metrics.start_run()

        assert metrics.end_run(CycleStatus.SKIPPED).status == CycleStatus.SKIPPED

    def test_end_without_start(self):
        assert SyncMetrics().end_run() is None

    def test_history_is_bounded_and_newest_first(self):
        metrics = SyncMetrics(history_size=3)
        for _ in range(5):
            metrics.start_run()
            metrics.end_run()

        history = metrics.get_history()
        assert len(history) == 3
        assert history[0].run_id.endswith("-5")
        assert len(metrics.get_history(limit=1)) == 1

    def test_aggregate_metrics(self):
        metrics = SyncMetrics()
        for report in [cycle_report(), cycle_report(failed_accounts=1), cycle_report()]:
            metrics.start_run()
            metrics.record_sync(report)
            metrics.end_run()
        metrics.start_run()
        metrics.end_run(CycleStatus.SKIPPED)

        agg = metrics.get_aggregate_metrics()

        assert agg.total_runs == 4
        assert agg.successful_runs == 2
        assert agg.partial_runs == 1
        assert agg.skipped_runs == 1
        assert agg.total_new == 6
        assert agg.last_success is not None
        assert agg.last_failure is not None
        assert metrics.get_success_rate() == 0.5

    def test_aggregate_window_excludes_old_runs(self):
        metrics = SyncMetrics()
        metrics.start_run()
        old = metrics.end_run()
        old.started_at -= timedelta(hours=48)

        assert metrics.get_aggregate_metrics(hours=24).total_runs == 0
        assert metrics.get_success_rate(hours=24) == 0.0
