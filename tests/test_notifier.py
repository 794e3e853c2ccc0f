"""
Tests for the notifier.

Covers rendering of a delivered record, send-then-mark ordering,
at-least-once delivery after a failed mark, and delivery failures.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tests.factories import NOW, RecordingChannel, make_config, make_observation
from txnwatch.db.repositories import StoreError, TransactionRepository
from txnwatch.db.unit_of_work import UnitOfWork
from txnwatch.sync.cycle import record_fields
from txnwatch.sync.identity import compute_identity
from txnwatch.sync.notifier import Notifier
from txnwatch.sync.shutdown import ShutdownSignal


async def store(session_factory, observation, created_at=None):
    identity = compute_identity(observation)
    fields = record_fields(identity, observation, "₪")
    if created_at is not None:
        fields["created_at"] = created_at
    async with UnitOfWork(session_factory) as uow:
        await uow.transactions.insert(**fields)
        await uow.commit()
    return identity


async def pending(session_factory):
    async with UnitOfWork(session_factory) as uow:
        return [r.identity for r in await uow.transactions.get_unnotified()]


@pytest.mark.asyncio
class TestNotifier:
    """Tests for Notifier.dispatch."""

    async def test_delivers_and_marks(self, session_factory):
        """The X1/Cafe record is rendered with the friendly name and flipped amount."""
        config = make_config(
            friendlyNames={"X1": "Visa Gold"},
            notification={"channel": "console", "timezone": "UTC"},
        )
        observation = make_observation(
            account="X1",
            description="Cafe",
            amount=-12.5,
            original_currency="₪",
            date=datetime(2024, 3, 9, 8, 30, tzinfo=timezone.utc),
        )
        identity = await store(session_factory, observation)
        channel = RecordingChannel()
        notifier = Notifier(config, channel, session_factory=session_factory)

        report = await notifier.dispatch()

        assert report.delivered == 1
        assert report.failed == 0
        assert await pending(session_factory) == []

        payload = channel.sent[0]
        assert payload.identity == identity
        assert payload.subject == "Cafe - ₪12.50"
        assert payload.fields["account"] == "Visa Gold"
        assert payload.fields["date"] == "08:30 - 09/03/2024"
        assert payload.fields["status"] == "Final"
        assert "Visa Gold" in payload.html
        assert "Charged amount: ₪12.50" in payload.text

    async def test_already_notified_records_are_not_sent_again(self, config, session_factory):
        await store(session_factory, make_observation())
        channel = RecordingChannel()
        notifier = Notifier(config, channel, session_factory=session_factory)

        await notifier.dispatch()
        second = await notifier.dispatch()

        assert len(channel.sent) == 1
        assert second.selected == 0

    async def test_dispatch_order_is_insert_order(self, config, session_factory):
        first = await store(
            session_factory,
            make_observation(identifier="2"),
            created_at=NOW - timedelta(minutes=5),
        )
        second = await store(
            session_factory,
            make_observation(identifier="1"),
            created_at=NOW,
        )
        channel = RecordingChannel()

        await Notifier(config, channel, session_factory=session_factory).dispatch()

        assert [p.identity for p in channel.sent] == [first, second]

    async def test_delivery_failure_keeps_record_pending(self, config, session_factory):
        failing = await store(session_factory, make_observation(identifier="1"))
        ok = await store(session_factory, make_observation(identifier="2"))
        channel = RecordingChannel(fail_identities={failing})
        notifier = Notifier(config, channel, session_factory=session_factory)

        report = await notifier.dispatch()

        assert report.delivered == 1
        assert report.failed == 1
        assert report.failures == [(failing, "SMTP")]
        assert await pending(session_factory) == [failing]
        assert [p.identity for p in channel.sent] == [ok]

    async def test_failed_record_is_retried_next_dispatch(self, config, session_factory):
        identity = await store(session_factory, make_observation())
        channel = RecordingChannel(fail_identities={identity})
        notifier = Notifier(config, channel, session_factory=session_factory)

        await notifier.dispatch()
        channel.fail_identities.clear()
        report = await notifier.dispatch()

        assert report.delivered == 1
        assert await pending(session_factory) == []

    async def test_mark_failure_aborts_and_redelivers(self, config, session_factory, monkeypatch):
        """A crash between send and mark means the record is sent again later."""
        identity = await store(
            session_factory,
            make_observation(identifier="1"),
            created_at=NOW - timedelta(minutes=1),
        )
        await store(session_factory, make_observation(identifier="2"), created_at=NOW)
        original_mark = TransactionRepository.mark_notified

        async def broken_mark(self, identity, notified_at=None):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(TransactionRepository, "mark_notified", broken_mark)
        channel = RecordingChannel()
        notifier = Notifier(config, channel, session_factory=session_factory)

        with pytest.raises(StoreError):
            await notifier.dispatch()

        # Sending stopped at the first record that could not be marked
        assert len(channel.sent) == 1
        assert len(await pending(session_factory)) == 2

        monkeypatch.setattr(TransactionRepository, "mark_notified", original_mark)
        report = await notifier.dispatch()

        assert report.delivered == 2
        assert [p.identity for p in channel.sent].count(identity) == 2

    async def test_select_failure_is_store_error(self, config, session_factory, monkeypatch):
        async def broken_select(self, limit=None):
            raise RuntimeError("no such table")

        monkeypatch.setattr(TransactionRepository, "get_unnotified", broken_select)
        notifier = Notifier(config, RecordingChannel(), session_factory=session_factory)

        with pytest.raises(StoreError):
            await notifier.dispatch()

    async def test_no_record_started_after_shutdown(self, config, session_factory):
        await store(session_factory, make_observation(identifier="1"))
        await store(session_factory, make_observation(identifier="2"))
        shutdown = ShutdownSignal()

        class StoppingChannel(RecordingChannel):
            async def send(self, payload):
                receipt = await super().send(payload)
                shutdown.set("test")
                return receipt

        channel = StoppingChannel()
        report = await Notifier(config, channel, session_factory=session_factory).dispatch(
            shutdown=shutdown
        )

        assert report.delivered == 1
        assert report.skipped == 1
        assert len(await pending(session_factory)) == 1

    async def test_slow_channel_times_out(self, session_factory):
        config = make_config(delivery_timeout_seconds=0.05)
        await store(session_factory, make_observation())

        class SlowChannel(RecordingChannel):
            async def send(self, payload):
                await asyncio.sleep(1)
                return await super().send(payload)

        report = await Notifier(config, SlowChannel(), session_factory=session_factory).dispatch()

        assert report.failed == 1
        assert report.failures[0][1] == "TIMEOUT"
        assert len(await pending(session_factory)) == 1
