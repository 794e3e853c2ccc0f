"""
Notifier.

Delivers one notification per stored, not yet notified record and
marks it notified. The order of steps per record is fixed:

    render -> send -> mark notified (committed) -> next record

so a crash between send and mark leads to a second delivery on the next
run, never to a silently skipped record.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from txnwatch.channels.base import DeliveryError, DeliveryReceipt, NotificationChannel
from txnwatch.db.models import TransactionRecord
from txnwatch.db.repositories import StoreError
from txnwatch.db.unit_of_work import UnitOfWork
from txnwatch.sync.config import SyncConfig
from txnwatch.sync.isolation import isolate_each
from txnwatch.sync.rendering import NotificationRenderer
from txnwatch.sync.shutdown import ShutdownSignal

logger = structlog.get_logger(__name__)


@dataclass
class DispatchReport:
    """Outcome of one notifier pass."""

    selected: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected": self.selected,
            "delivered": self.delivered,
            "delivery_failed": self.failed,
            "delivery_skipped": self.skipped,
        }


class Notifier:
    """Owns the send-then-mark protocol; the channel owns the transport."""

    def __init__(
        self,
        config: SyncConfig,
        channel: NotificationChannel,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        renderer: Optional[NotificationRenderer] = None,
    ):
        self.config = config
        self.channel = channel
        self.renderer = renderer or NotificationRenderer(
            config.notification, config.friendly_names
        )
        self._session_factory = session_factory

    async def dispatch(self, shutdown: Optional[ShutdownSignal] = None) -> DispatchReport:
        """
        Deliver every pending record.

        Raises:
            StoreError: If pending records cannot be loaded or a delivered
                record cannot be marked; the remaining records wait for the
                next run.
        """
        report = DispatchReport()
        pending = await self._load_pending()
        report.selected = len(pending)

        if not pending:
            logger.debug("notify.nothing_pending")
            return report

        logger.info("notify.started", pending=len(pending), channel=self.channel.name)
        outcomes = await isolate_each(
            pending,
            self._deliver,
            should_stop=shutdown.is_set if shutdown else None,
            propagate=(StoreError,),
        )

        for outcome in outcomes:
            if outcome.ok:
                report.delivered += 1
                continue
            kind = getattr(outcome.error, "kind", type(outcome.error).__name__)
            report.failed += 1
            report.failures.append((outcome.item.identity, kind))
            logger.warning(
                "notify.delivery_failed",
                identity=outcome.item.identity,
                failure_kind=kind,
                error=str(outcome.error),
            )

        report.skipped = len(pending) - len(outcomes)
        logger.info(
            "notify.completed",
            delivered=report.delivered,
            failed=report.failed,
            skipped=report.skipped,
        )
        return report

    async def _load_pending(self) -> List[TransactionRecord]:
        async def load():
            async with UnitOfWork(self._session_factory) as uow:
                return await uow.transactions.get_unnotified()

        try:
            return await asyncio.wait_for(
                load(), timeout=self.config.store_timeout_seconds
            )
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Cannot load pending records: {e}") from e

    async def _deliver(self, record: TransactionRecord) -> DeliveryReceipt:
        payload = self.renderer.render(record)

        try:
            receipt = await asyncio.wait_for(
                self.channel.send(payload),
                timeout=self.config.delivery_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise DeliveryError("Delivery timed out", kind="TIMEOUT") from e

        logger.info(
            "notify.delivered",
            identity=record.identity,
            channel=receipt.channel,
            message_id=receipt.message_id,
        )
        await self._mark_notified(record.identity)
        return receipt

    async def _mark_notified(self, identity: str) -> None:
        async def mark() -> bool:
            async with UnitOfWork(self._session_factory) as uow:
                changed = await uow.transactions.mark_notified(identity)
                await uow.commit()
                return changed

        try:
            changed = await asyncio.wait_for(
                mark(), timeout=self.config.store_timeout_seconds
            )
        except Exception as e:
            logger.error("notify.mark_failed", identity=identity, error=str(e))
            raise StoreError(f"Delivered {identity} but could not mark it: {e}") from e

        if not changed:
            logger.warning("notify.already_marked", identity=identity)
