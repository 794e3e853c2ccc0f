"""
Sync cycle.

Fetches every configured account, keeps the observations that are new
and not ignored, and stores them one by one. A failing account or a
failing insert is recorded in the report and never stops the cycle.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from txnwatch.db.repositories import DuplicateRecordError
from txnwatch.db.unit_of_work import UnitOfWork
from txnwatch.sources.accounts import AccountDescriptor
from txnwatch.sources.base import (
    FetchOptions,
    RawObservation,
    SourceConnectionError,
    SourceError,
)
from txnwatch.sources.registry import AdapterRegistry
from txnwatch.sync.config import SyncConfig
from txnwatch.sync.identity import IDENTITY_VERSION, compute_identity
from txnwatch.sync.isolation import Outcome, isolate_each, isolate_gather
from txnwatch.sync.retry import BreakerBoard, retry_with_backoff
from txnwatch.sync.shutdown import ShutdownSignal
from txnwatch.sync.tracker import DiscoveryTracker

logger = structlog.get_logger(__name__)

Candidate = Tuple[str, RawObservation]


class AccountStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"  # shutdown requested before the account started


class InsertResult(str, Enum):
    NEW = "new"
    KNOWN = "known"  # already in the tracker
    DUPLICATE = "duplicate"  # store already had it


class SourceRejectedError(SourceError):
    """The source answered but reported a failure (bad password, blocked...)."""


@dataclass
class AccountReport:
    """What happened to one account during a cycle."""

    account: str
    status: AccountStatus = AccountStatus.OK
    fetched: int = 0
    known: int = 0
    ignored: int = 0
    new: int = 0
    duplicate: int = 0
    failed: int = 0
    failure_kind: Optional[str] = None
    error: Optional[str] = None
    inserted: List[str] = field(default_factory=list)


@dataclass
class CycleReport:
    """Per-account reports for one sync cycle."""

    accounts: List[AccountReport] = field(default_factory=list)
    skipped: int = 0

    def total(self, attr: str) -> int:
        return sum(getattr(a, attr) for a in self.accounts)

    @property
    def failed_accounts(self) -> List[AccountReport]:
        return [a for a in self.accounts if a.status == AccountStatus.FAILED]

    @property
    def inserted(self) -> List[str]:
        return [identity for a in self.accounts for identity in a.inserted]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accounts": len(self.accounts),
            "accounts_failed": len(self.failed_accounts),
            "accounts_skipped": self.skipped,
            "fetched": self.total("fetched"),
            "known": self.total("known"),
            "ignored": self.total("ignored"),
            "new": self.total("new"),
            "duplicate": self.total("duplicate"),
            "insert_failed": self.total("failed"),
        }


def failure_kind(error: BaseException) -> str:
    """Machine-readable kind for an exception raised while fetching."""
    if isinstance(error, asyncio.TimeoutError):
        return "TIMEOUT"
    kind = getattr(error, "kind", None)
    return kind if isinstance(kind, str) else type(error).__name__


def record_fields(
    identity: str, observation: RawObservation, default_currency: str
) -> Dict[str, Any]:
    """Column values of the record created from ``observation``."""
    return {
        "identity": identity,
        "identity_version": IDENTITY_VERSION,
        "account": observation.account_number,
        "external_id": (
            None if observation.identifier is None else str(observation.identifier)
        ),
        "status": observation.status.value,
        "date": observation.date,
        "original_amount": observation.original_amount,
        "original_currency": observation.original_currency,
        "charged_amount": observation.charged_amount,
        "charged_currency": observation.charged_currency or default_currency,
        "description": observation.description,
        "memo": observation.memo or "",
    }


class SyncCycle:
    """
    Runs one pass over all accounts.

    Fetches may overlap when ``fetch_concurrency`` > 1; the tracker and
    store are only touched while holding ``_persist_lock``, so inserts
    are serialized and each account's records go in in adapter order.
    """

    def __init__(
        self,
        config: SyncConfig,
        adapters: AdapterRegistry,
        tracker: DiscoveryTracker,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        breakers: Optional[BreakerBoard] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.adapters = adapters
        self.tracker = tracker
        self.breakers = breakers or BreakerBoard(config.circuit_breaker)
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ignored = frozenset(config.ignore_descriptions)
        self._persist_lock = asyncio.Lock()

    async def run(
        self,
        accounts: Optional[List[AccountDescriptor]] = None,
        shutdown: Optional[ShutdownSignal] = None,
    ) -> CycleReport:
        """Sync every account and return the per-account reports."""
        accounts = list(self.config.accounts if accounts is None else accounts)
        should_stop = shutdown.is_set if shutdown else (lambda: False)

        if self.config.fetch_concurrency > 1:

            async def guarded(account: AccountDescriptor) -> AccountReport:
                if should_stop():
                    return AccountReport(account.display_name, AccountStatus.SKIPPED)
                return await self.sync_account(account)

            outcomes = await isolate_gather(
                accounts, guarded, limit=self.config.fetch_concurrency
            )
        else:
            outcomes = await isolate_each(accounts, self.sync_account, should_stop)

        report = CycleReport()
        for outcome in outcomes:
            report.accounts.append(self._account_report(outcome))
        report.skipped = len(accounts) - len(outcomes) + sum(
            1 for a in report.accounts if a.status == AccountStatus.SKIPPED
        )
        report.accounts = [a for a in report.accounts if a.status != AccountStatus.SKIPPED]

        if report.skipped:
            logger.info("cycle.accounts_skipped_for_shutdown", skipped=report.skipped)
        return report

    def _account_report(self, outcome: Outcome[AccountDescriptor, AccountReport]) -> AccountReport:
        if outcome.ok and outcome.value is not None:
            return outcome.value
        # sync_account handles fetch and insert failures itself; this is a bug path
        logger.error(
            "account.unexpected_error",
            account=outcome.item.display_name,
            error=str(outcome.error),
            exc_info=outcome.error,
        )
        return AccountReport(
            account=outcome.item.display_name,
            status=AccountStatus.FAILED,
            failure_kind="UNEXPECTED",
            error=str(outcome.error),
        )

    async def sync_account(self, account: AccountDescriptor) -> AccountReport:
        """Fetch, filter and store one account."""
        report = AccountReport(account=account.display_name)
        window_start = self._clock() - self.config.get_fetch_window()

        logger.info(
            "account.fetching",
            account=account.display_name,
            company=account.company,
            window_start=window_start.isoformat(),
        )
        try:
            observations = await self._fetch(account, window_start)
        except Exception as e:
            report.status = AccountStatus.FAILED
            report.failure_kind = failure_kind(e)
            report.error = str(e)
            logger.warning(
                "account.fetch_failed",
                account=account.display_name,
                failure_kind=report.failure_kind,
                error=str(e),
            )
            return report

        report.fetched = len(observations)
        candidates = self._select_new(observations, report)

        if candidates:
            logger.info(
                "account.new_transactions",
                account=account.display_name,
                count=len(candidates),
            )
            async with self._persist_lock:
                await self._persist(candidates, report)

        logger.info(
            "account.synced",
            account=account.display_name,
            fetched=report.fetched,
            known=report.known,
            ignored=report.ignored,
            new=report.new,
            duplicate=report.duplicate,
            failed=report.failed,
        )
        return report

    async def _fetch(
        self, account: AccountDescriptor, window_start: datetime
    ) -> List[RawObservation]:
        adapter = self.adapters.for_account(account)
        options = FetchOptions(timeout_seconds=self.config.fetch_timeout_seconds)

        async def attempt():
            return await adapter.fetch(account, window_start, options)

        async def fetch_with_retry() -> List[RawObservation]:
            result = await retry_with_backoff(
                attempt,
                self.config.retry,
                operation_name="fetch",
                retry_on=(SourceConnectionError,),
                account=account.display_name,
            )
            if not result.success:
                raise SourceRejectedError(
                    result.message or "source reported a failure",
                    kind=result.failure_kind or "GENERIC",
                )
            return result.observations

        # One budget for all attempts and backoff delays of this account
        async def bounded() -> List[RawObservation]:
            return await asyncio.wait_for(
                fetch_with_retry(), timeout=self.config.fetch_timeout_seconds
            )

        if not self.config.circuit_breaker.enabled:
            return await bounded()
        return await self.breakers.get(account.key).call(bounded)

    def _select_new(
        self, observations: List[RawObservation], report: AccountReport
    ) -> List[Candidate]:
        """Drop known identities first, then ignored descriptions; keep adapter order."""
        seen: set[str] = set()
        candidates: List[Candidate] = []
        for observation in observations:
            identity = compute_identity(observation)
            if identity in self.tracker or identity in seen:
                report.known += 1
                continue
            if observation.description in self._ignored:
                report.ignored += 1
                logger.debug(
                    "record.ignored",
                    identity=identity,
                    description=observation.description,
                )
                continue
            seen.add(identity)
            candidates.append((identity, observation))
        return candidates

    async def _persist(self, candidates: List[Candidate], report: AccountReport) -> None:
        outcomes = await isolate_each(candidates, self._insert)

        for outcome in outcomes:
            identity = outcome.item[0]
            if not outcome.ok:
                report.failed += 1
                logger.error(
                    "record.insert_failed",
                    identity=identity,
                    error=str(outcome.error),
                    error_type=type(outcome.error).__name__,
                )
            elif outcome.value == InsertResult.NEW:
                report.new += 1
                report.inserted.append(identity)
            elif outcome.value == InsertResult.DUPLICATE:
                report.duplicate += 1
            else:
                report.known += 1

    async def _insert(self, candidate: Candidate) -> InsertResult:
        identity, observation = candidate
        # Another account may have stored it since filtering
        if identity in self.tracker:
            return InsertResult.KNOWN

        fields = record_fields(
            identity, observation, self.config.notification.default_currency
        )

        async def insert():
            async with UnitOfWork(self._session_factory) as uow:
                await uow.transactions.insert(**fields)
                await uow.commit()

        try:
            await asyncio.wait_for(insert(), timeout=self.config.store_timeout_seconds)
        except DuplicateRecordError:
            self.tracker.add(identity)
            logger.info("record.duplicate", identity=identity)
            return InsertResult.DUPLICATE

        self.tracker.add(identity)
        logger.info(
            "record.inserted",
            identity=identity,
            account=observation.account_number,
            description=observation.description,
            amount=observation.original_amount,
        )
        return InsertResult.NEW
