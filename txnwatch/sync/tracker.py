"""Discovery tracker: identities this process already knows are stored."""

from datetime import datetime
from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from txnwatch.db.unit_of_work import UnitOfWork

logger = structlog.get_logger(__name__)


class DiscoveryTracker:
    """
    In-memory set of known record identities.

    Rebuilt from the store at process start and grown as the sync cycle
    inserts records. Nothing is ever removed during a process lifetime;
    the store stays the source of truth across restarts.
    """

    def __init__(self, identities: Optional[Iterable[str]] = None):
        self._known: set[str] = set(identities or ())
        self.bootstrapped_at: Optional[datetime] = None

    async def bootstrap(
        self,
        since: datetime,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> int:
        """
        Load identities of all stored records dated at or after ``since``.

        Returns:
            Number of identities loaded
        """
        async with UnitOfWork(session_factory) as uow:
            identities = await uow.transactions.identities_since(since)

        self._known.update(identities)
        self.bootstrapped_at = since
        logger.info(
            "tracker.bootstrapped",
            since=since.isoformat(),
            loaded=len(identities),
            known=len(self._known),
        )
        return len(identities)

    def add(self, identity: str) -> None:
        self._known.add(identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._known

    def __len__(self) -> int:
        return len(self._known)
