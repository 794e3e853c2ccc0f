"""Transaction record repository: the durable store used by the engine."""

from datetime import datetime, timezone
from typing import Optional, List
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from txnwatch.db.models.transaction import TransactionRecord
from txnwatch.db.repository import BaseRepository


class StoreError(Exception):
    """Raised when the durable store cannot complete an operation."""

    pass


class DuplicateRecordError(StoreError):
    """Raised when a record with the same identity already exists."""

    def __init__(self, identity: str):
        super().__init__(f"Record {identity} already exists")
        self.identity = identity


class TransactionRepository(BaseRepository[TransactionRecord]):
    """Repository for TransactionRecord with the queries the engine needs."""

    async def insert(self, **fields) -> TransactionRecord:
        """
        Insert a new record.

        Raises:
            DuplicateRecordError: if the identity is already stored. The
                session is rolled back before raising.
        """
        try:
            return await self.create(**fields)
        except IntegrityError as e:
            await self.session.rollback()
            identity = fields.get("identity", "")
            if await self.get(identity) is not None:
                raise DuplicateRecordError(identity) from e
            raise StoreError(f"Insert of {identity} violated a constraint: {e}") from e

    async def identities_since(self, since: datetime) -> List[str]:
        """Identities of all records dated at or after ``since``."""
        result = await self.session.execute(
            select(self.model.identity).where(self.model.date >= since)
        )
        return list(result.scalars().all())

    async def get_unnotified(self, limit: Optional[int] = None) -> List[TransactionRecord]:
        """
        Records not yet delivered, oldest insert first.

        Args:
            limit: Maximum number of records to return
        """
        query = (
            select(self.model)
            .where(self.model.notified.is_(False))
            .order_by(self.model.created_at, self.model.identity)
        )
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def mark_notified(
        self, identity: str, notified_at: Optional[datetime] = None
    ) -> bool:
        """
        Flip ``notified`` to true.

        Returns:
            False when the record was missing or already notified.
        """
        if notified_at is None:
            notified_at = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(self.model)
            .where(self.model.identity == identity)
            .where(self.model.notified.is_(False))
            .values(notified=True, notified_at=notified_at)
        )
        await self.session.flush()
        return (result.rowcount or 0) > 0  # type: ignore
