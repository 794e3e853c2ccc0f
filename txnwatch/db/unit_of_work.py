"""Unit of Work pattern for managing database transactions."""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from txnwatch.db import base
from txnwatch.db.models import TransactionRecord
from txnwatch.db.repositories import TransactionRepository


class UnitOfWork:
    """
    One session and one database transaction.

    The engine opens a unit per insert and per ``mark_notified`` so each
    step is durable before the next one begins.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            await uow.transactions.insert(**fields)
            await uow.commit()
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        session: Optional[AsyncSession] = None,
    ):
        """
        Initialize Unit of Work.

        Args:
            session_factory: Factory for owned sessions (defaults to the app factory)
            session: Optional existing session; the caller keeps ownership
        """
        self._session_factory = session_factory
        self._session = session
        self._owned_session = session is None

        self.transactions: TransactionRepository = None  # type: ignore

    async def __aenter__(self):
        if self._owned_session:
            factory = self._session_factory or base.AsyncSessionLocal
            self._session = factory()

        assert self._session is not None, "Session must be initialized"
        self.transactions = TransactionRepository(TransactionRecord, self._session)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            await self.rollback()

        if self._owned_session and self._session:
            await self._session.close()

    async def commit(self):
        """Commit the current transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the current transaction."""
        if self._session:
            await self._session.rollback()
