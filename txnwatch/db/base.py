"""Async engine, session factory and declarative base."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from txnwatch.core.config import get_settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str):
    """Create an async engine; SQLite gets a busy timeout so a second writer waits."""
    connect_args = {"timeout": 30} if url.startswith("sqlite") else {}
    return create_async_engine(url, future=True, connect_args=connect_args)


def make_session_factory(bind) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = make_engine(get_settings().DATABASE_URL)
AsyncSessionLocal = make_session_factory(engine)
