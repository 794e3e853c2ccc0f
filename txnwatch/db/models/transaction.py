"""Transaction record model: one row per distinct observed transaction."""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, Numeric, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from txnwatch.db.base import Base


class TransactionRecord(Base):
    """
    A transaction first seen by the sync cycle.

    The row is keyed by its content identity and never changes after
    insert, apart from the ``notified`` flag which goes from false to
    true once the operator has been told about it.
    """

    __tablename__ = "transactions"

    identity: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Content hash of the observation (see sync.identity)",
    )
    identity_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Field-set version used to compute the identity",
    )

    # Source
    account: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Account or card number that owns the transaction",
    )
    external_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="Identifier reported by the source"
    )

    # Transaction details
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="'pending' or 'final'"
    )
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        comment="When the transaction occurred (UTC)",
    )
    original_amount: Mapped[float] = mapped_column(
        Numeric(precision=18, scale=2, asdecimal=False),
        nullable=False,
        comment="Amount in the original currency; debits are negative",
    )
    original_currency: Mapped[str] = mapped_column(String(8), nullable=False)
    charged_amount: Mapped[Optional[float]] = mapped_column(
        Numeric(precision=18, scale=2, asdecimal=False),
        nullable=True,
        comment="Amount charged to the account, when reported",
    )
    charged_currency: Mapped[str] = mapped_column(String(8), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    memo: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Delivery bookkeeping
    notified: Mapped[bool] = mapped_column(
        default=False,
        nullable=False,
        index=True,
        comment="Whether the operator has been notified",
    )
    notified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="Insert time; defines dispatch order",
    )

    __table_args__ = (Index("idx_transaction_notified_created", "notified", "created_at"),)

    def __repr__(self) -> str:
        return (
            f"<TransactionRecord(identity={self.identity[:12]}, account={self.account}, "
            f"amount={self.original_amount}, status={self.status}, notified={self.notified})>"
        )
