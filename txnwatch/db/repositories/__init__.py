"""Repository exports."""

from .transaction_repository import (
    DuplicateRecordError,
    StoreError,
    TransactionRepository,
)

__all__ = ["TransactionRepository", "DuplicateRecordError", "StoreError"]
