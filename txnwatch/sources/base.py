"""
Source adapter interface.

Defines the contract every financial-data source must implement and the
raw observation shape they return.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from txnwatch.sources.accounts import AccountDescriptor


class ObservationStatus(str, Enum):
    """Settlement state reported by the source."""

    PENDING = "pending"
    FINAL = "final"


class RawObservation(BaseModel):
    """A transaction as returned by a source, before it becomes a record."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    identifier: Optional[Union[str, int]] = None
    date: datetime
    processed_date: Optional[datetime] = Field(default=None, alias="processedDate")
    description: str = ""
    memo: str = ""
    original_amount: float = Field(alias="originalAmount")
    original_currency: str = Field(alias="originalCurrency")
    charged_amount: Optional[float] = Field(default=None, alias="chargedAmount")
    charged_currency: Optional[str] = Field(default=None, alias="chargedCurrency")
    status: ObservationStatus = ObservationStatus.FINAL
    account_number: str = Field(alias="accountNumber")

    @field_validator("date", "processed_date")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("description", "memo", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        # Scrapers report settled transactions as "completed"
        if isinstance(value, str) and value.lower() == "completed":
            return ObservationStatus.FINAL
        return value

    @field_validator("account_number", mode="before")
    @classmethod
    def _account_to_str(cls, value):
        return str(value) if isinstance(value, int) else value


class FetchOptions(BaseModel):
    """Per-call behaviour passed through to the source."""

    timeout_seconds: float = Field(default=120.0, gt=0)
    combine_installments: bool = False


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch: observations on success, a failure kind otherwise."""

    success: bool
    observations: List[RawObservation] = field(default_factory=list)
    failure_kind: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, observations: List[RawObservation]) -> "FetchResult":
        return cls(success=True, observations=list(observations))

    @classmethod
    def failed(cls, kind: str, message: Optional[str] = None) -> "FetchResult":
        return cls(success=False, failure_kind=kind, message=message)


class BaseSourceAdapter(ABC):
    """
    Abstract base class for source adapters.

    Adapters return ``FetchResult.failed`` for failures reported by the
    institution (bad password, blocked account) and raise ``SourceError``
    for transport problems that are worth retrying.
    """

    @abstractmethod
    async def fetch(
        self,
        account: "AccountDescriptor",
        window_start: datetime,
        options: FetchOptions,
    ) -> FetchResult:
        """
        Fetch observations for one account.

        Args:
            account: Validated account descriptor
            window_start: Lower bound of the transaction dates to return
            options: Timeout and behavioural flags

        Returns:
            Success with observations, or failure with a kind string

        Raises:
            SourceError: If the source could not be reached
        """
        pass

    @abstractmethod
    def get_source_name(self) -> str:
        """Short identifier of the adapter (e.g. 'scraper-service', 'mock')."""
        pass

    async def aclose(self) -> None:
        """Release any held resources."""
        return None


class SourceError(Exception):
    """Base exception for source adapter errors."""

    kind = "GENERIC"

    def __init__(self, message: str = "", kind: Optional[str] = None):
        super().__init__(message)
        if kind:
            self.kind = kind


class SourceConnectionError(SourceError):
    """Raised when the source cannot be reached."""

    kind = "CONNECTION"


class SourceAuthenticationError(SourceError):
    """Raised when the source rejects our credentials at the transport level."""

    kind = "AUTHENTICATION"


class SourceTimeoutError(SourceError):
    """Raised when the source does not answer in time."""

    kind = "TIMEOUT"


class SourceResponseError(SourceError):
    """Raised when the source returns a response we cannot use."""

    kind = "INVALID_RESPONSE"
