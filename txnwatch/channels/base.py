"""Notification channel interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


class NotificationPayload(BaseModel):
    """A rendered notification for one transaction record."""

    identity: str
    subject: str
    text: str
    html: str
    fields: dict[str, str] = Field(default_factory=dict)


class DeliveryReceipt(BaseModel):
    """Proof that a channel accepted a notification."""

    channel: str
    message_id: Optional[str] = None
    delivered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)


class DeliveryError(Exception):
    """Raised when a channel did not accept a notification."""

    def __init__(self, message: str, kind: str = "DELIVERY_FAILED"):
        super().__init__(message)
        self.kind = kind


class NotificationChannel(ABC):
    """Base class for all delivery channels."""

    name = "channel"

    @abstractmethod
    async def send(self, payload: NotificationPayload) -> DeliveryReceipt:
        """
        Deliver one notification.

        Returns:
            Receipt once the transport has accepted the message

        Raises:
            DeliveryError: If the message was not accepted
        """
        pass

    async def aclose(self) -> None:
        return None
