"""Notification delivery channels."""

from txnwatch.channels.base import (
    DeliveryError,
    DeliveryReceipt,
    NotificationChannel,
    NotificationPayload,
)
from txnwatch.channels.console import ConsoleChannel
from txnwatch.channels.smtp import SmtpChannel
from txnwatch.channels.webhook import WebhookChannel

__all__ = [
    "ConsoleChannel",
    "DeliveryError",
    "DeliveryReceipt",
    "NotificationChannel",
    "NotificationPayload",
    "SmtpChannel",
    "WebhookChannel",
]
