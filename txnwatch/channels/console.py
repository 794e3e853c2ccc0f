"""Channel that only logs notifications. Opt-in, for dry runs."""

import structlog

from txnwatch.channels.base import DeliveryReceipt, NotificationChannel, NotificationPayload

logger = structlog.get_logger(__name__)


class ConsoleChannel(NotificationChannel):
    name = "console"

    async def send(self, payload: NotificationPayload) -> DeliveryReceipt:
        logger.info(
            "console.notification",
            identity=payload.identity,
            subject=payload.subject,
            **payload.fields,
        )
        return DeliveryReceipt(channel=self.name, message_id=payload.identity)
