"""Webhook delivery channel."""

from __future__ import annotations

from typing import Optional

import httpx

from txnwatch.channels.base import (
    DeliveryError,
    DeliveryReceipt,
    NotificationChannel,
    NotificationPayload,
)


class WebhookChannel(NotificationChannel):
    """POSTs the rendered notification as JSON to a configured URL."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(headers=headers or {})

    async def send(self, payload: NotificationPayload) -> DeliveryReceipt:
        try:
            response = await self._client.post(
                self.url, json=payload.model_dump(), timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook request failed: {e}", kind="HTTP") from e

        if response.status_code >= 400:
            raise DeliveryError(
                f"Webhook returned HTTP {response.status_code}: {response.text[:200]}",
                kind=f"HTTP_{response.status_code}",
            )

        return DeliveryReceipt(
            channel=self.name,
            message_id=response.headers.get("x-request-id"),
            metadata={"status_code": response.status_code},
        )

    async def aclose(self) -> None:
        await self._client.aclose()
