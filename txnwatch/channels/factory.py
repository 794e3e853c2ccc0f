"""Builds the configured notification channel."""

from txnwatch.channels.base import NotificationChannel
from txnwatch.channels.console import ConsoleChannel
from txnwatch.channels.smtp import SmtpChannel
from txnwatch.channels.webhook import WebhookChannel
from txnwatch.core.config import Settings
from txnwatch.sync.config import ConfigError, NotificationConfig


def build_channel(
    config: NotificationConfig, settings: Settings, timeout: float = 60.0
) -> NotificationChannel:
    """
    Create the channel named by ``config.channel``.

    Raises:
        ConfigError: If the transport settings for that channel are missing
    """
    if config.channel == "smtp":
        if not settings.SMTP_HOST:
            raise ConfigError("smtp channel selected but SMTP_HOST is not set")
        return SmtpChannel(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            sender=config.sender or "",
            recipients=config.recipients,
            username=settings.SMTP_USER,
            password=(
                settings.SMTP_PASSWORD.get_secret_value()
                if settings.SMTP_PASSWORD
                else None
            ),
            use_tls=settings.SMTP_USE_TLS,
            timeout=timeout,
        )

    if config.channel == "webhook":
        if not settings.WEBHOOK_URL:
            raise ConfigError("webhook channel selected but WEBHOOK_URL is not set")
        return WebhookChannel(settings.WEBHOOK_URL, timeout=timeout)

    return ConsoleChannel()
