"""Turns a stored record into the notification the operator reads."""

from datetime import datetime, timezone
from html import escape
from typing import Dict, List, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

from txnwatch.channels.base import NotificationPayload
from txnwatch.db.models import TransactionRecord
from txnwatch.sync.config import NOTIFICATION_FIELDS, NotificationConfig

_CELL = "border: 1px solid #dddddd; padding: 8px; text-align: {align};"


def format_expense(currency: str, amount: Optional[float]) -> str:
    """Debits are stored negative; show them as a positive spend."""
    if amount is None:
        return ""
    value = -float(amount)
    if value == 0:
        value = 0.0
    return f"{currency}{value:.2f}"


class NotificationRenderer:
    """Renders records with the configured labels, timezone and formats."""

    def __init__(self, config: NotificationConfig, friendly_names: Mapping[str, str]):
        self.config = config
        self.friendly_names = dict(friendly_names)
        self.tz = ZoneInfo(config.timezone)

    def account_label(self, account: str) -> str:
        return self.friendly_names.get(account, account)

    def format_date(self, value: datetime) -> str:
        # SQLite hands datetimes back naive; they were stored as UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(self.tz).strftime(self.config.date_format)

    def fields(self, record: TransactionRecord) -> Dict[str, str]:
        charged = (
            record.charged_amount
            if record.charged_amount is not None
            else record.original_amount
        )
        return {
            "account": self.account_label(record.account),
            "date": self.format_date(record.date),
            "description": record.description,
            "original_amount": format_expense(
                record.original_currency, record.original_amount
            ),
            "charged_amount": format_expense(record.charged_currency, charged),
            "status": self.config.status_labels.get(record.status, record.status),  # type: ignore[call-overload]
            "memo": record.memo,
        }

    def render(self, record: TransactionRecord) -> NotificationPayload:
        fields = self.fields(record)
        return NotificationPayload(
            identity=record.identity,
            subject=self.config.subject_template.format(**fields),
            text=self._text(fields),
            html=self._html(fields),
            fields=fields,
        )

    def _labelled(self, fields: Dict[str, str]) -> List[Tuple[str, str]]:
        labels = self.config.field_labels
        return [(labels[key], fields[key]) for key in NOTIFICATION_FIELDS]

    def _text(self, fields: Dict[str, str]) -> str:
        return "\n".join(f"{label}: {value}" for label, value in self._labelled(fields))

    def _html(self, fields: Dict[str, str]) -> str:
        cell = _CELL.format(align=self.config.text_align)
        rows = "\n".join(
            f'  <tr>\n    <th style="{cell}">{escape(label)}</th>\n'
            f'    <td style="{cell}">{escape(value)}</td>\n  </tr>'
            for label, value in self._labelled(fields)
        )
        return (
            '<table style="border-collapse: collapse; max-width: 500px; width: 100%; '
            'font-family: Arial, sans-serif; background-color: #f9f9f9;">\n'
            f"{rows}\n"
            "</table>"
        )
