"""
Sync engine configuration.

Defines accounts, filters, schedule, timeouts, retry policies and
notification rendering options, loaded from a YAML file.
"""

from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from txnwatch.sources.accounts import AccountDescriptor

# Placeholders available to subject_template
NOTIFICATION_FIELDS = (
    "account",
    "date",
    "description",
    "original_amount",
    "charged_amount",
    "status",
    "memo",
)

DEFAULT_FIELD_LABELS = {
    "account": "Account",
    "date": "Date",
    "description": "Description",
    "original_amount": "Original amount",
    "charged_amount": "Charged amount",
    "status": "Status",
    "memo": "Memo",
}


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""

    pass


class RetryConfig(BaseModel):
    """Configuration for retry behavior with exponential backoff."""

    max_attempts: int = Field(default=2, ge=1, description="Maximum attempts per fetch")
    initial_delay: float = Field(
        default=5.0, gt=0, description="Initial delay in seconds"
    )
    max_delay: float = Field(default=60.0, gt=0, description="Maximum delay in seconds")
    exponential_base: float = Field(default=2.0, gt=1, description="Backoff multiplier")
    jitter: bool = Field(
        default=True, description="Add random jitter to spread retries out"
    )


class CircuitBreakerConfig(BaseModel):
    """Per-account circuit breaker configuration."""

    enabled: bool = Field(
        default=False,
        description="Skip accounts that keep failing; off means every cycle fetches every account",
    )
    failure_threshold: int = Field(
        default=5, ge=1, description="Consecutive failed cycles before opening"
    )
    success_threshold: int = Field(
        default=1, ge=1, description="Successes in half-open state to close"
    )
    timeout: float = Field(
        default=6 * 3600.0, gt=0, description="Seconds before a half-open attempt"
    )


class NotificationConfig(BaseModel):
    """How records are rendered and where notifications go."""

    model_config = ConfigDict(populate_by_name=True)

    channel: Literal["smtp", "webhook", "console"] = "console"
    sender: Optional[str] = Field(default=None, alias="from")
    recipients: List[str] = Field(default_factory=list, alias="to")

    timezone: str = "Asia/Jerusalem"
    date_format: str = "%H:%M - %d/%m/%Y"
    default_currency: str = "₪"
    status_labels: Dict[Literal["pending", "final"], str] = Field(
        default_factory=lambda: {"pending": "Pending", "final": "Final"}
    )
    field_labels: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_FIELD_LABELS))
    text_align: Literal["left", "right"] = "left"
    subject_template: str = "{description} - {original_amount}"

    @model_validator(mode="before")
    @classmethod
    def _single_recipient(cls, data):
        # "to" may be a single address
        if isinstance(data, dict):
            to = data.get("to", data.get("recipients"))
            if isinstance(to, str):
                data = {**data, "to": [to]}
                data.pop("recipients", None)
        return data

    @model_validator(mode="after")
    def _smtp_needs_addresses(self):
        if self.channel == "smtp" and (not self.sender or not self.recipients):
            raise ValueError("smtp channel requires 'from' and 'to'")
        return self

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone '{value}'") from e
        return value

    @field_validator("field_labels")
    @classmethod
    def _known_field_labels(cls, value: Dict[str, str]) -> Dict[str, str]:
        unknown = sorted(set(value) - set(NOTIFICATION_FIELDS))
        if unknown:
            raise ValueError(f"unknown field labels: {', '.join(unknown)}")
        # Fields left out keep their default label
        return {**DEFAULT_FIELD_LABELS, **value}

    @field_validator("subject_template")
    @classmethod
    def _subject_placeholders(cls, value: str) -> str:
        try:
            value.format(**{name: "" for name in NOTIFICATION_FIELDS})
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"subject_template uses an unknown placeholder: {e}") from e
        return value


class SyncConfig(BaseModel):
    """Main engine configuration."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    accounts: List[AccountDescriptor] = Field(default_factory=list)
    ignore_descriptions: List[str] = Field(default_factory=list, alias="toIgnore")
    friendly_names: Dict[str, str] = Field(default_factory=dict, alias="friendlyNames")

    # Windows
    days_ago: int = Field(
        default=7, ge=1, alias="daysAgo", description="Fetch window in days"
    )
    bootstrap_margin_days: int = Field(
        default=7, ge=0, description="Extra days scanned when rebuilding the known set"
    )

    # Scheduling
    update_interval_minutes: float = Field(
        default=60, gt=0, alias="updateIntervalMin", description="Minutes between cycles"
    )
    run_mode: Literal["continuous", "once"] = "continuous"
    fetch_concurrency: int = Field(
        default=1, ge=1, le=16, description="Accounts fetched at the same time"
    )

    # Timeouts
    fetch_timeout_seconds: float = Field(default=120.0, gt=0)
    store_timeout_seconds: float = Field(default=30.0, gt=0)
    delivery_timeout_seconds: float = Field(default=60.0, gt=0)

    # Resilience
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    notification: NotificationConfig = Field(default_factory=NotificationConfig)

    @model_validator(mode="after")
    def _unique_account_keys(self):
        keys = [a.key for a in self.accounts]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ValueError(f"duplicate accounts: {', '.join(duplicates)}")
        return self

    def get_fetch_window(self) -> timedelta:
        return timedelta(days=self.days_ago)

    def get_bootstrap_window(self) -> timedelta:
        """Always wider than the fetch window so re-fetched records are known."""
        return timedelta(days=self.days_ago + self.bootstrap_margin_days)

    def get_interval_seconds(self) -> float:
        return self.update_interval_minutes * 60


def load_sync_config(path: Union[str, Path]) -> SyncConfig:
    """
    Load and validate the YAML configuration file.

    Raises:
        ConfigError: If the file cannot be read or does not validate
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    try:
        return SyncConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {path}:\n{e}") from e
