"""
Record identity.

A record's identity is the SHA-256 of a fixed, ordered set of
observation fields. It is the primary key of the store and the token
the discovery tracker deduplicates on.

Field set, version 1 (in this order):

    identifier, date, original_amount, description, memo, status

Changing the set, the order, the canonical forms or the separator
changes every identity and must bump ``IDENTITY_VERSION``; stored records
keep the version they were written with.

``status`` is part of the set, so a transaction that moves from pending
to final is recorded and notified a second time.
"""

import hashlib
from datetime import datetime, timezone

from txnwatch.sources.base import RawObservation

IDENTITY_VERSION = 1

# ASCII unit separator; does not occur in bank descriptions
FIELD_SEPARATOR = "\x1f"


def _canonical_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _canonical_amount(value: float) -> str:
    return repr(float(value))


def identity_fields(observation: RawObservation) -> list[str]:
    """The canonical string form of every field that takes part in the hash."""
    identifier = observation.identifier
    return [
        "" if identifier is None else str(identifier),
        _canonical_date(observation.date),
        _canonical_amount(observation.original_amount),
        observation.description,
        observation.memo or "",
        observation.status.value,
    ]


def compute_identity(observation: RawObservation) -> str:
    """Return the 64-character hex identity of ``observation``."""
    joined = FIELD_SEPARATOR.join(identity_fields(observation))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()
