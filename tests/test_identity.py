"""Tests for record identity computation."""

from datetime import datetime, timedelta, timezone

from tests.factories import NOW, make_observation
from txnwatch.sources.base import ObservationStatus, RawObservation
from txnwatch.sync.identity import (
    FIELD_SEPARATOR,
    IDENTITY_VERSION,
    compute_identity,
    identity_fields,
)


class TestComputeIdentity:
    """Tests for compute_identity."""

    def test_identity_is_sha256_hex(self):
        identity = compute_identity(make_observation())

        assert len(identity) == 64
        assert all(c in "0123456789abcdef" for c in identity)

    def test_same_content_same_identity(self):
        """Two fetches of the same transaction map to one identity."""
        assert compute_identity(make_observation()) == compute_identity(make_observation())

    def test_memo_difference_changes_identity(self):
        a = make_observation(memo="installment 1/3")
        b = make_observation(memo="installment 2/3")

        assert compute_identity(a) != compute_identity(b)

    def test_status_is_part_of_identity(self):
        """A pending transaction that settles is a new record."""
        pending = make_observation(status=ObservationStatus.PENDING)
        final = make_observation(status=ObservationStatus.FINAL)

        assert compute_identity(pending) != compute_identity(final)

    def test_fields_outside_the_set_do_not_matter(self):
        a = make_observation(charged_amount=-12.5, charged_currency="ILS")
        b = make_observation(
            charged_amount=-3.4,
            charged_currency="USD",
            processed_date=NOW,
        )

        assert compute_identity(a) == compute_identity(b)

    def test_separator_prevents_field_collisions(self):
        """Moving text between description and memo must not collide."""
        a = make_observation(description="AB", memo="C")
        b = make_observation(description="A", memo="BC")

        assert compute_identity(a) != compute_identity(b)

    def test_same_instant_in_other_timezone(self):
        utc_date = datetime(2024, 3, 9, 10, 0, tzinfo=timezone.utc)
        local_date = utc_date.astimezone(timezone(timedelta(hours=2)))

        a = make_observation(date=utc_date)
        b = make_observation(date=local_date)

        assert compute_identity(a) == compute_identity(b)

    def test_missing_identifier_and_memo(self):
        obs = RawObservation.model_validate(
            {
                "identifier": None,
                "date": "2024-03-09T10:00:00",
                "description": "Cafe",
                "memo": None,
                "originalAmount": -12.5,
                "originalCurrency": "ILS",
                "status": "completed",
                "accountNumber": 1234,
            }
        )

        fields = identity_fields(obs)

        assert fields[0] == ""
        assert fields[4] == ""
        assert fields[5] == "final"
        assert FIELD_SEPARATOR.join(fields).count(FIELD_SEPARATOR) == 5
        assert len(compute_identity(obs)) == 64

    def test_version_is_one(self):
        assert IDENTITY_VERSION == 1
