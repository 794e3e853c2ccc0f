"""
Mock source adapter for development and testing.

Produces a stable set of card transactions per calendar day so that
repeated fetches over the same window return the same observations,
which is what a real institution does.
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import List

from txnwatch.sources.accounts import MockAccount
from txnwatch.sources.base import (
    BaseSourceAdapter,
    FetchOptions,
    FetchResult,
    ObservationStatus,
    RawObservation,
    SourceConnectionError,
)

MERCHANTS = [
    ("Cafe Landwer", 18.0, 95.0),
    ("Shufersal Deal", 40.0, 650.0),
    ("Paz Gas Station", 80.0, 350.0),
    ("Super-Pharm", 15.0, 240.0),
    ("Wolt", 45.0, 220.0),
    ("Rav-Kav Top Up", 30.0, 200.0),
    ("Netflix", 49.9, 69.9),
    ("Aroma Espresso Bar", 14.0, 60.0),
]


class MockSourceAdapter(BaseSourceAdapter):
    """Deterministic generator of observations for ``company: mock`` accounts."""

    def __init__(self, latency_ms: int = 0):
        """
        Args:
            latency_ms: Simulated network latency in milliseconds
        """
        self.latency_ms = latency_ms

    def get_source_name(self) -> str:
        return "mock"

    async def fetch(
        self,
        account: MockAccount,
        window_start: datetime,
        options: FetchOptions,
    ) -> FetchResult:
        await self._simulate_latency()

        # Failures use the global RNG so they do not disturb the data stream
        if account.failure_rate and random.random() < account.failure_rate:
            raise SourceConnectionError("Simulated source connection failure")

        now = datetime.now(timezone.utc)
        day = window_start.astimezone(timezone.utc).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        observations: List[RawObservation] = []
        while day <= now:
            observations.extend(self._generate_day(account, day, now))
            day += timedelta(days=1)

        return FetchResult.ok(
            [o for o in observations if window_start <= o.date <= now]
        )

    def _generate_day(
        self, account: MockAccount, day: datetime, now: datetime
    ) -> List[RawObservation]:
        rng = random.Random(f"{account.seed}:{account.account_number}:{day.date()}")
        result = []
        for n in range(account.per_day):
            name, low, high = rng.choice(MERCHANTS)
            amount = -round(rng.uniform(low, high), 2)
            when = day + timedelta(seconds=rng.randint(6 * 3600, 22 * 3600))
            # Anything from the last two days has not settled yet
            status = (
                ObservationStatus.PENDING
                if now - when < timedelta(days=2)
                else ObservationStatus.FINAL
            )
            result.append(
                RawObservation(
                    identifier=f"{day:%Y%m%d}{n:03d}",
                    date=when,
                    description=name,
                    memo="",
                    original_amount=amount,
                    original_currency="ILS",
                    charged_amount=amount,
                    charged_currency=None,
                    status=status,
                    account_number=account.account_number,
                )
            )
        return result

    async def _simulate_latency(self):
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)
