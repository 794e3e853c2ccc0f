"""Tests for source adapters and the adapter registry."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from pydantic import TypeAdapter

from txnwatch.core.config import Settings
from txnwatch.sources.accounts import AccountDescriptor
from txnwatch.sources.base import (
    FetchOptions,
    ObservationStatus,
    SourceAuthenticationError,
    SourceConnectionError,
    SourceResponseError,
    SourceTimeoutError,
)
from txnwatch.sources.mock_adapter import MockSourceAdapter
from txnwatch.sources.registry import AdapterRegistry, build_adapter_registry
from txnwatch.sources.scraper_service import ScraperServiceAdapter

accounts_adapter = TypeAdapter(AccountDescriptor)


def account(data):
    return accounts_adapter.validate_python(data)


MOCK = account({"company": "mock", "accountNumber": "1234", "seed": 3, "per_day": 2})
VISA = account({"company": "visaCal", "username": "dana", "password": "s3cret"})

SCRAPE_OK = {
    "success": True,
    "accounts": [
        {
            "accountNumber": "X1",
            "txns": [
                {
                    "type": "normal",
                    "identifier": 998877,
                    "date": "2024-03-09T08:30:00.000Z",
                    "processedDate": "2024-04-02T00:00:00.000Z",
                    "originalAmount": -12.5,
                    "originalCurrency": "ILS",
                    "chargedAmount": -12.5,
                    "description": "Cafe",
                    "memo": None,
                    "status": "completed",
                },
                {
                    "date": "2024-03-10T10:00:00.000Z",
                    "originalAmount": -99,
                    "originalCurrency": "USD",
                    "chargedAmount": -350.1,
                    "chargedCurrency": "ILS",
                    "description": "Online store",
                    "status": "pending",
                },
            ],
        }
    ],
}


def scraper_with(handler) -> ScraperServiceAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ScraperServiceAdapter("http://scraper.local/", client=client)


class TestMockSourceAdapter:
    """Tests for MockSourceAdapter."""

    @pytest.mark.asyncio
    async def test_repeated_fetch_is_stable(self):
        """The same window returns the same observations every time."""
        adapter = MockSourceAdapter()
        start = datetime.now(timezone.utc) - timedelta(days=5)

        first = await adapter.fetch(MOCK, start, FetchOptions())
        second = await adapter.fetch(MOCK, start, FetchOptions())

        assert first.success
        assert first.observations == second.observations
        assert all(o.account_number == "1234" for o in first.observations)
        assert all(o.original_amount < 0 for o in first.observations)

    @pytest.mark.asyncio
    async def test_observations_inside_window(self):
        adapter = MockSourceAdapter()
        start = datetime.now(timezone.utc) - timedelta(days=3)

        result = await adapter.fetch(MOCK, start, FetchOptions())

        now = datetime.now(timezone.utc)
        assert all(start <= o.date <= now for o in result.observations)

    @pytest.mark.asyncio
    async def test_old_transactions_are_final(self):
        adapter = MockSourceAdapter()
        now = datetime.now(timezone.utc)

        result = await adapter.fetch(MOCK, now - timedelta(days=10), FetchOptions())

        old = [o for o in result.observations if now - o.date > timedelta(days=2, hours=1)]
        assert old
        assert all(o.status == ObservationStatus.FINAL for o in old)

    @pytest.mark.asyncio
    async def test_failure_simulation(self):
        adapter = MockSourceAdapter()
        failing = account({"company": "mock", "failure_rate": 1.0})

        with pytest.raises(SourceConnectionError):
            await adapter.fetch(failing, datetime.now(timezone.utc), FetchOptions())


class TestScraperServiceAdapter:
    """Tests for ScraperServiceAdapter against a mocked HTTP transport."""

    @pytest.mark.asyncio
    async def test_parses_scraper_result(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=SCRAPE_OK)

        adapter = scraper_with(handler)
        start = datetime(2024, 3, 3, tzinfo=timezone.utc)

        result = await adapter.fetch(VISA, start, FetchOptions(timeout_seconds=30))

        assert result.success
        assert len(result.observations) == 2
        cafe, store = result.observations
        assert cafe.identifier == 998877
        assert cafe.account_number == "X1"
        assert cafe.memo == ""
        assert cafe.status == ObservationStatus.FINAL
        assert cafe.date == datetime(2024, 3, 9, 8, 30, tzinfo=timezone.utc)
        assert store.status == ObservationStatus.PENDING
        assert store.charged_currency == "ILS"

        body = json.loads(requests[0].content)
        assert str(requests[0].url) == "http://scraper.local/scrape"
        assert body["companyId"] == "visaCal"
        assert body["credentials"] == {"username": "dana", "password": "s3cret"}
        assert body["options"]["combineInstallments"] is False
        assert body["options"]["timeout"] == 30000

    @pytest.mark.asyncio
    async def test_reported_failure(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "success": False,
                    "errorType": "INVALID_PASSWORD",
                    "errorMessage": "bad password",
                },
            )

        result = await scraper_with(handler).fetch(
            VISA, datetime.now(timezone.utc), FetchOptions()
        )

        assert not result.success
        assert result.failure_kind == "INVALID_PASSWORD"
        assert result.message == "bad password"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error",
        [(401, SourceAuthenticationError), (500, SourceResponseError)],
    )
    async def test_http_errors(self, status, error):
        adapter = scraper_with(lambda request: httpx.Response(status, text="nope"))

        with pytest.raises(error):
            await adapter.fetch(VISA, datetime.now(timezone.utc), FetchOptions())

    @pytest.mark.asyncio
    async def test_transport_errors(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        def hang(request):
            raise httpx.ReadTimeout("slow", request=request)

        now = datetime.now(timezone.utc)
        with pytest.raises(SourceConnectionError):
            await scraper_with(refuse).fetch(VISA, now, FetchOptions())
        with pytest.raises(SourceTimeoutError):
            await scraper_with(hang).fetch(VISA, now, FetchOptions())

    @pytest.mark.asyncio
    async def test_malformed_transaction(self):
        broken = {
            "success": True,
            "accounts": [{"accountNumber": "X1", "txns": [{"description": "no amount"}]}],
        }
        adapter = scraper_with(lambda request: httpx.Response(200, json=broken))

        with pytest.raises(SourceResponseError):
            await adapter.fetch(VISA, datetime.now(timezone.utc), FetchOptions())

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        adapter = scraper_with(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(SourceResponseError):
            await adapter.fetch(VISA, datetime.now(timezone.utc), FetchOptions())


class TestAdapterRegistry:
    def test_mock_only_without_scraper_service(self):
        registry = build_adapter_registry(Settings(SCRAPER_SERVICE_URL=None))

        assert isinstance(registry.for_account(MOCK), MockSourceAdapter)
        assert registry.unsupported([MOCK, VISA]) == ["visaCal"]
        with pytest.raises(LookupError):
            registry.for_account(VISA)

    @pytest.mark.asyncio
    async def test_scraper_service_is_default(self):
        registry = build_adapter_registry(
            Settings(SCRAPER_SERVICE_URL="http://scraper.local", SCRAPER_SERVICE_TOKEN="t")
        )

        assert isinstance(registry.for_account(VISA), ScraperServiceAdapter)
        assert registry.unsupported([MOCK, VISA]) == []
        await registry.aclose()

    def test_explicit_mapping(self):
        mock = MockSourceAdapter()
        registry = AdapterRegistry({"visaCal": mock})

        assert registry.for_account(VISA) is mock
