"""
Adapter for an external scraper service.

The service logs into the institution on our behalf and answers with the
scraper result shape: ``{success, accounts: [{accountNumber, txns}],
errorType, errorMessage}``.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from txnwatch.sources.accounts import AccountDescriptor
from txnwatch.sources.base import (
    BaseSourceAdapter,
    FetchOptions,
    FetchResult,
    RawObservation,
    SourceAuthenticationError,
    SourceConnectionError,
    SourceResponseError,
    SourceTimeoutError,
)

logger = structlog.get_logger(__name__)


class ScraperServiceAdapter(BaseSourceAdapter):
    """Fetches observations by POSTing scrape requests to the scraper service."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Scraper service base URL
            token: Optional bearer token
            client: Pre-built client (tests inject one with a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(headers=headers)

    def get_source_name(self) -> str:
        return "scraper-service"

    async def fetch(
        self,
        account: AccountDescriptor,
        window_start: datetime,
        options: FetchOptions,
    ) -> FetchResult:
        payload = {
            "companyId": account.company,
            "credentials": account.credentials(),
            "startDate": window_start.isoformat(),
            "options": {
                "combineInstallments": options.combine_installments,
                "timeout": int(options.timeout_seconds * 1000),
                "defaultTimeout": int(options.timeout_seconds * 1000),
            },
        }

        try:
            response = await self._client.post(
                f"{self.base_url}/scrape",
                json=payload,
                timeout=options.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise SourceTimeoutError(f"Scraper service timed out: {e}") from e
        except httpx.HTTPError as e:
            raise SourceConnectionError(f"Scraper service unreachable: {e}") from e

        if response.status_code in (401, 403):
            raise SourceAuthenticationError(
                f"Scraper service rejected token (HTTP {response.status_code})"
            )
        if response.status_code >= 400:
            raise SourceResponseError(
                f"Scraper service returned HTTP {response.status_code}: "
                f"{response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise SourceResponseError("Scraper service returned invalid JSON") from e

        return self._parse_result(body)

    def _parse_result(self, body: Dict[str, Any]) -> FetchResult:
        if not body.get("success"):
            return FetchResult.failed(
                body.get("errorType") or "GENERIC", body.get("errorMessage")
            )

        observations: List[RawObservation] = []
        for scraped_account in body.get("accounts") or []:
            account_number = scraped_account.get("accountNumber")
            for txn in scraped_account.get("txns") or []:
                try:
                    observations.append(
                        RawObservation.model_validate(
                            {**txn, "accountNumber": account_number}
                        )
                    )
                except ValidationError as e:
                    raise SourceResponseError(
                        f"Malformed transaction for account {account_number}: {e}"
                    ) from e

        logger.debug("scraper_service.parsed", count=len(observations))
        return FetchResult.ok(observations)

    async def aclose(self) -> None:
        await self._client.aclose()
