"""Maps account companies to the adapter that serves them."""

from typing import Dict, Iterable, Optional

from txnwatch.core.config import Settings
from txnwatch.sources.accounts import AccountDescriptor
from txnwatch.sources.base import BaseSourceAdapter
from txnwatch.sources.mock_adapter import MockSourceAdapter
from txnwatch.sources.scraper_service import ScraperServiceAdapter


class AdapterRegistry:
    """Company -> adapter lookup with an optional catch-all adapter."""

    def __init__(
        self,
        adapters: Optional[Dict[str, BaseSourceAdapter]] = None,
        default: Optional[BaseSourceAdapter] = None,
    ):
        self._adapters = dict(adapters or {})
        self._default = default

    def for_account(self, account: AccountDescriptor) -> BaseSourceAdapter:
        adapter = self._adapters.get(account.company, self._default)
        if adapter is None:
            raise LookupError(f"No source adapter configured for '{account.company}'")
        return adapter

    def unsupported(self, accounts: Iterable[AccountDescriptor]) -> list[str]:
        """Companies among ``accounts`` that no adapter serves."""
        return sorted(
            {
                a.company
                for a in accounts
                if a.company not in self._adapters and self._default is None
            }
        )

    async def aclose(self) -> None:
        seen = set()
        for adapter in [*self._adapters.values(), self._default]:
            if adapter is not None and id(adapter) not in seen:
                seen.add(id(adapter))
                await adapter.aclose()


def build_adapter_registry(settings: Settings) -> AdapterRegistry:
    """Mock accounts use the generator; everything else goes to the scraper service."""
    default = None
    if settings.SCRAPER_SERVICE_URL:
        token = (
            settings.SCRAPER_SERVICE_TOKEN.get_secret_value()
            if settings.SCRAPER_SERVICE_TOKEN
            else None
        )
        default = ScraperServiceAdapter(settings.SCRAPER_SERVICE_URL, token=token)
    return AdapterRegistry({"mock": MockSourceAdapter()}, default=default)
