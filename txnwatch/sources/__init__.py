"""Financial-data sources: account descriptors and adapters."""

from txnwatch.sources.accounts import AccountDescriptor
from txnwatch.sources.base import (
    BaseSourceAdapter,
    FetchOptions,
    FetchResult,
    ObservationStatus,
    RawObservation,
    SourceError,
)
from txnwatch.sources.mock_adapter import MockSourceAdapter
from txnwatch.sources.registry import AdapterRegistry, build_adapter_registry
from txnwatch.sources.scraper_service import ScraperServiceAdapter

__all__ = [
    "AccountDescriptor",
    "AdapterRegistry",
    "BaseSourceAdapter",
    "FetchOptions",
    "FetchResult",
    "MockSourceAdapter",
    "ObservationStatus",
    "RawObservation",
    "ScraperServiceAdapter",
    "SourceError",
    "build_adapter_registry",
]
