"""
Domain Layer
"""
from .models import (
    NATIVE_TOKEN,
    ZERO_ADDRESS,
    BucketScan,
    CacheEntry,
    DomainError,
    EndOfBucket,
    HealthState,
    HealthStatus,
    IndexRead,
    IndexValue,
    InvalidListingError,
    InvalidQueryError,
    ListingFetchError,
    ListingMetadata,
    ListingRecord,
    MarketplaceUnavailableError,
    MarketView,
    MutationEvent,
    MutationKind,
    NetworkUnavailableError,
    PageKey,
    PageResult,
    PaymentToken,
    Quality,
    SortMethod,
    StorageUnavailableError,
    TransientFailure,
    UserMessage,
)
from .ordering import ListingSorter, Paginator, matches_search

__all__ = [
    "NATIVE_TOKEN",
    "ZERO_ADDRESS",
    "BucketScan",
    "CacheEntry",
    "DomainError",
    "EndOfBucket",
    "HealthState",
    "HealthStatus",
    "IndexRead",
    "IndexValue",
    "InvalidListingError",
    "InvalidQueryError",
    "ListingFetchError",
    "ListingMetadata",
    "ListingRecord",
    "MarketplaceUnavailableError",
    "MarketView",
    "MutationEvent",
    "MutationKind",
    "NetworkUnavailableError",
    "PageKey",
    "PageResult",
    "PaymentToken",
    "Quality",
    "SortMethod",
    "StorageUnavailableError",
    "TransientFailure",
    "UserMessage",
    "ListingSorter",
    "Paginator",
    "matches_search",
]
