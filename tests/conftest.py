"""
Shared fixtures: in-memory ledger, durable store and clock.
"""
from typing import Any, Dict, List, Optional, Set

import pytest

from pwmarket.application.aggregator import MarketplaceAggregator
from pwmarket.application.cache import ListingCache
from pwmarket.application.enumerator import BucketEnumerator
from pwmarket.application.fetcher import RecordFetcher
from pwmarket.application.health import ConnectionHealthGuard
from pwmarket.domain import (
    ZERO_ADDRESS,
    EndOfBucket,
    IndexRead,
    IndexValue,
    ListingMetadata,
    MutationEvent,
    StorageUnavailableError,
    TransientFailure,
)

SELLER = "0x" + "ab" * 20
MARKET = "0x" + "11" * 20


def raw_listing(
    token_id: int,
    price: int,
    quality: int = 1,
    active: bool = True,
    seller: str = SELLER,
    payment_token: str = ZERO_ADDRESS,
) -> Dict[str, Any]:
    return {
        "seller": seller,
        "tokenId": token_id,
        "paymentToken": payment_token,
        "price": price,
        "active": active,
        "lastListTime": 1700000000,
        "lastDelistTime": 0,
        "lastPriceUpdateTime": 0,
        "quality": quality,
        "level": 3,
        "accumulatedFood": 12,
    }


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedgerClient:
    """Programmable stand-in for Web3LedgerClient"""

    def __init__(self, endpoint: str = "https://primary.example") -> None:
        self._endpoint = endpoint
        self.buckets: Dict[int, List[int]] = {}
        self.listings: Dict[int, Dict[str, Any]] = {}
        self.uris: Dict[int, str] = {}
        self.events: List[MutationEvent] = []
        self.block_number = 100
        self.chain_id = 56
        self.code = b"\x60\x80"
        self.initialized = True
        self.unreachable = False
        # (quality, index) pairs that keep failing transiently
        self.transient_indexes: Set[tuple] = set()
        self.listing_errors: Dict[int, Exception] = {}
        self.listing_calls: List[int] = []
        self.index_calls: List[tuple] = []
        self.closed = False

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def list_token(self, token_id: int, price: int, quality: int = 1, **kwargs: Any) -> None:
        self.buckets.setdefault(quality, []).append(token_id)
        self.listings[token_id] = raw_listing(token_id, price, quality=quality, **kwargs)

    def _check_reachable(self) -> None:
        if self.unreachable:
            raise ConnectionError(f"{self._endpoint} unreachable")

    async def get_block_number(self) -> int:
        self._check_reachable()
        return self.block_number

    async def get_chain_id(self) -> int:
        self._check_reachable()
        return self.chain_id

    async def get_code(self, address: str) -> bytes:
        self._check_reachable()
        return self.code

    async def is_initialized(self) -> bool:
        self._check_reachable()
        return self.initialized

    async def read_quality_listing(self, quality: int, index: int) -> IndexRead:
        self.index_calls.append((quality, index))
        if self.unreachable or (quality, index) in self.transient_indexes:
            return TransientFailure(reason="timeout")
        bucket = self.buckets.get(quality, [])
        if index < len(bucket):
            return IndexValue(token_id=bucket[index])
        return EndOfBucket()

    async def get_listing(self, token_id: int) -> Dict[str, Any]:
        self.listing_calls.append(token_id)
        self._check_reachable()
        if token_id in self.listing_errors:
            raise self.listing_errors[token_id]
        return dict(self.listings.get(token_id) or raw_listing(token_id, 0, seller=ZERO_ADDRESS, active=False))

    async def token_uri(self, token_id: int) -> Optional[str]:
        return self.uris.get(token_id)

    async def get_mutation_events(self, from_block: int, to_block: int) -> List[MutationEvent]:
        self._check_reachable()
        return [e for e in self.events if e.block_number is not None and from_block <= e.block_number <= to_block]

    async def close(self) -> None:
        self.closed = True


class FakeSource:
    def __init__(self, client: FakeLedgerClient) -> None:
        self.client = client


class FakeStore:
    """Dict-backed durable store; `failing` makes every call raise"""

    def __init__(self, failing: bool = False, max_entries: Optional[int] = None) -> None:
        self.data: Dict[str, str] = {}
        self.failing = failing
        self.max_entries = max_entries

    def _check(self) -> None:
        if self.failing:
            raise StorageUnavailableError("storage disabled", stage="durable_store")

    def get(self, key: str) -> Optional[str]:
        self._check()
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check()
        if self.max_entries is not None and key not in self.data and len(self.data) >= self.max_entries:
            raise StorageUnavailableError("quota exceeded", stage="durable_store")
        self.data[key] = value

    def remove(self, key: str) -> None:
        self._check()
        self.data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        self._check()
        return sorted(k for k in self.data if k.startswith(prefix))


class FakeMetadataResolver:
    def __init__(self, names: Optional[Dict[str, str]] = None) -> None:
        self.names = names or {}
        self.calls: List[str] = []

    async def resolve_display(self, uri: str) -> Optional[ListingMetadata]:
        self.calls.append(uri)
        name = self.names.get(uri)
        return ListingMetadata(name=name) if name else None

    async def close(self) -> None:
        pass


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def source(ledger: FakeLedgerClient) -> FakeSource:
    return FakeSource(ledger)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def cache(store: FakeStore, clock: FakeClock) -> ListingCache:
    return ListingCache(store, ttl=1800, clock=clock)


@pytest.fixture
def guard(ledger: FakeLedgerClient, clock: FakeClock) -> ConnectionHealthGuard:
    return ConnectionHealthGuard(
        ledger,
        lambda endpoint: FakeLedgerClient(endpoint),
        expected_chain_id=56,
        contract_address=MARKET,
        fallback_endpoint=None,
        connect_timeout=1.0,
        recheck_interval=60.0,
        clock=clock,
    )


@pytest.fixture
def enumerator(guard: ConnectionHealthGuard) -> BucketEnumerator:
    return BucketEnumerator(guard, max_items=1000, retry_attempts=3, retry_delay=0)


@pytest.fixture
def fetcher(guard: ConnectionHealthGuard, cache: ListingCache) -> RecordFetcher:
    return RecordFetcher(guard, cache, FakeMetadataResolver(), retry_attempts=3, retry_delay=0)


@pytest.fixture
def aggregator(
    guard: ConnectionHealthGuard,
    enumerator: BucketEnumerator,
    fetcher: RecordFetcher,
    cache: ListingCache,
    clock: FakeClock,
) -> MarketplaceAggregator:
    return MarketplaceAggregator(
        guard,
        enumerator,
        fetcher,
        cache,
        page_size=6,
        max_concurrent_fetches=4,
        ttl=1800,
        clock=clock,
    )
