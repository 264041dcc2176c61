"""
Domain Layer: Entities and Value Objects
Pure Python, No external dependencies.
"""
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Tuple, Union

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_TOKEN = "native"

# --- Value Objects ---

class Quality(IntEnum):
    """Listing bucket on the marketplace contract"""
    COMMON = 0
    GOOD = 1
    EXCELLENT = 2
    RARE = 3
    LEGENDARY = 4


class SortMethod(Enum):
    PRICE_ASC = "price-asc"
    PRICE_DESC = "price-desc"
    ID_ASC = "id-asc"
    ID_DESC = "id-desc"


class MutationKind(Enum):
    LISTED = "listed"
    DELISTED = "delisted"
    PRICE_UPDATED = "price_updated"
    BOUGHT = "bought"


class UserMessage(str, Enum):
    """The only messages the view ever shows for a failure"""
    NETWORK_UNAVAILABLE = "cannot reach network"
    MARKETPLACE_UNAVAILABLE = "marketplace temporarily unavailable"
    NO_ITEMS = "no items found"


@dataclass(frozen=True)
class PaymentToken:
    symbol: str
    address: str
    decimals: int = 18


@dataclass(frozen=True)
class ListingMetadata:
    """Display fields resolved from the token URI"""
    name: str
    image: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def placeholder(cls, token_id: int) -> "ListingMetadata":
        return cls(name=f"Item #{token_id}")

# --- Entities ---

@dataclass(frozen=True)
class ListingRecord:
    """Normalized marketplace listing"""
    token_id: int
    seller: str
    payment_token: str
    price: int
    active: bool
    quality: int
    last_list_time: int = 0
    level: int = 1
    accumulated_food: int = 0
    metadata: Optional[ListingMetadata] = None

    @property
    def display_name(self) -> str:
        if self.metadata and self.metadata.name:
            return self.metadata.name
        return ListingMetadata.placeholder(self.token_id).name

    @property
    def pays_native(self) -> bool:
        return self.payment_token == NATIVE_TOKEN

    def to_dict(self) -> Dict[str, Any]:
        # price is kept as a string so the durable tier never rounds it
        return {
            "tokenId": self.token_id,
            "seller": self.seller,
            "paymentToken": self.payment_token,
            "price": str(self.price),
            "active": self.active,
            "quality": self.quality,
            "lastListTime": self.last_list_time,
            "level": self.level,
            "accumulatedFood": self.accumulated_food,
            "metadata": (
                {
                    "name": self.metadata.name,
                    "image": self.metadata.image,
                    "description": self.metadata.description,
                }
                if self.metadata
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListingRecord":
        meta = data.get("metadata")
        return cls(
            token_id=int(data["tokenId"]),
            seller=str(data["seller"]),
            payment_token=str(data["paymentToken"]),
            price=int(str(data["price"])),
            active=bool(data["active"]),
            quality=int(data["quality"]),
            last_list_time=int(data.get("lastListTime", 0)),
            level=int(data.get("level", 1)),
            accumulated_food=int(data.get("accumulatedFood", 0)),
            metadata=(
                ListingMetadata(
                    name=str(meta.get("name", "")),
                    image=meta.get("image"),
                    description=meta.get("description"),
                )
                if isinstance(meta, dict)
                else None
            ),
        )


@dataclass(frozen=True)
class CacheEntry:
    """Cached listing or tombstone (record is None) with its write time"""
    token_id: int
    record: Optional[ListingRecord]
    timestamp: float

    @property
    def is_tombstone(self) -> bool:
        return self.record is None

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.timestamp >= ttl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokenId": self.token_id,
            "timestamp": self.timestamp,
            "data": self.record.to_dict() if self.record else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        raw = data.get("data")
        return cls(
            token_id=int(data["tokenId"]),
            record=ListingRecord.from_dict(raw) if isinstance(raw, dict) else None,
            timestamp=float(data["timestamp"]),
        )


@dataclass(frozen=True)
class PageKey:
    page: int
    quality: Quality
    sort: SortMethod
    search_text: str = ""

    @staticmethod
    def normalize_search(text: str) -> str:
        return (text or "").strip().casefold()


@dataclass(frozen=True)
class PageResult:
    key: PageKey
    items: Tuple[ListingRecord, ...]
    total_pages: int
    total_items: int
    computed_at: float

    @property
    def is_empty(self) -> bool:
        return not self.items


@dataclass(frozen=True)
class MarketView:
    """What the marketplace view is currently displaying"""
    quality: Quality = Quality.GOOD
    sort: SortMethod = SortMethod.PRICE_ASC
    search_text: str = ""
    page: int = 1


@dataclass(frozen=True)
class MutationEvent:
    kind: MutationKind
    token_id: int
    block_number: Optional[int] = None

# --- Remote read results ---

@dataclass(frozen=True)
class IndexValue:
    token_id: int


@dataclass(frozen=True)
class EndOfBucket:
    reason: str = "end_of_bucket"


@dataclass(frozen=True)
class TransientFailure:
    reason: str


IndexRead = Union[IndexValue, EndOfBucket, TransientFailure]


@dataclass(frozen=True)
class BucketScan:
    quality: Quality
    token_ids: Tuple[int, ...] = field(default_factory=tuple)
    end_reason: str = "end_of_bucket"

    @property
    def failed_empty(self) -> bool:
        return not self.token_ids and self.end_reason == "transient_failure"


class HealthState(Enum):
    READY = "ready"
    DEGRADED = "degraded"
    UNUSABLE = "unusable"


@dataclass(frozen=True)
class HealthStatus:
    state: HealthState
    endpoint: str
    reason: str = ""

    @property
    def usable(self) -> bool:
        return self.state is not HealthState.UNUSABLE

    @classmethod
    def ready(cls, endpoint: str) -> "HealthStatus":
        return cls(HealthState.READY, endpoint)

    @classmethod
    def degraded(cls, endpoint: str, reason: str) -> "HealthStatus":
        return cls(HealthState.DEGRADED, endpoint, reason)

    @classmethod
    def unusable(cls, endpoint: str, reason: str) -> "HealthStatus":
        return cls(HealthState.UNUSABLE, endpoint, reason)

# --- Exceptions ---

class DomainError(Exception):
    """Base domain exception"""

    user_message: UserMessage = UserMessage.MARKETPLACE_UNAVAILABLE

    def __init__(self, message: str, *, stage: str = "", token_id: Optional[int] = None):
        super().__init__(message)
        self.stage = stage
        self.token_id = token_id


class NetworkUnavailableError(DomainError):
    """Raised when neither the primary nor the fallback endpoint is usable"""
    user_message = UserMessage.NETWORK_UNAVAILABLE


class MarketplaceUnavailableError(DomainError):
    """Raised when a bucket could not be read at all after retries"""


class InvalidListingError(DomainError):
    """Raised when a remote listing cannot be normalized"""


class ListingFetchError(DomainError):
    """Raised when a listing point read keeps failing"""


class InvalidQueryError(DomainError):
    """Raised for page requests outside the supported range"""
    user_message = UserMessage.NO_ITEMS


class StorageUnavailableError(DomainError):
    """Raised by a durable store that is full or disabled"""
