"""
Application Layer: Record Fetcher
Resolves a token id to a normalized ListingRecord, cache first.
"""
from typing import Any, Dict, Optional

import structlog

from pwmarket.application.cache import ListingCache
from pwmarket.application.ports import ILedgerSource, IMetadataResolver
from pwmarket.domain import (
    NATIVE_TOKEN,
    ZERO_ADDRESS,
    InvalidListingError,
    ListingFetchError,
    ListingMetadata,
    ListingRecord,
    Quality,
)
from pwmarket.infrastructure.retry import TRANSIENT_ERRORS, call_with_retry

logger = structlog.get_logger()


def _to_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _is_zero_address(value: Any) -> bool:
    text = str(value or "").strip().lower()
    return not text or text == ZERO_ADDRESS or text == "0x0"


def normalize_listing(token_id: int, raw: Optional[Dict[str, Any]]) -> Optional[ListingRecord]:
    """
    Maps a raw listings(tokenId) struct to a ListingRecord.
    Returns None when no listing exists (zero seller).
    Raises InvalidListingError when a required field is unusable.
    """
    if not raw or _is_zero_address(raw.get("seller")):
        return None

    price_raw = raw.get("price")
    if price_raw is None or price_raw == "":
        raise InvalidListingError("listing has no price", stage="normalize", token_id=token_id)
    try:
        price = int(str(price_raw).strip())
    except ValueError as e:
        raise InvalidListingError(f"unparsable price {price_raw!r}", stage="normalize", token_id=token_id) from e
    if price < 0:
        raise InvalidListingError(f"negative price {price}", stage="normalize", token_id=token_id)

    quality = _to_int(raw.get("quality"), -1)
    if quality not in {q.value for q in Quality}:
        raise InvalidListingError(f"quality out of range: {raw.get('quality')!r}", stage="normalize", token_id=token_id)

    active = raw.get("active")
    if isinstance(active, str):
        active = active.strip().lower() in {"1", "true"}

    payment_token = raw.get("paymentToken")
    return ListingRecord(
        token_id=token_id,
        seller=str(raw["seller"]),
        payment_token=NATIVE_TOKEN if _is_zero_address(payment_token) else str(payment_token),
        price=price,
        active=bool(active),
        quality=quality,
        last_list_time=_to_int(raw.get("lastListTime"), 0),
        level=max(1, _to_int(raw.get("level"), 1)),
        accumulated_food=max(0, _to_int(raw.get("accumulatedFood"), 0)),
    )


class RecordFetcher:
    """
    Cache hit -> return immediately.
    Miss or forced -> remote point read, normalize, enrich, write through.
    """

    def __init__(
        self,
        ledger: ILedgerSource,
        cache: ListingCache,
        metadata: Optional[IMetadataResolver] = None,
        *,
        retry_attempts: int = 3,
        retry_delay: float = 2.0,
    ):
        self.ledger = ledger
        self.cache = cache
        self.metadata = metadata
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    async def resolve(self, token_id: int, force_refresh: bool = False) -> Optional[ListingRecord]:
        if not force_refresh:
            entry = self.cache.get(token_id)
            if entry is not None:
                return entry.record

        generation = self.cache.generation(token_id)
        try:
            raw = await call_with_retry(
                self.ledger.client.get_listing,
                token_id,
                attempts=self.retry_attempts,
                delay=self.retry_delay,
                retry_on=TRANSIENT_ERRORS,
            )
        except Exception as e:
            raise ListingFetchError(
                f"listing read failed: {type(e).__name__}: {e}", stage="fetch", token_id=token_id
            ) from e

        record = normalize_listing(token_id, raw)
        if record is None:
            logger.debug("listing_absent", token_id=token_id)
            self.cache.put_tombstone(token_id, generation)
            return None

        if record.active:
            record = await self._enrich(record)
        self.cache.put(token_id, record, generation)
        return record

    async def _enrich(self, record: ListingRecord) -> ListingRecord:
        """Best-effort display metadata; falls back to the placeholder name"""
        metadata: Optional[ListingMetadata] = None
        if self.metadata is not None:
            try:
                uri = await self.ledger.client.token_uri(record.token_id)
                if uri:
                    metadata = await self.metadata.resolve_display(uri)
            except Exception as e:
                logger.warning("metadata_enrichment_failed", token_id=record.token_id, error=str(e))

        if metadata is None:
            metadata = ListingMetadata.placeholder(record.token_id)
        return ListingRecord(
            token_id=record.token_id,
            seller=record.seller,
            payment_token=record.payment_token,
            price=record.price,
            active=record.active,
            quality=record.quality,
            last_list_time=record.last_list_time,
            level=record.level,
            accumulated_food=record.accumulated_food,
            metadata=metadata,
        )
