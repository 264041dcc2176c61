"""
Application Layer: Marketplace Aggregator
Turns one bucket into sorted, filtered, paginated PageResults.
"""
import asyncio
from typing import Dict, List, Optional, Tuple, Union

import structlog

from pwmarket.application.cache import DEFAULT_TTL, ListingCache
from pwmarket.application.enumerator import BucketEnumerator
from pwmarket.application.fetcher import RecordFetcher
from pwmarket.application.health import ConnectionHealthGuard
from pwmarket.application.ports import Clock
from pwmarket.domain import (
    DomainError,
    InvalidQueryError,
    ListingRecord,
    ListingSorter,
    MarketplaceUnavailableError,
    NetworkUnavailableError,
    PageKey,
    PageResult,
    Paginator,
    Quality,
    SortMethod,
    matches_search,
)

logger = structlog.get_logger()


class MarketplaceAggregator:
    """
    Pipeline per request: health check -> enumerate -> resolve all -> filter -> sort -> slice.
    Every page of a computed ordering is cached under its own PageKey.
    """

    def __init__(
        self,
        guard: ConnectionHealthGuard,
        enumerator: BucketEnumerator,
        fetcher: RecordFetcher,
        cache: ListingCache,
        *,
        page_size: int = 6,
        max_concurrent_fetches: int = 16,
        ttl: float = DEFAULT_TTL,
        clock: Clock,
    ):
        self.guard = guard
        self.enumerator = enumerator
        self.fetcher = fetcher
        self.cache = cache
        self.paginator = Paginator(page_size)
        self.max_concurrent_fetches = max(1, max_concurrent_fetches)
        self.ttl = ttl
        self._clock = clock
        self._pages: Dict[PageKey, PageResult] = {}
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def cached_pages(self) -> int:
        return len(self._pages)

    def invalidate_pages(self) -> None:
        self._pages.clear()
        self._epoch += 1

    # --- Validation ---

    @staticmethod
    def build_key(
        quality: Union[Quality, int],
        sort: Union[SortMethod, str],
        search_text: str,
        page: int,
    ) -> PageKey:
        try:
            quality = Quality(quality)
        except ValueError as e:
            raise InvalidQueryError(f"unknown quality {quality!r}", stage="query") from e
        try:
            sort = SortMethod(sort)
        except ValueError as e:
            raise InvalidQueryError(f"unknown sort method {sort!r}", stage="query") from e
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise InvalidQueryError(f"page must be a positive integer, got {page!r}", stage="query")
        return PageKey(
            page=page,
            quality=quality,
            sort=sort,
            search_text=PageKey.normalize_search(search_text),
        )

    def _sweep(self) -> None:
        """Per-request sweep: memory tier and PageResults, no disk access"""
        if self.cache.sweep_memory():
            # pages may hold records that just expired
            self.invalidate_pages()
            return
        now = self._clock()
        stale = [key for key, result in self._pages.items() if now - result.computed_at >= self.ttl]
        for key in stale:
            del self._pages[key]

    async def sweep_all(self) -> Tuple[int, int]:
        """Full sweep of both cache tiers; disk work runs off the event loop"""
        removed = await asyncio.to_thread(self.cache.sweep_expired)
        if any(removed):
            self.invalidate_pages()
        else:
            self._sweep()
        return removed

    # --- Pipeline ---

    async def get_page(
        self,
        quality: Union[Quality, int],
        sort: Union[SortMethod, str],
        search_text: str = "",
        page: int = 1,
        force_refresh: bool = False,
    ) -> PageResult:
        key = self.build_key(quality, sort, search_text, page)
        self._sweep()

        if not force_refresh:
            cached = self._pages.get(key)
            if cached is not None:
                return cached

        epoch = self._epoch
        status = await self.guard.ensure_usable()
        if not status.usable:
            raise NetworkUnavailableError(f"no usable endpoint ({status.reason})", stage="health")

        scan = await self.enumerator.scan(key.quality)
        if scan.failed_empty:
            raise MarketplaceUnavailableError(
                f"bucket {key.quality.name} could not be read", stage="enumerate"
            )

        records = await self._resolve_all(list(scan.token_ids), key.quality, force_refresh)
        matching = [r for r in records if matches_search(r, key.search_text)]
        ordered = ListingSorter(key.sort).sort(matching)

        now = self._clock()
        total_pages = self.paginator.total_pages(len(ordered))
        results: Dict[int, PageResult] = {}
        for number in range(1, total_pages + 1):
            page_key = PageKey(page=number, quality=key.quality, sort=key.sort, search_text=key.search_text)
            results[number] = PageResult(
                key=page_key,
                items=self.paginator.slice(ordered, number),
                total_pages=total_pages,
                total_items=len(ordered),
                computed_at=now,
            )

        result = results.get(key.page) or PageResult(
            key=key, items=(), total_pages=total_pages, total_items=len(ordered), computed_at=now
        )

        if epoch == self._epoch:
            for page_result in results.values():
                self._pages[page_result.key] = page_result
            self._pages[key] = result
        else:
            logger.info("page_result_not_cached", quality=key.quality.name, reason="invalidated_in_flight")

        logger.info(
            "page_computed",
            quality=key.quality.name,
            sort=key.sort.value,
            page=key.page,
            total_pages=total_pages,
            total_items=len(ordered),
        )
        return result

    async def _resolve_all(
        self, token_ids: List[int], quality: Quality, force_refresh: bool
    ) -> List[ListingRecord]:
        semaphore = asyncio.Semaphore(self.max_concurrent_fetches)

        async def resolve_one(token_id: int) -> Optional[ListingRecord]:
            async with semaphore:
                try:
                    return await self.fetcher.resolve(token_id, force_refresh=force_refresh)
                except DomainError as e:
                    logger.warning("listing_dropped", token_id=token_id, stage=e.stage, reason=str(e))
                    return None

        resolved = await asyncio.gather(*(resolve_one(tid) for tid in token_ids))

        records: List[ListingRecord] = []
        for record in resolved:
            if record is None or not record.active:
                continue
            if record.quality != int(quality):
                logger.warning(
                    "listing_dropped",
                    token_id=record.token_id,
                    stage="aggregate",
                    reason=f"quality {record.quality} listed in bucket {int(quality)}",
                )
                continue
            records.append(record)
        return records
