"""
Application Layer: Mutation Synchronizer
Keeps caches consistent after a listing changes on the ledger.
"""
import asyncio
from typing import Awaitable, Callable, Optional, Set, Union

import structlog

from pwmarket.application.aggregator import MarketplaceAggregator
from pwmarket.application.cache import ListingCache
from pwmarket.domain import InvalidQueryError, MutationEvent, MutationKind

logger = structlog.get_logger()

RefreshCallback = Callable[[], Awaitable[object]]


class MutationSynchronizer:
    """
    Reacts to listed / delisted / price_updated / bought notifications.
    Drops the token's cache entry and every PageResult, then schedules a
    forced refresh of whatever the view is showing.
    """

    def __init__(
        self,
        cache: ListingCache,
        aggregator: MarketplaceAggregator,
        refresh: Optional[RefreshCallback] = None,
    ):
        self.cache = cache
        self.aggregator = aggregator
        self.refresh = refresh
        self._tasks: Set["asyncio.Task[object]"] = set()

    @staticmethod
    def parse_kind(kind: Union[MutationKind, str]) -> MutationKind:
        try:
            return MutationKind(kind)
        except ValueError as e:
            raise InvalidQueryError(f"unknown mutation kind {kind!r}", stage="mutation") from e

    def on_event(self, kind: Union[MutationKind, str], token_id: int) -> Optional["asyncio.Task[object]"]:
        """Synchronous invalidation; returns the scheduled refresh task, if any"""
        kind = self.parse_kind(kind)
        token_id = int(token_id)

        self.cache.invalidate(token_id)
        self.aggregator.invalidate_pages()
        logger.info("listing_mutation", kind=kind.value, token_id=token_id)

        if self.refresh is None:
            return None
        try:
            task = asyncio.get_running_loop().create_task(self._run_refresh())
        except RuntimeError:
            # no loop: the next get_page recomputes anyway
            return None
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle(self, event: MutationEvent) -> None:
        """Event bus subscriber"""
        self.on_event(event.kind, event.token_id)

    async def _run_refresh(self) -> object:
        if self.refresh is None:
            return None
        try:
            return await self.refresh()
        except Exception as e:
            logger.warning("view_refresh_failed", error=str(e))
            return None

    async def drain(self) -> None:
        """Waits for every scheduled refresh"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
