"""
Application Layer: Marketplace Service
Entry point for the view: page requests, mutation notifications, cache control.
"""
import asyncio
from typing import List, Optional, Union

import structlog

from pwmarket.application.aggregator import MarketplaceAggregator
from pwmarket.application.cache import ListingCache
from pwmarket.application.events import MutationEventBus
from pwmarket.application.health import ConnectionHealthGuard
from pwmarket.application.synchronizer import MutationSynchronizer
from pwmarket.domain import MarketView, MutationEvent, MutationKind, PageResult, Quality, SortMethod
from pwmarket.infrastructure.event_watcher import LedgerEventWatcher

logger = structlog.get_logger()


class MarketplaceService:
    """
    Main Application Service.
    Wires the synchronizer's refresh callback to the current view and runs
    the background tasks (TTL sweep, event delivery, event watching).
    """

    def __init__(
        self,
        aggregator: MarketplaceAggregator,
        cache: ListingCache,
        guard: ConnectionHealthGuard,
        *,
        bus: Optional[MutationEventBus] = None,
        watcher: Optional[LedgerEventWatcher] = None,
        sweep_interval: float = 600.0,
        initial_view: Optional[MarketView] = None,
    ):
        self.aggregator = aggregator
        self.cache = cache
        self.guard = guard
        self.bus = bus
        self.watcher = watcher
        self.sweep_interval = sweep_interval

        self.synchronizer = MutationSynchronizer(cache, aggregator, refresh=self.refresh_current_view)
        if self.bus is not None:
            self.bus.subscribe(self.synchronizer.handle)

        self.current_view: MarketView = initial_view or MarketView()
        self.last_result: Optional[PageResult] = None
        self._request_seq = 0
        self._tasks: List["asyncio.Task[None]"] = []

    # --- UI contract ---

    async def get_page(
        self,
        quality: Union[Quality, int],
        sort: Union[SortMethod, str],
        search_text: str = "",
        page: int = 1,
        force_refresh: bool = False,
    ) -> PageResult:
        return await self.aggregator.get_page(quality, sort, search_text, page, force_refresh)

    async def show(self, view: MarketView, force_refresh: bool = False) -> Optional[PageResult]:
        """
        Makes `view` current and computes it.
        Returns None when a newer show() started meanwhile; that result is discarded.
        """
        self._request_seq += 1
        seq = self._request_seq
        self.current_view = view

        result = await self.get_page(view.quality, view.sort, view.search_text, view.page, force_refresh)

        if seq != self._request_seq or view != self.current_view:
            logger.debug("page_result_superseded", quality=int(view.quality), page=view.page)
            return None
        self.last_result = result
        return result

    async def refresh_current_view(self) -> Optional[PageResult]:
        return await self.show(self.current_view, force_refresh=True)

    def invalidate_on_mutation(self, kind: Union[MutationKind, str], token_id: int) -> None:
        self.synchronizer.on_event(kind, token_id)

    def publish_mutation(self, kind: Union[MutationKind, str], token_id: int) -> None:
        """Queues a mutation on the bus, or applies it directly without one"""
        if self.bus is None:
            self.invalidate_on_mutation(kind, token_id)
            return
        self.bus.publish(MutationEvent(kind=self.synchronizer.parse_kind(kind), token_id=int(token_id)))

    def clear_all(self) -> None:
        self.cache.clear()
        self.aggregator.invalidate_pages()
        self.guard.reset()
        self.last_result = None
        logger.info("marketplace_state_cleared")

    # --- Background tasks ---

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.aggregator.sweep_all()
            except Exception as e:
                logger.error("cache_sweep_failed", error=str(e))

    def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks.append(loop.create_task(self._sweep_loop()))
        if self.bus is not None:
            self._tasks.append(loop.create_task(self.bus.run()))
        if self.watcher is not None:
            self._tasks.append(loop.create_task(self.watcher.run()))
        logger.info("marketplace_service_started", tasks=len(self._tasks))

    async def stop(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
        if self.bus is not None and self.bus.running:
            self.bus.stop()
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.synchronizer.drain()
        logger.info("marketplace_service_stopped")
