"""
Main Entry Point (Composition Root)
"""
import asyncio
import logging
import signal
import time

import structlog

from pwmarket.application.aggregator import MarketplaceAggregator
from pwmarket.application.cache import ListingCache
from pwmarket.application.enumerator import BucketEnumerator
from pwmarket.application.events import MutationEventBus
from pwmarket.application.fetcher import RecordFetcher
from pwmarket.application.health import ConnectionHealthGuard
from pwmarket.application.service import MarketplaceService
from pwmarket.application.ui import MarketplaceDashboard
from pwmarket.domain import DomainError, MarketView, Quality, SortMethod
from pwmarket.infrastructure.config import Settings, settings
from pwmarket.infrastructure.durable_store import JsonFileStore
from pwmarket.infrastructure.event_watcher import LedgerEventWatcher
from pwmarket.infrastructure.ledger_client import ledger_client_factory
from pwmarket.infrastructure.metadata import HttpMetadataResolver


def resolve_log_level(level: str) -> int:
    """Numeric level for a name; unknown names fall back to INFO"""
    value = logging.getLevelName((level or "").strip().upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_log_level(level)),
    )


configure_logging(settings.log_level if settings is not None else "INFO")

logger = structlog.get_logger()


def build_service(config: Settings) -> MarketplaceService:
    """Wires every component from settings"""
    clock = time.time
    factory = ledger_client_factory(config)

    guard = ConnectionHealthGuard(
        factory(config.primary_rpc),
        factory,
        expected_chain_id=config.expected_chain_id,
        contract_address=config.market_address,
        fallback_endpoint=config.fallback_rpc,
        connect_timeout=config.connect_timeout,
        recheck_interval=config.health_recheck_interval,
        clock=clock,
    )
    store = JsonFileStore(config.cache_dir, max_entries=config.cache_max_entries)
    cache = ListingCache(store, ttl=config.cache_ttl, clock=clock)
    enumerator = BucketEnumerator(
        guard,
        max_items=config.max_bucket_items,
        retry_attempts=config.retry_attempts,
        retry_delay=config.retry_delay,
    )
    metadata = HttpMetadataResolver(config.ipfs_gateway, timeout=config.metadata_timeout)
    fetcher = RecordFetcher(
        guard,
        cache,
        metadata,
        retry_attempts=config.retry_attempts,
        retry_delay=config.retry_delay,
    )
    aggregator = MarketplaceAggregator(
        guard,
        enumerator,
        fetcher,
        cache,
        page_size=config.page_size,
        max_concurrent_fetches=config.max_concurrent_fetches,
        ttl=config.cache_ttl,
        clock=clock,
    )

    bus = MutationEventBus()
    watcher = None
    if config.watch_events:
        watcher = LedgerEventWatcher(
            guard, bus, poll_interval=config.event_poll_interval, block_batch=config.event_block_batch
        )

    return MarketplaceService(
        aggregator,
        cache,
        guard,
        bus=bus,
        watcher=watcher,
        sweep_interval=config.cache_sweep_interval,
        initial_view=MarketView(
            quality=Quality(config.default_quality),
            sort=SortMethod(config.default_sort),
        ),
    )


async def main() -> None:
    if settings is None:
        logger.critical("configuration_invalid")
        return

    logger.info("startup", **settings.model_dump(include={"network", "page_size", "cache_ttl", "watch_events"}))

    # 1. Composition
    service = build_service(settings)
    dashboard = MarketplaceDashboard(settings.network, settings.payment_token)

    # 2. Shutdown handling
    stop_event = asyncio.Event()

    def signal_handler() -> None:
        dashboard.stop()
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, signal_handler)
    loop.add_signal_handler(signal.SIGTERM, signal_handler)

    # 3. Main loop
    logger.info("starting_loop")
    service.start()
    dashboard.start()

    try:
        while not stop_event.is_set():
            view = service.current_view
            try:
                result = await service.show(view)
                if result is not None:
                    dashboard.update_state(view, result)
                    dashboard.add_log(f"{result.total_items} listings in {view.quality.name}")
            except DomainError as e:
                logger.warning("page_unavailable", stage=e.stage, error=str(e))
                dashboard.update_state(view, None, e.user_message)
                dashboard.add_log(e.user_message.value, "WARNING")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=settings.scan_delay)
            except asyncio.TimeoutError:
                pass
    except Exception as e:
        dashboard.stop()
        logger.critical("fatal_error", error=str(e))
    finally:
        dashboard.stop()
        await service.stop()
        await service.guard.client.close()
        if service.aggregator.fetcher.metadata is not None:
            await service.aggregator.fetcher.metadata.close()
        logger.info("shutdown_complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
