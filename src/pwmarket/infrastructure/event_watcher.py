"""
Infrastructure Layer: Ledger Event Watcher
Polls marketplace logs and republishes them as MutationEvents.
"""
import asyncio
from typing import Optional

import structlog

from pwmarket.application.events import MutationEventBus
from pwmarket.application.ports import ILedgerSource

logger = structlog.get_logger()


class LedgerEventWatcher:
    """
    Follows the chain head in block ranges of at most `block_batch`.
    Starts at the head seen on the first tick; history is not replayed.
    """

    def __init__(
        self,
        ledger: ILedgerSource,
        bus: MutationEventBus,
        poll_interval: float = 15.0,
        block_batch: int = 2000,
    ):
        self.ledger = ledger
        self.bus = bus
        self.poll_interval = poll_interval
        self.block_batch = max(1, block_batch)
        self.next_block: Optional[int] = None
        self._running = False

    async def poll_once(self) -> int:
        """Publishes every new event up to the current head; returns how many"""
        client = self.ledger.client
        head = await client.get_block_number()

        if self.next_block is None:
            self.next_block = head + 1
            logger.info("event_watcher_anchored", block=head)
            return 0

        published = 0
        while self.next_block <= head:
            to_block = min(head, self.next_block + self.block_batch - 1)
            events = await client.get_mutation_events(self.next_block, to_block)
            for event in events:
                self.bus.publish(event)
                published += 1
            self.next_block = to_block + 1

        if published:
            logger.info("ledger_events_published", count=published, head=head)
        return published

    async def run(self) -> None:
        self._running = True
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                # the same range is retried on the next tick
                logger.warning("event_poll_failed", error=str(e), next_block=self.next_block)
            await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        self._running = False
