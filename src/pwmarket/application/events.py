"""
Application Layer: Mutation Event Bus
In-process fan-out of listing mutations to subscribers.
"""
import asyncio
from typing import List, Optional

import structlog

from pwmarket.application.ports import EventHandler
from pwmarket.domain import MutationEvent

logger = structlog.get_logger()


class MutationEventBus:
    """Unbounded queue; publish never blocks, run() delivers until stop()"""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Optional[MutationEvent]]" = asyncio.Queue()
        self._subscribers: List[EventHandler] = []
        self.running = False

    def subscribe(self, handler: EventHandler) -> None:
        self._subscribers.append(handler)

    def publish(self, event: MutationEvent) -> None:
        self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def run(self) -> None:
        self.running = True
        logger.info("event_bus_started", subscribers=len(self._subscribers))
        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    break
                await self._deliver(event)
        finally:
            self.running = False
            logger.info("event_bus_stopped")

    async def _deliver(self, event: MutationEvent) -> None:
        for handler in list(self._subscribers):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "event_handler_failed",
                    kind=event.kind.value,
                    token_id=event.token_id,
                    error=str(e),
                )

    def stop(self) -> None:
        """Events published before stop() are still delivered"""
        self._queue.put_nowait(None)
