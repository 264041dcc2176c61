"""
Application Layer: Bucket Enumerator
Discovers listed token ids by walking qualityListings(quality, index) from index 0.
"""
import asyncio
from typing import List, Set

import structlog

from pwmarket.application.ports import ILedgerSource
from pwmarket.domain import (
    BucketScan,
    EndOfBucket,
    IndexRead,
    IndexValue,
    Quality,
    TransientFailure,
)
from pwmarket.infrastructure.retry import call_with_retry

logger = structlog.get_logger()


def _is_transient(read: IndexRead) -> bool:
    return isinstance(read, TransientFailure)


class BucketEnumerator:
    """
    Scans are finite and not restartable: every call starts again at index 0.
    An EndOfBucket read is the normal end of a scan, not an error.
    """

    def __init__(
        self,
        ledger: ILedgerSource,
        *,
        max_items: int = 1000,
        retry_attempts: int = 3,
        retry_delay: float = 2.0,
    ):
        self.ledger = ledger
        self.max_items = max_items
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    async def read_index(self, quality: int, index: int) -> IndexRead:
        return await call_with_retry(
            self.ledger.client.read_quality_listing,
            quality,
            index,
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            retry_on=(),
            retry_if=_is_transient,
        )

    async def _probe_buckets(self) -> List[IndexRead]:
        return list(await asyncio.gather(*(self.read_index(int(q), 0) for q in Quality)))

    async def has_any_listing(self) -> bool:
        """Probes index 0 of every bucket"""
        return any(isinstance(read, IndexValue) for read in await self._probe_buckets())

    async def scan(self, quality: Quality, skip_if_empty: bool = True) -> BucketScan:
        quality = Quality(quality)
        # only a clean EndOfBucket everywhere proves the marketplace is empty
        if skip_if_empty and all(isinstance(read, EndOfBucket) for read in await self._probe_buckets()):
            logger.info("marketplace_empty", quality=quality.name)
            return BucketScan(quality=quality, end_reason="marketplace_empty")

        token_ids: List[int] = []
        seen: Set[int] = set()
        end_reason = "ceiling"

        for index in range(self.max_items):
            read = await self.read_index(int(quality), index)

            if isinstance(read, IndexValue):
                if read.token_id in seen:
                    # bucket was reshuffled mid-scan
                    logger.warning("bucket_duplicate_token", quality=quality.name, index=index, token_id=read.token_id)
                    continue
                seen.add(read.token_id)
                token_ids.append(read.token_id)
            elif isinstance(read, EndOfBucket):
                end_reason = "end_of_bucket"
                break
            else:
                logger.warning("bucket_scan_aborted", quality=quality.name, index=index, reason=read.reason)
                end_reason = "transient_failure"
                break
        else:
            logger.warning("bucket_ceiling_reached", quality=quality.name, max_items=self.max_items)

        logger.info("bucket_enumerated", quality=quality.name, count=len(token_ids), end_reason=end_reason)
        return BucketScan(quality=quality, token_ids=tuple(token_ids), end_reason=end_reason)

    async def enumerate(self, quality: Quality) -> List[int]:
        scan = await self.scan(quality)
        return list(scan.token_ids)
