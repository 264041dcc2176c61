"""
Application Layer: Listing Cache
Two-tier (memory + durable store) per-token cache with TTL expiry.
"""
import json
import threading
from typing import Dict, Optional, Tuple

import structlog

from pwmarket.application.ports import Clock, IDurableStore
from pwmarket.domain import CacheEntry, ListingRecord

logger = structlog.get_logger()

STORAGE_PREFIX = "marketplace_listing_"
DEFAULT_TTL = 30 * 60

_CORRUPT_ERRORS = (ValueError, KeyError, TypeError)


def storage_key(token_id: int) -> str:
    return f"{STORAGE_PREFIX}{token_id}"


class ListingCache:
    """
    Memory is consulted first, then the durable store (hits are promoted).
    Every operation holds one lock and never awaits, so per-token
    get/put/invalidate cannot interleave.
    """

    def __init__(self, store: Optional[IDurableStore], *, ttl: float = DEFAULT_TTL, clock: Clock):
        self.store = store
        self.ttl = ttl
        self._clock = clock
        self._memory: Dict[int, CacheEntry] = {}
        self._generations: Dict[int, int] = {}
        self._epoch = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._memory)

    # --- Durable tier ---

    def _durable_load(self, token_id: int) -> Optional[CacheEntry]:
        if self.store is None:
            return None
        key = storage_key(token_id)
        try:
            raw = self.store.get(key)
        except Exception as e:
            logger.warning("durable_cache_read_failed", token_id=token_id, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(raw))
        except _CORRUPT_ERRORS as e:
            logger.warning("durable_cache_corrupt", token_id=token_id, error=str(e))
            self._durable_remove(token_id)
            return None

    def _durable_save(self, entry: CacheEntry) -> None:
        if self.store is None:
            return
        try:
            self.store.set(storage_key(entry.token_id), json.dumps(entry.to_dict()))
        except Exception as e:
            logger.warning("durable_cache_write_failed", token_id=entry.token_id, error=str(e))

    def _durable_remove(self, token_id: int) -> None:
        if self.store is None:
            return
        try:
            self.store.remove(storage_key(token_id))
        except Exception as e:
            logger.warning("durable_cache_remove_failed", token_id=token_id, error=str(e))

    # --- Public API ---

    def generation(self, token_id: int) -> int:
        """Grows whenever the token is invalidated or the cache is cleared"""
        with self._lock:
            return self._epoch + self._generations.get(token_id, 0)

    def get(self, token_id: int) -> Optional[CacheEntry]:
        with self._lock:
            now = self._clock()
            entry = self._memory.get(token_id)
            if entry is not None:
                if not entry.is_expired(now, self.ttl):
                    return entry
                del self._memory[token_id]
                self._durable_remove(token_id)
                return None

            entry = self._durable_load(token_id)
            if entry is None:
                return None
            if entry.is_expired(now, self.ttl):
                self._durable_remove(token_id)
                return None
            self._memory[token_id] = entry
            return entry

    def put(self, token_id: int, record: Optional[ListingRecord], generation: Optional[int] = None) -> bool:
        """
        Writes both tiers with a fresh timestamp; record=None stores a tombstone.
        Skipped (returns False) when the token was invalidated after `generation` was taken.
        """
        with self._lock:
            if generation is not None and generation != self.generation(token_id):
                logger.debug("cache_put_skipped_stale", token_id=token_id)
                return False
            entry = CacheEntry(token_id=token_id, record=record, timestamp=self._clock())
            self._memory[token_id] = entry
            self._durable_save(entry)
            return True

    def put_tombstone(self, token_id: int, generation: Optional[int] = None) -> bool:
        return self.put(token_id, None, generation)

    def invalidate(self, token_id: int) -> None:
        with self._lock:
            self._memory.pop(token_id, None)
            self._generations[token_id] = self._generations.get(token_id, 0) + 1
            self._durable_remove(token_id)

    def sweep_memory(self) -> int:
        """Drops expired entries from the memory tier only; no disk access"""
        with self._lock:
            now = self._clock()
            expired = [tid for tid, entry in self._memory.items() if entry.is_expired(now, self.ttl)]
            for tid in expired:
                del self._memory[tid]
            return len(expired)

    def sweep_durable(self) -> int:
        """Reads every durable entry and removes the expired ones"""
        with self._lock:
            now = self._clock()
            durable_removed = 0
            if self.store is not None:
                try:
                    keys = list(self.store.keys(STORAGE_PREFIX))
                except Exception as e:
                    logger.warning("durable_cache_list_failed", error=str(e))
                    keys = []
                for key in keys:
                    try:
                        token_id = int(key[len(STORAGE_PREFIX):])
                    except ValueError:
                        continue
                    entry = self._durable_load(token_id)
                    if entry is None or entry.is_expired(now, self.ttl):
                        self._durable_remove(token_id)
                        durable_removed += 1
            return durable_removed

    def sweep_expired(self) -> Tuple[int, int]:
        """Physically removes expired entries from both tiers"""
        memory_removed = self.sweep_memory()
        durable_removed = self.sweep_durable()
        if memory_removed or durable_removed:
            logger.info("cache_swept", memory=memory_removed, durable=durable_removed)
        return memory_removed, durable_removed

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
            self._epoch += 1
            if self.store is None:
                return
            try:
                keys = list(self.store.keys(STORAGE_PREFIX))
            except Exception as e:
                logger.warning("durable_cache_list_failed", error=str(e))
                return
            for key in keys:
                try:
                    self.store.remove(key)
                except Exception as e:
                    logger.warning("durable_cache_remove_failed", key=key, error=str(e))
            logger.info("cache_cleared", durable=len(keys))
