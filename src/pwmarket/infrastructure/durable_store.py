"""
Infrastructure: Durable Listing Store
One JSON file per key under a cache directory, bounded in entry count.
"""
import re
from pathlib import Path
from typing import Iterable, List, Optional

import structlog

from pwmarket.application.ports import IDurableStore
from pwmarket.domain import StorageUnavailableError

logger = structlog.get_logger()

_UNSAFE = re.compile(r"[^A-Za-z0-9_\-]")


class JsonFileStore(IDurableStore):
    """
    File-backed key/value store.
    Raises StorageUnavailableError when full or when the directory cannot be used.
    """

    SUFFIX = ".json"

    def __init__(self, base_dir: str, max_entries: int = 5000) -> None:
        self.base_dir = Path(base_dir)
        self.max_entries = max_entries
        self.enabled = True
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.enabled = False
            logger.warning("durable_store_disabled", path=str(self.base_dir), error=str(e))

    def _path_for(self, key: str) -> Path:
        return self.base_dir / f"{_UNSAFE.sub('_', key)}{self.SUFFIX}"

    def _require_enabled(self) -> None:
        if not self.enabled:
            raise StorageUnavailableError("durable store disabled", stage="durable_store")

    def get(self, key: str) -> Optional[str]:
        self._require_enabled()
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageUnavailableError(f"read failed for {key}: {e}", stage="durable_store") from e

    def set(self, key: str, value: str) -> None:
        self._require_enabled()
        path = self._path_for(key)
        if not path.exists() and self._count() >= self.max_entries:
            raise StorageUnavailableError(
                f"quota of {self.max_entries} entries exceeded", stage="durable_store"
            )
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(value, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise StorageUnavailableError(f"write failed for {key}: {e}", stage="durable_store") from e

    def remove(self, key: str) -> None:
        self._require_enabled()
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailableError(f"remove failed for {key}: {e}", stage="durable_store") from e

    def keys(self, prefix: str = "") -> Iterable[str]:
        self._require_enabled()
        found: List[str] = []
        for path in self.base_dir.glob(f"*{self.SUFFIX}"):
            key = path.name[: -len(self.SUFFIX)]
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)

    def _count(self) -> int:
        return sum(1 for _ in self.base_dir.glob(f"*{self.SUFFIX}"))
