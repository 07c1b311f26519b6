"""Content-addressed artifact cache with a size bound and LRU eviction."""
from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional

try:
    from .logging_utils import OperationLog
    from .models import Artifact
    from .pipeline_common import ArtifactTooLarge
except Exception:
    from logging_utils import OperationLog
    from models import Artifact
    from pipeline_common import ArtifactTooLarge

logger = logging.getLogger("topic2deck")

MAX_CACHE_SIZE = 5 * 1024 * 1024


def content_hash(source: str) -> str:
    """Hash a code body the way artifacts are keyed.

    Args:
        source (str):

    Returns:
        str:
    """
    return hashlib.sha256(source.strip().encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    content_hash: str
    artifact: Artifact
    size_bytes: int
    last_accessed: float


class ContentCache:
    """Bounded in-memory store mapping content hashes to artifacts.

    Entries are kept in access order; inserting past ``max_size`` evicts the
    least recently accessed entries first. An artifact that is larger than
    ``max_size`` on its own is rejected with ``ArtifactTooLarge`` so the size
    bound always holds.
    """

    def __init__(self, max_size: int = MAX_CACHE_SIZE, ops: Optional[OperationLog] = None) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self.max_size = max_size
        self.ops = ops or OperationLog()
        self._index: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._total = 0
        self._lock = threading.Lock()

    @property
    def total_size(self) -> int:
        with self._lock:
            return self._total

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._index

    def get(self, key: str) -> Optional[Artifact]:
        with self._lock:
            entry = self._index.get(key)
            if entry is None:
                return None
            entry.last_accessed = time.time()
            self._index.move_to_end(key)
            return entry.artifact

    def put(self, key: str, artifact: Artifact) -> None:
        size = artifact.size_bytes
        if size > self.max_size:
            self.ops.record("cache_reject", hash=key, size=size, max_size=self.max_size)
            raise ArtifactTooLarge(size, self.max_size)

        evicted: List[CacheEntry] = []
        with self._lock:
            old = self._index.pop(key, None)
            if old is not None:
                self._total -= old.size_bytes
            while self._index and self._total + size > self.max_size:
                _key, oldest = self._index.popitem(last=False)
                self._total -= oldest.size_bytes
                evicted.append(oldest)
            self._index[key] = CacheEntry(
                content_hash=key,
                artifact=artifact,
                size_bytes=size,
                last_accessed=time.time(),
            )
            self._total += size
            total = self._total

        for e in evicted:
            logger.debug("Evicted cached artifact %s (%s bytes)", e.content_hash[:12], e.size_bytes)
            self.ops.record("cache_evict", hash=e.content_hash, size=e.size_bytes)
        self.ops.record("cache_store", hash=key, size=size, total_size=total, replaced=old is not None)

    def entries(self) -> List[CacheEntry]:
        """Snapshot of entries, least recently accessed first."""
        with self._lock:
            return list(self._index.values())

    def clear(self) -> None:
        with self._lock:
            self._index.clear()
            self._total = 0
