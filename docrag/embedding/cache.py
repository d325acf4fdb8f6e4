"""
Two-tier embedding cache
-------------------------
Memory tier : insertion-ordered dict keyed by sha256(normalized text)
Disk tier   : <cache_dir>/<sha256>.json = {"text": ..., "embedding": [...]}

Lookups check memory first, then disk; a disk hit is promoted into memory.
Both tiers are bounded by max_size.  Eviction is amortised: it runs every
eviction_interval puts (or from the maintenance scheduler) and then drops
the oldest entries, at least eviction_fraction * max_size of them.

Disk errors are logged and treated as misses; the cache never raises on a
lookup or write.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import orjson
from loguru import logger
from pydantic import BaseModel, ValidationError

from docrag.utils.helpers import content_hash, normalize_text


class CacheEntry(BaseModel):
    key: str
    text: str
    embedding: list[float]


class EmbeddingCache:
    """Memory + optional disk cache from text to embedding vector."""

    def __init__(
        self,
        max_size: int = 1000,
        cache_dir: Optional[str | Path] = None,
        eviction_interval: int = 10,
        eviction_fraction: float = 0.2,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.eviction_interval = eviction_interval
        self.eviction_fraction = eviction_fraction

        self._memory: dict[str, np.ndarray] = {}
        self._puts_since_eviction = 0
        self.hits = 0
        self.disk_hits = 0
        self.misses = 0
        self.evicted = 0

    @classmethod
    def from_config(cls, config) -> "EmbeddingCache":
        return cls(
            max_size=config.max_size,
            cache_dir=config.directory,
            eviction_interval=config.eviction_interval,
            eviction_fraction=config.eviction_fraction,
        )

    # --- Lookup ---------------------------------------------------------------

    def get(self, text: str) -> Optional[np.ndarray]:
        key = content_hash(text)
        vector = self._memory.get(key)
        if vector is not None:
            self.hits += 1
            return vector.copy()

        entry = self._read_disk(key)
        if entry is not None:
            vector = np.asarray(entry.embedding, dtype=np.float32)
            self._memory[key] = vector
            self.disk_hits += 1
            return vector.copy()

        self.misses += 1
        return None

    # --- Store ----------------------------------------------------------------

    def put(self, text: str, vector: np.ndarray) -> None:
        key = content_hash(text)
        stored = np.array(vector, dtype=np.float32, copy=True)
        self._memory.pop(key, None)
        self._memory[key] = stored
        self._write_disk(CacheEntry(key=key, text=normalize_text(text), embedding=stored.tolist()))

        self._puts_since_eviction += 1
        if self._puts_since_eviction >= self.eviction_interval:
            self.evict_if_oversize()

    # --- Eviction -------------------------------------------------------------

    def _evict_count(self, count: int) -> int:
        if count <= self.max_size:
            return 0
        return max(count - self.max_size, int(self.max_size * self.eviction_fraction))

    def evict_if_oversize(self) -> int:
        """Drop the oldest entries from each tier that exceeds max_size."""
        self._puts_since_eviction = 0
        removed = 0

        excess = self._evict_count(len(self._memory))
        if excess:
            for key in list(self._memory)[:excess]:
                del self._memory[key]
            removed += excess
            logger.debug(f"[Cache] Evicted {excess} memory entries")

        removed += self._evict_disk()
        self.evicted += removed
        return removed

    def _evict_disk(self) -> int:
        if self.cache_dir is None or not self.cache_dir.exists():
            return 0
        try:
            files = list(self.cache_dir.glob("*.json"))
            excess = self._evict_count(len(files))
            if not excess:
                return 0
            files.sort(key=lambda p: p.stat().st_mtime)
            for path in files[:excess]:
                path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(f"[Cache] Disk eviction failed: {exc}")
            return 0
        logger.debug(f"[Cache] Evicted {excess} disk entries")
        return excess

    def clear(self) -> None:
        self._memory.clear()
        if self.cache_dir is not None and self.cache_dir.exists():
            for path in self.cache_dir.glob("*.json"):
                try:
                    path.unlink()
                except OSError as exc:
                    logger.warning(f"[Cache] Could not remove {path.name}: {exc}")
        self._puts_since_eviction = 0

    def __len__(self) -> int:
        return len(self._memory)

    def stats(self) -> dict:
        disk_entries = 0
        if self.cache_dir is not None and self.cache_dir.exists():
            disk_entries = sum(1 for _ in self.cache_dir.glob("*.json"))
        return {
            "memory_entries": len(self._memory),
            "disk_entries": disk_entries,
            "max_size": self.max_size,
            "hits": self.hits,
            "disk_hits": self.disk_hits,
            "misses": self.misses,
            "evicted": self.evicted,
        }

    # --- Disk tier ------------------------------------------------------------

    def _path(self, key: str) -> Optional[Path]:
        if self.cache_dir is None:
            return None
        return self.cache_dir / f"{key}.json"

    def _read_disk(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if path is None or not path.exists():
            return None
        try:
            raw = orjson.loads(path.read_bytes())
            return CacheEntry(key=key, **raw)
        except (OSError, orjson.JSONDecodeError, TypeError, ValidationError) as exc:
            logger.warning(f"[Cache] Unreadable cache file {path.name}: {exc}")
            return None

    def _write_disk(self, entry: CacheEntry) -> None:
        path = self._path(entry.key)
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(orjson.dumps(entry.model_dump(exclude={"key"})))
        except OSError as exc:
            logger.warning(f"[Cache] Could not write {path.name}: {exc}")
