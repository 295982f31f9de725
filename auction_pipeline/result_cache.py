# auction_pipeline/result_cache.py
"""In-process cache of finished analysis results.

Keys hash (caller, depth, filters, requested rows) with list filters sorted,
so the same request in a different field order hits the same entry.
Comprehensive results live for a week, standard ones for a day; the least
recently used entry is evicted once the cache is full.
"""
import hashlib
import json
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta

from .utils import get_logger, utcnow

logger = get_logger(__name__)

DEFAULT_TTL = timedelta(hours=24)
COMPREHENSIVE_TTL = timedelta(days=7)


@dataclass
class CacheEntry:
    key: str
    results: dict
    created_at: object
    last_accessed: object
    ttl: timedelta
    access_count: int = 0


def result_key(caller_id, depth, filters, requested_rows):
    payload = {
        "caller_id": caller_id,
        "depth": getattr(depth, "value", depth),
        "filters": filters.cache_repr(),
        "requested_rows": requested_rows,
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


class AnalysisResultCache:

    def __init__(self, max_entries=100, now=utcnow):
        self.max_entries = max_entries
        self.now = now
        self._entries = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self.now() - entry.created_at >= entry.ttl:
                del self._entries[key]
                entry = None
            if entry is None:
                self.misses += 1
                return None
            entry.last_accessed = self.now()
            entry.access_count += 1
            self._entries.move_to_end(key)
            self.hits += 1
            return entry

    def put(self, key, results, comprehensive=False):
        ttl = COMPREHENSIVE_TTL if comprehensive else DEFAULT_TTL
        now = self.now()
        with self._lock:
            self._entries[key] = CacheEntry(key, results, now, now, ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted analysis result %s", evicted[:12])

    def stats(self):
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / lookups, 3) if lookups else 0.0,
            }
