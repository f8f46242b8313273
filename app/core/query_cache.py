"""
In-process query cache keyed by tuples, with stale time, prefix invalidation
and optimistic updates that roll back when the mutation fails.
"""

import json
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional, Tuple

from app.core.resilience import RequestDeduplicator

logger = logging.getLogger(__name__)

QueryKey = Tuple[Any, ...]

DEFAULT_STALE_SECONDS = 30


class query_keys:
    """Key factories; every key starts with its resource name so it can be invalidated by prefix."""

    @staticmethod
    def _filters(filters: Optional[Dict[str, Any]]) -> str:
        return json.dumps(filters or {}, sort_keys=True, default=str)

    @staticmethod
    def transactions(institution_id: Optional[str], filters: Optional[Dict[str, Any]] = None) -> QueryKey:
        return ("transactions", "list", institution_id, query_keys._filters(filters))

    @staticmethod
    def transaction(transaction_id: str) -> QueryKey:
        return ("transactions", "detail", transaction_id)

    @staticmethod
    def members(institution_id: Optional[str], filters: Optional[Dict[str, Any]] = None) -> QueryKey:
        return ("members", "list", institution_id, query_keys._filters(filters))

    @staticmethod
    def groups(institution_id: Optional[str], filters: Optional[Dict[str, Any]] = None) -> QueryKey:
        return ("groups", "list", institution_id, query_keys._filters(filters))

    @staticmethod
    def dashboard(institution_id: Optional[str], *parts: Any) -> QueryKey:
        return ("dashboard", institution_id) + tuple(parts)

    @staticmethod
    def sms(institution_id: Optional[str], filters: Optional[Dict[str, Any]] = None) -> QueryKey:
        return ("sms", "list", institution_id, query_keys._filters(filters))


class QueryCache:
    def __init__(self, default_stale_seconds: float = DEFAULT_STALE_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.default_stale_seconds = default_stale_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: Dict[QueryKey, Tuple[Any, float]] = {}  # key -> (data, expires_at)
        self._dedup = RequestDeduplicator()

    def get(self, key: QueryKey) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, expires_at = entry
            if self._clock() >= expires_at:
                return None
            return data

    def set(self, key: QueryKey, data: Any, stale_seconds: Optional[float] = None) -> None:
        ttl = self.default_stale_seconds if stale_seconds is None else stale_seconds
        with self._lock:
            self._entries[key] = (data, self._clock() + ttl)

    def fetch(self, key: QueryKey, loader: Callable[[], Any], stale_seconds: Optional[float] = None) -> Any:
        """Return cached data while fresh, otherwise load once (concurrent callers share the load)."""
        cached = self.get(key)
        if cached is not None:
            return cached

        def load():
            data = loader()
            self.set(key, data, stale_seconds)
            return data

        return self._dedup.run(key, load)

    def invalidate(self, prefix: QueryKey) -> int:
        prefix = tuple(prefix)
        with self._lock:
            stale = [k for k in self._entries if k[:len(prefix)] == prefix]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached queries for {prefix}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @contextmanager
    def optimistic_update(self, prefix: QueryKey, updater: Callable[[Any], Any]):
        """
        Apply updater to every cached value under prefix before the mutation runs.

        The previous entries are restored if the wrapped block raises.
        """
        prefix = tuple(prefix)
        with self._lock:
            snapshot = {k: v for k, v in self._entries.items() if k[:len(prefix)] == prefix}
            for k, (previous, expires_at) in snapshot.items():
                self._entries[k] = (updater(previous), expires_at)
        try:
            yield
        except Exception:
            with self._lock:
                self._entries.update(snapshot)
            if snapshot:
                logger.info(f"Rolled back optimistic update for {len(snapshot)} cached queries under {prefix}")
            raise


query_cache = QueryCache()


def get_query_cache() -> QueryCache:
    return query_cache
