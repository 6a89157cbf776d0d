from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

from dropmanager.common.settings import CACHE_SWEEP_SECONDS, CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    data: Any
    created_at: float
    expires_at: float


def summary_key(summary_type: str, scope: str | None = None) -> str:
    return f"summary:{summary_type}:{scope}" if scope else f"summary:{summary_type}"


def gaps_key(scope: str | None = None) -> str:
    return f"gaps:{scope}" if scope else "gaps"


class AnalysisCache:
    """TTL key-value store for expensive analysis results.

    Expired entries are dropped lazily on `get`/`has` and by a daemon sweeper
    thread every `sweep_interval` seconds. All map access holds `_lock`.
    """

    def __init__(
        self,
        default_ttl: float = CACHE_TTL_SECONDS,
        sweep_interval: float | None = CACHE_SWEEP_SECONDS,
    ) -> None:
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None
        if sweep_interval and sweep_interval > 0:
            self._sweeper = threading.Thread(
                target=self._run_sweeper,
                name="dropmanager-cache-sweep",
                daemon=True,
            )
            self._sweeper.start()

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        now = time.monotonic()
        with self._lock:
            self._entries[key] = CacheEntry(data=value, created_at=now, expires_at=now + ttl)
        logger.debug("Cached %s (expires in %.1fs)", key, ttl)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if time.monotonic() > entry.expires_at:
                del self._entries[key]
                logger.debug("Expired %s", key)
                return None
            return entry.data

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if time.monotonic() > entry.expires_at:
                del self._entries[key]
                return False
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Cleared all cache entries")

    def invalidate_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.info("Invalidated %d cache entries matching %r", len(doomed), pattern)
        return len(doomed)

    def sweep(self) -> int:
        now = time.monotonic()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def get_stats(self) -> dict[str, Any]:
        now = time.monotonic()
        with self._lock:
            entries = [
                {"key": key, "age": now - entry.created_at, "ttl": entry.expires_at - now}
                for key, entry in self._entries.items()
            ]
        return {"size": len(entries), "entries": entries}

    def close(self) -> None:
        self._stop.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper.is_alive():
            sweeper.join(timeout=2.0)
            if sweeper.is_alive():
                logger.warning("Cache sweeper thread did not exit cleanly within timeout")
        self._sweeper = None

    def _run_sweeper(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")
