"""Write-through key/value cache with per-entry expiry."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from threading import RLock
from typing import Any, Mapping, Optional

from companion.domain.models import CacheEntry
from companion.repository.blob_store import BlobStore
from companion.utils.clock import Clock, as_utc, iso_string, parse_iso
from companion.utils.logger import get_logger
from companion.utils.periodic import PeriodicTask


logger = get_logger(__name__)


class CachePersistenceError(RuntimeError):
    """Raised when the cache document cannot be written to its blob store."""


def cache_key(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
    if not params:
        return endpoint
    query = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return f"{endpoint}?{query}"


class TTLCache:
    """Thread-safe cache whose whole map is persisted as one JSON document.

    Every mutation is written through to the blob store before the call
    returns, and the in-memory map only changes once the new document has
    been saved. A failed save raises `CachePersistenceError` and leaves the
    map as it was. Expired entries behave as misses and are evicted on
    access, on `sweep()`, and when the document is loaded; a failed save on
    those paths is logged and the lookup still reports a miss.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        clock: Clock,
        default_ttl_seconds: float = 300.0,
    ) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be > 0")
        self._blob_store = blob_store
        self._clock = clock
        self._default_ttl_seconds = default_ttl_seconds
        self._lock = RLock()
        self._entries: dict[str, CacheEntry] = {}
        self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._now())

    def _now(self) -> datetime:
        return as_utc(self._clock.now())

    def _load(self) -> None:
        try:
            blob = self._blob_store.load()
        except OSError as exc:
            logger.warning("Cache document unreadable, starting empty: %s", exc)
            return
        if not blob:
            return

        try:
            document = json.loads(blob.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Cache document corrupt, starting empty: %s", exc)
            return
        if not isinstance(document, dict):
            logger.warning("Cache document has unexpected shape, starting empty")
            return

        now = self._now()
        loaded: dict[str, CacheEntry] = {}
        for key, raw in document.items():
            if not isinstance(raw, dict) or "value" not in raw:
                continue
            expires_at = parse_iso(raw.get("expires_at"))
            if expires_at is None or expires_at <= now:
                continue
            loaded[key] = CacheEntry(value=raw["value"], expires_at=expires_at)

        dropped = len(document) - len(loaded)
        logger.info("Loaded %d cache entries (%d dropped)", len(loaded), dropped)
        self._entries = loaded
        if dropped:
            try:
                self._commit(loaded)
            except CachePersistenceError as exc:
                logger.warning("Keeping stale cache document after load: %s", exc)

    @staticmethod
    def _serialize(entries: Mapping[str, CacheEntry]) -> bytes:
        document = {
            key: {"value": entry.value, "expires_at": iso_string(entry.expires_at)}
            for key, entry in entries.items()
        }
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    def _commit(self, entries: dict[str, CacheEntry]) -> None:
        """Write `entries` to the blob store, then adopt them as the live map."""
        try:
            self._blob_store.save(self._serialize(entries))
        except OSError as exc:
            raise CachePersistenceError(f"Failed to persist cache: {exc}") from exc
        self._entries = entries

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl_seconds = self._default_ttl_seconds if ttl is None else ttl
        if ttl_seconds <= 0:
            raise ValueError("ttl must be > 0")
        try:
            json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise TypeError(f"Cache value for {key!r} is not JSON-serializable") from exc

        expires_at = self._now() + timedelta(seconds=ttl_seconds)
        with self._lock:
            candidate = dict(self._entries)
            candidate[key] = CacheEntry(value=value, expires_at=expires_at)
            self._commit(candidate)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if not entry.is_expired(self._now()):
                return entry.value
            candidate = {name: item for name, item in self._entries.items() if name != key}
            try:
                self._commit(candidate)
            except CachePersistenceError as exc:
                logger.warning("Expired entry %s left in place: %s", key, exc)
            return default

    def remove(self, key: str) -> None:
        with self._lock:
            if key not in self._entries:
                return
            self._commit({name: item for name, item in self._entries.items() if name != key})

    def clear(self) -> None:
        with self._lock:
            try:
                self._blob_store.clear()
            except OSError as exc:
                raise CachePersistenceError(f"Failed to clear cache: {exc}") from exc
            self._entries = {}
        logger.info("Cache cleared")

    def sweep(self) -> int:
        with self._lock:
            now = self._now()
            live = {key: entry for key, entry in self._entries.items() if not entry.is_expired(now)}
            removed = len(self._entries) - len(live)
            if removed:
                self._commit(live)
        if removed:
            logger.debug("Swept %d expired cache entries", removed)
        return removed


def build_cache_sweeper(cache: TTLCache, interval_seconds: float) -> PeriodicTask:
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be > 0")
    return PeriodicTask(name="cache-sweeper", action=cache.sweep, delay=interval_seconds)
