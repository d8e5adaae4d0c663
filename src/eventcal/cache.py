"""Calendar cache: memoizes derived query artifacts per filter fingerprint.

Entries are keyed ``<prefix><purpose>_<md5(fingerprint)>`` and hold plain
JSON-compatible values.  The cache subscribes to the store's
``MutationChannel``; every mutation flushes every entry.  Writes made by
another process never reach that channel, so a cache shared across
processes is also given the store's ``version`` callable and flushes itself
whenever the version it last saw changes.
"""

from __future__ import annotations

import hashlib
import json
import logging
import pathlib
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from cachetools import TLRUCache

from eventcal.config import CACHE_MAX_ENTRIES, CACHE_PREFIX, CACHE_VERSION_TTL_SECONDS
from eventcal.mutations import Mutation, MutationChannel

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class CacheBackendError(Exception):
    """Raised when a cache backend cannot read or write an entry."""


class CacheBackend(Protocol):
    def get(self, key: str) -> tuple[bool, Any]: ...
    def set(self, key: str, value: Any, ttl: float) -> None: ...
    def clear(self, prefix: str) -> int: ...


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

def _expires_at(key: str, entry: tuple[Any, float], now: float) -> float:
    return now + entry[1]


class MemoryBackend:
    """Bounded in-process cache with a TTL per entry.

    Entries are stored as ``(value, ttl)`` so the cache can expire each one
    on its own schedule; the least recently used entry goes first once
    *maxsize* is reached.
    """

    def __init__(
        self,
        *,
        maxsize: int = CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._entries: TLRUCache[str, tuple[Any, float]] = TLRUCache(
            maxsize=maxsize, ttu=_expires_at, timer=clock
        )

    def get(self, key: str) -> tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return False, None
        return True, entry[0]

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (value, ttl)

    def clear(self, prefix: str) -> int:
        removed = 0
        with self._lock:
            for key in [k for k in list(self._entries) if k.startswith(prefix)]:
                if self._entries.pop(key, _MISSING) is not _MISSING:
                    removed += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)


class DiskBackend:
    """One JSON file per entry under *cache_dir*.

    Every write first sweeps expired files, then drops the entries closest
    to expiry while more than *max_entries* would remain.
    """

    def __init__(
        self,
        cache_dir: pathlib.Path,
        *,
        max_entries: int = CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache_dir = cache_dir
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()

    def _path(self, key: str) -> pathlib.Path:
        return self._cache_dir / f"{key}.json"

    @staticmethod
    def _read(path: pathlib.Path) -> dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as err:
            raise CacheBackendError(f"Cannot read cache entry {path}: {err}") from err
        if not isinstance(payload, dict):
            raise CacheBackendError(f"Cannot read cache entry {path}: not a JSON object")
        return payload

    def get(self, key: str) -> tuple[bool, Any]:
        path = self._path(key)
        with self._lock:
            if not path.is_file():
                return False, None
            payload = self._read(path)
            if self._clock() >= payload.get("expires_at", 0):
                path.unlink(missing_ok=True)
                return False, None
            return True, payload.get("value")

    def set(self, key: str, value: Any, ttl: float) -> None:
        path = self._path(key)
        payload = {"expires_at": self._clock() + ttl, "value": value}
        with self._lock:
            try:
                self._cache_dir.mkdir(parents=True, exist_ok=True)
                self._sweep(keep=path)
                with open(path, "w", encoding="utf-8") as f:
                    json.dump(payload, f)
            except (OSError, TypeError) as err:
                raise CacheBackendError(f"Cannot write cache entry {path}: {err}") from err

    def _sweep(self, *, keep: pathlib.Path) -> None:
        now = self._clock()
        live: list[tuple[float, pathlib.Path]] = []
        for path in self._cache_dir.glob("*.json"):
            if path == keep:
                continue
            try:
                expires_at = float(self._read(path).get("expires_at", 0))
            except (CacheBackendError, TypeError, ValueError) as err:
                logger.debug("Removing unreadable cache entry %s: %s", path, err)
                expires_at = 0.0
            if now >= expires_at:
                path.unlink(missing_ok=True)
            else:
                live.append((expires_at, path))

        excess = len(live) + 1 - self._max_entries
        if excess > 0:
            live.sort(key=lambda item: item[0])
            for _, path in live[:excess]:
                path.unlink(missing_ok=True)
            logger.debug("Evicted %d cache entries over the limit of %d", excess, self._max_entries)

    def clear(self, prefix: str) -> int:
        removed = 0
        with self._lock:
            if not self._cache_dir.is_dir():
                return 0
            for path in self._cache_dir.glob(f"{prefix}*.json"):
                try:
                    path.unlink()
                    removed += 1
                except FileNotFoundError:
                    continue
                except OSError as err:
                    raise CacheBackendError(f"Cannot remove cache entry {path}: {err}") from err
        return removed


# ---------------------------------------------------------------------------
# CalendarCache
# ---------------------------------------------------------------------------

class CalendarCache:
    """Explicit cache service with an injected invalidation channel.

    ``get_or_compute`` never lets a backend failure reach the caller: the
    value is computed and returned uncached.  A generation counter is bumped
    on every flush; a value computed under an older generation is returned
    to its caller but never stored.

    *version*, when given, returns a token that changes whenever the backing
    store changes; it is compared against the token recorded in the backend
    before every lookup.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        *,
        channel: MutationChannel | None = None,
        prefix: str = CACHE_PREFIX,
        version: Callable[[], str] | None = None,
    ) -> None:
        self._backend: CacheBackend = backend if backend is not None else MemoryBackend()
        self._prefix = prefix
        self._lock = threading.Lock()
        self._generation = 0
        self._version = version
        self._channel = channel
        if channel is not None:
            channel.subscribe(self._on_mutation)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def version_key(self) -> str:
        return f"{self._prefix}store_version"

    def make_key(self, fingerprint: str, purpose: str) -> str:
        digest = hashlib.md5(fingerprint.encode("utf-8")).hexdigest()
        return f"{self._prefix}{purpose}_{digest}"

    def get_or_compute(
        self,
        fingerprint: str,
        purpose: str,
        compute: Callable[[], T],
        ttl: float,
    ) -> T:
        key = self.make_key(fingerprint, purpose)
        try:
            self._check_version()
            hit, value = self._backend.get(key)
        except (CacheBackendError, OSError) as err:
            logger.warning("Cache read failed for %s, recomputing: %s", key, err)
            return compute()
        if hit:
            logger.debug("Cache hit %s", key)
            return value

        generation = self._generation
        value = compute()
        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding %s computed before a flush", key)
                return value
            try:
                self._backend.set(key, value, ttl)
            except (CacheBackendError, OSError) as err:
                logger.warning("Cache write failed for %s: %s", key, err)
        return value

    def invalidate_all(self) -> None:
        with self._lock:
            self._generation += 1
            try:
                removed = self._backend.clear(self._prefix)
            except (CacheBackendError, OSError) as err:
                logger.warning("Cache flush failed: %s", err)
                return
        logger.debug("Flushed %d cache entries, generation %d", removed, self._generation)

    def close(self) -> None:
        if self._channel is not None:
            self._channel.unsubscribe(self._on_mutation)
            self._channel = None

    def _check_version(self) -> None:
        if self._version is None:
            return
        current = self._version()
        try:
            hit, seen = self._backend.get(self.version_key)
        except CacheBackendError as err:
            logger.warning("Unreadable store version marker, flushing: %s", err)
            hit, seen = False, None
        if hit and seen == current:
            return
        if hit:
            logger.info("Event store changed since entries were cached, flushing")
        self.invalidate_all()
        self._backend.set(self.version_key, current, CACHE_VERSION_TTL_SECONDS)

    def _on_mutation(self, mutation: Mutation) -> None:
        logger.debug("Invalidating calendar cache after %s %s", mutation.kind, mutation.action)
        self.invalidate_all()
