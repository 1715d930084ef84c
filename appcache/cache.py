import functools
import hashlib
import inspect
import json
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .schemas import CacheEntry, CacheOptions, CacheStats, PreloadEntry
from .settings import settings
from .tasks import RepeatingTask

logger = logging.getLogger(__name__)

_SCALARS = (str, int, float, bool, type(None))


def _now_ms() -> float:
    return time.time() * 1000


class CacheManager:
    """In-memory key-value cache with TTL expiry, a size bound and tag invalidation.

    Parameters
    ----------
    max_size : int
        Maximum number of entries held at once. Must be at least 1.
    default_ttl : float
        TTL in milliseconds applied when `set` gets none.
    cleanup_interval : float
        Seconds between two background sweeps of expired entries.
    clock : Optional[Callable[[], float]]
        Returns the current time in milliseconds. Defaults to wall-clock time.
    autostart : bool
        Schedule the background sweep right away when an event loop is running.

    Notes
    -----
    - Not thread-safe. All calls, including the sweep, are expected to run on
      one event loop.
    - Eviction removes the entry with the smallest insertion timestamp. Reads
      never reorder entries, so this is not an LRU.
    - A cached `None` cannot be told apart from a miss.
    """

    def __init__(
        self,
        max_size: int = settings.cache_max_size,
        default_ttl: float = settings.cache_ttl_medium_ms,
        cleanup_interval: float = settings.cleanup_interval_seconds,
        clock: Optional[Callable[[], float]] = None,
        autostart: bool = True,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock or _now_ms
        self._entries: Dict[str, CacheEntry] = {}
        self._stats = CacheStats()
        self._destroyed = False
        self.sweeper = RepeatingTask(cleanup_interval, self.cleanup, name="cache-cleanup")
        if autostart:
            self.sweeper.start()

    def start(self) -> bool:
        """Schedule the background sweep if it is not already running."""

        return self.sweeper.start()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for `key` if present and not expired.

        Parameters
        ----------
        key : str
            Cache key.

        Returns
        -------
        Optional[Any]
            The stored value, or `None` on a miss.

        Notes
        -----
        - An expired entry is removed and counted as a miss.
        """

        entry = self._entries.get(key)
        if entry is None:
            self._record_lookup(hit=False)
            return None
        if self._is_expired(entry):
            del self._entries[key]
            self._stats.size = len(self._entries)
            self._record_lookup(hit=False)
            return None
        self._record_lookup(hit=True)
        logger.debug("Cache hit for key: %s", key)
        return entry.data

    def set(
        self,
        key: str,
        data: Any,
        ttl: Optional[float] = None,
        tags: Optional[List[str]] = None,
        serialize: bool = False,
    ) -> None:
        """Insert or replace the value for `key`.

        Parameters
        ----------
        key : str
            Cache key.
        data : Any
            Value to store.
        ttl : Optional[float]
            Time-to-live in milliseconds. Defaults to `default_ttl`.
        tags : Optional[List[str]]
            Labels used by `clear_by_tags`.
        serialize : bool
            Store a JSON round-tripped copy of non-scalar data instead of the
            object itself.

        Notes
        -----
        - If serialization fails the error is logged and nothing is stored.
        - Inserting a new key at capacity first evicts the oldest entry.
        """

        ttl = self.default_ttl if ttl is None else ttl
        tags = list(tags or [])

        if serialize and not isinstance(data, _SCALARS):
            try:
                data = json.loads(json.dumps(data))
            except (TypeError, ValueError):
                logger.error("Failed to serialize cache data for key: %s", key, exc_info=True)
                return

        entry = CacheEntry(key=key, data=data, timestamp=self._clock(), ttl=ttl, tags=tags)

        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict_oldest()

        self._entries[key] = entry
        self._stats.sets += 1
        self._stats.size = len(self._entries)
        logger.debug("Cache set for key: %s (ttl=%s, tags=%s)", key, ttl, tags)

    def delete(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self._stats.deletes += 1
        self._stats.size = len(self._entries)
        logger.debug("Cache deleted for key: %s", key)
        return True

    def has(self, key: str) -> bool:
        """Presence check with the same expiry rules as `get`, without touching the counters."""

        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._is_expired(entry):
            del self._entries[key]
            self._stats.size = len(self._entries)
            return False
        return True

    def clear(self) -> None:
        """Remove all entries.

        Only `size` is reset; hits, misses, sets and deletes keep counting
        across clears. Use `reset_stats()` to start the counters over.
        """

        self._entries.clear()
        self._stats.size = 0
        logger.info("Cache cleared")

    def reset_stats(self) -> None:
        self._stats = CacheStats(size=len(self._entries))

    def clear_by_tags(self, tags: Iterable[str]) -> int:
        """Remove every entry carrying at least one of `tags`.

        Returns
        -------
        int
            Number of entries removed.
        """

        wanted = set(tags)
        doomed = [key for key, entry in self._entries.items() if wanted.intersection(entry.tags)]
        for key in doomed:
            del self._entries[key]
        self._stats.size = len(self._entries)
        logger.info("Cache cleared %d entries by tags %s", len(doomed), sorted(wanted))
        return len(doomed)

    def invalidate_pattern(self, pattern: Union[str, re.Pattern]) -> int:
        """Remove every entry whose key matches `pattern` (`re.search` semantics).

        Returns
        -------
        int
            Number of entries removed.
        """

        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]
        self._stats.size = len(self._entries)
        logger.info("Invalidated %d cache entries matching pattern %r", len(doomed), regex.pattern)
        return len(doomed)

    def cleanup(self) -> int:
        """Remove all expired entries and return how many were dropped."""

        now = self._clock()
        doomed = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in doomed:
            del self._entries[key]
        self._stats.size = len(self._entries)
        if doomed:
            logger.debug("Cache cleanup removed %d expired entries", len(doomed))
        return len(doomed)

    def get_stats(self) -> CacheStats:
        return self._stats.model_copy()

    def get_keys(self) -> List[str]:
        return list(self._entries)

    def get_size(self) -> int:
        return len(self._entries)

    def memoize(
        self,
        fn: Callable[..., Any],
        key_generator: Optional[Callable[..., str]] = None,
        options: Optional[CacheOptions] = None,
    ) -> Callable[..., Awaitable[Any]]:
        """Wrap `fn` so its results are cached by argument.

        Parameters
        ----------
        fn : Callable[..., Any]
            Sync or async function to wrap.
        key_generator : Optional[Callable[..., str]]
            Builds the cache key from the call arguments. Defaults to the
            function name plus a hash of the JSON-encoded arguments.
        options : Optional[CacheOptions]
            TTL, tags and serialization applied to stored results.

        Returns
        -------
        Callable[..., Awaitable[Any]]
            Coroutine function with the same arguments as `fn`.

        Notes
        -----
        - Exceptions raised by `fn` are logged and re-raised; nothing is cached.
        """

        set_kwargs = _option_kwargs(options)
        name = _function_name(fn)

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            key = key_generator(*args, **kwargs) if key_generator else _generate_key(name, args, kwargs)
            cached = self.get(key)
            if cached is not None:
                return cached
            try:
                result = fn(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
            except Exception:
                logger.error("Memoized function failed (key=%s, function=%s)", key, name, exc_info=True)
                raise
            self.set(key, result, **set_kwargs)
            return result

        return wrapper

    def wrap_api_call(
        self,
        api_call: Callable[..., Awaitable[Any]],
        key_generator: Callable[..., str],
        options: Optional[CacheOptions] = None,
    ) -> Callable[..., Awaitable[Any]]:
        """Wrap an async remote call with a read-through cache.

        Keys are prefixed with `api:`. Successful results are stored with the
        medium TTL and the `api` tag unless `options` says otherwise. Failed
        calls are logged and re-raised.
        """

        set_kwargs = {"ttl": settings.cache_ttl_medium_ms, "tags": ["api"]}
        set_kwargs.update(_option_kwargs(options))

        @functools.wraps(api_call)
        async def wrapper(*args, **kwargs):
            key = f"api:{key_generator(*args, **kwargs)}"
            cached = self.get(key)
            if cached is not None:
                logger.debug("API call served from cache: %s", key)
                return cached
            try:
                logger.debug("Making API call: %s", key)
                result = await api_call(*args, **kwargs)
            except Exception:
                logger.error("API call failed (key=%s)", key, exc_info=True)
                raise
            self.set(key, result, **set_kwargs)
            return result

        return wrapper

    def preload(self, entries: Iterable[Union[PreloadEntry, Mapping[str, Any]]]) -> None:
        count = 0
        for item in entries:
            entry = item if isinstance(item, PreloadEntry) else PreloadEntry.model_validate(item)
            self.set(entry.key, entry.data, **_option_kwargs(entry.options))
            count += 1
        logger.info("Preloaded %d cache entries", count)

    def export_entries(self) -> List[CacheEntry]:
        """Snapshot of all stored entries, expired ones included, for persistence."""

        return [entry.model_copy() for entry in self._entries.values()]

    def import_entries(self, entries: Iterable[Union[CacheEntry, Mapping[str, Any]]]) -> None:
        """Replace the cache content with `entries`.

        Existing entries are dropped first. Entries already expired at import
        time, judged by their own `timestamp` and `ttl`, are skipped. When more
        than `max_size` remain, only the newest by `timestamp` are kept.
        """

        self._entries.clear()
        now = self._clock()
        fresh: Dict[str, CacheEntry] = {}
        for item in entries:
            entry = item if isinstance(item, CacheEntry) else CacheEntry.model_validate(item)
            if not self._is_expired(entry, now):
                fresh[entry.key] = entry
        if len(fresh) > self.max_size:
            # stable sort, so equal timestamps drop the earliest inserted first
            newest = sorted(fresh.values(), key=lambda e: e.timestamp)[-self.max_size:]
            keep = {e.key for e in newest}
            logger.debug("Import dropped %d entries over max_size", len(fresh) - len(keep))
            fresh = {key: entry for key, entry in fresh.items() if key in keep}
        self._entries.update(fresh)
        self._stats.size = len(self._entries)
        logger.info("Imported %d cache entries", len(self._entries))

    def destroy(self) -> None:
        """Stop the background sweep and drop all entries. Safe to call twice."""

        self.sweeper.cancel()
        self._entries.clear()
        self._stats.size = 0
        if not self._destroyed:
            self._destroyed = True
            logger.info("Cache manager destroyed")

    def _is_expired(self, entry: CacheEntry, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return now - entry.timestamp > entry.ttl

    def _record_lookup(self, hit: bool) -> None:
        if hit:
            self._stats.hits += 1
        else:
            self._stats.misses += 1
        total = self._stats.hits + self._stats.misses
        self._stats.hit_rate = self._stats.hits / total if total else 0.0

    def _evict_oldest(self) -> None:
        # min() keeps the first of equal timestamps, i.e. the earliest inserted
        oldest_key = min(self._entries, key=lambda k: self._entries[k].timestamp)
        del self._entries[oldest_key]
        logger.debug("Evicted oldest cache entry: %s", oldest_key)


def _option_kwargs(options: Optional[CacheOptions]) -> Dict[str, Any]:
    if options is None:
        return {}
    return options.model_dump(exclude_none=True, exclude_defaults=True)


def _function_name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__name__", None) or type(fn).__name__


def _generate_key(name: str, args: tuple, kwargs: dict) -> str:
    try:
        payload = json.dumps({"args": args, "kwargs": kwargs}, sort_keys=True, default=str)
    except (TypeError, ValueError):
        # unsortable dict keys or circular references
        payload = repr((args, sorted(kwargs.items())))
    digest = hashlib.md5(payload.encode()).hexdigest()[:12]
    return f"{name}:{digest}"
