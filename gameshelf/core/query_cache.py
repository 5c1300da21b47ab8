# ===== IMPORTS & DEPENDENCIES =====
import asyncio
import itertools
import logging
import random
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from gameshelf.config import QUERY_STALE_TIME, QUERY_RETRY_INITIAL_DELAY
from gameshelf.core.errors import ErrorInfo, ErrorKind

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

T = TypeVar('T')
FetchFn = Callable[[], Awaitable[Any]]

# ===== TYPES & INTERFACES =====
class QueryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class ResourceKey:
    """Identifies one fetchable resource, e.g. ResourceKey.of('getGame', 'portal-2')."""
    namespace: str
    params: Tuple[str, ...] = ()

    @classmethod
    def of(cls, namespace: str, *params: Any) -> "ResourceKey":
        return cls(namespace, tuple(str(p) for p in params))

    def to_json(self) -> Dict[str, Any]:
        return {'namespace': self.namespace, 'params': list(self.params)}

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "ResourceKey":
        return cls.of(raw['namespace'], *raw.get('params', []))

    def __str__(self) -> str:
        return f"{self.namespace}{list(self.params)}"


@dataclass(frozen=True)
class QueryCacheEntry(Generic[T]):
    """
    An immutable snapshot of one key's state. The cache swaps whole snapshots,
    so observers never see a partially updated entry.

    `data` is set iff status is SUCCESS and `error` is set iff status is ERROR.
    `background_error` reports a failed background refetch while the previous data is kept.
    """
    status: QueryStatus = QueryStatus.IDLE
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None
    fetched_at: Optional[float] = None
    in_flight_request_id: Optional[int] = None
    background_error: Optional[ErrorInfo] = None
    is_invalidated: bool = False

    @property
    def is_idle(self) -> bool:
        return self.status is QueryStatus.IDLE

    @property
    def is_loading(self) -> bool:
        return self.status is QueryStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status is QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is QueryStatus.ERROR

    @property
    def is_fetching(self) -> bool:
        return self.in_flight_request_id is not None


@dataclass
class _Request:
    request_id: int
    # False for observer-driven first loads: their result is dropped if every observer left
    keep_without_observers: bool
    task: Optional["asyncio.Task[None]"] = None
    # Set when a forced refetch replaced this request; its waiters follow the replacement
    superseded_by: Optional["_Request"] = None


@dataclass
class _Query:
    key: ResourceKey
    entry: QueryCacheEntry = field(default_factory=QueryCacheEntry)
    # Last entry with no request in flight
    settled: QueryCacheEntry = field(default_factory=QueryCacheEntry)
    request: Optional[_Request] = None
    observers: int = 0


# ===== CORE BUSINESS LOGIC =====
class QueryCache:
    """
    Keyed cache over asynchronous fetch functions.

    - At most one request is in flight per key; concurrent readers join it.
    - Fresh entries are served without fetching; stale ones are served and refreshed in the background.
    - Fetch failures are captured into the entry and never raised to readers.
    - prefetch/dehydrate/hydrate move successful entries across a process boundary.
    """

    def __init__(
        self,
        stale_time: float = QUERY_STALE_TIME,
        retry: int = 0,
        retry_delay: float = QUERY_RETRY_INITIAL_DELAY,
        clock: Callable[[], float] = time.time,
    ):
        self._stale_time = stale_time
        self._retry = retry
        self._retry_delay = retry_delay
        self._clock = clock
        self._queries: Dict[ResourceKey, _Query] = {}
        self._request_ids = itertools.count(1)
        logger.debug(f"[{self.__class__.__name__}] Initialized with stale time {stale_time}s and {retry} retries")

    # --- Internal helpers ---
    def _get_query(self, key: ResourceKey) -> _Query:
        query = self._queries.get(key)
        if query is None:
            query = _Query(key=key)
            self._queries[key] = query
        return query

    def _attach(self, key: ResourceKey) -> _Query:
        query = self._get_query(key)
        query.observers += 1
        return query

    def _detach(self, query: _Query) -> None:
        query.observers = max(0, query.observers - 1)

    def _is_stale(self, entry: QueryCacheEntry, stale_time: Optional[float]) -> bool:
        if entry.is_invalidated or entry.fetched_at is None:
            return True
        window = self._stale_time if stale_time is None else stale_time
        return (self._clock() - entry.fetched_at) >= window

    def _dispatch(
        self,
        query: _Query,
        fetch_fn: FetchFn,
        retry: Optional[int],
        needs_observer: bool,
        cancel_in_flight: bool = False,
    ) -> _Request:
        """Starts a request for the key, or returns the one already in flight."""
        superseded = None
        if query.request is not None and cancel_in_flight:
            superseded = query.request
            query.request = None
            logger.debug(f"[{self.__class__.__name__}] Superseding in-flight request {superseded.request_id} for {query.key}")

        if query.request is not None:
            if not needs_observer:
                query.request.keep_without_observers = True
            logger.debug(f"[{self.__class__.__name__}] Joining in-flight request {query.request.request_id} for {query.key}")
            return query.request

        has_data = query.settled.is_success
        request = _Request(
            request_id=next(self._request_ids),
            keep_without_observers=has_data or not needs_observer,
        )
        if has_data:
            query.entry = replace(query.settled, in_flight_request_id=request.request_id)
        else:
            query.entry = QueryCacheEntry(status=QueryStatus.LOADING, in_flight_request_id=request.request_id)

        query.request = request
        if superseded is not None:
            superseded.superseded_by = request
        attempts = (self._retry if retry is None else retry) + 1
        request.task = asyncio.create_task(self._run(query, request, fetch_fn, attempts))
        logger.debug(f"[{self.__class__.__name__}] Started request {request.request_id} for {query.key}")
        return request

    async def _run(self, query: _Query, request: _Request, fetch_fn: FetchFn, attempts: int) -> None:
        for attempt in range(attempts):
            try:
                data = await fetch_fn()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= attempts - 1:
                    self._settle_failure(query, request, e)
                    return
                delay = self._retry_delay * (2 ** attempt) + random.uniform(0, 1)
                logger.info(f"[{self.__class__.__name__}] Retrying {query.key} (Attempt {attempt + 1}/{attempts}) in {delay:.2f} seconds...")
                await asyncio.sleep(delay)
            else:
                self._settle_success(query, request, data)
                return

    def _accepts(self, query: _Query, request: _Request) -> bool:
        """Stale-response guard: only the key's current request may write its entry."""
        if query.request is not request or self._queries.get(query.key) is not query:
            logger.debug(f"[{self.__class__.__name__}] Discarding stale response {request.request_id} for {query.key}")
            return False
        query.request = None
        if not request.keep_without_observers and query.observers == 0:
            logger.debug(f"[{self.__class__.__name__}] No observers left for {query.key}; discarding response {request.request_id}")
            query.entry = query.settled
            return False
        return True

    def _settle_success(self, query: _Query, request: _Request, data: Any) -> None:
        if not self._accepts(query, request):
            return
        entry = QueryCacheEntry(status=QueryStatus.SUCCESS, data=data, fetched_at=self._clock())
        query.entry = query.settled = entry
        logger.debug(f"[{self.__class__.__name__}] {query.key} resolved successfully")

    def _settle_failure(self, query: _Query, request: _Request, exc: Exception) -> None:
        if not self._accepts(query, request):
            return
        info = ErrorInfo.from_exception(exc, ErrorKind.REMOTE_FETCH_FAILED)
        if query.settled.is_success:
            logger.warning(f"⚠️ [{self.__class__.__name__}] Background refetch of {query.key} failed, keeping previous data: {info.message}")
            entry = replace(query.settled, background_error=info)
        else:
            logger.warning(f"⚠️ [{self.__class__.__name__}] Fetch of {query.key} failed: {info.message}")
            entry = QueryCacheEntry(status=QueryStatus.ERROR, error=info)
        query.entry = query.settled = entry

    async def _resolve(
        self,
        query: _Query,
        fetch_fn: FetchFn,
        enabled: bool = True,
        stale_time: Optional[float] = None,
        retry: Optional[int] = None,
        force: bool = False,
        cancel_in_flight: bool = False,
    ) -> QueryCacheEntry:
        if not enabled:
            return query.entry

        entry = query.entry
        if entry.is_success and not force:
            if query.request is None and self._is_stale(entry, stale_time):
                logger.debug(f"[{self.__class__.__name__}] {query.key} is stale; refetching in the background")
                self._dispatch(query, fetch_fn, retry, needs_observer=False)
            return query.entry

        request = self._dispatch(query, fetch_fn, retry, needs_observer=not force, cancel_in_flight=cancel_in_flight)
        while request is not None:
            # Shielded so a cancelled reader never cancels the shared request
            await asyncio.shield(request.task)
            request = request.superseded_by
        return query.entry

    # --- Public API ---
    def get_entry(self, key: ResourceKey) -> QueryCacheEntry:
        """Returns the current snapshot for a key (idle if it was never requested)."""
        query = self._queries.get(key)
        return query.entry if query else QueryCacheEntry()

    async def use_query(
        self,
        key: ResourceKey,
        fetch_fn: FetchFn,
        *,
        enabled: bool = True,
        stale_time: Optional[float] = None,
        retry: Optional[int] = None,
    ) -> QueryCacheEntry:
        """
        Reads a key through the cache.

        Fresh data is returned as is, stale data is returned while a background refetch starts,
        and idle/error keys are fetched (joining any request already in flight) before returning.
        With `enabled=False` nothing is fetched and the current entry is returned.
        """
        query = self._attach(key)
        try:
            return await self._resolve(query, fetch_fn, enabled, stale_time, retry)
        finally:
            self._detach(query)

    async def refetch(
        self,
        key: ResourceKey,
        fetch_fn: FetchFn,
        *,
        retry: Optional[int] = None,
        cancel_refetch: bool = False,
    ) -> QueryCacheEntry:
        """
        Forces a fetch for the key and returns the settled entry.
        By default a request already in flight is joined. With `cancel_refetch=True` a new request
        is started instead and the one in flight is discarded when it resolves, so the result
        reflects only reads that began after this call (e.g. after a write).
        """
        query = self._get_query(key)
        return await self._resolve(query, fetch_fn, retry=retry, force=True, cancel_in_flight=cancel_refetch)

    async def prefetch(self, key: ResourceKey, fetch_fn: FetchFn, *, retry: Optional[int] = None) -> None:
        """Fetches and stores a key before anything observes it. Failures are captured, never raised."""
        entry = await self.refetch(key, fetch_fn, retry=retry)
        if entry.is_success:
            logger.info(f"✅ [{self.__class__.__name__}] Prefetched {key}")
        else:
            logger.warning(f"⚠️ [{self.__class__.__name__}] Prefetch of {key} did not succeed (status: {entry.status.value})")

    def invalidate(self, key: ResourceKey) -> None:
        """Marks an entry stale so its next read refetches."""
        query = self._queries.get(key)
        if query is None:
            return
        query.settled = replace(query.settled, is_invalidated=True)
        query.entry = replace(query.entry, is_invalidated=True)
        logger.debug(f"[{self.__class__.__name__}] Invalidated {key}")

    def remove(self, key: ResourceKey) -> None:
        """Drops an entry. A response still in flight for it is discarded."""
        query = self._queries.pop(key, None)
        if query is not None:
            query.request = None
            logger.debug(f"[{self.__class__.__name__}] Removed {key}")

    def dehydrate(self) -> Dict[str, Any]:
        """Exports every successful entry as a JSON-serializable snapshot."""
        queries: List[Dict[str, Any]] = []
        for key, query in self._queries.items():
            entry = query.settled
            if not entry.is_success:
                continue
            queries.append({'key': key.to_json(), 'data': entry.data, 'fetched_at': entry.fetched_at})

        logger.info(f"[{self.__class__.__name__}] Dehydrated {len(queries)} entries")
        return {'version': SNAPSHOT_VERSION, 'queries': queries}

    def hydrate(self, snapshot: Optional[Dict[str, Any]]) -> int:
        """
        Seeds entries from a dehydrated snapshot, keeping their original fetch times.
        Newer entries and keys with a request in flight are left untouched.
        Returns the number of entries seeded.
        """
        if not snapshot:
            return 0
        if snapshot.get('version') != SNAPSHOT_VERSION:
            logger.warning(f"⚠️ [{self.__class__.__name__}] Unsupported snapshot version: {snapshot.get('version')}")
            return 0

        seeded = 0
        for item in snapshot.get('queries', []):
            try:
                key = ResourceKey.from_json(item['key'])
                data = item['data']
                fetched_at = float(item['fetched_at'])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"⚠️ [{self.__class__.__name__}] Skipping malformed snapshot entry: {e}")
                continue

            query = self._get_query(key)
            if query.request is not None:
                continue
            existing = query.settled
            if existing.is_success and existing.fetched_at is not None and existing.fetched_at >= fetched_at:
                continue

            query.entry = query.settled = QueryCacheEntry(status=QueryStatus.SUCCESS, data=data, fetched_at=fetched_at)
            seeded += 1

        logger.info(f"[{self.__class__.__name__}] Hydrated {seeded} entries")
        return seeded


class QueryObserver(Generic[T]):
    """
    A long-lived reader bound to one active key at a time (e.g. a view keyed on a route slug).
    Switching keys detaches from the previous one, so a late response for the old key
    is never reported as the result of the new key.
    """

    def __init__(
        self,
        cache: QueryCache,
        key: ResourceKey,
        fetch_fn: FetchFn,
        *,
        enabled: bool = True,
        stale_time: Optional[float] = None,
        retry: Optional[int] = None,
    ):
        self._cache = cache
        self._key = key
        self._fetch_fn = fetch_fn
        self._enabled = enabled
        self._stale_time = stale_time
        self._retry = retry
        self._query: Optional[_Query] = cache._attach(key)

    @property
    def key(self) -> ResourceKey:
        return self._key

    def current(self) -> QueryCacheEntry[T]:
        return self._cache.get_entry(self._key)

    def set_key(self, key: ResourceKey, fetch_fn: Optional[FetchFn] = None, *, enabled: Optional[bool] = None) -> None:
        if fetch_fn is not None:
            self._fetch_fn = fetch_fn
        if enabled is not None:
            self._enabled = enabled
        if key == self._key:
            return
        if self._query is not None:
            self._cache._detach(self._query)
            self._query = self._cache._attach(key)
        self._key = key

    def _active_query(self) -> Optional[_Query]:
        # Re-attach after QueryCache.remove() dropped the entry this observer was bound to
        if self._query is not None and self._cache._queries.get(self._key) is not self._query:
            self._cache._detach(self._query)
            self._query = self._cache._attach(self._key)
        return self._query

    async def result(self) -> QueryCacheEntry[T]:
        """Resolves the active key and returns the entry for whatever key is active afterwards."""
        query = self._active_query()
        if query is None:
            return self.current()
        key = self._key
        await self._cache._resolve(query, self._fetch_fn, self._enabled, self._stale_time, self._retry)
        if self._key != key:
            logger.debug(f"[{self.__class__.__name__}] Active key changed from {key} to {self._key} while resolving")
        return self.current()

    async def refetch(self) -> QueryCacheEntry[T]:
        query = self._active_query()
        if query is None:
            return self.current()
        key = self._key
        await self._cache._resolve(query, self._fetch_fn, self._enabled, force=True, retry=self._retry)
        if self._key != key:
            logger.debug(f"[{self.__class__.__name__}] Active key changed from {key} to {self._key} while refetching")
        return self.current()

    def close(self) -> None:
        if self._query is not None:
            self._cache._detach(self._query)
            self._query = None

    async def __aenter__(self) -> "QueryObserver[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
