"""Versioned shell cache with cache-first fetch and offline fallback.

Every named Cache in storage is treated as a shell generation unless it is
listed in ``keep``. Exactly one generation is live at a time: activation
deletes every other one, whatever naming scheme created it. The outbound
order queue is listed in ``keep`` so activation never drops queued orders.
"""

from __future__ import annotations

import threading
from concurrent import futures
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Optional

import structlog

from .errors import CacheInstallError, NetworkError, OrderLiveError, ResourceUnavailableError

if TYPE_CHECKING:
    from .fetch import Fetcher

logger = structlog.get_logger()

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class Request:
    """Request identity plus whatever is needed to replay it."""

    url: str
    method: str = "GET"
    body: Optional[bytes] = None
    headers: tuple[tuple[str, str], ...] = ()

    @property
    def key(self) -> tuple:
        """Cache identity; requests with a body are told apart by it."""
        if self.body is None:
            return (self.method.upper(), self.url)
        return (self.method.upper(), self.url, self.body)

    @property
    def is_idempotent(self) -> bool:
        return self.method.upper() in IDEMPOTENT_METHODS and self.body is None


@dataclass(frozen=True)
class Response:
    """A stored or freshly fetched response snapshot."""

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def clone(self) -> Response:
        return replace(self, headers=dict(self.headers))


UNAVAILABLE_RESPONSE = Response(
    status=503,
    body=b"Service Unavailable",
    headers={"Content-Type": "text/plain"},
)


class Cache:
    """One named cache: request key -> (request, response snapshot)."""

    def __init__(self, name: str):
        self.name = name
        self._entries: dict[tuple, tuple[Request, Optional[Response]]] = {}
        self._lock = threading.Lock()

    def match(self, request: Request) -> Optional[Response]:
        with self._lock:
            entry = self._entries.get(request.key)
        if entry is None or entry[1] is None:
            return None
        return entry[1].clone()

    def put(self, request: Request, response: Optional[Response]) -> None:
        """Store a response; ``None`` records a queued request with no response yet."""
        with self._lock:
            self._entries[request.key] = (request, response)

    def delete(self, request: Request) -> bool:
        with self._lock:
            return self._entries.pop(request.key, None) is not None

    def keys(self) -> list[Request]:
        with self._lock:
            return [req for req, _ in self._entries.values()]

    def unanswered(self) -> list[Request]:
        """Requests stored without a response."""
        with self._lock:
            return [req for req, resp in self._entries.values() if resp is None]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheStorage:
    """All named caches of one deployment, in creation order."""

    def __init__(self) -> None:
        self._caches: dict[str, Cache] = {}
        self._lock = threading.Lock()

    def open(self, name: str) -> Cache:
        with self._lock:
            cache = self._caches.get(name)
            if cache is None:
                cache = Cache(name)
                self._caches[name] = cache
            return cache

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._caches

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._caches)

    def delete(self, name: str) -> bool:
        with self._lock:
            return self._caches.pop(name, None) is not None

    def match(self, request: Request) -> Optional[Response]:
        """Search every cache, oldest first."""
        with self._lock:
            caches = list(self._caches.values())
        for cache in caches:
            response = cache.match(request)
            if response is not None:
                return response
        return None


class ResourceCache:
    """Install, activate and fetch-intercept for the application shell.

    Cache writes on the fetch path run on ``executor`` and are never awaited
    by the caller; ``drain()`` waits for the ones still in flight.
    """

    def __init__(
        self,
        storage: CacheStorage,
        fetcher: Fetcher,
        generation: str,
        manifest: tuple[str, ...],
        offline_path: str,
        keep: tuple[str, ...] = (),
        executor: Optional[futures.Executor] = None,
    ):
        self.storage = storage
        self.generation = generation
        self.manifest = tuple(manifest)
        self.offline_path = offline_path
        self._fetcher = fetcher
        self._keep = frozenset(keep)
        self._owns_executor = executor is None
        self._executor = executor or futures.ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="orderlive-cache"
        )
        self._pending: set[futures.Future] = set()
        self._pending_lock = threading.Lock()
        self._log = logger.bind(cache=generation)

    def generations(self) -> list[str]:
        """Every stored cache except the ones named in ``keep``."""
        return [n for n in self.storage.keys() if n not in self._keep]

    def install(self) -> None:
        """Prime the current generation with the whole manifest.

        All manifest responses are fetched before anything is stored, so a
        single failure leaves no partial generation behind.

        Raises:
            CacheInstallError: If any manifest resource cannot be fetched or
                does not answer with a success status.
        """
        requests_ = [Request(url=path) for path in self.manifest]
        jobs = {self._executor.submit(self._fetcher.fetch, r): r for r in requests_}

        fetched: dict[tuple, Response] = {}
        failure: Optional[CacheInstallError] = None
        for job in futures.as_completed(jobs):
            request = jobs[job]
            try:
                response = job.result()
            except NetworkError as e:
                failure = failure or CacheInstallError(request.url, e)
                continue
            if not response.ok:
                failure = failure or CacheInstallError(
                    request.url, OrderLiveError(f"status {response.status}")
                )
                continue
            fetched[request.key] = response

        if failure is not None:
            self._log.warning("cache_install_failed", url=failure.url, error=str(failure.cause))
            raise failure

        cache = self.storage.open(self.generation)
        for request in requests_:
            cache.put(request, fetched[request.key])
        self._log.info("cache_installed", resources=len(requests_))

    def activate(self) -> list[str]:
        """Delete every stored cache except the current generation and ``keep``.

        Deletions run concurrently and all of them finish before this returns.
        Returns the names that were deleted.
        """
        stale = [name for name in self.generations() if name != self.generation]
        results = list(self._executor.map(self.storage.delete, stale))
        deleted = [name for name, ok in zip(stale, results) if ok]
        for name in deleted:
            self._log.info("cache_generation_deleted", name=name)
        return deleted

    def handle_fetch(self, request: Request) -> Response:
        """Serve cache-first with network fallback and write-through.

        Raises:
            ResourceUnavailableError: If the network fails and neither the
                request nor the offline fallback is cached.
        """
        if not request.is_idempotent:
            return self._network_only(request)

        cached = self.storage.match(request)
        if cached is not None:
            self._log.debug("cache_hit", url=request.url)
            return cached

        try:
            response = self._fetcher.fetch(request)
        except NetworkError:
            return self._offline(request)

        if response.ok:
            self._store_later(request, response.clone())
        return response

    def _network_only(self, request: Request) -> Response:
        try:
            return self._fetcher.fetch(request)
        except NetworkError:
            return self._offline(request)

    def _offline(self, request: Request) -> Response:
        fallback = self.storage.match(Request(url=self.offline_path))
        if fallback is None:
            self._log.warning("resource_unavailable", url=request.url)
            raise ResourceUnavailableError(request.url)
        self._log.info("offline_fallback_served", url=request.url)
        return fallback

    def _store_later(self, request: Request, response: Response) -> None:
        job = self._executor.submit(self._store, request, response)
        with self._pending_lock:
            self._pending.add(job)
        job.add_done_callback(self._store_done)

    def _store(self, request: Request, response: Response) -> None:
        self.storage.open(self.generation).put(request, response)

    def _store_done(self, job: futures.Future) -> None:
        with self._pending_lock:
            self._pending.discard(job)
        error = job.exception()
        if error is not None:
            self._log.warning("cache_write_failed", error=str(error))

    def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight write-through stores to settle."""
        with self._pending_lock:
            pending = list(self._pending)
        futures.wait(pending, timeout=timeout)

    def close(self) -> None:
        """Wait for pending stores, then stop the worker pool if this cache made it."""
        self.drain()
        if self._owns_executor:
            self._executor.shutdown(wait=True)


class OutboundQueue:
    """Order requests queued while offline, replayed on background sync."""

    def __init__(self, storage: CacheStorage, fetcher: Fetcher, name: str):
        self._storage = storage
        self._fetcher = fetcher
        self.name = name

    def enqueue(self, request: Request) -> None:
        self._storage.open(self.name).put(request, None)
        logger.info("outbound_request_queued", url=request.url, method=request.method)

    def queued(self) -> list[Request]:
        """Requests still waiting to be sent."""
        if not self._storage.has(self.name):
            return []
        return self._storage.open(self.name).unanswered()

    def replay(self) -> tuple[int, int]:
        """Re-send every queued request once and store what comes back.

        Failures stay queued for the next sync. Returns (synced, failed).
        """
        cache = self._storage.open(self.name)
        synced = failed = 0
        for request in cache.unanswered():
            try:
                response = self._fetcher.fetch(request)
            except NetworkError as e:
                failed += 1
                logger.warning("order_sync_failed", url=request.url, error=str(e))
                continue
            if not response.ok:
                failed += 1
                logger.warning("order_sync_failed", url=request.url, status=response.status)
                continue
            cache.put(request, response)
            synced += 1
        logger.info("orders_synced", synced=synced, failed=failed)
        return synced, failed
