"""Tests for the shell cache and the outbound order queue."""

import threading
from concurrent import futures

import pytest

from orderlive.cache import (
    UNAVAILABLE_RESPONSE,
    CacheStorage,
    OutboundQueue,
    Request,
    ResourceCache,
    Response,
)
from orderlive.errors import CacheInstallError, NetworkError, ResourceUnavailableError

PREFIX = "food-court-shell-"
MANIFEST = ("/", "/customer/menu.html", "/offline.html")


class FakeFetcher:
    """Fetcher serving canned responses; unknown URLs fail like a dropped connection."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls: list[Request] = []
        self.online = True
        self._lock = threading.Lock()

    def fetch(self, request: Request) -> Response:
        with self._lock:
            self.calls.append(request)
        if not self.online or request.url not in self.routes:
            raise NetworkError(request.url)
        status, body = self.routes[request.url]
        return Response(status=status, body=body, url=request.url)

    def calls_to(self, url: str) -> int:
        return sum(1 for r in self.calls if r.url == url)


def _site():
    return {path: (200, f"page {path}".encode()) for path in MANIFEST}


@pytest.fixture
def storage() -> CacheStorage:
    return CacheStorage()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher(_site())


def _resources(storage, fetcher, version="v1") -> ResourceCache:
    return ResourceCache(
        storage,
        fetcher,
        generation=f"{PREFIX}{version}",
        manifest=MANIFEST,
        offline_path="/offline.html",
        keep=("orders-cache",),
    )


class TestRequest:
    """Tests for Request identity."""

    def test_get_is_idempotent(self) -> None:
        assert Request("/a").is_idempotent
        assert Request("/a", method="head").is_idempotent

    def test_post_is_not(self) -> None:
        assert not Request("/a", method="POST").is_idempotent
        assert not Request("/a", body=b"x").is_idempotent

    def test_bodies_distinguish_keys(self) -> None:
        a = Request("/api/orders", method="POST", body=b"1")
        b = Request("/api/orders", method="POST", body=b"2")
        assert a.key != b.key
        assert Request("/a").key == Request("/a", method="get").key


class TestInstall:
    """Tests for priming a generation."""

    def test_install_stores_whole_manifest(self, storage, fetcher) -> None:
        resources = _resources(storage, fetcher)
        resources.install()
        cache = storage.open(f"{PREFIX}v1")
        assert len(cache) == len(MANIFEST)
        assert cache.match(Request("/customer/menu.html")).body == b"page /customer/menu.html"

    def test_install_is_all_or_nothing(self, storage, fetcher) -> None:
        """One missing resource fails the install and stores nothing."""
        del fetcher.routes["/customer/menu.html"]
        resources = _resources(storage, fetcher)
        with pytest.raises(CacheInstallError) as exc:
            resources.install()
        assert exc.value.url == "/customer/menu.html"
        assert not storage.has(f"{PREFIX}v1")

    def test_error_status_fails_install(self, storage, fetcher) -> None:
        fetcher.routes["/"] = (404, b"")
        with pytest.raises(CacheInstallError):
            _resources(storage, fetcher).install()
        assert not storage.has(f"{PREFIX}v1")


class TestActivate:
    """Tests for generation cleanup."""

    def test_deletes_other_generations_only(self, storage, fetcher) -> None:
        """Stale generations go; the order queue stays."""
        storage.open(f"{PREFIX}v0")
        storage.open("orders-cache")
        resources = _resources(storage, fetcher)
        resources.install()

        assert resources.activate() == [f"{PREFIX}v0"]
        assert resources.generations() == [f"{PREFIX}v1"]
        assert storage.has("orders-cache")

    def test_deletes_caches_from_other_naming_schemes(self, storage, fetcher) -> None:
        """A cache left by an earlier prefix is still a stale generation."""
        storage.open("sarawak-food-court-v1")
        storage.open("orders-cache")
        resources = _resources(storage, fetcher, version="v2")
        resources.install()

        assert resources.activate() == ["sarawak-food-court-v1"]
        assert sorted(storage.keys()) == ["food-court-shell-v2", "orders-cache"]

    def test_activate_is_idempotent(self, storage, fetcher) -> None:
        storage.open(f"{PREFIX}v0")
        resources = _resources(storage, fetcher)
        resources.install()
        resources.activate()
        assert resources.activate() == []
        assert resources.generations() == [f"{PREFIX}v1"]


class TestHandleFetch:
    """Tests for cache-first fetch interception."""

    def test_cache_hit_skips_network(self, storage, fetcher) -> None:
        resources = _resources(storage, fetcher)
        resources.install()
        before = fetcher.calls_to("/")
        response = resources.handle_fetch(Request("/"))
        assert response.body == b"page /"
        assert fetcher.calls_to("/") == before

    def test_miss_is_written_through(self, storage, fetcher) -> None:
        """The first fetch goes to the network; the second is served from cache."""
        fetcher.routes["/css/main.css"] = (200, b"body{}")
        resources = _resources(storage, fetcher)
        resources.install()

        first = resources.handle_fetch(Request("/css/main.css"))
        resources.drain(timeout=5)
        second = resources.handle_fetch(Request("/css/main.css"))

        assert first.body == second.body == b"body{}"
        assert fetcher.calls_to("/css/main.css") == 1

    def test_error_status_not_cached(self, storage, fetcher) -> None:
        fetcher.routes["/gone"] = (500, b"oops")
        resources = _resources(storage, fetcher)
        resources.install()
        assert resources.handle_fetch(Request("/gone")).status == 500
        resources.drain(timeout=5)
        resources.handle_fetch(Request("/gone"))
        assert fetcher.calls_to("/gone") == 2

    def test_offline_fallback(self, storage, fetcher) -> None:
        """An uncached request made offline gets the offline page."""
        resources = _resources(storage, fetcher)
        resources.install()
        fetcher.online = False
        response = resources.handle_fetch(Request("/customer/cart.html"))
        assert response.body == b"page /offline.html"

    def test_unavailable_without_offline_page(self, storage) -> None:
        resources = _resources(storage, FakeFetcher())
        with pytest.raises(ResourceUnavailableError):
            resources.handle_fetch(Request("/anything"))

    def test_post_goes_to_network_and_is_not_cached(self, storage, fetcher) -> None:
        fetcher.routes["/api/orders"] = (201, b"{}")
        resources = _resources(storage, fetcher)
        resources.install()
        request = Request("/api/orders", method="POST", body=b"{}")
        assert resources.handle_fetch(request).status == 201
        resources.drain(timeout=5)
        assert storage.match(request) is None

    def test_unavailable_response_shape(self) -> None:
        response = UNAVAILABLE_RESPONSE.clone()
        assert response.status == 503
        assert response.body == b"Service Unavailable"
        assert response.headers["Content-Type"] == "text/plain"


class TestClose:
    """Tests for releasing the worker pool."""

    def test_close_stops_own_workers(self, storage, fetcher) -> None:
        resources = _resources(storage, fetcher)
        resources.install()
        resources.close()
        with pytest.raises(RuntimeError):
            resources._executor.submit(print)

    def test_close_leaves_shared_executor_running(self, storage, fetcher) -> None:
        """An executor passed in belongs to the caller."""
        with futures.ThreadPoolExecutor(max_workers=1) as shared:
            resources = ResourceCache(
                storage,
                fetcher,
                generation=f"{PREFIX}v1",
                manifest=MANIFEST,
                offline_path="/offline.html",
                executor=shared,
            )
            resources.install()
            resources.close()
            assert shared.submit(len, "ok").result() == 2


class TestOutboundQueue:
    """Tests for background-sync replay."""

    def test_replay_sends_queued_orders(self, storage) -> None:
        fetcher = FakeFetcher({"/api/orders": (201, b"ok")})
        queue = OutboundQueue(storage, fetcher, "orders-cache")
        queue.enqueue(Request("/api/orders", method="POST", body=b'{"id": 1}'))
        queue.enqueue(Request("/api/orders", method="POST", body=b'{"id": 2}'))

        assert len(queue.queued()) == 2
        assert queue.replay() == (2, 0)
        assert queue.queued() == []

    def test_synced_orders_are_not_resent(self, storage) -> None:
        fetcher = FakeFetcher({"/api/orders": (201, b"ok")})
        queue = OutboundQueue(storage, fetcher, "orders-cache")
        queue.enqueue(Request("/api/orders", method="POST", body=b"1"))
        queue.replay()
        assert queue.replay() == (0, 0)
        assert fetcher.calls_to("/api/orders") == 1

    def test_failures_stay_queued(self, storage) -> None:
        fetcher = FakeFetcher({"/api/orders": (503, b"")})
        queue = OutboundQueue(storage, fetcher, "orders-cache")
        queue.enqueue(Request("/api/orders", method="POST", body=b"1"))
        queue.enqueue(Request("/api/other", method="POST", body=b"2"))
        assert queue.replay() == (0, 2)
        assert len(queue.queued()) == 2

    def test_empty_queue(self, storage) -> None:
        queue = OutboundQueue(storage, FakeFetcher(), "orders-cache")
        assert queue.queued() == []
        assert queue.replay() == (0, 0)
