import threading

import httpx
import pytest

from shieldfetch.errors import NetworkError
from shieldfetch.pool import ConnectionPool, get_pool, shutdown_pool

URL = "https://www.amazon.com/dp/B09B8V1LZ3"


def test_fetch_returns_body_status_and_headers(mock_pool, amazon_page):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, headers={"Content-Type": "text/html; charset=utf-8"}, text=amazon_page)

    pool = mock_pool(handler)
    response = pool.fetch(URL, {"User-Agent": "test-agent"})

    assert response.status_code == 200
    assert response.body == amazon_page
    assert response.size == len(amazon_page)
    assert response.final_url == URL
    assert response.elapsed_ms >= 0
    assert seen[0].headers["user-agent"] == "test-agent"


def test_client_errors_are_returned_not_raised(mock_pool):
    pool = mock_pool(lambda request: httpx.Response(429, headers={"Retry-After": "60"}, text="Too Many Requests"))

    response = pool.fetch(URL)

    assert response.status_code == 429
    assert {k.lower(): v for k, v in response.headers.items()}["retry-after"] == "60"


@pytest.mark.parametrize("status", [500, 502, 503])
def test_server_errors_raise_network_error(mock_pool, status):
    pool = mock_pool(lambda request: httpx.Response(status, text="upstream down"))

    with pytest.raises(NetworkError, match=f"HTTP {status}"):
        pool.fetch(URL)


def test_connect_failure_raises_network_error(mock_pool):
    def handler(request):
        raise httpx.ConnectError("Name or service not known", request=request)

    pool = mock_pool(handler)

    with pytest.raises(NetworkError, match="Connection error"):
        pool.fetch(URL)


def test_timeout_raises_network_error(mock_pool):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    pool = mock_pool(handler)

    with pytest.raises(NetworkError, match="Timeout"):
        pool.fetch(URL)


def test_redirect_loop_raises_network_error(mock_pool):
    pool = mock_pool(lambda request: httpx.Response(302, headers={"Location": URL}))

    with pytest.raises(NetworkError, match="Too many redirects"):
        pool.fetch(URL)


def test_redirects_are_followed(mock_pool):
    final = "https://www.amazon.com/product/B09B8V1LZ3"

    def handler(request):
        if str(request.url) == URL:
            return httpx.Response(301, headers={"Location": final})
        return httpx.Response(200, text="<html><body>ok</body></html>")

    response = mock_pool(handler).fetch(URL)

    assert response.status_code == 200
    assert response.final_url == final


def test_oversized_body_is_rejected(mock_pool):
    pool = mock_pool(lambda request: httpx.Response(200, content=b"x" * 100), max_response_size=10)

    with pytest.raises(NetworkError, match="Content too large"):
        pool.fetch(URL)


def test_stats_count_requests(mock_pool):
    pool = mock_pool(lambda request: httpx.Response(200, text="ok"))

    before = pool.stats()
    pool.fetch(URL)
    pool.fetch(URL)
    after = pool.stats()

    assert before["requests_total"] == 0
    assert after["requests_total"] == 2
    assert after["active_connections"] == 0
    assert after["idle_connections"] == 0
    assert pool.drain_idle() == 0


def test_failed_request_releases_the_host_slot(mock_pool):
    pool = mock_pool(lambda request: httpx.Response(503), max_connections_per_host=1)

    for _ in range(3):
        with pytest.raises(NetworkError):
            pool.fetch(URL, timeout_ms=500)

    assert pool.stats()["active_connections"] == 0


def test_shutdown_is_idempotent_and_refuses_new_fetches(mock_pool):
    pool = mock_pool(lambda request: httpx.Response(200, text="ok"))

    pool.shutdown()
    pool.shutdown()

    assert pool.closed
    with pytest.raises(NetworkError, match="shut down"):
        pool.fetch(URL)


def test_process_wide_pool_is_shared_until_shut_down():
    try:
        first = get_pool()
        assert get_pool() is first
        assert isinstance(first, ConnectionPool)

        shutdown_pool()
        assert first.closed

        second = get_pool()
        assert second is not first
    finally:
        shutdown_pool()


def test_per_host_limit_makes_extra_fetches_wait(mock_pool):
    entered = threading.Event()
    release = threading.Event()

    def handler(request):
        if request.url.host == "www.amazon.com":
            entered.set()
            release.wait(10)
        return httpx.Response(200, text="ok")

    pool = mock_pool(handler, max_connections_per_host=1)
    holder = threading.Thread(target=pool.fetch, args=(URL,))
    holder.start()
    try:
        assert entered.wait(10)

        with pytest.raises(NetworkError, match="No free connection to www.amazon.com"):
            pool.fetch(URL, timeout_ms=200)

        other = pool.fetch("https://www.walmart.com/ip/123", timeout_ms=200)
        assert other.status_code == 200
        assert pool.stats()["active_connections"] == 1
    finally:
        release.set()
        holder.join(10)

    assert pool.fetch(URL, timeout_ms=200).status_code == 200


class FakeConnection:
    def __init__(self, idle):
        self.idle = idle
        self.closed = False

    def is_idle(self):
        return self.idle and not self.closed

    def close(self):
        self.closed = True


class FakeConnectionPool:
    def __init__(self, connections):
        self.connections = connections


def test_drain_idle_closes_only_idle_connections(mock_pool):
    pool = mock_pool(lambda request: httpx.Response(200, text="ok"))
    idle_a, busy, idle_b = FakeConnection(True), FakeConnection(False), FakeConnection(True)
    pool._transport._pool = FakeConnectionPool([idle_a, busy, idle_b])

    assert pool.stats()["idle_connections"] == 2
    assert pool.drain_idle() == 2

    assert idle_a.closed and idle_b.closed
    assert not busy.closed
    assert pool.stats()["idle_connections"] == 0
    assert pool.drain_idle() == 0
