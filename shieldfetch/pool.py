"""
Pooled HTTP client shared by every worker unit.

One long-lived httpx client with keep-alive connections, a per-host
concurrency cap, a response size cap and TLS verification that is never
turned off. Transport failures surface as NetworkError and are never
retried here.
"""

import logging
import threading
import time
from typing import Dict, Optional
from urllib.parse import urlparse

import httpx

from .config import config
from .errors import NetworkError

logger = logging.getLogger(__name__)


class FetchResponse:
    def __init__(
        self,
        url: str,
        status_code: int,
        body: str = '',
        headers: Dict[str, str] = None,
        elapsed_ms: float = 0.0,
        final_url: str = None,
    ):
        """Hold a completed HTTP exchange with a status below 500."""
        self.url = url
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.elapsed_ms = elapsed_ms
        self.final_url = final_url or url

    @property
    def size(self) -> int:
        return len(self.body)


class ConnectionPool:
    def __init__(
        self,
        max_connections_per_host: int = None,
        max_idle_connections: int = None,
        keepalive_expiry_ms: int = None,
        timeout_ms: int = None,
        max_redirects: int = None,
        max_response_size: int = None,
        transport: httpx.BaseTransport = None,
    ):
        """Initialize the pooled client; ``transport`` replaces the network in tests."""
        pool_cfg = config.pool
        self.max_connections_per_host = max_connections_per_host or pool_cfg.get('max_connections_per_host', 10)
        self.max_idle_connections = max_idle_connections or pool_cfg.get('max_idle_connections', 5)
        self.keepalive_expiry_ms = keepalive_expiry_ms or pool_cfg.get('keepalive_expiry_ms', 30000)
        self.timeout_ms = timeout_ms or pool_cfg.get('timeout_ms', 30000)
        self.max_redirects = max_redirects or pool_cfg.get('max_redirects', 5)
        self.max_response_size = max_response_size or pool_cfg.get('max_response_size', 50 * 1024 * 1024)
        self.slow_request_ms = pool_cfg.get('slow_request_ms', 5000)

        self._transport = transport or httpx.HTTPTransport(
            verify=True,
            limits=httpx.Limits(
                max_connections=None,
                max_keepalive_connections=self.max_idle_connections,
                keepalive_expiry=self.keepalive_expiry_ms / 1000,
            ),
        )
        self._client = httpx.Client(
            transport=self._transport,
            timeout=httpx.Timeout(self.timeout_ms / 1000),
            follow_redirects=True,
            max_redirects=self.max_redirects,
        )

        self._lock = threading.Lock()
        self._host_slots: Dict[str, threading.BoundedSemaphore] = {}
        self._active = 0
        self._requests_total = 0
        self._closed = False

        logger.info(
            f"Connection pool initialized: {self.max_connections_per_host} connections/host, "
            f"{self.max_idle_connections} idle, timeout {self.timeout_ms}ms"
        )

    def _slot_for(self, url: str) -> threading.BoundedSemaphore:
        host = urlparse(url).netloc.lower()
        with self._lock:
            slot = self._host_slots.get(host)
            if slot is None:
                slot = threading.BoundedSemaphore(self.max_connections_per_host)
                self._host_slots[host] = slot
            return slot

    def fetch(self, url: str, headers: Dict[str, str] = None, timeout_ms: int = None) -> FetchResponse:
        """GET a URL through the pool.

        Statuses below 500 are returned as responses, including 4xx and 429.
        Everything else raises NetworkError.
        """
        if self._closed:
            raise NetworkError("Connection pool is shut down", url=url)

        timeout_ms = timeout_ms or self.timeout_ms
        slot = self._slot_for(url)
        if not slot.acquire(timeout=timeout_ms / 1000):
            raise NetworkError(f"No free connection to {urlparse(url).netloc} within {timeout_ms}ms", url=url)

        with self._lock:
            self._active += 1
            self._requests_total += 1

        start_time = time.monotonic()
        try:
            return self._do_fetch(url, headers or {}, timeout_ms, start_time)
        finally:
            with self._lock:
                self._active -= 1
            slot.release()

    def _do_fetch(self, url: str, headers: Dict[str, str], timeout_ms: int, start_time: float) -> FetchResponse:
        def elapsed() -> float:
            return (time.monotonic() - start_time) * 1000

        try:
            with self._client.stream('GET', url, headers=headers, timeout=httpx.Timeout(timeout_ms / 1000)) as response:
                if response.status_code >= 500:
                    raise NetworkError(f"HTTP {response.status_code}", url=url, elapsed_ms=elapsed())

                content_length = response.headers.get('content-length')
                if content_length and content_length.isdigit() and int(content_length) > self.max_response_size:
                    raise NetworkError(
                        f"Content too large: {content_length} bytes > {self.max_response_size} bytes",
                        url=url,
                        elapsed_ms=elapsed(),
                    )

                content = bytearray()
                for chunk in response.iter_bytes(chunk_size=8192):
                    content.extend(chunk)
                    if len(content) > self.max_response_size:
                        raise NetworkError(
                            f"Content too large: more than {self.max_response_size} bytes",
                            url=url,
                            elapsed_ms=elapsed(),
                        )

                body = bytes(content).decode(response.encoding or 'utf-8', errors='replace')
                fetch_time = elapsed()
                if fetch_time > self.slow_request_ms:
                    logger.warning(f"Slow request detected: {url} took {fetch_time:.0f}ms")

                return FetchResponse(
                    url=url,
                    status_code=response.status_code,
                    body=body,
                    headers=dict(response.headers),
                    elapsed_ms=fetch_time,
                    final_url=str(response.url),
                )

        except NetworkError as e:
            logger.error(f"Request failed after {e.elapsed_ms:.0f}ms for {url}: {e}")
            raise

        except httpx.TimeoutException as e:
            error = f"Timeout after {timeout_ms}ms: {e}"

        except httpx.ConnectError as e:
            error = f"Connection error: {e}"

        except httpx.TooManyRedirects as e:
            error = f"Too many redirects: {e}"

        except (httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError) as e:
            error = f"Connection reset: {e}"

        except httpx.HTTPError as e:
            error = f"HTTP error: {e}"

        logger.error(f"Request failed after {elapsed():.0f}ms for {url}: {error}")
        raise NetworkError(error, url=url, elapsed_ms=elapsed())

    def _connections(self) -> list:
        # Only a real HTTPTransport exposes an httpcore pool.
        inner = getattr(self._transport, '_pool', None)
        if inner is None:
            return []
        return list(getattr(inner, 'connections', []))

    def stats(self) -> Dict[str, int]:
        """Point-in-time connection counts."""
        idle = sum(1 for conn in self._connections() if conn.is_idle())
        with self._lock:
            return {
                'active_connections': self._active,
                'idle_connections': idle,
                'requests_total': self._requests_total,
            }

    def drain_idle(self) -> int:
        """Close idle keep-alive sockets; returns how many were closed."""
        closed = 0
        for conn in self._connections():
            if conn.is_idle():
                conn.close()
                closed += 1
        if closed:
            logger.info(f"Closed {closed} idle connections")
        return closed

    def shutdown(self) -> None:
        """Release every socket; safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._client.close()
        logger.info("Connection pool shut down")

    @property
    def closed(self) -> bool:
        return self._closed


_pool: Optional[ConnectionPool] = None
_pool_lock = threading.Lock()


def get_pool() -> ConnectionPool:
    """Return the process-wide pool, creating it on first use."""
    global _pool
    with _pool_lock:
        if _pool is None or _pool.closed:
            _pool = ConnectionPool()
        return _pool


def shutdown_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.shutdown()
            _pool = None
