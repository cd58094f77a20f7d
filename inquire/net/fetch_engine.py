"""Default fetch engine: an asyncio worker pool over httpx.

The engine accepts URL submissions, fetches them with a bounded number of
concurrent workers and hands every completed fetch to a registered
response handler. It knows nothing about the link graph or the scope
policy; those live in the crawl orchestrator.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from ..errors import SubmitError
from ..util.aio import wait_first

logger = logging.getLogger(__name__)

# Client errors that are final; anything else >= 400 is retried
NO_RETRY_STATUSES = {400, 401, 403, 404, 405, 410, 451}


@dataclass(frozen=True)
class FetchResponse:
    """Result of a fetch that produced an HTTP response."""
    url: str
    final_url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    content_length: int = 0
    duration: float = 0.0
    content_type: str = ""
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


ResponseHandler = Callable[[str, Optional[FetchResponse], Optional[str]], Awaitable[None]]


class FetchEngine:
    """Bounded worker pool fetching submitted URLs.

    Lifecycle: ``handle(callback)``, ``await start()``, ``submit(url)``...,
    ``await block()`` until idle or cancelled, ``cancel()``, ``await close()``.
    """

    def __init__(
        self,
        user_agent: str,
        concurrency: int = 4,
        connect_timeout_ms: int = 4000,
        read_timeout_ms: int = 15000,
        max_retries: int = 3,
        backoff_base_ms: int = 500,
        backoff_cap_ms: int = 8000,
        req_per_sec: float = 0.0,
        http2: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        self.user_agent = user_agent
        self.concurrency = concurrency
        self.connect_timeout_ms = connect_timeout_ms
        self.read_timeout_ms = read_timeout_ms
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.req_per_sec = req_per_sec
        self.http2 = http2
        self._transport = transport

        self._handler: Optional[ResponseHandler] = None
        self.client: Optional[httpx.AsyncClient] = None

        self._queue: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._cancelled = asyncio.Event()
        self._pending = 0

        self._last_request_time = 0.0
        self._rate_lock = asyncio.Lock()

        self.total_fetches = 0
        self.successful_fetches = 0
        self.failed_fetches = 0
        self.bytes_downloaded = 0

    def handle(self, handler: ResponseHandler) -> None:
        """Register the callback invoked once per completed fetch."""
        self._handler = handler

    def _create_http_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            connect=self.connect_timeout_ms / 1000,
            read=self.read_timeout_ms / 1000,
            write=self.read_timeout_ms / 1000,
            pool=None,
        )
        return httpx.AsyncClient(
            http2=self.http2,
            timeout=timeout,
            limits=httpx.Limits(
                max_keepalive_connections=self.concurrency,
                max_connections=self.concurrency * 2,
                keepalive_expiry=30,
            ),
            headers={
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
            follow_redirects=True,
            max_redirects=5,
            transport=self._transport,
        )

    async def start(self) -> None:
        if self._workers:
            return
        if self._handler is None:
            raise RuntimeError("No response handler registered")

        self.client = self._create_http_client()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"fetch-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Fetch engine started with {self.concurrency} workers")

    def submit(self, url: str) -> None:
        """Queue ``url`` for fetching.

        Raises:
            SubmitError: if the engine is not started or was cancelled
        """
        if self._cancelled.is_set():
            raise SubmitError(f"engine cancelled, rejecting {url}")
        if not self._workers:
            raise SubmitError(f"engine not started, rejecting {url}")
        self._pending += 1
        self._queue.put_nowait(url)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_idle(self) -> bool:
        return self._pending == 0

    def cancel(self) -> None:
        """Abort queued and in-flight fetches and reject new ones. Idempotent."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()

        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            self._pending -= 1
            dropped += 1

        for worker in self._workers:
            worker.cancel()
        logger.info(f"Fetch engine cancelled ({dropped} queued requests dropped)")

    async def block(self) -> None:
        """Run until every submitted URL is handled or the engine is cancelled."""
        await wait_first(self._queue.join(), self._cancelled.wait())
        if self._cancelled.is_set():
            await asyncio.gather(*self._workers, return_exceptions=True)

    async def close(self) -> None:
        if not self._cancelled.is_set():
            for worker in self._workers:
                worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        if self.client is not None:
            await self.client.aclose()
        logger.info(f"Fetch engine closed - {self.get_stats()}")

    async def _worker(self, idx: int) -> None:
        while True:
            url = await self._queue.get()
            try:
                response, error = await self.fetch(url)
                await self._handler(url, response, error)
            except Exception as e:
                logger.exception(f"Worker {idx} failed on {url}: {e}")
            finally:
                self._queue.task_done()
                self._pending -= 1

    async def _wait_for_rate_limit(self) -> None:
        if self.req_per_sec <= 0:
            return
        async with self._rate_lock:
            min_interval = 1.0 / self.req_per_sec
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)
            self._last_request_time = time.monotonic()

    def _backoff_seconds(self, retries: int) -> float:
        backoff_ms = min(self.backoff_base_ms * (2 ** retries), self.backoff_cap_ms)
        return backoff_ms / 1000.0

    async def fetch(self, url: str) -> Tuple[Optional[FetchResponse], Optional[str]]:
        """Fetch ``url`` with retries.

        Returns:
            (response, error). ``response`` is None when no HTTP response was
            received; ``error`` is None only for 2xx responses.
        """
        self.total_fetches += 1
        retries = 0

        while True:
            await self._wait_for_rate_limit()
            start_time = time.monotonic()
            try:
                response = await self.client.get(url)
            except httpx.InvalidURL as e:
                # Not retryable; the URL itself cannot be requested
                logger.warning(f"Invalid URL {url!r}: {e}")
                self.failed_fetches += 1
                return None, str(e) or e.__class__.__name__
            except httpx.HTTPError as e:
                logger.warning(f"Request error for {url}: {e!r}, attempt {retries + 1}/{self.max_retries + 1}")
                if retries >= self.max_retries:
                    self.failed_fetches += 1
                    return None, str(e) or e.__class__.__name__
                await asyncio.sleep(self._backoff_seconds(retries))
                retries += 1
                continue

            result = self._build_response(url, response, time.monotonic() - start_time)

            if result.ok:
                self.successful_fetches += 1
                return result, None

            if result.status_code < 400 or result.status_code in NO_RETRY_STATUSES:
                self.failed_fetches += 1
                return result, f"HTTP {result.status_code}"

            # 429 and server errors - retry with backoff
            logger.warning(f"HTTP {result.status_code}: {url}, attempt {retries + 1}/{self.max_retries + 1}")
            if retries >= self.max_retries:
                self.failed_fetches += 1
                return result, f"HTTP {result.status_code}"

            delay = self._backoff_seconds(retries)
            retry_after = response.headers.get("retry-after")
            if retry_after and retry_after.isdigit():
                delay = max(delay, min(int(retry_after), 60))
            await asyncio.sleep(delay)
            retries += 1

    def _build_response(self, url: str, response: httpx.Response, duration: float) -> FetchResponse:
        body = response.content
        self.bytes_downloaded += len(body)

        try:
            content_length = int(response.headers.get("content-length", len(body)))
        except ValueError:
            content_length = len(body)

        return FetchResponse(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            headers=dict(response.headers),
            content_length=content_length,
            duration=duration,
            content_type=response.headers.get("content-type", ""),
            text=response.text,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_fetches": self.total_fetches,
            "successful_fetches": self.successful_fetches,
            "failed_fetches": self.failed_fetches,
            "bytes_downloaded": self.bytes_downloaded,
            "pending": self._pending,
        }
