"""Crawl orchestrator.

Wires the recorder, scheduler and matcher to the fetch engine's response
callback and runs the scheduler loop and the engine side by side until the
crawl is idle, the bound is reached or shutdown is requested.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import InvariantError, StartupError, SubmitError
from .log_buffer import LogBuffer
from .matcher import HostMatcher, Matcher, build_matcher
from .net.fetch_engine import FetchEngine, FetchResponse
from .node import NodeView, ResponseData
from .parse.extractor import LinkExtractor
from .recorder import Recorder
from .scheduler import Scheduler
from .url_tools import canonicalize, is_valid_url
from .util.aio import wait_first

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


@dataclass
class CrawlOptions:
    seed: str
    max_scheduled: int = 5
    matcher: Matcher = field(default_factory=HostMatcher)
    extractor: Any = field(default_factory=LinkExtractor)
    discovery_capacity: int = 1
    content_types: Sequence[str] = HTML_CONTENT_TYPES
    log_buffer_size: int = 1000

    def __post_init__(self):
        if not is_valid_url(self.seed):
            raise ValueError(f"seed must be an absolute http(s) URL: {self.seed}")
        self.seed = canonicalize(self.seed)
        if self.max_scheduled < 1:
            raise ValueError("max_scheduled must be >= 1")


@dataclass
class Status:
    running: bool
    state: str
    stop_reason: Optional[str]
    seed: str
    max_scheduled: int
    scheduled_count: int
    edge_count: int
    nodes: List[NodeView] = field(default_factory=list)
    scheduled_urls: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "state": self.state,
            "stop_reason": self.stop_reason,
            "seed": self.seed,
            "max_scheduled": self.max_scheduled,
            "scheduled_count": self.scheduled_count,
            "edge_count": self.edge_count,
            "nodes": [node.to_dict() for node in self.nodes],
            "scheduled_urls": list(self.scheduled_urls),
            "logs": list(self.logs),
        }


class Crawler:
    """Runs one crawl from a seed URL.

    A Crawler is single-use: ``run`` may be awaited once.
    """

    def __init__(self, options: CrawlOptions, engine):
        self.options = options
        self.seed = options.seed
        self.engine = engine

        self.recorder = Recorder()
        self.scheduler = Scheduler(
            seed=options.seed,
            matcher=options.matcher,
            max_scheduled=options.max_scheduled,
            discovery_capacity=options.discovery_capacity,
        )
        self.log_buffer = LogBuffer(capacity=options.log_buffer_size)

        self.running = False
        self._started = False
        self._shutdown = asyncio.Event()
        self._failure: Optional[InvariantError] = None

        self.engine.handle(self._on_response)

        self.stats = {
            "responses": 0,
            "fetch_errors": 0,
            "extract_errors": 0,
            "links_extracted": 0,
        }
        logger.info("Crawler initialized")

    @classmethod
    def from_config(cls, config, transport=None) -> "Crawler":
        """Build a crawler and its default fetch engine from an ``InquireConfig``."""
        options = CrawlOptions(
            seed=config.seed,
            max_scheduled=config.max_scheduled,
            matcher=build_matcher(config.scope),
            extractor=LinkExtractor(keep_query=config.extract.keep_query),
            discovery_capacity=config.discovery_capacity,
            content_types=tuple(config.extract.content_types),
            log_buffer_size=config.logs.buffer_size,
        )
        limits = config.limits
        engine = FetchEngine(
            user_agent=config.user_agent,
            concurrency=limits.concurrency,
            connect_timeout_ms=limits.connect_timeout_ms,
            read_timeout_ms=limits.read_timeout_ms,
            max_retries=limits.max_retries,
            backoff_base_ms=limits.backoff_base_ms,
            backoff_cap_ms=limits.backoff_cap_ms,
            req_per_sec=limits.req_per_sec,
            http2=limits.http2,
            transport=transport,
        )
        return cls(options, engine)

    def status(self) -> Status:
        """Snapshot of the crawl. Must be called on the event loop thread."""
        return Status(
            running=self.running,
            state=self.scheduler.state.value,
            stop_reason=self.scheduler.stop_reason,
            seed=self.seed,
            max_scheduled=self.options.max_scheduled,
            scheduled_count=self.scheduler.scheduled_count,
            edge_count=self.recorder.edge_count,
            nodes=self.recorder.nodes(),
            scheduled_urls=self.scheduler.scheduled(),
            logs=self.log_buffer.drain(),
        )

    def shutdown(self) -> None:
        """Request a graceful stop. A request made before ``run`` stops it right after startup."""
        self._shutdown.set()

    async def run(self, shutdown: Optional[asyncio.Event] = None) -> None:
        """Crawl until idle, the bound is reached or ``shutdown`` is set.

        Raises:
            StartupError: if the seed could not be submitted
            InvariantError: if the link graph contract was broken
        """
        if self._started:
            raise RuntimeError("Crawler.run() can only be called once")
        self._started = True

        if shutdown is not None:
            if self._shutdown.is_set():
                shutdown.set()
            self._shutdown = shutdown

        await self.engine.start()
        try:
            self.engine.submit(self.seed)
        except SubmitError as e:
            logger.error(f"Failed to submit seed {self.seed}: {e}")
            await self.engine.close()
            raise StartupError(f"could not submit seed {self.seed}: {e}") from e

        self.log_buffer.attach()
        self.running = True
        logger.info(f"Crawling from {self.seed} (max_scheduled={self.options.max_scheduled})")

        scheduler_task = asyncio.create_task(
            self.scheduler.run(self.engine, self._shutdown), name="scheduler"
        )
        engine_task = asyncio.create_task(self._drive_engine(), name="engine")
        canceller = asyncio.create_task(self._cancel_on_shutdown(), name="canceller")

        try:
            await asyncio.gather(scheduler_task, engine_task)
        finally:
            self._shutdown.set()
            await asyncio.gather(scheduler_task, engine_task, canceller, return_exceptions=True)
            await self.engine.close()
            self.running = False
            self.log_buffer.detach()
            logger.info(f"Crawl finished: {len(self.recorder)} nodes, "
                        f"{self.scheduler.scheduled_count} scheduled, stats={self.stats}")

        if self._failure is not None:
            raise self._failure

    async def _drive_engine(self) -> None:
        """Run the engine until it is idle with nothing left to schedule."""
        shutdown = self._shutdown
        try:
            while not shutdown.is_set():
                await self.engine.block()
                if shutdown.is_set():
                    break
                # Links handed over by the last responses may still produce submissions
                await wait_first(self.scheduler.drained(), shutdown.wait())
                if self.engine.is_idle():
                    logger.info("Fetch engine idle and frontier drained")
                    break
        finally:
            shutdown.set()

    async def _cancel_on_shutdown(self) -> None:
        await self._shutdown.wait()
        self.engine.cancel()

    async def _on_response(
        self,
        url: str,
        response: Optional[FetchResponse],
        error: Optional[str],
    ) -> None:
        """Handle one completed fetch: record it, extract links, forward them."""
        self.stats["responses"] += 1
        data = ResponseData.from_response(response) if response is not None else None

        try:
            parent = self.recorder.record_response(url, data, error)
        except InvariantError as e:
            self._fail(e)
            raise

        if error is not None:
            self.stats["fetch_errors"] += 1
            logger.warning(f"Failed to fetch {url}: {error}")
            return

        if not self._is_extractable(response):
            logger.debug(f"Skipping link extraction for {url} ({response.content_type or 'no content type'})")
            return

        try:
            links = self.options.extractor.extract(response.text, response.final_url)
        except Exception as e:
            self.stats["extract_errors"] += 1
            logger.error(f"Failed to extract links from {url}: {e}")
            links = []

        self.stats["links_extracted"] += len(links)
        logger.info(f"Fetched {url} ({response.status_code}) -> {len(links)} links")

        try:
            for link in links:
                self.recorder.record_link(parent, link)
        except InvariantError as e:
            self._fail(e)
            raise

        for link in links:
            if not await self.scheduler.offer(link):
                break

    def _is_extractable(self, response: Optional[FetchResponse]) -> bool:
        if response is None:
            return False
        if not response.content_type:
            return True
        content_type = response.content_type.split(";", 1)[0].strip().lower()
        return content_type in self.options.content_types

    def _fail(self, error: InvariantError) -> None:
        logger.critical(f"Link graph invariant violated: {error}")
        if self._failure is None:
            self._failure = error
        self._shutdown.set()
