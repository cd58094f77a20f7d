"""Frontier scheduler.

Turns the stream of discovered links into bounded, deduplicated fetch
submissions. Exactly one task runs ``Scheduler.run``; it is the only reader
of the discovery queue and the only owner of the schedule set, so the set
needs no lock. Producers (fetch completion handlers) hand links over with
``offer``, which waits while the queue is full.
"""

import asyncio
import logging
from enum import Enum
from typing import List, Optional, Set

from .errors import SubmitError
from .matcher import Matcher
from .util.aio import wait_first

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class Scheduler:
    """Schedules discovered URLs for crawling.

    Args:
        seed: Canonical seed URL handed to the matcher
        matcher: Scope policy
        max_scheduled: Maximum number of distinct URLs to submit
        discovery_capacity: Size of the discovery queue (backpressure)
    """

    def __init__(
        self,
        seed: str,
        matcher: Matcher,
        max_scheduled: int,
        discovery_capacity: int = 1,
    ):
        if max_scheduled < 1:
            raise ValueError("max_scheduled must be >= 1")
        if discovery_capacity < 1:
            raise ValueError("discovery_capacity must be >= 1")

        self.seed = seed
        self.matcher = matcher
        self.max_scheduled = max_scheduled

        self.state = SchedulerState.RUNNING
        self.stop_reason: Optional[str] = None

        self._schedule: Set[str] = set()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=discovery_capacity)
        self._stopped = asyncio.Event()
        self._started = False

        self.stats = {
            "received": 0,
            "out_of_scope": 0,
            "duplicates": 0,
            "submitted": 0,
            "submit_errors": 0,
        }

    @property
    def scheduled_count(self) -> int:
        return len(self._schedule)

    @property
    def stopped(self) -> bool:
        return self.state is SchedulerState.STOPPED

    def scheduled(self) -> List[str]:
        """Sorted copy of the schedule set.

        The set is owned by the event loop thread and has no lock; call this
        from that thread (a coroutine, callback or loop signal handler).
        """
        return sorted(self._schedule)

    async def offer(self, url: str) -> bool:
        """Hand a discovered URL to the scheduler.

        Waits while the discovery queue is full. Returns False (without
        waiting) once the scheduler has stopped.
        """
        if self.stopped:
            return False
        put = asyncio.ensure_future(self._queue.put(url))
        await wait_first(put, self._stopped.wait())
        return put.done() and not put.cancelled()

    async def drained(self) -> None:
        """Wait until every offered URL has been processed."""
        await self._queue.join()

    async def run(self, engine, shutdown: asyncio.Event) -> None:
        """Consume the discovery queue until the bound is hit or shutdown fires.

        Args:
            engine: Fetch engine; only ``submit(url)`` is used
            shutdown: Cancellation token. Observed on every iteration and
                set by the scheduler itself when the bound is reached.
        """
        if self._started:
            raise RuntimeError("Scheduler.run() can only be called once")
        self._started = True
        logger.info(f"Scheduler started (seed={self.seed}, max_scheduled={self.max_scheduled})")

        try:
            while True:
                if self.scheduled_count >= self.max_scheduled:
                    logger.info(f"Maximum scheduled count reached: {self.scheduled_count}")
                    self._stop("bound")
                    shutdown.set()
                    break

                if shutdown.is_set():
                    self._stop("shutdown")
                    break

                get = asyncio.ensure_future(self._queue.get())
                await wait_first(get, shutdown.wait())

                if get.done() and not get.cancelled():
                    try:
                        self._consider(get.result(), engine)
                    finally:
                        self._queue.task_done()
        finally:
            if not self.stopped:
                self._stop("cancelled")
            logger.info("Scheduler stopped")

    def _consider(self, url: str, engine) -> None:
        self.stats["received"] += 1

        if not self.matcher.match(self.seed, url):
            self.stats["out_of_scope"] += 1
            return

        if url in self._schedule:
            self.stats["duplicates"] += 1
            logger.debug(f"url {url} was already scheduled, ignoring")
            return

        self._schedule.add(url)
        try:
            engine.submit(url)
        except SubmitError as e:
            self.stats["submit_errors"] += 1
            logger.error(f"Failed to submit {url}: {e}")
            return

        self.stats["submitted"] += 1
        logger.info(f"Scheduled url {url} for crawling ({self.scheduled_count}/{self.max_scheduled})")

    def _stop(self, reason: str) -> None:
        self.state = SchedulerState.STOPPED
        self.stop_reason = reason
        self._stopped.set()
        if reason == "shutdown":
            logger.info("Shutting down scheduler")
