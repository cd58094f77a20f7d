import asyncio
import json
import logging
import unittest

import httpx

from inquire.config import InquireConfig
from inquire.crawler import Crawler, CrawlOptions
from inquire.errors import InvariantError, StartupError, SubmitError
from inquire.matcher import HostMatcher
from inquire.net.fetch_engine import FetchResponse
from inquire.parse.extractor import LinkExtractor

SEED = "http://x.test/"


class FakeEngine:
    """Fetch engine that serves canned pages from memory.

    Fetches happen inside ``block()``, one at a time.
    """

    def __init__(self, pages, reject_seed=False, hang=False):
        self.pages = pages
        self.reject_seed = reject_seed
        self.hang = hang
        self.submitted = []
        self.cancel_calls = 0
        self.closed = False
        self._queue = asyncio.Queue()
        self._cancelled = asyncio.Event()
        self._handler = None
        self.handler_errors = []

    def handle(self, handler) -> None:
        self._handler = handler

    async def start(self) -> None:
        pass

    def submit(self, url: str) -> None:
        if self.reject_seed and url == SEED:
            raise SubmitError("engine rejected the seed")
        if self._cancelled.is_set():
            raise SubmitError("engine cancelled")
        self.submitted.append(url)
        self._queue.put_nowait(url)

    def cancel(self) -> None:
        self.cancel_calls += 1
        self._cancelled.set()

    def is_idle(self) -> bool:
        return self._queue.empty()

    async def block(self) -> None:
        while not self._cancelled.is_set():
            try:
                url = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            status, body = self.pages.get(url, (404, ""))
            response = FetchResponse(
                url=url,
                final_url=url,
                status_code=status,
                content_type="text/html; charset=utf-8",
                content_length=len(body),
                text=body,
            )
            error = None if status == 200 else f"HTTP {status}"
            try:
                await self._handler(url, response, error)
            except Exception as e:
                self.handler_errors.append(e)
        if self.hang:
            await self._cancelled.wait()

    async def close(self) -> None:
        self.closed = True


class RaisingExtractor:
    def extract(self, html_content, base_url):
        raise ValueError("unparsable page")


def links(*paths) -> str:
    return "".join(f'<a href="{path}">{path}</a>' for path in paths)


class CrawlerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.package_logger = logging.getLogger("inquire")
        self.previous_level = self.package_logger.level
        self.package_logger.setLevel(logging.INFO)

    def tearDown(self) -> None:
        self.package_logger.setLevel(self.previous_level)

    async def test_records_graph_and_stays_in_scope(self) -> None:
        engine = FakeEngine({
            SEED: (200, links("/a", "http://other.test/b")),
            "http://x.test/a": (200, ""),
        })
        crawler = Crawler(CrawlOptions(seed=SEED, max_scheduled=3), engine)

        await asyncio.wait_for(crawler.run(), timeout=2)

        status = crawler.status()
        self.assertFalse(status.running)
        self.assertEqual([SEED, "http://x.test/a"], engine.submitted)
        self.assertEqual(["http://x.test/a"], status.scheduled_urls)
        self.assertEqual(3, len(status.nodes))
        self.assertEqual(2, status.edge_count)
        self.assertEqual(1, status.scheduled_count)

        by_url = {node.url: node for node in status.nodes}
        self.assertTrue(by_url[SEED].fetched)
        self.assertTrue(by_url["http://x.test/a"].fetched)
        self.assertFalse(by_url["http://other.test/b"].fetched)
        self.assertEqual(
            {by_url["http://x.test/a"].id, by_url["http://other.test/b"].id},
            set(by_url[SEED].links),
        )
        self.assertEqual((), by_url["http://x.test/a"].links)
        self.assertEqual(1, engine.cancel_calls)
        self.assertTrue(engine.closed)

    async def test_bound_limits_scheduled_urls(self) -> None:
        engine = FakeEngine({
            SEED: (200, links("/1", "/2", "/3", "/4", "/5")),
        })
        crawler = Crawler(CrawlOptions(seed=SEED, max_scheduled=2, discovery_capacity=1), engine)

        await asyncio.wait_for(crawler.run(), timeout=2)

        status = crawler.status()
        self.assertEqual(2, status.scheduled_count)
        self.assertEqual("bound", status.stop_reason)
        self.assertEqual(["http://x.test/1", "http://x.test/2"], status.scheduled_urls)
        # Every discovered link is recorded even when it is never scheduled
        self.assertEqual(6, len(status.nodes))
        self.assertEqual(1, engine.cancel_calls)

    async def test_failed_fetch_is_recorded_without_links(self) -> None:
        engine = FakeEngine({SEED: (200, links("/missing"))})
        crawler = Crawler(CrawlOptions(seed=SEED, max_scheduled=5), engine)

        await asyncio.wait_for(crawler.run(), timeout=2)

        node = crawler.recorder.get("http://x.test/missing")
        self.assertEqual(404, node.response.status_code)
        self.assertEqual("HTTP 404", node.error)
        self.assertEqual((), node.links)
        self.assertEqual(1, crawler.stats["fetch_errors"])

    async def test_shutdown_cancels_engine_exactly_once(self) -> None:
        engine = FakeEngine({SEED: (200, "")}, hang=True)
        crawler = Crawler(CrawlOptions(seed=SEED), engine)
        shutdown = asyncio.Event()

        task = asyncio.create_task(crawler.run(shutdown))
        while not crawler.running:
            await asyncio.sleep(0)
        self.assertTrue(crawler.status().running)

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        self.assertEqual(1, engine.cancel_calls)
        self.assertEqual("shutdown", crawler.scheduler.stop_reason)
        self.assertFalse(crawler.running)
        self.assertTrue(engine.closed)

    async def test_seed_submission_failure_aborts_startup(self) -> None:
        engine = FakeEngine({}, reject_seed=True)
        crawler = Crawler(CrawlOptions(seed=SEED), engine)

        with self.assertRaises(StartupError):
            await crawler.run()

        self.assertTrue(engine.closed)
        self.assertFalse(crawler.running)
        self.assertEqual(0, len(crawler.recorder))

    async def test_extractor_failure_yields_no_links(self) -> None:
        engine = FakeEngine({SEED: (200, links("/a"))})
        crawler = Crawler(CrawlOptions(seed=SEED, extractor=RaisingExtractor()), engine)

        await asyncio.wait_for(crawler.run(), timeout=2)

        self.assertEqual(1, len(crawler.recorder))
        self.assertTrue(crawler.recorder.get(SEED).fetched)
        self.assertEqual(1, crawler.stats["extract_errors"])
        self.assertEqual([SEED], engine.submitted)

    async def test_non_html_response_is_not_parsed(self) -> None:
        engine = FakeEngine({SEED: (200, links("/a"))})
        crawler = Crawler(CrawlOptions(seed=SEED, content_types=("application/json",)), engine)

        await asyncio.wait_for(crawler.run(), timeout=2)

        self.assertEqual(1, len(crawler.recorder))
        self.assertEqual(0, crawler.stats["links_extracted"])

    async def test_invariant_violation_fails_the_run(self) -> None:
        engine = FakeEngine({SEED: (200, links("/a"))})
        crawler = Crawler(CrawlOptions(seed=SEED), engine)

        class CorruptingExtractor(LinkExtractor):
            def extract(self, html_content, base_url):
                found = super().extract(html_content, base_url)
                crawler.recorder._index["http://x.test/a"] = 0
                return found

        crawler.options.extractor = CorruptingExtractor()

        with self.assertRaises(InvariantError):
            await asyncio.wait_for(crawler.run(), timeout=2)

        self.assertEqual(1, engine.cancel_calls)
        self.assertFalse(crawler.running)
        self.assertIsInstance(engine.handler_errors[0], InvariantError)

    async def test_status_snapshot_is_json_serializable(self) -> None:
        engine = FakeEngine({SEED: (200, links("/a"))})
        crawler = Crawler(CrawlOptions(seed=SEED), engine)

        await asyncio.wait_for(crawler.run(), timeout=2)
        status = crawler.status()
        data = json.loads(json.dumps(status.to_dict()))

        self.assertEqual(SEED, data["seed"])
        self.assertEqual("stopped", data["state"])
        self.assertEqual([1, 0], [node["id"] for node in data["nodes"]])
        self.assertTrue(any("Crawling from" in line for line in status.logs))
        # Logs are handed out once
        self.assertEqual([], crawler.status().logs)

    async def test_run_only_once(self) -> None:
        engine = FakeEngine({SEED: (200, "")})
        crawler = Crawler(CrawlOptions(seed=SEED), engine)
        await asyncio.wait_for(crawler.run(), timeout=2)

        with self.assertRaises(RuntimeError):
            await crawler.run()

    async def test_shutdown_requested_before_run(self) -> None:
        engine = FakeEngine({SEED: (200, links("/a"))})
        crawler = Crawler(CrawlOptions(seed=SEED), engine)

        crawler.shutdown()
        await asyncio.wait_for(crawler.run(asyncio.Event()), timeout=2)

        self.assertEqual("shutdown", crawler.scheduler.stop_reason)
        self.assertEqual(1, engine.cancel_calls)
        self.assertEqual([], crawler.status().scheduled_urls)

    async def test_status_read_on_the_loop_during_run(self) -> None:
        engine = FakeEngine({
            SEED: (200, links("/a", "/b")),
            "http://x.test/a": (200, links("/c")),
            "http://x.test/b": (200, ""),
            "http://x.test/c": (200, ""),
        })
        crawler = Crawler(CrawlOptions(seed=SEED, max_scheduled=10), engine)
        snapshots = []

        class StatusReadingExtractor(LinkExtractor):
            def extract(self, html_content, base_url):
                snapshots.append(crawler.status())
                return super().extract(html_content, base_url)

        crawler.options.extractor = StatusReadingExtractor()
        await asyncio.wait_for(crawler.run(), timeout=2)

        final = set(crawler.status().scheduled_urls)
        self.assertEqual({"http://x.test/a", "http://x.test/b", "http://x.test/c"}, final)
        self.assertEqual(4, len(snapshots))
        for snapshot in snapshots:
            self.assertTrue(snapshot.running)
            self.assertEqual(sorted(snapshot.scheduled_urls), snapshot.scheduled_urls)
            self.assertEqual(len(snapshot.scheduled_urls), snapshot.scheduled_count)
            self.assertTrue(set(snapshot.scheduled_urls) <= final)


class CrawlOptionsTests(unittest.TestCase):
    def test_seed_is_canonicalized(self) -> None:
        options = CrawlOptions(seed="HTTP://X.TEST")

        self.assertEqual(SEED, options.seed)
        self.assertIsInstance(options.matcher, HostMatcher)

    def test_invalid_options(self) -> None:
        with self.assertRaises(ValueError):
            CrawlOptions(seed="not a url")
        with self.assertRaises(ValueError):
            CrawlOptions(seed=SEED, max_scheduled=0)


class CrawlerHttpTests(unittest.IsolatedAsyncioTestCase):
    async def test_crawl_over_http(self) -> None:
        site = {
            "/": links("/a", "/b", "http://other.test/"),
            "/a": links("/b", "/a"),
            "/b": links("/"),
        }
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            if request.url.host != "x.test" or request.url.path not in site:
                return httpx.Response(404)
            return httpx.Response(200, html=site[request.url.path])

        config = InquireConfig.from_dict({
            "seed": SEED,
            "max_scheduled": 10,
            "limits": {"concurrency": 2, "backoff_base_ms": 0, "backoff_cap_ms": 0},
        })
        crawler = Crawler.from_config(config, transport=httpx.MockTransport(handler))

        await asyncio.wait_for(crawler.run(), timeout=5)

        self.assertEqual(
            sorted([SEED, "http://x.test/a", "http://x.test/b"]),
            sorted(requested),
        )
        status = crawler.status()
        self.assertEqual(["http://x.test/a", "http://x.test/b"], status.scheduled_urls)
        self.assertEqual(4, len(status.nodes))
        self.assertEqual(5, status.edge_count)

    async def test_unrequestable_link_is_recorded_as_failed(self) -> None:
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, html=links("/a\x01b"))

        config = InquireConfig.from_dict({"seed": SEED, "max_scheduled": 5})
        crawler = Crawler.from_config(config, transport=httpx.MockTransport(handler))

        await asyncio.wait_for(crawler.run(), timeout=5)

        node = crawler.recorder.get("http://x.test/a\x01b")
        self.assertFalse(node.fetched)
        self.assertIsNotNone(node.error)
        self.assertEqual([SEED], requested)
        self.assertEqual(1, crawler.stats["fetch_errors"])


if __name__ == "__main__":
    unittest.main()
