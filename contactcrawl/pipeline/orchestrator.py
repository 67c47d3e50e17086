"""
Crawl orchestrator.

``CrawlJob`` runs one seed URL to completion: pop the best frontier entry,
fetch it, extract and merge contacts, push same-origin links, repeat until
the frontier is empty or a budget runs out. ``ContactCrawler`` owns the
shared browser handles and runs jobs, alone or as a bounded batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set, Union

from ..config import CrawlerConfig, CrawlSettings, resolve_settings
from ..ops_logger import OpsLogger
from ..schemas import BrowserEngine, ContactRecord, CrawlRequest
from .assembler import extract_page_contacts, is_phone_sentinel
from .dedupe import ContactSet
from .fetchers.playwright import BrowserHandle, BrowserLaunchError, PageFetchResult, PlaywrightFetcher
from .frontier import Frontier, FrontierEntry, LinkClassifier, LinkPriority
from .links import discover_links, normalize_url, same_origin, should_skip_url

logger = logging.getLogger(__name__)


class PageFetcher(Protocol):
    async def open(self) -> None: ...

    async def fetch(self, url: str, timeout_ms: int) -> PageFetchResult: ...

    async def close(self) -> None: ...


class CrawlState(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    ABORTED_BY_TIMEOUT = "aborted_by_timeout"
    FAILED = "failed"


@dataclass
class CrawlResult:
    seed_url: str
    contacts: List[ContactRecord] = field(default_factory=list)
    state: CrawlState = CrawlState.INITIALIZING
    pages_visited: int = 0
    pages_failed: int = 0
    pages_skipped: int = 0
    elapsed_s: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def total_emails(self) -> int:
        return sum(1 for c in self.contacts if not is_phone_sentinel(c.email))

    @property
    def emails_with_names(self) -> int:
        return sum(1 for c in self.contacts if c.name and not is_phone_sentinel(c.email))

    def summary(self) -> Dict[str, Any]:
        return {
            "seed_url": self.seed_url,
            "state": self.state.value,
            "pages_visited": self.pages_visited,
            "pages_failed": self.pages_failed,
            "pages_skipped": self.pages_skipped,
            "contacts": len(self.contacts),
            "total_emails": self.total_emails,
            "emails_with_names": self.emails_with_names,
            "elapsed_s": round(self.elapsed_s, 3),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.summary()
        data["errors"] = list(self.errors)
        data["contacts"] = [c.model_dump(mode="json") for c in self.contacts]
        return data


class CrawlJob:
    """One crawl of one seed URL. Owns its frontier, visited set and contact map."""

    def __init__(
        self,
        request: CrawlRequest,
        fetcher: PageFetcher,
        settings: CrawlSettings,
        *,
        classifier: Optional[LinkClassifier] = None,
        ops_logger: Optional[OpsLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.request = request
        self.fetcher = fetcher
        self.settings = settings
        self.classifier = classifier or LinkClassifier()
        self.ops_logger = ops_logger
        self.clock = clock
        self.frontier = Frontier()
        self.visited: Set[str] = set()
        self.contacts = ContactSet()
        self.visit_order: List[str] = []
        self.result = CrawlResult(seed_url=request.seed_url)

    @property
    def seed_url(self) -> str:
        return self.request.seed_url

    async def run(self) -> CrawlResult:
        """Run the job. Raises BrowserLaunchError if no browsing context can be opened."""
        started = self.clock()
        logger.info("Crawl start %s (mode=%s, %s)", self.seed_url, self.settings.mode.value,
                     self.settings.budget.model_dump())
        try:
            await self.fetcher.open()
        except BrowserLaunchError as e:
            self.result.state = CrawlState.FAILED
            self.result.errors.append(str(e))
            self._finish(started)
            raise

        self.result.state = CrawlState.RUNNING
        try:
            self.frontier.push(FrontierEntry(self.seed_url, 0, LinkPriority.INITIAL))
            self.result.state = await self._loop(started)
        finally:
            await self.fetcher.close()
        self._finish(started)
        return self.result

    async def _loop(self, started: float) -> CrawlState:
        budget = self.settings.budget
        wall_clock_s = budget.job_wall_clock_timeout_ms / 1000.0

        while self.frontier:
            if self.result.pages_visited >= budget.max_pages:
                logger.info("Page budget (%d) reached for %s", budget.max_pages, self.seed_url)
                return CrawlState.SUCCEEDED
            if self.clock() - started >= wall_clock_s:
                logger.warning("Wall clock (%.1fs) exceeded for %s, returning partial results",
                               wall_clock_s, self.seed_url)
                return CrawlState.ABORTED_BY_TIMEOUT

            entry = self.frontier.pop()
            key = normalize_url(entry.url)
            if key in self.visited:
                continue
            self.visited.add(key)

            reason = should_skip_url(entry.url)
            if reason:
                self.result.pages_skipped += 1
                logger.debug("Skip %s (%s)", entry.url, reason)
                continue

            await self._visit(entry)

        return CrawlState.SUCCEEDED

    async def _visit(self, entry: FrontierEntry) -> None:
        budget = self.settings.budget
        t0 = self.clock()
        res = await self.fetcher.fetch(entry.url, budget.per_navigation_timeout_ms)
        self.result.pages_visited += 1
        self.visit_order.append(entry.url)
        elapsed_ms = (self.clock() - t0) * 1000.0

        if res.final_url and res.final_url.startswith(("http://", "https://")):
            self.visited.add(normalize_url(res.final_url))

        if not res.success:
            self.result.pages_failed += 1
            message = f"{entry.url}: {res.error_kind.value if res.error_kind else 'error'}: {res.error}"
            self.result.errors.append(message)
            logger.warning("Page failed %s", message)
            self._ops_page(entry, "failed", 0, elapsed_ms, res.error)
            return

        html = res.html or ""
        page_url = res.final_url if res.final_url and res.final_url.startswith(("http://", "https://")) else entry.url
        raw = extract_page_contacts(html, page_url)
        added = self.contacts.add_all(raw)
        logger.info("Visited %s (depth=%d, priority=%s): %d contacts, %d new/updated",
                    entry.url, entry.depth, entry.priority.name, len(raw), added)
        self._ops_page(entry, "ok", len(raw), elapsed_ms, None)

        if self.settings.follow_links and entry.depth < budget.max_depth:
            self._enqueue_links(html, page_url, entry.depth + 1)

    def _enqueue_links(self, html: str, base_url: str, depth: int) -> int:
        pushed = 0
        for url, text in discover_links(html, base_url):
            if not same_origin(self.seed_url, url):
                continue
            if normalize_url(url) in self.visited:
                continue
            self.frontier.push(FrontierEntry(url, depth, self.classifier.classify(url, text)))
            pushed += 1
        return pushed

    def _ops_page(self, entry: FrontierEntry, status: str, contacts: int,
                  elapsed_ms: float, error: Optional[str]) -> None:
        if self.ops_logger is None:
            return
        self.ops_logger.page(seed_url=self.seed_url, url=entry.url, depth=entry.depth,
                             status=status, contacts=contacts, elapsed_ms=elapsed_ms, error=error)

    def _finish(self, started: float) -> None:
        self.result.contacts = self.contacts.records()
        self.result.elapsed_s = self.clock() - started
        logger.info("Crawl %s %s: %d pages, %d contacts in %.1fs", self.result.state.value,
                    self.seed_url, self.result.pages_visited, len(self.result.contacts),
                    self.result.elapsed_s)
        if self.ops_logger is not None:
            self.ops_logger.job(self.result.summary())


FetcherFactory = Callable[[BrowserHandle, CrawlSettings], PageFetcher]


def _default_fetcher_factory(handle: BrowserHandle, settings: CrawlSettings) -> PageFetcher:
    return PlaywrightFetcher(handle, tier=settings.tier)


class ContactCrawler:
    """Entry point for crawl jobs; owns one shared browser handle per engine."""

    def __init__(
        self,
        config: Optional[CrawlerConfig] = None,
        ops_logger: Optional[OpsLogger] = None,
        *,
        fetcher_factory: Optional[FetcherFactory] = None,
    ) -> None:
        self.config = config or CrawlerConfig()
        self.ops_logger = ops_logger
        self.classifier = LinkClassifier(self.config.link_keywords)
        self._fetcher_factory = fetcher_factory or _default_fetcher_factory
        self._handles: Dict[BrowserEngine, BrowserHandle] = {}

    def handle_for(self, engine: BrowserEngine) -> BrowserHandle:
        handle = self._handles.get(engine)
        if handle is None:
            handle = BrowserHandle(engine, headless=self.config.headless)
            self._handles[engine] = handle
        return handle

    def _request(self, request: Union[CrawlRequest, str], **overrides) -> CrawlRequest:
        if isinstance(request, CrawlRequest):
            return request.model_copy(update=overrides) if overrides else request
        return CrawlRequest(seed_url=request, **overrides)

    async def scrape(self, request: Union[CrawlRequest, str], **overrides) -> CrawlResult:
        """Crawl one seed. Raises BrowserLaunchError when the browser cannot start."""
        req = self._request(request, **overrides)
        settings = resolve_settings(req, self.config)
        fetcher = self._fetcher_factory(self.handle_for(settings.engine), settings)
        job = CrawlJob(req, fetcher, settings, classifier=self.classifier, ops_logger=self.ops_logger)
        return await job.run()

    async def scrape_many(
        self,
        requests: Iterable[Union[CrawlRequest, str]],
        concurrency: Optional[int] = None,
    ) -> List[CrawlResult]:
        """Crawl several seeds concurrently; results keep input order.

        A seed whose browser cannot be launched yields a ``FAILED`` result
        instead of aborting the batch.
        """
        limit = concurrency or self.config.max_concurrent_jobs
        sem = asyncio.Semaphore(max(1, limit))
        reqs = [self._request(r) for r in requests]

        async def _one(req: CrawlRequest) -> CrawlResult:
            async with sem:
                try:
                    return await self.scrape(req)
                except BrowserLaunchError as e:
                    logger.error("Browser launch failed for %s: %s", req.seed_url, e)
                    return CrawlResult(seed_url=req.seed_url, state=CrawlState.FAILED, errors=[str(e)])

        return list(await asyncio.gather(*(_one(r) for r in reqs)))

    async def close(self) -> None:
        for handle in self._handles.values():
            await handle.close()
        self._handles.clear()

    async def __aenter__(self) -> "ContactCrawler":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
