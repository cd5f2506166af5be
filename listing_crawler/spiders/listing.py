"""Listing crawl spider.

Implements the incremental crawl flow:
1. Load the crawl input (fail fast without a proxy) and the crawled-names state.
2. Optionally find a working proxy for the seed URL before the crawl starts.
3. Enqueue the paginated seed request, then the external seed list.
4. For each loaded listing page:
   - Check the resolved URL against the requested one; on a short URL retire
     the browser session and re-enqueue the page under a new identity.
   - Extract records, drop the names already crawled, emit the new ones.
   - Persist the state if an interruption was signalled meanwhile.
5. Report requests that failed after scrapy's retries as failure records.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any, Dict, Iterable, Optional, Set

import scrapy
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright
from scrapy import Request, signals
from scrapy.utils.misc import load_object

from listing_crawler.cache import ResponseCache
from listing_crawler.config import CrawlInput, load_input, load_sources, require_proxy
from listing_crawler.db import KeyValueStore
from listing_crawler.interception import InterceptionFilter, session_context_kwargs
from listing_crawler.proxy import BrowserHandle, PlaywrightLauncher, find_working_browser
from listing_crawler.scheduler import RequestScheduler, is_valid_load
from listing_crawler.state import CrawlStateStore


class ListingSpider(scrapy.Spider):
    name = "listing"

    def __init__(
        self,
        input_path: Optional[str] = None,   # JSON input file (default: INPUT blob of the state db)
        sources_path: Optional[str] = None, # JSON array of extra seed URLs / request dicts
        *args,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.input_path = input_path
        self.sources_path = sources_path

        # --- Progress ---
        self._metric = {
            "pages": 0,
            "records_new": 0,
            "records_duplicate": 0,
            "retired_sessions": 0,
            "failed_requests": 0,
        }
        self._closing: Set[asyncio.Task] = set()

    # -------------- Scrapy lifecycle hooks ----------------

    @classmethod
    def from_crawler(cls, crawler, *args, **kwargs):  # type: ignore[override]
        """
        Scrapy hook: build the crawl collaborators from the settings and the input.
        Raises MissingProxyError before any request is made when no proxy is configured.
        """
        spider = super().from_crawler(crawler, *args, **kwargs)
        spider.setup(crawler.settings)
        crawler.signals.connect(spider.spider_closed, signal=signals.spider_closed)
        if hasattr(signal, "SIGUSR1"):
            # migration notice from the host: persist state at the next opportunity
            signal.signal(signal.SIGUSR1, spider._on_migration_signal)
        return spider

    def setup(self, settings):
        self.kv_store = KeyValueStore(settings.get("STATE_DB_PATH", "data/state.db"))
        self.crawl_input: CrawlInput = require_proxy(
            load_input(self.kv_store, self.input_path, key=settings.get("INPUT_KEY", "INPUT"))
        )
        self.state = CrawlStateStore(self.kv_store, key=settings.get("STATE_KEY", "STATE")).load()

        cache_override = settings.get("CACHE_RESPONSES")
        if cache_override in (None, ""):
            cache_enabled = self.crawl_input.cache_responses
        else:
            cache_enabled = str(cache_override).lower() in ("1", "true", "yes")
        self.cache = ResponseCache(enabled=cache_enabled)
        self.interception = InterceptionFilter(self.cache)

        self.navigation_timeout_ms = settings.getint("NAVIGATION_TIMEOUT_MS", 200000)
        self.proxy_max_attempts = settings.getint("PROXY_VALIDATION_MAX_ATTEMPTS", 1000)
        self.proxy_marker = self.crawl_input.sort_by or settings.get("DEFAULT_SORT_MARKER", "bayesian_review_score")
        self.browser_type = settings.get("PLAYWRIGHT_BROWSER_TYPE", "chromium")
        self.launch_options = settings.getdict("PLAYWRIGHT_LAUNCH_OPTIONS")

        self.scheduler = RequestScheduler(
            callback=self.parse_listing,
            errback=self.on_request_failed,
            meta_factory=self._playwright_meta,
            language=self.crawl_input.language,
            currency=self.crawl_input.currency,
            group=self.crawl_input.city_ids,
            step=settings.getint("PAGE_STEP", 25),
        )
        self.extractor = load_object(settings.get("RECORD_EXTRACTOR"))
        self.sources = load_sources(self.sources_path)
        self.logger.info(
            f"[SETUP] startUrl={self.crawl_input.start_url} sources={len(self.sources)} "
            f"cache={cache_enabled} testProxy={self.crawl_input.test_proxy} crawled={len(self.state)}"
        )

    async def start(self):
        """
        Scrapy entrypoint: yields the seed request, then the external seed list.
        With testProxy the seed request is pinned to a proxy that reached the site.
        """
        if self.crawl_input.start_url:
            seed = self.scheduler.seed(self.crawl_input.start_url)
            if self.crawl_input.test_proxy:
                handle = await self._validate_proxy(seed.url)
                seed.meta["playwright_context_kwargs"]["proxy"] = handle.proxy
            yield seed
        for source in self.sources:
            yield self.scheduler.from_source(source)

    def spider_closed(self, spider, reason):
        self.state.mark_interrupted()
        self.state.flush_if_dirty()
        self.logger.info(
            f"[SUMMARY] reason={reason} pages={self._metric['pages']} new={self._metric['records_new']} "
            f"duplicates={self._metric['records_duplicate']} retired={self._metric['retired_sessions']} "
            f"failed={self._metric['failed_requests']} in_flight={self.scheduler.in_flight} cached={len(self.cache)}"
        )

    def _on_migration_signal(self, signum, frame):
        self.logger.info("[STATE] migration signal received, state will be persisted")
        self.state.mark_interrupted()

    # -------------- Page handling ----------------

    async def parse_listing(self, response: scrapy.http.Response):  # type: ignore[override]
        """
        Handle one loaded listing page.

        - Validity check (only when a startUrl is configured): a resolved URL shorter than the
          requested one means the proxy got redirected; the session is retired and the same URL
          re-enqueued under a new identity.
        - Extraction, dedup against the crawl state, lazy state flush, then the new records.
        - Optional next pagination page while maxPages is not reached.
        """
        request = response.request
        page = response.meta.get("playwright_page")
        resolved_url = page.url if page else response.url
        self.logger.info(f"[OPEN] url={resolved_url}")

        # --- 1. Was the deep link actually served? ---
        if self.crawl_input.start_url and not is_valid_load(request.url, resolved_url):
            self.logger.warning(f"[RETIRE] proxy invalid requested={request.url} resolved={resolved_url}")
            await self._retire_session(page)
            yield self.scheduler.requeue(request)
            return

        # --- 2. Extract ---
        try:
            html = await page.content() if page else response.text
        finally:
            await self._close_session(page)
        records = self.extractor(html, self.crawl_input, resolved_url)
        self._metric["pages"] += 1

        # --- 3. Dedup against crawl state; persist if an interruption is pending ---
        new_records = self.state.filter_new(records)
        self._metric["records_new"] += len(new_records)
        self._metric["records_duplicate"] += len(records) - len(new_records)
        if self.state.flush_if_dirty():
            self.logger.info(f"[STATE] persisted after page url={request.url}")
        self.scheduler.done(request)
        self.logger.info(
            f"[DEDUPE] url={request.url} extracted={len(records)} new={len(new_records)} crawled_total={len(self.state)}"
        )
        for record in new_records:
            yield record

        # --- 4. Regenerated pagination ---
        next_request = self._next_page_request(request, has_records=bool(records))
        if next_request is not None:
            yield next_request

    def on_request_failed(self, failure) -> Iterable[Dict[str, Any]]:
        """Errback: the request exhausted scrapy's retries; report it and carry on."""
        request = failure.request
        page = request.meta.get("playwright_page")
        if page is not None:
            task = asyncio.create_task(self._close_session(page))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        # download errors were collected across retries by ErrorMessagesMiddleware
        errors = list(request.meta.get("error_messages") or [])
        message = f"{failure.type.__name__}: {failure.getErrorMessage()}"
        if not errors or errors[-1] != message:
            errors.append(message)
        self._metric["failed_requests"] += 1
        self.logger.error(f"[FAILED] url={request.url} errors={errors}")
        yield self.scheduler.failure_record(request, errors)

    # -------------- Helpers ----------------

    def _next_page_request(self, request: Request, has_records: bool) -> Optional[Request]:
        max_pages = self.crawl_input.max_pages
        base_url = request.meta.get("base_url")
        if not (max_pages and has_records and base_url):
            return None
        next_index = request.meta.get("page_index", 0) + 1
        if next_index >= max_pages:
            return None
        self.logger.debug(f"[PAGINATION] base={base_url} page_index={next_index}")
        return self.scheduler.page(base_url, next_index)

    def _playwright_meta(self, session: str) -> Dict[str, Any]:
        """
        Scrapy meta enabling Playwright for one request in its own browser session.

        Each identity gets its own context (proxy draw, user agent and viewport);
        closing the context retires the session so a re-enqueued request never reuses it.
        """
        return {
            "playwright": True,
            "playwright_include_page": True,
            "playwright_context": f"session-{session}",
            "playwright_context_kwargs": {
                "proxy": self.crawl_input.proxy_config.draw(),
                "ignore_https_errors": True,
                **session_context_kwargs(),
            },
            "playwright_page_init_callback": self.interception.install,
            "playwright_page_goto_kwargs": {"timeout": self.navigation_timeout_ms},
        }

    async def _validate_proxy(self, probe_url: str) -> BrowserHandle:
        """Run the proxy validator with its own Playwright driver; only the proxy carries over."""
        async with async_playwright() as pw:
            launcher = PlaywrightLauncher(getattr(pw, self.browser_type), self.launch_options)
            handle = await find_working_browser(
                probe_url,
                self.crawl_input.proxy_config,
                launcher,
                marker=self.proxy_marker,
                max_attempts=self.proxy_max_attempts,
                timeout_ms=self.navigation_timeout_ms,
            )
            self.logger.info(
                f"[PROXY] seed proxy attempts={handle.attempts} validated={handle.validated} "
                f"server={(handle.proxy or {}).get('server')}"
            )
            await handle.browser.close()
        return handle

    async def _retire_session(self, page):
        self._metric["retired_sessions"] += 1
        await self._close_session(page)

    async def _close_session(self, page):
        if page is None:
            return
        try:
            await page.close()
            await page.context.close()
        except PlaywrightError as e:
            self.logger.debug(f"[SESSION] close failed: {e}")
