"""Per-page request interception and session hygiene.

``decide`` and ``on_response`` are plain synchronous decisions so they can be
tested without a browser; ``route``/``handle_response`` adapt them to the
Playwright event hooks, and ``install`` wires everything to a page through
scrapy-playwright's ``playwright_page_init_callback``.
"""

from __future__ import annotations

import enum
import logging
import random
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError

from listing_crawler.cache import CacheEntry, ResponseCache, is_denied

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 12_6) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_5) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:126.0) Gecko/20100101 Firefox/126.0",
]

VIEWPORT_BASE = (1024, 768)
VIEWPORT_JITTER = 100

# Removes navigator.webdriver and fills the properties headless Chrome leaves empty.
STEALTH_JS = (
    "() => {"
    "try { Object.defineProperty(navigator,'webdriver',{get:()=>undefined}); } catch(e){}"
    "try { if(!navigator.plugins || navigator.plugins.length===0){ Object.defineProperty(navigator,'plugins',{get:()=>[{name:'Chrome PDF Plugin'}]}); } } catch(e){}"
    "try { if(!navigator.languages || navigator.languages.length===0){ Object.defineProperty(navigator,'languages',{get:()=>['en-US','en']}); } } catch(e){}"
    "try { if(!window.chrome){ window.chrome={runtime:{}}; } } catch(e){}"
    "}"
)


class Action(enum.Enum):
    ABORT = "abort"
    FULFILL = "fulfill"
    CONTINUE = "continue"


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def random_viewport() -> Dict[str, int]:
    width, height = VIEWPORT_BASE
    return {
        "width": width + random.randrange(VIEWPORT_JITTER),
        "height": height + random.randrange(VIEWPORT_JITTER),
    }


def session_context_kwargs() -> Dict[str, object]:
    """Browser context identity for one session: user agent and jittered viewport."""
    return {"user_agent": random_user_agent(), "viewport": random_viewport()}


async def hide_webdriver(page):
    await page.add_init_script(STEALTH_JS)


def should_abort_request(request) -> bool:
    """``PLAYWRIGHT_ABORT_REQUEST`` predicate: deny-listed sub-resources never leave the browser."""
    return not request.is_navigation_request() and is_denied(request.url)


class InterceptionFilter:
    def __init__(self, cache: ResponseCache):
        self.cache = cache

    # -------------- Decisions ----------------
    def decide(self, url: str) -> Tuple[Action, Optional[CacheEntry]]:
        if self.cache.should_abort(url):
            return Action.ABORT, None
        entry = self.cache.lookup(url)
        if entry is not None:
            return Action.FULFILL, entry
        return Action.CONTINUE, None

    def on_response(self, url: str, status: int, headers: Dict[str, str], body: bytes) -> bool:
        return self.cache.record(url, status, headers, body)

    # -------------- Playwright hooks ----------------
    async def route(self, route):
        request = route.request
        if request.is_navigation_request():
            # the listing document itself is never filtered or replayed
            await route.fallback()
            return
        action, entry = self.decide(request.url)
        if action is Action.ABORT:
            await route.abort()
        elif action is Action.FULFILL:
            await route.fulfill(status=entry.status, headers=entry.headers, body=entry.body)
        else:
            await route.fallback()

    async def handle_response(self, response):
        if not self.cache.enabled:
            return
        try:
            body = await response.body()
        except PlaywrightError as e:
            # redirects and aborted responses have no body
            logger.debug(f"[CACHE] no body url={response.url} err={e}")
            return
        if self.on_response(response.url, response.status, dict(response.headers), body):
            logger.debug(f"[CACHE] stored url={response.url}")

    async def prepare_page(self, page, origin_url: str):
        """Session hygiene applied once per page before navigation.

        User agent and viewport belong to the session's browser context
        (``session_context_kwargs``); this only hides automation and clears cookies.
        """
        await hide_webdriver(page)
        host = urlparse(origin_url).hostname
        if host:
            await page.context.clear_cookies(domain=host)

    async def install(self, page, request):
        """``playwright_page_init_callback`` for every crawl request."""
        await self.prepare_page(page, request.url)
        await page.route("**/*", self.route)
        page.on("response", self.handle_response)
