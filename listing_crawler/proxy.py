"""Finding a proxy that actually reaches the listing site.

Proxies in the pool are of uneven quality: some are blocked, some land on a
captive portal. ``find_working_browser`` keeps launching browsers through fresh
proxy draws until the probe page settles on a URL that carries the sort marker
the real site adds after its client-side redirect.

The loop is bounded by ``max_attempts``. When the ceiling is reached the last
browser is handed back unvalidated (``BrowserHandle.validated`` is False); pages
loaded through it still go through the scheduler's validity check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from playwright.async_api import Error as PlaywrightError

from listing_crawler.config import ProxyConfig
from listing_crawler.interception import hide_webdriver

logger = logging.getLogger(__name__)

DEFAULT_MARKER = "bayesian_review_score"
DEFAULT_MAX_ATTEMPTS = 1000
DEFAULT_TIMEOUT_MS = 200000


@dataclass
class BrowserHandle:
    browser: Any
    proxy: Optional[Dict[str, str]]
    attempts: int
    validated: bool


class BrowserLauncher(Protocol):
    async def launch(self, proxy: Optional[Dict[str, str]]) -> Any: ...


class PlaywrightLauncher:
    """Launches a fresh Playwright browser per proxy draw."""

    def __init__(self, browser_type, launch_options: Optional[Dict[str, Any]] = None):
        self.browser_type = browser_type
        self.launch_options = dict(launch_options or {})

    async def launch(self, proxy: Optional[Dict[str, str]]):
        options = dict(self.launch_options)
        if proxy:
            options["proxy"] = proxy
        return await self.browser_type.launch(**options)


def _server(proxy: Optional[Dict[str, str]]) -> str:
    return (proxy or {}).get("server", "direct")


async def _close(browser):
    try:
        await browser.close()
    except PlaywrightError as e:
        logger.debug(f"[PROXY] browser close failed: {e}")


async def _probe(browser, probe_url: str, marker: str, timeout_ms: int):
    page = await browser.new_page()
    await hide_webdriver(page)
    await page.goto(probe_url, timeout=timeout_ms)
    if marker not in page.url:
        # the site settles its sorting/session state with a client-side redirect
        await page.wait_for_event(
            "framenavigated",
            predicate=lambda frame: frame.parent_frame is None,
            timeout=timeout_ms,
        )
    return page


async def find_working_browser(
    probe_url: str,
    proxy_config: ProxyConfig,
    launcher: BrowserLauncher,
    *,
    marker: str = DEFAULT_MARKER,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> BrowserHandle:
    """Launch browsers through fresh proxy draws until one reaches ``probe_url``.

    Returns a handle on every call that gets a browser launched: validated when
    the marker showed up, unvalidated once ``max_attempts`` is reached. The one
    exception is a launch failure on the final attempt, which is re-raised since
    there is no browser left to hand back.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        last = attempt == max_attempts
        proxy = proxy_config.draw()
        logger.info(f"[PROXY] testing attempt={attempt}/{max_attempts} server={_server(proxy)}")

        try:
            browser = await launcher.launch(proxy)
        except PlaywrightError as e:
            if last:
                raise
            logger.warning(f"[PROXY] launch failed attempt={attempt} err={e}")
            continue

        try:
            page = await _probe(browser, probe_url, marker, timeout_ms)
        except PlaywrightError as e:
            if last:
                logger.warning(f"[PROXY] attempt ceiling reached, using unvalidated browser err={e}")
                return BrowserHandle(browser=browser, proxy=proxy, attempts=attempt, validated=False)
            logger.info(f"[PROXY] invalid proxy, retrying... err={e}")
            await _close(browser)
            continue

        page_url = page.url
        validated = marker in page_url
        if validated or last:
            if validated:
                logger.info(f"[PROXY] valid proxy found attempt={attempt} server={_server(proxy)}")
            else:
                logger.warning(f"[PROXY] attempt ceiling reached, using unvalidated browser url={page_url}")
            await page.close()
            return BrowserHandle(browser=browser, proxy=proxy, attempts=attempt, validated=validated)

        logger.info(f"[PROXY] invalid proxy, retrying... url={page_url}")
        await _close(browser)

    raise AssertionError("unreachable")
