"""Proxy validator loop with scripted fake browsers."""

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from listing_crawler.config import ProxyConfig
from listing_crawler.proxy import PlaywrightLauncher, find_working_browser

PROBE = "https://site.test/list?cpt2=1%2F200&offset=0"
MARKER = "bayesian_review_score"


class FakePage:
    """outcome: 'redirect' reaches the sorted page, 'block' lands elsewhere, 'error' fails to load."""

    def __init__(self, outcome):
        self.outcome = outcome
        self.url = "about:blank"
        self.closed = False
        self.init_scripts = []

    async def add_init_script(self, script):
        self.init_scripts.append(script)

    async def goto(self, url, timeout=None):
        if self.outcome == "error":
            raise PlaywrightError("net::ERR_PROXY_CONNECTION_FAILED")
        if self.outcome == "direct":
            self.url = f"{url}&sortingId={MARKER}"
        else:
            self.url = url

    async def wait_for_event(self, event, predicate=None, timeout=None):
        assert event == "framenavigated"
        if self.outcome == "redirect":
            self.url = f"{PROBE}&sortingId={MARKER}"
        elif self.outcome == "block":
            self.url = "https://site.test/blocked"
        elif self.outcome == "timeout":
            raise PlaywrightError("Timeout 200000ms exceeded")

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, outcome, proxy):
        self.proxy = proxy
        self.page = FakePage(outcome)
        self.closed = False

    async def new_page(self):
        return self.page

    async def close(self):
        self.closed = True


class FakeLauncher:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.browsers = []

    async def launch(self, proxy):
        browser = FakeBrowser(self.outcomes[len(self.browsers)], proxy)
        self.browsers.append(browser)
        return browser


PROXIES = ProxyConfig(proxy_urls=["http://p1.test:8000", "http://p2.test:8000"])


def run(launcher, **kwargs):
    return asyncio.run(find_working_browser(PROBE, PROXIES, launcher, marker=MARKER, **kwargs))


def test_first_working_proxy_is_returned_open():
    launcher = FakeLauncher(["redirect"])
    handle = run(launcher, max_attempts=5)
    assert handle.validated
    assert handle.attempts == 1
    assert handle.browser is launcher.browsers[0]
    assert not handle.browser.closed
    assert handle.browser.page.closed
    assert handle.proxy["server"] in PROXIES.proxy_urls
    assert "webdriver" in handle.browser.page.init_scripts[0]


def test_marker_already_present_skips_navigation_wait():
    launcher = FakeLauncher(["direct"])
    handle = run(launcher, max_attempts=5)
    assert handle.validated
    assert handle.attempts == 1


def test_failed_attempts_are_closed_and_retried():
    launcher = FakeLauncher(["error", "block", "timeout", "redirect"])
    handle = run(launcher, max_attempts=10)
    assert handle.validated
    assert handle.attempts == 4
    assert [b.closed for b in launcher.browsers] == [True, True, True, False]


def test_ceiling_returns_unvalidated_browser():
    launcher = FakeLauncher(["block", "block", "block"])
    handle = run(launcher, max_attempts=3)
    assert not handle.validated
    assert handle.attempts == 3
    assert len(launcher.browsers) == 3
    assert handle.browser is launcher.browsers[-1]
    assert not handle.browser.closed
    assert [b.closed for b in launcher.browsers[:2]] == [True, True]


def test_ceiling_after_navigation_error_still_returns_browser():
    launcher = FakeLauncher(["error", "error"])
    handle = run(launcher, max_attempts=2)
    assert not handle.validated
    assert handle.browser is launcher.browsers[-1]
    assert not handle.browser.closed


class FailingLauncher:
    def __init__(self):
        self.calls = 0

    async def launch(self, proxy):
        self.calls += 1
        raise PlaywrightError("browser failed to start")


def test_launch_failure_on_final_attempt_propagates():
    launcher = FailingLauncher()
    with pytest.raises(PlaywrightError):
        run(launcher, max_attempts=3)
    assert launcher.calls == 3


def test_invalid_ceiling():
    with pytest.raises(ValueError):
        run(FakeLauncher([]), max_attempts=0)


def test_playwright_launcher_passes_proxy():
    class FakeBrowserType:
        def __init__(self):
            self.kwargs = None

        async def launch(self, **kwargs):
            self.kwargs = kwargs
            return "browser"

    browser_type = FakeBrowserType()
    launcher = PlaywrightLauncher(browser_type, {"headless": True})
    assert asyncio.run(launcher.launch({"server": "http://p1.test:8000"})) == "browser"
    assert browser_type.kwargs == {"headless": True, "proxy": {"server": "http://p1.test:8000"}}

    asyncio.run(launcher.launch(None))
    assert browser_type.kwargs == {"headless": True}
