import os

BOT_NAME = "listing_crawler"

SPIDER_MODULES = ["listing_crawler.spiders"]
NEWSPIDER_MODULE = "listing_crawler.spiders"

ROBOTSTXT_OBEY = False

# browser pool size; every request runs in its own Playwright page
CONCURRENT_REQUESTS = int(os.getenv("CONCURRENCY", "2"))
DOWNLOAD_DELAY = 0

# using playwright instead of scrapy's built-in downloader
DOWNLOAD_HANDLERS = {
    "http": "scrapy_playwright.handler.ScrapyPlaywrightDownloadHandler",
    "https": "scrapy_playwright.handler.ScrapyPlaywrightDownloadHandler",
}

# Required reactor for asyncio / Playwright
TWISTED_REACTOR = "twisted.internet.asyncioreactor.AsyncioSelectorReactor"

PLAYWRIGHT_BROWSER_TYPE = "chromium"

# Headless toggle (set HEADLESS=0 for headed / visible browser in env)
_headless_env = os.getenv("HEADLESS", "1").lower() in ("1", "true", "yes")

PLAYWRIGHT_LAUNCH_OPTIONS = {
    "headless": _headless_env,
    # A few low-risk flags to reduce obvious automation fingerprints.
    "args": [
        "--disable-blink-features=AutomationControlled",
        "--no-default-browser-check",
        "--disable-infobars",
        "--disable-dev-shm-usage",
    ],
}

# Deny-listed sub-resources are aborted before any route handler sees them.
PLAYWRIGHT_ABORT_REQUEST = "listing_crawler.interception.should_abort_request"

# Every page load is bounded by this timeout (ms), probe navigations included.
NAVIGATION_TIMEOUT_MS = int(os.getenv("NAVIGATION_TIMEOUT_MS", "200000"))
PLAYWRIGHT_DEFAULT_NAVIGATION_TIMEOUT = NAVIGATION_TIMEOUT_MS

# Each session owns a browser context; keep the number of live ones bounded.
PLAYWRIGHT_MAX_CONTEXTS = int(os.getenv("MAX_CONTEXTS", "8"))

DEFAULT_REQUEST_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

# Navigation exceptions are retried by scrapy before the errback reports them.
RETRY_ENABLED = True
RETRY_TIMES = int(os.getenv("RETRY_TIMES", "3"))

# Identity (meta["unique_key"]) decides whether a request was already processed.
REQUEST_FINGERPRINTER_CLASS = "listing_crawler.fingerprint.UniqueKeyRequestFingerprinter"

# Collects download errors before RetryMiddleware (550) retries the request.
DOWNLOADER_MIDDLEWARES = {"listing_crawler.middlewares.ErrorMessagesMiddleware": 560}

ITEM_PIPELINES = {"listing_crawler.pipelines.JSONLinesPipeline": 300}

OUTPUT_JSONL = os.getenv("OUTPUT_JSONL", "data/records.jsonl")

# Durable key/value blobs: INPUT (read once) and STATE (crawled names).
STATE_DB_PATH = os.getenv("STATE_DB_PATH", "data/state.db")
STATE_KEY = "STATE"
INPUT_KEY = "INPUT"

# Proxy validation loop ceiling; reaching it yields an unvalidated browser.
PROXY_VALIDATION_MAX_ATTEMPTS = int(os.getenv("PROXY_MAX_ATTEMPTS", "1000"))
DEFAULT_SORT_MARKER = "bayesian_review_score"

# Offset increment between regenerated pagination pages.
PAGE_STEP = int(os.getenv("PAGE_STEP", "25"))

# Overrides the input's cacheResponses flag when set.
CACHE_RESPONSES = os.getenv("CACHE_RESPONSES")

RECORD_EXTRACTOR = "listing_crawler.parse_helpers.extract_listing_records"

LOG_LEVEL = "INFO"
