"""Crawl input: what to crawl, through which proxies, with which options.

The input is a JSON document using the camelCase keys of the listing actor
input (``startUrl``, ``proxyConfig``, ``cacheResponses`` ...). It is read from
a JSON file when one is given, otherwise from the ``INPUT`` blob of the
key/value store.
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

from listing_crawler.db import KeyValueStore

APIFY_PROXY_URL = "http://proxy.apify.com:8000"


class MissingProxyError(RuntimeError):
    """Raised at startup when the input configures no proxy at all."""


@dataclass
class ProxyConfig:
    use_apify_proxy: bool = False
    proxy_urls: List[str] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)
    country: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProxyConfig":
        data = data or {}
        return cls(
            use_apify_proxy=bool(data.get("useApifyProxy")),
            proxy_urls=list(data.get("proxyUrls") or []),
            groups=list(data.get("apifyProxyGroups") or []),
            country=data.get("apifyProxyCountry"),
            password=data.get("password"),
        )

    @property
    def available(self) -> bool:
        return self.use_apify_proxy or bool(self.proxy_urls)

    def draw(self) -> Optional[Dict[str, str]]:
        """Pick the proxy for one browser session, in Playwright's format.

        Custom proxy URLs are drawn at random; the Apify proxy gets a random
        session id so every draw leaves through a different IP.
        """
        if self.proxy_urls:
            return {"server": random.choice(self.proxy_urls)}
        if not self.use_apify_proxy:
            return None
        session = "".join(random.choices(string.ascii_lowercase + string.digits, k=10))
        parts = []
        if self.groups:
            parts.append("groups-" + "+".join(self.groups))
        if self.country:
            parts.append(f"country-{self.country}")
        parts.append(f"session-{session}")
        proxy = {"server": APIFY_PROXY_URL, "username": ",".join(parts)}
        if self.password:
            proxy["password"] = self.password
        return proxy


@dataclass
class CrawlInput:
    start_url: Optional[str] = None
    proxy_config: ProxyConfig = field(default_factory=ProxyConfig)
    cache_responses: bool = False
    language: Optional[str] = None
    currency: Optional[str] = None
    sort_by: Optional[str] = None
    city_ids: Optional[str] = None
    test_proxy: bool = False
    max_pages: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CrawlInput":
        data = dict(data or {})
        city_ids = data.get("cityIds")
        return cls(
            start_url=data.get("startUrl") or None,
            proxy_config=ProxyConfig.from_dict(data.get("proxyConfig")),
            cache_responses=bool(data.get("cacheResponses")),
            language=data.get("language") or None,
            currency=data.get("currency") or None,
            sort_by=data.get("sortBy") or None,
            city_ids=str(city_ids) if city_ids not in (None, "") else None,
            test_proxy=bool(data.get("testProxy")),
            max_pages=int(data.get("maxPages") or 0),
            raw=data,
        )


def load_input(kv_store: KeyValueStore, path: str | Path | None = None, key: str = "INPUT") -> CrawlInput:
    if path:
        data = orjson.loads(Path(path).read_bytes())
    else:
        data = kv_store.get_value(key) or {}
    return CrawlInput.from_dict(data)


def require_proxy(crawl_input: CrawlInput) -> CrawlInput:
    if not crawl_input.proxy_config.available:
        raise MissingProxyError(
            "This crawler cannot be used without a proxy: set proxyConfig.useApifyProxy "
            "or proxyConfig.proxyUrls in the input."
        )
    return crawl_input


def load_sources(path: str | Path | None) -> List[Any]:
    """Load the ordered seed list; entries are URLs or ``{"url", "userData"}`` dicts."""
    if not path:
        return []
    sources = orjson.loads(Path(path).read_bytes())
    if not isinstance(sources, list):
        raise ValueError(f"seed list {path} must be a JSON array")
    return sources
