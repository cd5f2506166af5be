"""Request generation for the listing crawl.

Every request carries an *identity* in ``meta["unique_key"]``; the request
fingerprinter makes scrapy process each identity once. Re-enqueueing the same
URL under a new identity is how a page loaded through a bad proxy gets another chance.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from scrapy import Request

logger = logging.getLogger(__name__)

PAGE_STEP = 25
LIST_LABEL = "LIST"


def _add_query_param(url: str, **params) -> str:
    """
    Return a new URL with the given query parameters added or updated.

    - Preserves all existing query parameters unless overwritten by params
    - Ignores any param with value None
    - Appends new params after the existing ones, in the given order
    """
    parts = urlsplit(url)
    q = dict(parse_qsl(parts.query, keep_blank_values=True))
    q.update({k: v for k, v in params.items() if v is not None})
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(q), parts.fragment))


def pagination_url(url: str, page_index: int = 0, step: int = PAGE_STEP, group: Optional[str] = None) -> str:
    """
    Encode a listing page position into ``url``.

    ``cpt2`` is the ``<group>/200`` pair (group defaults to ``1``; the city id
    when the input restricts the crawl to a city) and ``offset`` is
    ``page_index * step``. Page 0 of ``https://site.test/list`` becomes
    ``https://site.test/list?cpt2=1%2F200&offset=0``.
    """
    return _add_query_param(url, cpt2=f"{group or 1}/200", offset=page_index * step)


def localize_url(url: str, language: Optional[str] = None, currency: Optional[str] = None, sep: str = "&") -> str:
    """Make sure ``url`` carries the language and currency of the input."""
    url = re.sub(r"#([a-zA-Z_]+)", "", url)
    if language and "lang" not in url:
        url += f"{sep}lang={language.replace('_', '-')}"
    if currency and "currency" not in url:
        url += f"{sep}selected_currency={currency.upper()}{sep}changed_currency=1{sep}top_currency=1"
    if "?" not in url and sep in url:
        url = url.replace(sep, "?", 1)
    url = re.sub(r"&{2,}", "&", url)
    return url.replace("?&", "?")


def is_valid_load(requested_url: str, resolved_url: str) -> bool:
    """
    Length heuristic for a page load routed through an unreliable proxy.

    A blocked proxy or an expired session makes the site redirect to its home
    or error page, whose URL is shorter than the deep link we asked for. Only
    the string lengths are compared; a resolved URL at least as long as the
    requested one counts as valid.
    """
    return len(resolved_url) >= len(requested_url)


def new_identity() -> str:
    return uuid.uuid4().hex


class RequestScheduler:
    """Builds every request of the crawl and tracks the ones in flight."""

    def __init__(
        self,
        callback: Callable,
        errback: Optional[Callable] = None,
        meta_factory: Optional[Callable[[str], Dict[str, Any]]] = None,
        language: Optional[str] = None,
        currency: Optional[str] = None,
        group: Optional[str] = None,
        step: int = PAGE_STEP,
    ):
        self.callback = callback
        self.errback = errback
        self.meta_factory = meta_factory or (lambda session: {})
        self.language = language
        self.currency = currency
        self.group = group
        self.step = step
        self._in_flight: Dict[str, str] = {}

    # -------------- Request construction ----------------
    def _request(self, url: str, identity: str, label: Optional[str], extra_meta: Optional[dict] = None) -> Request:
        meta = {
            **self.meta_factory(identity),
            "unique_key": identity,
            "label": label,
            **(extra_meta or {}),
        }
        # scrapy-playwright sends the scrapy User-Agent header, keep it equal to the context's
        user_agent = (meta.get("playwright_context_kwargs") or {}).get("user_agent")
        headers = {"User-Agent": user_agent} if user_agent else None
        request = Request(url, callback=self.callback, errback=self.errback, meta=meta, headers=headers)
        self.track(request)
        return request

    def seed(self, start_url: str) -> Request:
        url = localize_url(pagination_url(start_url, 0, self.step, self.group), self.language, self.currency)
        logger.info(f"[SEED] startUrl={url}")
        return self._request(url, identity=url, label=LIST_LABEL, extra_meta={"page_index": 0, "base_url": start_url})

    def from_source(self, source: Any) -> Request:
        if isinstance(source, str):
            url, label, identity = source, None, None
        else:
            url = source["url"]
            label = (source.get("userData") or {}).get("label")
            identity = source.get("uniqueKey")
        url = localize_url(url, self.language, self.currency)
        return self._request(url, identity=identity or url, label=label)

    def page(self, base_url: str, page_index: int) -> Request:
        url = localize_url(pagination_url(base_url, page_index, self.step, self.group), self.language, self.currency)
        return self._request(
            url,
            identity=url,
            label=LIST_LABEL,
            extra_meta={"page_index": page_index, "base_url": base_url},
        )

    def requeue(self, request: Request) -> Request:
        """Same destination, brand-new identity, fresh browser session."""
        self.done(request)
        carried = {k: request.meta[k] for k in ("page_index", "base_url") if k in request.meta}
        carried["requeue_count"] = request.meta.get("requeue_count", 0) + 1
        retry = self._request(request.url, identity=new_identity(), label=request.meta.get("label"), extra_meta=carried)
        logger.info(f"[REQUEUE] url={request.url} identity={retry.meta['unique_key']} count={carried['requeue_count']}")
        return retry

    # -------------- Bookkeeping ----------------
    def track(self, request: Request):
        self._in_flight[request.meta["unique_key"]] = request.url

    def done(self, request: Request):
        self._in_flight.pop(request.meta.get("unique_key"), None)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def failure_record(self, request: Request, errors: List[str]) -> Dict[str, Any]:
        self.done(request)
        return {"url": request.url, "succeeded": False, "errors": list(errors)}
