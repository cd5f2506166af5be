from __future__ import annotations

import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

DEFAULT_ITEM_SELECTOR = "li[data-qa='itemlist-element'], article[data-qa='itemlist-element']"
DEFAULT_NAME_SELECTOR = "[data-qa='item-name'], h2, h3"
PRICE_SELECTOR = "[data-qa='recommended-price'], [data-qa='price']"
RATING_SELECTOR = "[data-qa='rating-score'], [itemprop='ratingValue']"
ADDRESS_SELECTOR = "[data-qa='item-location-details'], [itemprop='address']"


def extract_listing_records(html: str, crawl_input: Any = None, base_url: str = "") -> List[Dict[str, Any]]:
    """Parse a rendered listing page into records, in page order.

    Every record has a ``name`` (the dedup key); ``url``, ``price``,
    ``currency``, ``rating`` and ``address`` are included when the card shows
    them. Card and name selectors can be overridden with the ``itemSelector``
    and ``nameSelector`` input keys.
    """
    raw = getattr(crawl_input, "raw", None) or {}
    item_selector = raw.get("itemSelector") or DEFAULT_ITEM_SELECTOR
    name_selector = raw.get("nameSelector") or DEFAULT_NAME_SELECTOR

    soup = BeautifulSoup(html, "lxml")
    records: List[Dict[str, Any]] = []
    for card in soup.select(item_selector):
        name_el = card.select_one(name_selector)
        name = _clean(name_el.get_text(" ", strip=True)) if name_el else None
        if not name:
            continue
        record: Dict[str, Any] = {"name": name}

        link = card.find("a", href=True)
        if link:
            record["url"] = urljoin(base_url, link["href"])

        price_text = _text(card, PRICE_SELECTOR)
        if price_text:
            record["price"] = _extract_number(price_text)
            record["price_text"] = price_text
            currency = getattr(crawl_input, "currency", None)
            if currency:
                record["currency"] = currency.upper()

        rating_text = _text(card, RATING_SELECTOR)
        if rating_text:
            record["rating"] = _extract_number(rating_text)

        address = _text(card, ADDRESS_SELECTOR)
        if address:
            record["address"] = address
        records.append(record)
    return records


def _text(card, selector: str) -> Optional[str]:
    el = card.select_one(selector)
    if not el:
        return None
    return _clean(el.get_text(" ", strip=True)) or None


def _clean(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip()


def _extract_number(s: str) -> Optional[float]:
    m = re.search(r"\d+(?:[.,]\d+)*", s)
    if not m:
        return None
    digits = m.group(0)
    # 1,234 / 1.234 are thousands, 8,5 / 8.5 are decimals
    if re.fullmatch(r"\d{1,3}(?:[.,]\d{3})+", digits):
        digits = re.sub(r"[.,]", "", digits)
    else:
        digits = digits.replace(",", ".")
    try:
        return float(digits)
    except ValueError:
        return None
