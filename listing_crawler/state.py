"""Crawl state: the set of record names already pushed to the data sink.

The set only grows. It is loaded once when the spider starts and written back
only after an interruption (migration / shutdown) has been signalled, so a
crash between two flushes may re-emit a few records.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from listing_crawler.db import KeyValueStore

logger = logging.getLogger(__name__)


class CrawlStateStore:
    def __init__(self, kv_store: KeyValueStore, key: str = "STATE"):
        self.kv_store = kv_store
        self.key = key
        self._crawled: Dict[str, bool] = {}
        self._interrupted = False

    def load(self) -> "CrawlStateStore":
        blob = self.kv_store.get_value(self.key) or {}
        crawled = blob.get("crawled") or {}
        self._crawled = {str(name): True for name, seen in crawled.items() if seen}
        logger.info(f"[STATE] loaded key={self.key} crawled={len(self._crawled)}")
        return self

    def is_new(self, name: str) -> bool:
        """Return True the first time ``name`` is seen and remember it.

        Test and insert happen without any await in between, so concurrent
        page callbacks cannot both claim the same name.
        """
        if name in self._crawled:
            return False
        self._crawled[name] = True
        return True

    def filter_new(self, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        new = []
        for record in records:
            name = record.get("name") if isinstance(record, dict) else None
            if not name:
                logger.warning(f"[STATE] record without name skipped: {record!r}")
                continue
            if self.is_new(name):
                new.append(record)
        return new

    def mark_interrupted(self):
        self._interrupted = True

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    def flush_if_dirty(self) -> bool:
        if not self._interrupted:
            return False
        self.flush()
        self._interrupted = False
        return True

    def flush(self):
        self.kv_store.set_value(self.key, self.snapshot())
        logger.info(f"[STATE] persisted key={self.key} crawled={len(self._crawled)}")

    def snapshot(self) -> Dict[str, Dict[str, bool]]:
        return {"crawled": dict(self._crawled)}

    def __contains__(self, name: object) -> bool:
        return name in self._crawled

    def __len__(self) -> int:
        return len(self._crawled)
