import orjson
from pathlib import Path
from typing import Any

from scrapy.exceptions import DropItem


class JSONLinesPipeline:
    def __init__(self, output_path: str):
        self.output_path = Path(output_path)

    @classmethod
    def from_crawler(cls, crawler):
        return cls(crawler.settings.get("OUTPUT_JSONL", "data/records.jsonl"))

    def open_spider(self, spider):
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self.f = self.output_path.open("ab")

    def close_spider(self, spider):
        if hasattr(self, "f"):
            self.f.close()

    def process_item(self, item: Any, spider) -> Any:
        # failure records carry a url instead of a name
        is_failure = item.get("succeeded") is False
        if not is_failure and not item.get("name"):
            spider.crawler.stats.inc_value("pipeline/dropped_missing_name", 1)
            raise DropItem(f"[PIPELINE-SKIP] record without name: {item!r}")
        line = orjson.dumps(dict(item), option=orjson.OPT_APPEND_NEWLINE)
        self.f.write(line)
        self.f.flush()
        if is_failure:
            spider.crawler.stats.inc_value("pipeline/failed_requests", 1)
        else:
            spider.crawler.stats.inc_value("pipeline/records", 1)
        return item
