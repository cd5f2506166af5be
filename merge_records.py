#!/usr/bin/env python3
"""Merge multiple records JSONL snapshots into a single deduplicated file.

Deduplication key: name; the first occurrence (in input order) wins, the same
rule the crawl state applies while crawling. Failure records
({"url", "succeeded": false, "errors"}) are dropped unless --keep-failures.

Usage (from project root):
  python merge_records.py \
      --inputs backups/records.*.jsonl data/records.jsonl \
      --output backups/records_merged.jsonl

With --update-state the merged names are added to the STATE blob of the state
db, so a crawl interrupted without a flush does not re-emit them.
"""
from __future__ import annotations
import argparse, glob, sys, os, datetime
from typing import Dict, List

import orjson

from listing_crawler.db import KeyValueStore

DEFAULT_GLOB_PATTERNS = [
    'backups/records.*.jsonl',
    'data/records.jsonl',
]


def iter_jsonl(path: str):
    try:
        with open(path, 'rb') as f:
            for i, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield orjson.loads(line)
                except orjson.JSONDecodeError as e:
                    sys.stderr.write(f"[WARN] Failed parsing line {i} in {path}: {e}\n")
    except FileNotFoundError:
        return


def merge(files: List[str], keep_failures: bool = False) -> tuple[List[dict], int]:
    """Return (merged records in first-seen order, total records read)."""
    merged: Dict[str, dict] = {}
    failures: List[dict] = []
    total = 0
    for f in files:
        for rec in iter_jsonl(f):
            total += 1
            if rec.get('succeeded') is False:
                if keep_failures:
                    failures.append(rec)
                continue
            key = rec.get('name')
            if not key or key in merged:
                continue
            merged[key] = rec
    return list(merged.values()) + failures, total


def _unique_path(path: str) -> str:
    """Return a path that does not exist yet by appending a timestamp (and counter if needed).

    Examples:
      backups/records_merged.jsonl -> backups/records_merged-20250825-123456.jsonl
    """
    dirpath = os.path.dirname(path) or '.'
    base = os.path.basename(path)
    name, ext = os.path.splitext(base)
    candidate = path
    if os.path.exists(candidate):
        ts = datetime.datetime.now().strftime('%Y%m%d-%H%M%S')
        candidate = os.path.join(dirpath, f"{name}-{ts}{ext}")
        i = 1
        while os.path.exists(candidate):
            candidate = os.path.join(dirpath, f"{name}-{ts}-{i}{ext}")
            i += 1
    return candidate


def update_state(db_path: str, records: List[dict], key: str = 'STATE') -> int:
    store = KeyValueStore(db_path)
    blob = store.get_value(key) or {}
    crawled = dict(blob.get('crawled') or {})
    before = len(crawled)
    for rec in records:
        name = rec.get('name')
        if name:
            crawled[name] = True
    store.set_value(key, {'crawled': crawled})
    return len(crawled) - before


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser()
    ap.add_argument('--inputs', nargs='*', help='Explicit input JSONL files (glob patterns allowed).')
    ap.add_argument('--output', default='backups/records_merged.jsonl', help='Output JSONL file path.')
    ap.add_argument('--keep-failures', action='store_true', help='Keep failed-request records in the output.')
    ap.add_argument('--update-state', metavar='DB', default=None, help='Add merged names to the STATE blob of this state db.')
    args = ap.parse_args(argv)

    patterns = args.inputs if args.inputs else DEFAULT_GLOB_PATTERNS
    files: List[str] = []
    for pat in patterns:
        files.extend(sorted(glob.glob(pat)))
    # Deduplicate & keep stable order
    seen_paths = set()
    ordered_files = []
    for p in files:
        if os.path.isfile(p) and p not in seen_paths:
            seen_paths.add(p)
            ordered_files.append(p)

    if not ordered_files:
        print('No input files found.', file=sys.stderr)
        return 1

    print(f"[MERGE] Inputs ({len(ordered_files)}):")
    for f in ordered_files:
        print(f"  - {f}")

    merged, total = merge(ordered_files, keep_failures=args.keep_failures)

    out_dir = os.path.dirname(args.output)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    final_out = _unique_path(args.output)
    # Use exclusive-create mode to avoid any accidental overwrite in race conditions
    with open(final_out, 'xb') as out:
        for rec in merged:
            out.write(orjson.dumps(rec, option=orjson.OPT_APPEND_NEWLINE))
    print(f"[MERGE] Wrote {len(merged)} unique records (from {total} records) -> {final_out}")

    if args.update_state:
        added = update_state(args.update_state, merged)
        print(f"[MERGE] Added {added} names to STATE in {args.update_state}")
    return 0

if __name__ == '__main__':
    raise SystemExit(main())
