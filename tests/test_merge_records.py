import orjson

import merge_records
from listing_crawler.db import KeyValueStore


def write_jsonl(path, records):
    path.write_bytes(b"".join(orjson.dumps(r) + b"\n" for r in records))


def test_merge_keeps_first_occurrence_and_drops_failures(tmp_path):
    a = tmp_path / "a.jsonl"
    b = tmp_path / "b.jsonl"
    write_jsonl(a, [{"name": "Hotel A", "price": 1}, {"url": "https://site.test/x", "succeeded": False, "errors": []}])
    write_jsonl(b, [{"name": "Hotel A", "price": 2}, {"name": "Hotel B"}])

    merged, total = merge_records.merge([str(a), str(b)])
    assert total == 4
    assert merged == [{"name": "Hotel A", "price": 1}, {"name": "Hotel B"}]

    merged, _ = merge_records.merge([str(a), str(b)], keep_failures=True)
    assert merged[-1]["succeeded"] is False


def test_main_writes_output_and_updates_state(tmp_path):
    a = tmp_path / "a.jsonl"
    write_jsonl(a, [{"name": "Hotel A"}, {"name": "Hotel B"}])
    db = tmp_path / "state.db"
    KeyValueStore(db).set_value("STATE", {"crawled": {"Hotel A": True}})
    out = tmp_path / "merged.jsonl"

    rc = merge_records.main(["--inputs", str(a), "--output", str(out), "--update-state", str(db)])
    assert rc == 0
    assert [orjson.loads(line)["name"] for line in out.read_bytes().splitlines()] == ["Hotel A", "Hotel B"]
    assert KeyValueStore(db).get_value("STATE") == {"crawled": {"Hotel A": True, "Hotel B": True}}

    # an existing output is never overwritten
    merge_records.main(["--inputs", str(a), "--output", str(out)])
    assert len(list(tmp_path.glob("merged*.jsonl"))) == 2


def test_main_without_inputs(tmp_path):
    assert merge_records.main(["--inputs", str(tmp_path / "missing-*.jsonl")]) == 1
