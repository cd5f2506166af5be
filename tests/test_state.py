"""Crawl state store and the key/value blob store behind it."""

from listing_crawler.db import KeyValueStore
from listing_crawler.state import CrawlStateStore


def test_kv_store_roundtrip(tmp_path):
    store = KeyValueStore(tmp_path / "nested" / "state.db")
    assert store.get_value("STATE") is None
    assert store.get_value("STATE", default={}) == {}

    store.set_value("STATE", {"crawled": {"Hotel A": True}})
    store.set_value("STATE", {"crawled": {"Hotel A": True, "Hotel B": True}})
    assert store.get_value("STATE") == {"crawled": {"Hotel A": True, "Hotel B": True}}
    assert store.keys() == ["STATE"]

    store.delete_value("STATE")
    assert store.get_value("STATE") is None


def test_only_new_names_pass_and_state_grows(tmp_path):
    kv = KeyValueStore(tmp_path / "state.db")
    kv.set_value("STATE", {"crawled": {"Hotel A": True}})
    state = CrawlStateStore(kv).load()

    new = state.filter_new([{"name": "Hotel A"}, {"name": "Hotel B"}])
    assert new == [{"name": "Hotel B"}]
    assert state.snapshot() == {"crawled": {"Hotel A": True, "Hotel B": True}}


def test_duplicates_within_one_batch_are_emitted_once(tmp_path):
    state = CrawlStateStore(KeyValueStore(tmp_path / "state.db")).load()
    new = state.filter_new([
        {"name": "Hotel C", "price": 10},
        {"name": "Hotel C", "price": 12},
        {"name": "Hotel D"},
    ])
    assert [r["name"] for r in new] == ["Hotel C", "Hotel D"]
    assert new[0]["price"] == 10


def test_records_without_name_are_skipped(tmp_path):
    state = CrawlStateStore(KeyValueStore(tmp_path / "state.db")).load()
    assert state.filter_new([{"url": "https://site.test/x"}, {"name": ""}]) == []
    assert len(state) == 0


def test_is_new_marks_seen():
    state = CrawlStateStore(kv_store=None)
    assert state.is_new("Hotel A")
    assert not state.is_new("Hotel A")
    assert "Hotel A" in state


def test_flush_happens_only_after_interruption(tmp_path):
    kv = KeyValueStore(tmp_path / "state.db")
    state = CrawlStateStore(kv).load()
    state.filter_new([{"name": "Hotel A"}])

    assert not state.flush_if_dirty()
    assert kv.get_value("STATE") is None

    state.mark_interrupted()
    assert state.interrupted
    assert state.flush_if_dirty()
    assert kv.get_value("STATE") == {"crawled": {"Hotel A": True}}
    assert not state.interrupted

    # flag is cleared: further mutations wait for the next signal
    state.filter_new([{"name": "Hotel B"}])
    assert not state.flush_if_dirty()
    assert kv.get_value("STATE") == {"crawled": {"Hotel A": True}}


def test_persisted_state_suppresses_records_in_the_next_run(tmp_path):
    kv = KeyValueStore(tmp_path / "state.db")
    first = CrawlStateStore(kv).load()
    assert first.filter_new([{"name": "Hotel A"}]) == [{"name": "Hotel A"}]
    first.mark_interrupted()
    first.flush_if_dirty()

    second = CrawlStateStore(kv).load()
    assert second.filter_new([{"name": "Hotel A"}, {"name": "Hotel B"}]) == [{"name": "Hotel B"}]
