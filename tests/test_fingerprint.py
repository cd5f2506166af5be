from scrapy import Request
from scrapy.dupefilters import RFPDupeFilter
from scrapy.utils.test import get_crawler

from listing_crawler import settings
from listing_crawler.fingerprint import UniqueKeyRequestFingerprinter
from listing_crawler.scheduler import RequestScheduler

URL = "https://site.test/list?cpt2=1%2F200&offset=0"


def make_dupefilter():
    return RFPDupeFilter(fingerprinter=UniqueKeyRequestFingerprinter())


def test_same_identity_is_processed_once():
    df = make_dupefilter()
    assert not df.request_seen(Request(URL, meta={"unique_key": URL}))
    assert df.request_seen(Request(URL, meta={"unique_key": URL}))


def test_new_identity_reprocesses_same_url():
    df = make_dupefilter()
    assert not df.request_seen(Request(URL, meta={"unique_key": URL}))
    assert not df.request_seen(Request(URL, meta={"unique_key": "0.123456"}))
    assert df.request_seen(Request(URL, meta={"unique_key": "0.123456"}))


def test_requests_without_identity_use_url_fingerprint():
    df = make_dupefilter()
    assert not df.request_seen(Request(URL))
    assert df.request_seen(Request(URL))
    assert not df.request_seen(Request("https://site.test/other"))


def test_fingerprint_is_a_sha1_digest():
    fp = UniqueKeyRequestFingerprinter().fingerprint(Request(URL, meta={"unique_key": "abc"}))
    assert isinstance(fp, bytes)
    assert len(fp) == 20


def test_crawler_dupefilter_lets_requeued_request_through():
    crawler = get_crawler(settings_dict={"REQUEST_FINGERPRINTER_CLASS": settings.REQUEST_FINGERPRINTER_CLASS})
    df = RFPDupeFilter.from_crawler(crawler)
    scheduler = RequestScheduler(callback=lambda response: [])

    seed = scheduler.seed("https://site.test/list")
    assert not df.request_seen(seed)
    assert df.request_seen(scheduler.seed("https://site.test/list"))

    retry = scheduler.requeue(seed)
    assert retry.url == seed.url
    assert not df.request_seen(retry)
    assert df.request_seen(retry)
