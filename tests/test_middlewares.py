from scrapy import Request

from listing_crawler.middlewares import ErrorMessagesMiddleware


def test_errors_accumulate_across_retry_copies():
    mw = ErrorMessagesMiddleware()
    request = Request("https://site.test/list", meta={"unique_key": "a"})

    assert mw.process_exception(request, TimeoutError("first"), None) is None
    retry = request.copy()
    mw.process_exception(retry, ConnectionError("second"), None)

    assert retry.meta["error_messages"] == ["TimeoutError: first", "ConnectionError: second"]
    assert request.meta["error_messages"] == ["TimeoutError: first"]
