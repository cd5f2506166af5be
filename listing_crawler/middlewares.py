import logging

logger = logging.getLogger(__name__)


class ErrorMessagesMiddleware:
    """Collect every download error of a request in ``meta["error_messages"]``.

    Sits closer to the downloader than ``RetryMiddleware`` so each exception is
    recorded before the retry copy is made; the copy inherits the list, and the
    errback finally reports all of them.
    """

    def process_exception(self, request, exception, spider=None):
        message = f"{type(exception).__name__}: {exception}"
        request.meta["error_messages"] = [*request.meta.get("error_messages", []), message]
        logger.debug(f"[ERROR] url={request.url} attempt_errors={len(request.meta['error_messages'])} err={message}")
        return None
