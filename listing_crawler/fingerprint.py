import hashlib

from scrapy.utils.request import RequestFingerprinter


class UniqueKeyRequestFingerprinter(RequestFingerprinter):
    """Fingerprint requests by their identity instead of the URL.

    Requests built by the scheduler carry ``meta["unique_key"]``; two requests
    with the same key are processed once, a new key forces reprocessing of the
    same URL. Requests without a key fall back to scrapy's fingerprint.
    """

    def fingerprint(self, request) -> bytes:
        unique_key = request.meta.get("unique_key")
        if unique_key:
            return hashlib.sha1(unique_key.encode()).digest()
        return super().fingerprint(request)
