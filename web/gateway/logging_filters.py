"""Logging filter that stamps records with the current request id.

Add ``RequestIdFilter`` to a handler so the JSON formatter can emit
``request_id`` on every record, including records from the receipt and
Stripe adapters, which run outside the view but inside the request.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Set ``record.request_id`` (``"-"`` outside a request) unless a caller already did."""

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
