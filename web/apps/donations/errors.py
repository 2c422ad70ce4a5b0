"""Error taxonomy for the donations domain.

Every error carries a short machine-readable ``code`` (``str(exc)`` returns
it, mirroring how the views map error codes to HTTP statuses) and the HTTP
status the API layer should answer with.
"""


class DonationError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, code: str | None = None, message: str | None = None):
        self.code = code or self.code
        self.message = message
        super().__init__(self.code)

    def as_body(self) -> dict:
        body = {"detail": self.code}
        if self.message:
            body["message"] = self.message
        return body


class ValidationFailed(DonationError, ValueError):
    """Malformed or out-of-range input, rejected before any side effect."""

    code = "INVALID_REQUEST"
    http_status = 400


class PaymentIncomplete(DonationError):
    """The gateway has not (yet) completed the payment being confirmed."""

    code = "PAYMENT_NOT_COMPLETED"
    http_status = 400


class NotFound(DonationError, LookupError):
    code = "NOT_FOUND"
    http_status = 404


class GatewayError(DonationError):
    """The payment processor rejected the request or could not be reached.

    ``message`` holds the processor's own wording so it can be surfaced to
    the caller verbatim. Nothing has been persisted; retrying is safe.
    """

    code = "GATEWAY_ERROR"
    http_status = 500


class DonationNumberUnavailable(DonationError):
    """Allocation kept colliding; the whole request should be retried."""

    code = "DONATION_NUMBER_UNAVAILABLE"
    http_status = 503


class NotificationFailure(DonationError):
    """Receipt dispatch failed after a committed financial transition.

    Never propagated to API callers: it is folded into the confirmation
    acknowledgement as ``receipt: "failed"``.
    """

    code = "SAVED_RECEIPT_FAILED"
    http_status = 200
