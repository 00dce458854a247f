"""
Core error taxonomy

Every error raised by the booking, payment and rating services derives from
CoreError. The HTTP layer maps them to status codes in one place (main.py);
services never raise HTTPException themselves.
"""


class CoreError(Exception):
    """Base class for booking/payment/rating errors"""

    status_code = 400
    code = "core_error"
    retryable = False

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        self.context = context


class NotFound(CoreError):
    """Requested record does not exist"""

    status_code = 404
    code = "not_found"


class InvalidTransition(CoreError):
    """Target status is not reachable from the current status"""

    status_code = 409
    code = "invalid_transition"


class Forbidden(CoreError):
    """Caller's role may not perform this action"""

    status_code = 403
    code = "forbidden"


class Conflict(CoreError):
    """Record was modified concurrently; retry with fresh state"""

    status_code = 409
    code = "conflict"
    retryable = True


class AlreadyPaid(CoreError):
    """Booking has already been paid"""

    status_code = 409
    code = "already_paid"


class UnknownCorrelation(CoreError):
    """No payment attempt carries this correlation id"""

    status_code = 404
    code = "unknown_correlation"


class GatewayUnavailable(CoreError):
    """Payment gateway could not be reached or rejected the request"""

    status_code = 503
    code = "gateway_unavailable"
    retryable = True


class GatewayTimeout(GatewayUnavailable):
    """Payment gateway did not answer in time"""

    status_code = 504
    code = "gateway_timeout"


class DuplicateReview(CoreError):
    """Booking has already been reviewed"""

    status_code = 409
    code = "duplicate_review"


class InvalidState(CoreError):
    """Operation is not allowed in the record's current state"""

    status_code = 400
    code = "invalid_state"
