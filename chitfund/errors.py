# chitfund/errors.py
"""
Domain errors raised by the payment core.

Every error is raised before any write; routes never catch them, the handler
registered in main.py turns them into `{"detail": ...}` responses.
"""
from typing import Any, Optional


class ChitFundError(Exception):
    status_code = 400
    default_detail = "Request failed"

    def __init__(self, detail: Optional[str] = None, extra: Optional[Any] = None):
        self.detail = detail or self.default_detail
        self.extra = extra
        super().__init__(self.detail)


class NotFound(ChitFundError):
    status_code = 404
    default_detail = "Not found"


class Unauthorized(ChitFundError):
    status_code = 401
    default_detail = "Not authorized"


class Forbidden(ChitFundError):
    status_code = 403
    default_detail = "Not authorized"


class ValidationFailed(ChitFundError):
    default_detail = "Invalid request"


class InvalidSignature(ChitFundError):
    default_detail = "Invalid payment signature"


class DuplicateSubscription(ChitFundError):
    default_detail = "Already subscribed"


class PaymentAlreadyProcessed(ChitFundError):
    default_detail = "Payment already processed"


class InvalidState(ChitFundError):
    default_detail = "Operation not allowed in the current state"


class ConcurrencyConflict(ChitFundError):
    status_code = 409
    default_detail = "Concurrent update, please retry"


class GatewayFailure(ChitFundError):
    status_code = 500
    default_detail = "Error creating order"
