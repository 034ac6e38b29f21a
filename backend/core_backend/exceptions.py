"""
Error taxonomy for the order and promotion engine.

Every error carries a specific, user-facing (Vietnamese) message. The HTTP
layer maps ``kind``/``status_code`` to a response; the engine never retries.
"""


class EngineError(Exception):
    """
    Base exception for engine errors.
    """

    kind = "error"
    status_code = 400

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        payload = {"kind": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(EngineError):
    """Raised when input is malformed (negative quantity, missing reason, ...)"""

    kind = "validation_error"
    status_code = 400


class NotFoundError(EngineError):
    """Raised when an order, item, table, product or promotion id is unknown"""

    kind = "not_found"
    status_code = 404


class ConflictError(EngineError):
    """Raised when a business rule conflicts (occupied table, usage cap, stock)"""

    kind = "conflict"
    status_code = 409


class StateError(EngineError):
    """Raised when an operation is invalid for the current order/item status"""

    kind = "state_error"
    status_code = 422


class PromotionIneligibleError(ConflictError):
    """Raised when a promotion fails one of its eligibility checks"""

    kind = "promotion_ineligible"

    def __init__(self, reason, code, details=None):
        super().__init__(reason, details)
        self.reason = reason
        self.code = code

    def to_dict(self):
        payload = super().to_dict()
        payload["code"] = self.code
        return payload
