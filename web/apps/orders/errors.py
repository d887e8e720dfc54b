"""Error taxonomy for checkout, fulfillment and payment checks.

Each error carries a short machine ``code`` (the same style as the
``"INSUFFICIENT_STOCK"`` codes the API returns), the HTTP status the views
map it to, and a fixed human-readable message. Messages never include
identifiers or upstream detail; those go to the logs only.
"""


class StorefrontError(Exception):
    http_status = 500
    default_code = "INTERNAL_ERROR"
    message = "Something went wrong while processing the order."

    def __init__(self, code: str | None = None):
        self.code = code or self.default_code
        super().__init__(self.code)

    def as_body(self) -> dict:
        return {"detail": self.code, "error": self.message}


class ValidationError(StorefrontError):
    http_status = 400
    default_code = "VALIDATION_ERROR"
    message = "The request is invalid."


class InvalidTransitionError(ValidationError):
    http_status = 409
    default_code = "INVALID_TRANSITION"
    message = "The order cannot move to the requested status."


class NotFoundError(StorefrontError):
    http_status = 404
    default_code = "NOT_FOUND"
    message = "The requested resource was not found."


class InsufficientStockError(StorefrontError):
    http_status = 422
    default_code = "INSUFFICIENT_STOCK"
    message = "There is not enough stock available for this item."

    def __init__(self, code: str | None = None, requested: int = 0, available: int = 0):
        super().__init__(code)
        self.requested = requested
        self.available = available


class UpstreamProviderError(StorefrontError):
    http_status = 503
    default_code = "UPSTREAM_UNAVAILABLE"
    message = "The payment provider is unavailable. Please try again shortly."


class ConcurrencyConflict(StorefrontError):
    http_status = 409
    default_code = "CONCURRENCY_CONFLICT"
    message = "The order was modified concurrently. Please retry."
