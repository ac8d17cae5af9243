# freshbite_cart/utils/errors.py
"""
Errors surfaced by the cart service.

Every error the client may see carries a stable ``code`` and an HTTP
``status_code``; anything else is sanitized to a generic 500 so raw driver
messages never leave the server.
"""

ERROR_INTERNAL = "An unexpected error occurred"
ERROR_CART_WRITE = "Could not update the cart, please try again"
ERROR_RATE_LIMITED = "Too many requests"


class AppError(Exception):
    code = "APP_ERROR"
    status_code = 500

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    status_code = 400


class CartConflictError(AppError):
    """Lost an optimistic-concurrency race on the cart row."""

    code = "CART_CONFLICT"
    status_code = 409


class CartStoreError(AppError):
    code = "CART_WRITE_FAILED"
    status_code = 500


class RateLimitError(AppError):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, retry_after: int, limit: int, reset_at: int):
        super().__init__(ERROR_RATE_LIMITED)
        self.retry_after = retry_after
        self.limit = limit
        self.reset_at = reset_at


def sanitize_error(exc: Exception) -> tuple[str, str, int]:
    """(message, code, status_code) that is safe to send to the client."""
    if isinstance(exc, AppError):
        return exc.message, exc.code, exc.status_code
    return ERROR_INTERNAL, "INTERNAL_ERROR", 500
