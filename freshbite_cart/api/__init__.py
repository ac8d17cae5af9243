# freshbite_cart/api/__init__.py
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from freshbite_cart.utils.errors import AppError, RateLimitError, ValidationError, sanitize_error
from freshbite_cart.utils.logging import get_logger

logger = get_logger(__name__)


def error_response(exc: Exception, headers: dict | None = None) -> JSONResponse:
    message, code, status_code = sanitize_error(exc)
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code},
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    """All errors leave as {error, code}; details of unexpected ones stay in the log."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
        logger.info(f"{request.method} {request.url.path} rejected, invalid fields: {fields}")
        return error_response(ValidationError(f"Invalid or missing fields: {', '.join(fields)}"))

    @app.exception_handler(RateLimitError)
    async def rate_limit_exception_handler(request: Request, exc: RateLimitError):
        return error_response(
            exc,
            headers={
                "Retry-After": str(exc.retry_after),
                "X-RateLimit-Limit": str(exc.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(exc.reset_at),
            },
        )

    @app.exception_handler(AppError)
    async def app_exception_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.__cause__!r}")
        return error_response(exc)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response(exc)
