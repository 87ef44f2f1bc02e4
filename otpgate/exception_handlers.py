"""
Exception handlers for the identity API.

Register them on a FastAPI app via `register_exception_handlers(app)`.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .core.errors import IdentityError, Internal, RateLimitExceeded

logger = logging.getLogger(__name__)


async def identity_error_handler(request: Request, exc: IdentityError):
    """Render typed identity errors with their own status and structured details."""
    if exc.http_status >= 500:
        logger.error(f"[API] {exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"[API] {exc.code} on {request.url.path}")

    headers = None
    if isinstance(exc, RateLimitExceeded) and exc.retry_at is not None:
        headers = {"X-Retry-At": exc.retry_at.isoformat()}
    return JSONResponse(status_code=exc.http_status, content=exc.to_response(), headers=headers)


async def global_exception_handler(request: Request, exc: Exception):
    """Unhandled errors never leak internals to the caller."""
    logger.exception(f"[API] Unhandled error on {request.url.path}: {exc}")
    error = Internal()
    return JSONResponse(status_code=error.http_status, content=error.to_response())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IdentityError, identity_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
