"""Security utilities and middleware."""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

# Job endpoints echo tenant identifiers and accept credentials in bodies
NO_STORE_PREFIXES = ("/api/v1/import", "/api/v1/sync")


async def security_headers_middleware(request: Request, call_next: Any) -> JSONResponse:
    """Add security headers to responses.

    Job control responses are additionally marked as non-cacheable.

    Args:
        request: The incoming request.
        call_next: The next middleware or route handler.

    Returns:
        Response: Response with security headers added.
    """
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"

    if request.url.path.startswith(NO_STORE_PREFIXES):
        response.headers["Cache-Control"] = "no-store"

    return response
