"""
API error handling. Structured JSON errors with codes.

Every error response: {"error": {"code": "...", "message": "...", "details": {...}}}
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from marketmaker.errors import (
    ConfigurationError, InvalidRequest, LifecycleError, MarketMakerError,
    MarketNotFound, NumericError, ResourceError, SlippageError,
    Unauthorized,
)


class APIError(Exception):
    """Structured API error with HTTP status and machine-readable code."""

    def __init__(self, status: int, code: str, message: str,
                 details: dict | None = None):
        self.status = status
        self.code = code
        self.message = message
        self.details = details or {}

    def response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status,
            content={"error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }},
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return exc.response()


def translate_engine_error(exc: MarketMakerError) -> APIError:
    """Translate engine exceptions to structured API errors."""
    msg = str(exc)

    if isinstance(exc, MarketNotFound):
        return APIError(404, exc.code, msg)

    if isinstance(exc, Unauthorized):
        return APIError(403, exc.code, msg)

    if isinstance(exc, LifecycleError):
        return APIError(409, exc.code, msg)

    if isinstance(exc, (SlippageError, NumericError)):
        return APIError(422, exc.code, msg)

    if isinstance(exc, (ConfigurationError, InvalidRequest, ResourceError)):
        return APIError(400, exc.code, msg)

    return APIError(400, "bad_request", msg)
