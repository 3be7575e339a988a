"""
Error kinds raised by the marketplace operations.

Each kind carries the HTTP status code it maps to; the FastAPI app renders
them as ``{"message": ...}`` bodies.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    status_code = 400


class NotFoundError(MarketplaceError):
    status_code = 404


class ConflictError(MarketplaceError):
    status_code = 409


class OriginNotAllowedError(MarketplaceError):
    status_code = 403

    def __init__(self, message: str = "Not allowed by CORS"):
        super().__init__(message)


class InternalError(MarketplaceError):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
