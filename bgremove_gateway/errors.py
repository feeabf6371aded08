"""Exception taxonomy mapped one-to-one onto HTTP status codes."""

from __future__ import annotations

from typing import Dict, Optional


class GatewayError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.headers = headers or {}
        super().__init__(self.message)


class ValidationError(GatewayError):
    """Bad input shape, type or size."""

    status_code = 400
    default_message = "Invalid request"


class AuthError(GatewayError):
    status_code = 401
    default_message = "Unauthorized: Invalid API key"


class RateLimitError(GatewayError):
    status_code = 429
    default_message = "Too many requests"


class ProcessingError(GatewayError):
    """The external removal call failed or timed out."""

    status_code = 500
    default_message = "Failed to remove background"
