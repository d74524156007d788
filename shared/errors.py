"""
Shared error handling for the Veo proxy.

Caller-visible error bodies are fixed strings. Upstream detail belongs in
server-side logs only.
"""

from typing import List, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: Optional[str] = None


class ProxyError(Exception):
    """Base exception for errors surfaced to proxy callers."""

    status_code = 500

    def __init__(self, error: str, message: Optional[str] = None, status_code: Optional[int] = None):
        self.error = error
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(error)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.error, message=self.message)


class UnauthorizedError(ProxyError):
    """Missing or mismatched local API key."""

    status_code = 401

    def __init__(self, error: str = "Unauthorized"):
        super().__init__(error)


class BadRequestError(ProxyError):
    """Malformed request."""

    status_code = 400

    def __init__(self, error: str = "Bad request"):
        super().__init__(error)


class PayloadTooLargeError(ProxyError):
    """Request body over the configured limit."""

    status_code = 413

    def __init__(self, error: str = "Payload too large"):
        super().__init__(error)


class BadGatewayError(ProxyError):
    """Upstream could not be reached."""

    status_code = 502

    def __init__(self, error: str = "Bad gateway", message: str = "Failed to reach Vertex AI"):
        super().__init__(error, message)


class RateLimitError(ProxyError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, retry_after: int, error: str = "Too many requests"):
        self.retry_after = retry_after
        super().__init__(error, f"Rate limit exceeded, retry in {retry_after} seconds")


class ConfigurationError(Exception):
    """Raised when process configuration fails validation."""

    def __init__(self, messages: List[str]):
        self.messages = messages
        super().__init__("Configuration validation failed: " + "; ".join(messages))
