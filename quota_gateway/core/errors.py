"""
Error taxonomy for the gateway.

Every error a request can end with is a GatewayError carrying the HTTP
status it maps to. All of them are terminal for the request.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class for errors that end a request with a JSON error body."""

    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = dict(extra or {})

    def to_body(self) -> Dict[str, Any]:
        """Build the JSON error body for this error."""
        body: Dict[str, Any] = {"error": self.message}
        body.update(self.extra)
        return body


class ValidationError(GatewayError):
    """Malformed JSON, invalid email or missing messages."""
    status_code = 400


class QuotaExceeded(GatewayError):
    """The user has used up the daily token limit."""
    status_code = 429

    def __init__(self, message: str = "Daily token limit reached."):
        super().__init__(message, extra={"remaining_today": 0})


class ConfigurationError(GatewayError):
    """Missing credential or no usable storage backend."""
    status_code = 500


class StorageError(GatewayError):
    """The usage store failed while serving a request."""
    status_code = 500


class UpstreamError(GatewayError):
    """The completion service call failed.

    The status mirrors what the upstream reported, defaulting to 500.
    """

    def __init__(self, status_code: Optional[int], message: str):
        super().__init__(message, status_code=status_code or 500)
